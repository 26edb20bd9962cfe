"""
候选解析器 - 向 AI 排序端点请求候选专业人员

排序分数由远端给出，这里只负责消费：保持后端返回顺序（按分数降序），不做本地重排。
业务/认证/网络类结果不会抛异常，而是返回空列表并附带分类结果；
只有空的请求 ID 或非法 limit 这类程序错误才会抛出 InvalidIdentifierError。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from src.config import config
from src.core.exceptions import InvalidIdentifierError
from src.core.logger import logger
from src.models.task import Candidate
from src.services.orchestration.classified import ClassifiedResult, Success, describe
from src.utils.response_shapes import CANDIDATE_SHAPES, normalize_collection

if TYPE_CHECKING:
    from src.clients.task_backend import TaskBackendClient


@dataclass
class RankingResult:
    """一次排序调用的结果：候选列表 + 分类结果（供界面/遥测使用）"""

    request_id: str
    candidates: list[Candidate]
    outcome: ClassifiedResult[Any]

    @property
    def ok(self) -> bool:
        return isinstance(self.outcome, Success)

    @property
    def top(self) -> Candidate | None:
        return self.candidates[0] if self.candidates else None


def normalize_request_id(request_id: Any) -> str:
    text = str(request_id).strip() if request_id is not None else ""
    if not text:
        raise InvalidIdentifierError("request id must be a non-empty identifier")
    return text


def parse_candidates(payload: Any, request_id: str | None = None) -> list[Candidate]:
    """把排序响应归一化为 Candidate 列表，无法解析的条目跳过"""
    candidates: list[Candidate] = []
    for index, item in enumerate(normalize_collection(payload, CANDIDATE_SHAPES)):
        if not isinstance(item, dict):
            logger.warning("  [{}] 跳过非对象候选 #{}: {!r}", request_id, index, item)
            continue
        try:
            candidates.append(Candidate.model_validate(item))
        except ValidationError as e:
            logger.warning("  [{}] 跳过无效候选 #{}: {}", request_id, index, e.errors()[0]["msg"])
    return candidates


class CandidateResolver:
    """AI 排序候选解析器"""

    def __init__(
        self,
        backend: "TaskBackendClient",
        *,
        default_limit: int | None = None,
        max_limit: int | None = None,
    ) -> None:
        self.backend = backend
        self.default_limit = default_limit or config.rank_default_limit
        self.max_limit = max_limit or config.rank_max_limit

    async def rank(self, request_id: str, limit: int | None = None) -> RankingResult:
        """
        获取请求的排序候选

        Args:
            request_id: 服务请求 ID（去除空白后不能为空）
            limit: 返回数量上限，必须为正整数，超过 max_limit 时截断

        Returns:
            RankingResult，非成功分类时 candidates 为空
        """
        request_id = normalize_request_id(request_id)
        if limit is None:
            limit = self.default_limit
        if isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
            raise InvalidIdentifierError(f"limit must be a positive integer, got {limit!r}")
        limit = min(limit, self.max_limit)

        outcome = await self.backend.fetch_matches(request_id, limit)
        if not isinstance(outcome, Success):
            logger.info("  [{}] AI 排序未返回候选: {}", request_id, describe(outcome))
            return RankingResult(request_id=request_id, candidates=[], outcome=outcome)

        candidates = parse_candidates(outcome.payload, request_id)
        logger.info(
            "  [{}] AI 排序返回 {} 个候选{}",
            request_id,
            len(candidates),
            f"，首选 {candidates[0].proz_id} ({candidates[0].confidence_percent}%)"
            if candidates
            else "",
        )
        return RankingResult(request_id=request_id, candidates=candidates, outcome=outcome)
