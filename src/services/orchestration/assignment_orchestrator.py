"""
分配编排器

状态机:
    Idle -> Checking -> Submitting -> {Confirmed, Conflict, QueuedOffline, Aborted}

- Checking: 查询内存索引与离线队列，已有占用中的尝试时直接本地短路为 Conflict，
  不访问后端（防止操作员连续点击造成重复提交）
- Submitting: 调用 assign-task 并交给分类器
- 分类结果分派:
    Success           -> Confirmed，请求状态改为 assigned
    BusinessConflict  -> Conflict，幂等成功（服务端已持有分配）
    AuthError         -> Aborted，通知会话层失效，不写离线队列
    NetworkError      -> QueuedOffline，写入离线队列，返回临时成功（写入失败则 Aborted）
    MalformedResponse -> Aborted，硬错误，不重试

并发模型：单线程协作式调度。索引检查与占位在第一个 await 之前同步完成，
"更新索引 + 写队列" 也在同一步骤内完成，不会与其他协程交错。
这只是本地尽力而为的保护，跨进程的重复提交依赖服务端的冲突检测。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from src.core.enums import (
    HOLDING_STATUSES,
    AssignmentStatus,
    OrchestratorState,
    TaskStatus,
)
from src.core.exceptions import InvalidIdentifierError
from src.core.logger import logger
from src.models.task import TaskAssignmentRecord, WorkRequest
from src.services.assignment.models import AssignmentAttempt, AssignmentDetails
from src.services.assignment.offline_queue import OfflineQueue
from src.services.orchestration.candidate_resolver import (
    CandidateResolver,
    RankingResult,
    normalize_request_id,
)
from src.services.orchestration.classified import (
    AuthError,
    BusinessConflict,
    ClassifiedResult,
    MalformedResponse,
    NetworkError,
    Success,
)
from src.services.orchestration.error_handler import (
    MSG_ALREADY_ASSIGNED,
    MSG_ASSIGNED,
    MSG_NO_CANDIDATES,
    MSG_QUEUED_OFFLINE,
    MSG_STORAGE_FAILED,
    MSG_UNEXPECTED,
    ErrorHandlerService,
)
from src.utils.response_shapes import ASSIGNMENT_SHAPES, normalize_collection

if TYPE_CHECKING:
    from src.clients.task_backend import TaskBackendClient

# 服务端分配记录中这些状态不算占用
_RELEASED_REMOTE_STATUSES = frozenset({"cancelled", "rejected", "declined"})


class AbortReason:
    """Aborted 状态的原因"""

    AUTH = "auth"
    MALFORMED = "malformed"
    NO_CANDIDATES = "no_candidates"
    STORAGE = "storage"


class ConflictReason:
    LOCAL_DUPLICATE = "local_duplicate"
    SERVER = "server"


@dataclass
class AssignmentOutcome:
    """一次 assign / assign_top_match / 对账重放的结果"""

    state: OrchestratorState
    request_id: str
    candidate_id: str | None
    message: str
    attempt: AssignmentAttempt | None = None
    result: ClassifiedResult[Any] | None = None
    reason: str | None = None
    session_invalidated: bool = False
    transitions: list[OrchestratorState] = field(default_factory=list)
    ranking: RankingResult | None = None

    @property
    def is_success(self) -> bool:
        """Confirmed / Conflict 为成功，QueuedOffline 为临时成功"""
        return self.state in (
            OrchestratorState.CONFIRMED,
            OrchestratorState.CONFLICT,
            OrchestratorState.QUEUED_OFFLINE,
        )

    @property
    def is_provisional(self) -> bool:
        return self.state == OrchestratorState.QUEUED_OFFLINE

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "state": self.state.value,
            "request_id": self.request_id,
            "candidate_id": self.candidate_id,
            "message": self.message,
            "reason": self.reason,
            "success": self.is_success,
            "provisional": self.is_provisional,
            "session_invalidated": self.session_invalidated,
            "transitions": [state.value for state in self.transitions],
            "attempt": self.attempt.to_dict() if self.attempt else None,
        }
        if isinstance(self.result, Success):
            data["payload"] = self.result.payload
        return data


class AssignmentOrchestrator:
    """
    分配编排器

    内存分配索引与离线队列是仅有的两个共享可变资源，只通过本类的状态迁移修改。
    """

    def __init__(
        self,
        backend: "TaskBackendClient",
        resolver: CandidateResolver,
        queue: OfflineQueue,
        handler: ErrorHandlerService,
    ) -> None:
        self.backend = backend
        self.resolver = resolver
        self.queue = queue
        self.handler = handler
        self._index: dict[str, AssignmentAttempt] = {}
        self._remote_assigned: set[str] = set()
        self._requests: dict[str, WorkRequest] = {}

    # ------------------------------------------------------------------
    # 查询
    # ------------------------------------------------------------------

    def track_request(self, work_request: WorkRequest) -> None:
        """登记服务请求，分配确认后会把它的状态改为 assigned"""
        self._requests[work_request.id] = work_request

    def get_request(self, request_id: str) -> WorkRequest | None:
        return self._requests.get(request_id)

    def current_attempt(self, request_id: str) -> AssignmentAttempt | None:
        return self._index.get(request_id)

    def list_pending(self, owner_id: str | None = None) -> list[AssignmentAttempt]:
        return self.queue.list_pending(owner_id)

    def is_request_assigned(self, request_id: str) -> bool:
        """
        界面去重规则：已确认分配或在离线队列中的请求都视为已分配，
        两者同等权威，用于禁用再次分配的操作。
        """
        attempt = self._index.get(request_id)
        if attempt is not None and attempt.status in (
            AssignmentStatus.CONFIRMED,
            AssignmentStatus.CONFLICT,
            AssignmentStatus.QUEUED_OFFLINE,
        ):
            return True
        if request_id in self._remote_assigned:
            return True
        return self.queue.has_pending(request_id)

    def _find_holding(self, request_id: str) -> AssignmentAttempt | None:
        attempt = self._index.get(request_id)
        if attempt is not None and attempt.status in HOLDING_STATUSES:
            return attempt
        for pending in self.queue.list_pending():
            if pending.request_id == request_id:
                return pending
        return None

    # ------------------------------------------------------------------
    # 分配
    # ------------------------------------------------------------------

    async def assign(
        self,
        request_id: str,
        candidate_id: str,
        details: AssignmentDetails | None = None,
    ) -> AssignmentOutcome:
        """
        把请求分配给指定候选人

        Raises:
            InvalidIdentifierError: request_id / candidate_id 为空
        """
        request_id = normalize_request_id(request_id)
        candidate_id = str(candidate_id).strip() if candidate_id is not None else ""
        if not candidate_id:
            raise InvalidIdentifierError("candidate id must be a non-empty identifier")

        transitions = [OrchestratorState.IDLE, OrchestratorState.CHECKING]

        local = self._local_duplicate(request_id, candidate_id, transitions)
        if local is not None:
            return local

        attempt = AssignmentAttempt.create(
            request_id,
            candidate_id,
            self.queue.next_sequence(),
            details or AssignmentDetails.defaults(),
        )
        create = attempt.to_create()

        # 占位必须在第一个 await 之前完成
        self._index[request_id] = attempt
        transitions.append(OrchestratorState.SUBMITTING)
        logger.info(
            "  [{}] 提交分配: proz={} seq={}", request_id, candidate_id, attempt.sequence
        )

        try:
            result = await self.backend.submit_assignment(create)
        except BaseException:
            self._release(attempt)
            raise

        return self._settle(attempt, result, transitions, replay=False)

    async def assign_top_match(
        self,
        request_id: str,
        details: AssignmentDetails | None = None,
        *,
        limit: int | None = None,
    ) -> AssignmentOutcome:
        """
        自动分配：取 AI 排序的第一名（并列时以排序端点返回的顺序为准）

        排序结果为空时直接中止，不调用分配端点。
        """
        request_id = normalize_request_id(request_id)

        transitions = [OrchestratorState.IDLE, OrchestratorState.CHECKING]
        local = self._local_duplicate(request_id, None, transitions)
        if local is not None:
            return local

        ranking = await self.resolver.rank(request_id, limit)
        top = ranking.top
        if top is None:
            transitions = [OrchestratorState.IDLE, OrchestratorState.ABORTED]
            if isinstance(ranking.outcome, AuthError):
                self.handler.handle_auth_error(request_id, ranking.outcome)
                return AssignmentOutcome(
                    state=OrchestratorState.ABORTED,
                    request_id=request_id,
                    candidate_id=None,
                    message=ranking.outcome.message,
                    result=ranking.outcome,
                    reason=AbortReason.AUTH,
                    session_invalidated=True,
                    transitions=transitions,
                    ranking=ranking,
                )
            self.handler.handle_no_candidates(request_id)
            logger.info("  [{}] 无可分配候选，自动分配中止", request_id)
            return AssignmentOutcome(
                state=OrchestratorState.ABORTED,
                request_id=request_id,
                candidate_id=None,
                message=MSG_NO_CANDIDATES,
                result=ranking.outcome,
                reason=AbortReason.NO_CANDIDATES,
                transitions=transitions,
                ranking=ranking,
            )

        outcome = await self.assign(request_id, top.proz_id, details)
        outcome.ranking = ranking
        return outcome

    async def replay(self, attempt: AssignmentAttempt) -> AssignmentOutcome:
        """
        重放一条离线队列中的尝试（供对账使用）

        与 assign 走相同的提交与分派路径；确认或冲突时从队列删除，
        网络失败、认证失败、硬错误时条目保留。
        """
        transitions = [OrchestratorState.QUEUED_OFFLINE, OrchestratorState.SUBMITTING]
        self._index[attempt.request_id] = attempt
        result = await self.backend.submit_assignment(attempt.to_create())
        return self._settle(attempt, result, transitions, replay=True)

    async def refresh_index(self, page_size: int = 50) -> int:
        """
        从后端加载已存在的分配，使去重规则反映服务端状态

        Returns:
            新登记的已分配请求数；请求失败时保持现有索引并返回 0
        """
        result = await self.backend.fetch_assignments(page=1, page_size=page_size)
        if not isinstance(result, Success):
            if isinstance(result, AuthError):
                self.handler.handle_auth_error(None, result)
            logger.warning("加载已有分配失败，保留当前索引: {}", result.kind.value)
            return 0

        added = 0
        for item in normalize_collection(result.payload, ASSIGNMENT_SHAPES):
            if not isinstance(item, dict):
                continue
            try:
                record = TaskAssignmentRecord.model_validate(item)
            except ValidationError as e:
                logger.warning("跳过无法解析的分配记录: {}", e.errors()[0]["msg"])
                continue
            request_id = (record.service_request_id or "").strip()
            status = (record.status or "").lower()
            if not request_id or status in _RELEASED_REMOTE_STATUSES:
                continue
            if request_id not in self._remote_assigned:
                self._remote_assigned.add(request_id)
                added += 1
            tracked = self._requests.get(request_id)
            if tracked is not None and tracked.status == TaskStatus.PENDING:
                tracked.status = TaskStatus.ASSIGNED
        logger.info("已加载服务端分配: 新增 {} 条", added)
        return added

    # ------------------------------------------------------------------
    # 内部
    # ------------------------------------------------------------------

    def _local_duplicate(
        self,
        request_id: str,
        candidate_id: str | None,
        transitions: list[OrchestratorState],
    ) -> AssignmentOutcome | None:
        existing = self._find_holding(request_id)
        if existing is None and request_id not in self._remote_assigned:
            return None

        transitions.append(OrchestratorState.CONFLICT)
        self.handler.handle_conflict(request_id, MSG_ALREADY_ASSIGNED, local=True)
        return AssignmentOutcome(
            state=OrchestratorState.CONFLICT,
            request_id=request_id,
            candidate_id=candidate_id,
            message=MSG_ALREADY_ASSIGNED,
            attempt=existing,
            reason=ConflictReason.LOCAL_DUPLICATE,
            transitions=transitions,
        )

    def _release(self, attempt: AssignmentAttempt) -> None:
        if self._index.get(attempt.request_id) is attempt:
            del self._index[attempt.request_id]

    def _mark_request_assigned(self, request_id: str) -> None:
        tracked = self._requests.get(request_id)
        if tracked is not None:
            tracked.status = TaskStatus.ASSIGNED

    def _settle(
        self,
        attempt: AssignmentAttempt,
        result: ClassifiedResult[Any],
        transitions: list[OrchestratorState],
        *,
        replay: bool,
    ) -> AssignmentOutcome:
        request_id = attempt.request_id

        def outcome(state: OrchestratorState, message: str, **kwargs: Any) -> AssignmentOutcome:
            transitions.append(state)
            return AssignmentOutcome(
                state=state,
                request_id=request_id,
                candidate_id=attempt.candidate_id,
                message=message,
                attempt=attempt,
                result=result,
                transitions=transitions,
                **kwargs,
            )

        if isinstance(result, Success):
            attempt.transition(AssignmentStatus.CONFIRMED)
            self._index[request_id] = attempt
            if replay:
                self.queue.remove(attempt.sequence)
            self._mark_request_assigned(request_id)
            self.handler.handle_confirmed(request_id, attempt.candidate_id)
            return outcome(OrchestratorState.CONFIRMED, MSG_ASSIGNED)

        if isinstance(result, BusinessConflict):
            attempt.transition(AssignmentStatus.CONFLICT)
            self._index[request_id] = attempt
            if replay:
                self.queue.remove(attempt.sequence)
            self._mark_request_assigned(request_id)
            self.handler.handle_conflict(request_id, result.message)
            return outcome(
                OrchestratorState.CONFLICT, MSG_ALREADY_ASSIGNED, reason=ConflictReason.SERVER
            )

        if isinstance(result, NetworkError):
            if not replay:
                # 写队列与更新索引在同一步骤内完成；写入失败时释放占位
                try:
                    self.queue.enqueue(attempt)
                except Exception as e:
                    attempt.transition(AssignmentStatus.FAILED)
                    self._release(attempt)
                    self.handler.handle_storage_failure(request_id, e)
                    return outcome(
                        OrchestratorState.ABORTED,
                        MSG_STORAGE_FAILED,
                        reason=AbortReason.STORAGE,
                    )
                self._index[request_id] = attempt
                self.handler.handle_queued_offline(request_id, attempt.sequence)
            else:
                logger.debug("  [{}] 对账时后端仍不可达，保留 seq={}", request_id, attempt.sequence)
            return outcome(OrchestratorState.QUEUED_OFFLINE, MSG_QUEUED_OFFLINE)

        if isinstance(result, AuthError):
            if not replay:
                attempt.transition(AssignmentStatus.FAILED)
                self._release(attempt)
            self.handler.handle_auth_error(request_id, result)
            return outcome(
                OrchestratorState.ABORTED,
                result.message,
                reason=AbortReason.AUTH,
                session_invalidated=True,
            )

        if isinstance(result, MalformedResponse):
            if not replay:
                attempt.transition(AssignmentStatus.FAILED)
                self._release(attempt)
            self.handler.handle_malformed(request_id, result)
            return outcome(
                OrchestratorState.ABORTED,
                result.detail or MSG_UNEXPECTED,
                reason=AbortReason.MALFORMED,
            )

        raise TypeError(f"unexpected classification: {result!r}")


__all__ = [
    "AbortReason",
    "ConflictReason",
    "AssignmentOutcome",
    "AssignmentOrchestrator",
]
