"""
响应分类器 - 纯分类逻辑，无副作用（仅日志）

把后端的各种 HTTP 结果统一翻译为 ClassifiedResult。副作用（通知、会话失效）
由 ErrorHandlerService 负责。

分类顺序：
1. 传输层异常 -> NetworkError（不读取响应体）
2. 非 2xx:
   a. 业务冲突短语 -> BusinessConflict（优先级最高，后端会复用通用 4xx 状态码表示冲突）
   b. 认证失败短语或 401/403 -> AuthError
   c. 其他 -> MalformedResponse（携带状态码与 detail 的通用失败）
3. 2xx:
   a. 空响应体 -> Success(empty_value)
   b. 标记内容（以 < 开头或 content-type 为 HTML/XML）-> MalformedResponse
   c. JSON 解析成功 -> Success(parsed)，解析失败 -> MalformedResponse
"""

from __future__ import annotations

import json
from typing import Any, Callable

import httpx

from src.core.error_utils import extract_error_message, truncate_body
from src.core.logger import logger
from src.services.orchestration.classified import (
    AuthError,
    BusinessConflict,
    ClassifiedResult,
    MalformedResponse,
    NetworkError,
    RawResponse,
    Success,
)

BUSINESS_CONFLICT_PHRASES: tuple[str, ...] = ("Task already assigned to this professional",)

AUTH_FAILURE_PHRASES: tuple[str, ...] = (
    "Could not validate credentials",
    "Invalid credentials",
    "Incorrect email or password",
    "Token has expired",
)

AUTH_STATUS_CODES = frozenset({401, 403})

_MARKUP_CONTENT_TYPES = ("text/html", "application/xhtml", "text/xml", "application/xml")


def _looks_like_markup(text: str, content_type: str) -> bool:
    lowered = content_type.lower()
    return text.lstrip().startswith("<") or any(ct in lowered for ct in _MARKUP_CONTENT_TYPES)


def _match_phrase(phrases: tuple[str, ...], *texts: str | None) -> str | None:
    for text in texts:
        if not text:
            continue
        for phrase in phrases:
            if phrase in text:
                return phrase
    return None


def extract_detail(text: str) -> str | None:
    """
    从错误响应体中提取 detail

    支持：
    - {"detail": "..."}（FastAPI 标准错误）
    - {"detail": [{"msg": ...}, ...]}（FastAPI 校验错误）
    - {"message": "..."} / {"error": "..."}
    - JSON 字符串本身
    无法解析时返回 None。
    """
    if not text or not text.strip():
        return None
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return None

    if isinstance(data, str):
        return data
    if not isinstance(data, dict):
        return None

    detail = data.get("detail")
    if isinstance(detail, str):
        return detail
    if isinstance(detail, list):
        messages = [
            str(item.get("msg")) if isinstance(item, dict) and item.get("msg") else str(item)
            for item in detail
        ]
        return "; ".join(messages) if messages else None
    if isinstance(detail, dict):
        return str(detail.get("message") or json.dumps(detail, ensure_ascii=False))

    for key in ("message", "error"):
        value = data.get(key)
        if isinstance(value, str) and value.strip():
            return value
        if isinstance(value, dict) and isinstance(value.get("message"), str):
            return value["message"]
    return None


class ErrorClassifier:
    """
    响应分类器

    无状态，可在所有调用点共享同一实例。
    """

    def __init__(
        self,
        conflict_phrases: tuple[str, ...] = BUSINESS_CONFLICT_PHRASES,
        auth_phrases: tuple[str, ...] = AUTH_FAILURE_PHRASES,
    ) -> None:
        self.conflict_phrases = conflict_phrases
        self.auth_phrases = auth_phrases

    def classify_response(
        self,
        raw: RawResponse,
        *,
        empty_value: Callable[[], Any] = dict,
        request_id: str | None = None,
    ) -> ClassifiedResult[Any]:
        """
        分类一个已收到的 HTTP 响应

        Args:
            raw: 原始响应
            empty_value: 2xx 空响应体时返回的默认值工厂
            request_id: 仅用于日志
        """
        text = raw.text

        if not raw.is_success:
            return self._classify_error(raw, text, request_id)

        if not text.strip():
            logger.debug("  [{}] 后端返回空响应体 (HTTP {})", request_id, raw.status_code)
            return Success(empty_value())

        if _looks_like_markup(text, raw.content_type):
            snippet = truncate_body(text)
            logger.error(
                "  [{}] 收到非 JSON 响应 (content-type: {})，请检查 BACKEND_API_URL: {}",
                request_id,
                raw.content_type or "unknown",
                snippet,
            )
            return MalformedResponse(
                cause=(
                    f"Received non-JSON response from API (content-type: {raw.content_type or 'unknown'})"
                ),
                status_code=raw.status_code,
                markup=True,
                snippet=snippet,
            )

        try:
            return Success(json.loads(text))
        except (json.JSONDecodeError, ValueError) as exc:
            logger.error("  [{}] 响应 JSON 解析失败: {}", request_id, exc)
            return MalformedResponse(
                cause=f"Failed to parse API response: {exc}",
                status_code=raw.status_code,
                snippet=truncate_body(text),
            )

    def _classify_error(
        self, raw: RawResponse, text: str, request_id: str | None
    ) -> ClassifiedResult[Any]:
        detail = extract_detail(text)

        # 业务冲突优先：后端会用 400/409/422 等通用状态码表示 "已分配"
        if _match_phrase(self.conflict_phrases, detail, text):
            message = detail or text.strip()
            logger.info("  [{}] 业务冲突响应 (HTTP {}): {}", request_id, raw.status_code, message)
            return BusinessConflict(message=message, status_code=raw.status_code)

        auth_phrase = _match_phrase(self.auth_phrases, detail, text)
        if auth_phrase or raw.status_code in AUTH_STATUS_CODES:
            message = detail or auth_phrase or f"HTTP {raw.status_code}"
            logger.warning("  [{}] 认证失败 (HTTP {}): {}", request_id, raw.status_code, message)
            return AuthError(message=message, status_code=raw.status_code)

        markup = detail is None and _looks_like_markup(text, raw.content_type)
        snippet = truncate_body(text) if text.strip() else None
        if detail is None:
            detail = f"API Error: {snippet}" if snippet else f"API Error: {raw.status_code}"
        logger.error("  [{}] 后端返回错误 (HTTP {}): {}", request_id, raw.status_code, detail)
        return MalformedResponse(
            cause=f"HTTP {raw.status_code}",
            status_code=raw.status_code,
            detail=detail,
            markup=markup,
            snippet=snippet,
        )

    def classify_exception(
        self, exc: BaseException, *, request_id: str | None = None
    ) -> NetworkError:
        """
        传输层异常 -> NetworkError

        只接受 httpx.TransportError / OSError，其余异常是程序错误，原样抛出。
        """
        if not isinstance(exc, (httpx.TransportError, OSError)):
            raise exc
        logger.warning(
            "  [{}] 网络错误 ({}): {}",
            request_id,
            type(exc).__name__,
            extract_error_message(exc),
        )
        return NetworkError(cause=exc)


_default_classifier = ErrorClassifier()


def classify_response(
    raw: RawResponse,
    *,
    empty_value: Callable[[], Any] = dict,
    request_id: str | None = None,
) -> ClassifiedResult[Any]:
    """使用默认短语表分类响应"""
    return _default_classifier.classify_response(
        raw, empty_value=empty_value, request_id=request_id
    )


def classify_exception(exc: BaseException, *, request_id: str | None = None) -> NetworkError:
    return _default_classifier.classify_exception(exc, request_id=request_id)


def get_error_classifier() -> ErrorClassifier:
    return _default_classifier


__all__ = [
    "BUSINESS_CONFLICT_PHRASES",
    "AUTH_FAILURE_PHRASES",
    "ErrorClassifier",
    "classify_response",
    "classify_exception",
    "extract_detail",
    "get_error_classifier",
]
