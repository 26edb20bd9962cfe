"""
分类结果类型

ClassifiedResult 是五种结果之一的纯值类型，不持久化：
- Success(payload)
- BusinessConflict(message)   服务端已存在目标状态，属于幂等成功
- AuthError(message)          会话失效，交给会话层处理
- NetworkError(cause)         传输层失败，可稍后重放
- MalformedResponse(cause)    非 JSON / 无法解析 / 其他硬错误，不重试
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar, Union

from src.core.enums import OutcomeKind
from src.core.error_utils import extract_error_message
from src.core.exceptions import (
    AssignmentConflictError,
    BackendAuthError,
    BackendUnavailableError,
    MalformedResponseError,
)

T = TypeVar("T")


@dataclass(frozen=True)
class RawResponse:
    """分类器的输入：状态码、content-type、原始响应体"""

    status_code: int
    content_type: str = ""
    body: bytes = b""
    url: str | None = None

    @classmethod
    def from_httpx(cls, response: Any) -> "RawResponse":
        return cls(
            status_code=response.status_code,
            content_type=response.headers.get("content-type", ""),
            body=response.content or b"",
            url=str(response.request.url) if response.request is not None else None,
        )

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


@dataclass(frozen=True)
class Success(Generic[T]):
    payload: T
    kind: OutcomeKind = field(default=OutcomeKind.SUCCESS, init=False)

    def unwrap(self) -> T:
        return self.payload


@dataclass(frozen=True)
class BusinessConflict:
    message: str
    status_code: int | None = None
    kind: OutcomeKind = field(default=OutcomeKind.BUSINESS_CONFLICT, init=False)

    def unwrap(self) -> Any:
        raise AssignmentConflictError(self.message)


@dataclass(frozen=True)
class AuthError:
    message: str
    status_code: int | None = None
    kind: OutcomeKind = field(default=OutcomeKind.AUTH_ERROR, init=False)

    def unwrap(self) -> Any:
        raise BackendAuthError(self.message)


@dataclass(frozen=True)
class NetworkError:
    cause: BaseException
    kind: OutcomeKind = field(default=OutcomeKind.NETWORK_ERROR, init=False)

    @property
    def message(self) -> str:
        return extract_error_message(self.cause)

    def unwrap(self) -> Any:
        raise BackendUnavailableError(
            f"Network error: could not connect to the API ({self.message})", cause=self.cause
        )


@dataclass(frozen=True)
class MalformedResponse:
    """
    非 JSON 响应或未识别的错误响应

    status_code/detail 在 "通用失败" 路径上携带后端返回的状态与 detail，
    markup=True 表示收到了 HTML 等标记内容（端点配置错误）。
    """

    cause: str
    status_code: int | None = None
    detail: str | None = None
    markup: bool = False
    snippet: str | None = None
    kind: OutcomeKind = field(default=OutcomeKind.MALFORMED_RESPONSE, init=False)

    @property
    def message(self) -> str:
        return self.detail or self.cause

    def unwrap(self) -> Any:
        raise MalformedResponseError(
            self.cause,
            status_code=self.status_code,
            detail=self.detail,
            upstream_response=self.snippet,
        )


ClassifiedResult = Union[Success[T], BusinessConflict, AuthError, NetworkError, MalformedResponse]


def describe(result: ClassifiedResult[Any]) -> str:
    """结果的简短描述（日志 / API 返回）"""
    if isinstance(result, Success):
        return "success"
    return f"{result.kind.value}: {result.message}"


__all__ = [
    "RawResponse",
    "Success",
    "BusinessConflict",
    "AuthError",
    "NetworkError",
    "MalformedResponse",
    "ClassifiedResult",
    "describe",
]
