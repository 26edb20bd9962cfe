"""
分配编排异常定义

只有程序错误（非法参数）和显式 unwrap 失败的分类结果会以异常形式出现；
业务冲突、认证失败、网络失败都是正常的状态迁移，不在这里抛出。
"""

from __future__ import annotations


class AssignmentServiceError(Exception):
    """分配服务异常基类"""

    def __init__(self, message: str, *, detail: str | None = None):
        super().__init__(message)
        self.message = message
        self.detail = detail


class InvalidIdentifierError(AssignmentServiceError, ValueError):
    """调用方传入空的请求 ID / 候选人 ID 或非法 limit"""


class MalformedResponseError(AssignmentServiceError):
    """后端返回了非 JSON（通常是 HTML）或无法解析的响应，说明端点配置有误"""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        detail: str | None = None,
        upstream_response: str | None = None,
    ):
        super().__init__(message, detail=detail)
        self.status_code = status_code
        self.upstream_response = upstream_response


class BackendAuthError(AssignmentServiceError):
    """会话凭据失效，需要上游重新登录"""


class BackendUnavailableError(AssignmentServiceError):
    """传输层失败（连接拒绝、超时、DNS）"""

    def __init__(self, message: str, *, cause: BaseException | None = None):
        super().__init__(message)
        self.cause = cause


class AssignmentConflictError(AssignmentServiceError):
    """服务端已存在该请求的分配"""


__all__ = [
    "AssignmentServiceError",
    "InvalidIdentifierError",
    "MalformedResponseError",
    "BackendAuthError",
    "BackendUnavailableError",
    "AssignmentConflictError",
]
