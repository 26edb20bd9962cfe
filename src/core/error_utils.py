"""
错误消息处理工具函数
"""

from __future__ import annotations


def extract_error_message(error: BaseException, status_code: int | None = None) -> str:
    """
    从异常中提取错误消息，优先使用上游原始响应（用于日志排查）

    Args:
        error: 异常对象
        status_code: 可选的 HTTP 状态码

    Returns:
        错误消息字符串
    """
    upstream_response = getattr(error, "upstream_response", None)
    if upstream_response and isinstance(upstream_response, str) and upstream_response.strip():
        return upstream_response

    # httpx 超时异常的 str() 可能为空
    error_str = str(error) or type(error).__name__
    if status_code is not None:
        return f"HTTP {status_code}: {error_str}"
    return error_str


def truncate_body(text: str, limit: int = 200) -> str:
    """截断响应体用于日志，避免 HTML 页面刷屏"""
    text = text.strip()
    if len(text) <= limit:
        return text
    return text[:limit] + "..."
