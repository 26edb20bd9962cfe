"""
会话状态

持有访问后端所用的 bearer token。编排器在收到认证失败时调用 invalidate()，
之后的请求不再携带过期凭据，直到上游重新登录并调用 set_token()。
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

from src.core.logger import logger

SessionListener = Callable[[str], None]


class SessionState:
    def __init__(self, access_token: str | None = None) -> None:
        self._access_token = (access_token or "").strip() or None
        self.invalidated_at: datetime | None = None
        self.invalidation_reason: str | None = None
        self._listeners: list[SessionListener] = []

    @property
    def access_token(self) -> str | None:
        return self._access_token

    @property
    def is_valid(self) -> bool:
        return self._access_token is not None

    def set_token(self, access_token: str) -> None:
        token = access_token.strip()
        if not token:
            raise ValueError("access token must not be empty")
        self._access_token = token
        self.invalidated_at = None
        self.invalidation_reason = None
        logger.info("会话凭据已更新")

    def add_listener(self, listener: SessionListener) -> None:
        """注册会话失效回调（例如通知上游重新登录）"""
        self._listeners.append(listener)

    def invalidate(self, reason: str) -> None:
        """清除凭据并通知监听者；重复调用只记录第一次原因"""
        if self._access_token is None and self.invalidated_at is not None:
            return
        self._access_token = None
        self.invalidated_at = datetime.now(timezone.utc)
        self.invalidation_reason = reason
        logger.warning("会话已失效，需要重新登录: {}", reason)
        for listener in list(self._listeners):
            try:
                listener(reason)
            except Exception as exc:
                logger.exception("会话失效回调异常: {}", exc)

    def auth_headers(self) -> dict[str, str]:
        if not self._access_token:
            return {}
        return {"Authorization": f"Bearer {self._access_token}"}
