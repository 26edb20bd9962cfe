"""
操作员通知

通知是 fire-and-forget：发送失败只记日志，不影响分配结果。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Protocol

from src.core.logger import logger


class NotificationLevel(str, Enum):
    SUCCESS = "success"
    INFO = "info"
    ERROR = "error"


@dataclass(frozen=True)
class Notification:
    level: NotificationLevel
    title: str
    message: str
    request_id: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class NotificationSink(Protocol):
    def notify(self, notification: Notification) -> None: ...


class LoggingNotificationSink:
    """默认实现：写入日志"""

    def notify(self, notification: Notification) -> None:
        if notification.level == NotificationLevel.ERROR:
            logger.error("[{}] {}: {}", notification.request_id, notification.title, notification.message)
        else:
            logger.info("[{}] {}: {}", notification.request_id, notification.title, notification.message)


class RecentNotificationSink:
    """保留最近 N 条通知，供管理接口查询"""

    def __init__(self, capacity: int = 100, forward_to: NotificationSink | None = None) -> None:
        self.capacity = capacity
        self.forward_to = forward_to
        self._items: list[Notification] = []

    def notify(self, notification: Notification) -> None:
        self._items.append(notification)
        if len(self._items) > self.capacity:
            del self._items[: len(self._items) - self.capacity]
        if self.forward_to is not None:
            self.forward_to.notify(notification)

    def recent(self) -> list[Notification]:
        return list(self._items)


__all__ = [
    "NotificationLevel",
    "Notification",
    "NotificationSink",
    "LoggingNotificationSink",
    "RecentNotificationSink",
]
