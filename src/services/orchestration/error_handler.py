"""
结果处理服务

负责分类结果产生后的副作用操作（操作员通知、会话失效）。
与 ErrorClassifier（纯分类，无副作用）分离，遵循单一职责原则。
副作用失败只记录日志，不影响编排结果。
"""

from __future__ import annotations

from src.core.logger import logger
from src.services.auth.session import SessionState
from src.services.notification.sink import (
    LoggingNotificationSink,
    Notification,
    NotificationLevel,
    NotificationSink,
)
from src.services.orchestration.classified import AuthError, MalformedResponse

MSG_ASSIGNED = "Professional assigned successfully! They will receive an email notification."
MSG_ALREADY_ASSIGNED = "This task is already assigned to the selected professional."
MSG_QUEUED_OFFLINE = "Professional assignment created locally. Will sync when API is available."
MSG_NO_CANDIDATES = "AI did not return candidates to assign."
MSG_UNEXPECTED = "An unexpected error occurred. Please try again."
MSG_STORAGE_FAILED = "API is unavailable and the assignment could not be saved locally. Please try again."


class ErrorHandlerService:
    """
    结果处理服务 - 负责分类结果产生后的副作用

    职责：
    1. 成功 / 冲突 / 离线排队的操作员通知
    2. 认证失败时使会话失效（不发送错误通知，由会话层静默处理）
    3. 硬错误的错误通知
    """

    def __init__(
        self,
        session: SessionState,
        notifier: NotificationSink | None = None,
    ) -> None:
        self.session = session
        self.notifier = notifier or LoggingNotificationSink()

    def handle_confirmed(self, request_id: str, candidate_id: str) -> None:
        logger.info("  [{}] 分配已确认: proz={}", request_id, candidate_id)
        self._notify(NotificationLevel.SUCCESS, "Success!", MSG_ASSIGNED, request_id)

    def handle_conflict(self, request_id: str, message: str, *, local: bool = False) -> None:
        # 冲突是幂等成功，不能以错误形式展示
        source = "本地去重" if local else "服务端"
        logger.info("  [{}] 已分配（{}）: {}", request_id, source, message)
        self._notify(NotificationLevel.SUCCESS, "Already Assigned", MSG_ALREADY_ASSIGNED, request_id)

    def handle_queued_offline(self, request_id: str, sequence: int) -> None:
        logger.warning("  [{}] 后端不可达，分配已写入离线队列 seq={}", request_id, sequence)
        self._notify(
            NotificationLevel.INFO,
            "Assignment Created (Offline Mode)",
            MSG_QUEUED_OFFLINE,
            request_id,
        )

    def handle_auth_error(self, request_id: str | None, result: AuthError) -> None:
        try:
            self.session.invalidate(result.message)
        except Exception as e:
            logger.exception("  [{}] 会话失效处理异常: {}", request_id, e)

    def handle_malformed(self, request_id: str | None, result: MalformedResponse) -> None:
        logger.error(
            "  [{}] 分配失败（不重试）: {} status={} detail={}",
            request_id,
            result.cause,
            result.status_code,
            result.detail,
        )
        self._notify(
            NotificationLevel.ERROR,
            "Assignment Failed",
            result.detail or MSG_UNEXPECTED,
            request_id,
        )

    def handle_storage_failure(self, request_id: str, error: Exception) -> None:
        logger.error("  [{}] 后端不可达且离线队列写入失败: {}", request_id, error)
        self._notify(NotificationLevel.ERROR, "Assignment Not Saved", MSG_STORAGE_FAILED, request_id)

    def handle_no_candidates(self, request_id: str) -> None:
        self._notify(NotificationLevel.INFO, "No Matches", MSG_NO_CANDIDATES, request_id)

    def _notify(
        self, level: NotificationLevel, title: str, message: str, request_id: str | None
    ) -> None:
        try:
            self.notifier.notify(
                Notification(level=level, title=title, message=message, request_id=request_id)
            )
        except Exception as e:
            logger.warning("  [{}] 发送通知失败: {}", request_id, e)
