"""
离线分配队列

后端不可达时的分配尝试写入这里（状态 queued_offline），进程重启后仍然保留，
只有对账成功（确认或冲突）才会删除。

队列同时负责本地单调序列号：编排器创建的每个 AssignmentAttempt 都从这里取号，
序列号在重启后从存储中的最大值继续递增。
"""

from __future__ import annotations

from src.core.enums import AssignmentStatus
from src.core.logger import logger
from src.services.assignment.models import AssignmentAttempt
from src.services.assignment.store import DurableStore


class OfflineQueue:
    def __init__(self, store: DurableStore) -> None:
        self.store = store
        self._last_sequence: int | None = None

    @property
    def namespace(self) -> str:
        return self.store.namespace

    def next_sequence(self) -> int:
        if self._last_sequence is None:
            self._last_sequence = self.store.max_key()
        self._last_sequence += 1
        return self._last_sequence

    def enqueue(self, attempt: AssignmentAttempt) -> AssignmentAttempt:
        """写入一条离线分配；序列号无效或已被占用时重新取号"""
        if attempt.sequence <= 0 or attempt.sequence <= self.store.max_key():
            attempt.sequence = self.next_sequence()
        elif self._last_sequence is None or attempt.sequence > self._last_sequence:
            self._last_sequence = attempt.sequence

        attempt.transition(AssignmentStatus.QUEUED_OFFLINE)
        self.store.append(attempt.sequence, attempt.to_dict())
        logger.info(
            "  [{}] 已加入离线队列: seq={} proz={}",
            attempt.request_id,
            attempt.sequence,
            attempt.candidate_id,
        )
        return attempt

    def list_pending(self, owner_id: str | None = None) -> list[AssignmentAttempt]:
        """
        返回所有 queued_offline 条目（按序列号升序）

        Args:
            owner_id: 仅返回分配给该候选人的条目
        """
        owner = owner_id.strip() if owner_id else None
        attempts: list[AssignmentAttempt] = []
        for entry in self.store.list_all():
            try:
                attempt = AssignmentAttempt.from_dict(entry.payload, sequence=entry.key)
            except (ValueError, TypeError) as e:
                logger.error("离线队列条目无法解析，已跳过: key={} error={}", entry.key, e)
                continue
            if attempt.status != AssignmentStatus.QUEUED_OFFLINE:
                continue
            if owner and attempt.candidate_id != owner:
                continue
            attempts.append(attempt)
        return attempts

    def has_pending(self, request_id: str) -> bool:
        return any(attempt.request_id == request_id for attempt in self.list_pending())

    def remove(self, sequence: int) -> bool:
        removed = self.store.remove_by_key(sequence)
        if not removed:
            logger.warning("离线队列中不存在 seq={}，可能已被处理", sequence)
        return removed

    def count(self) -> int:
        return len(self.list_pending())


__all__ = ["OfflineQueue"]
