"""
离线队列对账

连接恢复后按序列号顺序重放离线队列中的分配：
- Confirmed / Conflict（服务端已持有）-> 从队列删除
- NetworkError -> 保留，下次对账再试
- AuthError -> 停止本轮对账（后续请求必然同样失败），条目保留
- MalformedResponse -> 保留并计入失败，交给操作员处理

ReconcilePoller 把对账注册为定时任务，沿用后台轮询服务的结构：
进程内锁防止重入，连续整轮失败达到阈值时输出 [ALERT] 日志。
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

from src.config import config
from src.core.enums import OrchestratorState
from src.core.logger import logger
from src.services.auth.session import SessionState
from src.services.orchestration.assignment_orchestrator import (
    AbortReason,
    AssignmentOrchestrator,
)
from src.services.system.scheduler import get_scheduler


@dataclass
class ReconcileReport:
    processed: int = 0
    confirmed: int = 0
    conflicts: int = 0
    still_pending: int = 0
    failed: int = 0
    aborted_by_auth: bool = False
    remaining: int = 0
    skipped: bool = False
    removed_sequences: list[int] = field(default_factory=list)

    @property
    def synced(self) -> int:
        return self.confirmed + self.conflicts

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "confirmed": self.confirmed,
            "conflicts": self.conflicts,
            "synced": self.synced,
            "still_pending": self.still_pending,
            "failed": self.failed,
            "aborted_by_auth": self.aborted_by_auth,
            "remaining": self.remaining,
            "skipped": self.skipped,
            "removed_sequences": list(self.removed_sequences),
        }


class OfflineReconciler:
    """重放离线队列"""

    def __init__(self, orchestrator: AssignmentOrchestrator) -> None:
        self.orchestrator = orchestrator
        self._lock = asyncio.Lock()

    @property
    def in_progress(self) -> bool:
        return self._lock.locked()

    async def reconcile(self, owner_id: str | None = None) -> ReconcileReport:
        """
        重放离线队列

        Args:
            owner_id: 只重放分配给该候选人的条目

        Returns:
            ReconcileReport；已有对账在进行时返回 skipped=True 的空报告
        """
        report = ReconcileReport()
        if self._lock.locked():
            logger.debug("离线对账正在进行，跳过本次触发")
            report.skipped = True
            report.remaining = self.orchestrator.queue.count()
            return report

        async with self._lock:
            pending = self.orchestrator.list_pending(owner_id)
            if not pending:
                return report

            logger.info("开始离线对账: {} 条待同步", len(pending))
            for attempt in pending:
                report.processed += 1
                outcome = await self.orchestrator.replay(attempt)

                if outcome.state == OrchestratorState.CONFIRMED:
                    report.confirmed += 1
                    report.removed_sequences.append(attempt.sequence)
                elif outcome.state == OrchestratorState.CONFLICT:
                    report.conflicts += 1
                    report.removed_sequences.append(attempt.sequence)
                elif outcome.state == OrchestratorState.QUEUED_OFFLINE:
                    report.still_pending += 1
                elif outcome.reason == AbortReason.AUTH:
                    report.aborted_by_auth = True
                    logger.warning("离线对账因认证失败中止，剩余条目保留到下次")
                    break
                else:
                    report.failed += 1

            report.remaining = self.orchestrator.queue.count()
            logger.info(
                "离线对账完成: 确认 {} 冲突 {} 仍离线 {} 失败 {} 剩余 {}",
                report.confirmed,
                report.conflicts,
                report.still_pending,
                report.failed,
                report.remaining,
            )
            return report


class ReconcilePoller:
    """定时触发离线对账"""

    JOB_ID = "offline_assignment_reconcile"
    # 连续整轮失败告警阈值
    CONSECUTIVE_FAILURE_ALERT_THRESHOLD = 5

    def __init__(
        self,
        reconciler: OfflineReconciler,
        session: SessionState,
        interval_seconds: int | None = None,
    ) -> None:
        self.reconciler = reconciler
        self.session = session
        self.interval_seconds = interval_seconds or config.reconcile_interval_seconds
        self.running = False
        self._consecutive_failures = 0
        self.last_report: ReconcileReport | None = None

    async def start(self) -> None:
        if self.running:
            logger.warning("ReconcilePoller already running")
            return

        self.running = True
        scheduler = get_scheduler()
        scheduler.add_interval_job(
            self.run_once,
            seconds=self.interval_seconds,
            job_id=self.JOB_ID,
            name="离线分配对账",
        )

    async def stop(self) -> None:
        if not self.running:
            return
        self.running = False
        get_scheduler().remove_job(self.JOB_ID)

    async def run_once(self) -> ReconcileReport:
        if not self.session.is_valid:
            logger.debug("会话未登录，跳过离线对账")
            report = ReconcileReport(skipped=True)
            self.last_report = report
            return report

        try:
            report = await self.reconciler.reconcile()
        except Exception as e:
            logger.exception("离线对账异常: {}", e)
            report = ReconcileReport(failed=1)
            self._record(report, all_failed=True)
            return report

        all_failed = report.processed > 0 and report.synced == 0 and not report.aborted_by_auth
        self._record(report, all_failed=all_failed)
        return report

    def _record(self, report: ReconcileReport, *, all_failed: bool) -> None:
        self.last_report = report
        if not all_failed:
            self._consecutive_failures = 0
            return

        self._consecutive_failures += 1
        if self._consecutive_failures >= self.CONSECUTIVE_FAILURE_ALERT_THRESHOLD:
            logger.error(
                "[ALERT] Offline reconcile: {} consecutive runs without syncing any entry. "
                "Backend connectivity issue suspected.",
                self._consecutive_failures,
            )


__all__ = ["ReconcileReport", "OfflineReconciler", "ReconcilePoller"]
