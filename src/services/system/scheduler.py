"""
定时任务调度器

对 APScheduler AsyncIOScheduler 的薄封装，进程内单例。
任务函数可以是协程，由 AsyncIOScheduler 在事件循环中执行。
"""

from __future__ import annotations

from typing import Any, Callable

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from src.core.logger import logger


class SchedulerService:
    """统一的任务调度入口"""

    def __init__(self, timezone: str = "UTC") -> None:
        self._scheduler = AsyncIOScheduler(timezone=timezone)

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def start(self) -> None:
        if self._scheduler.running:
            return
        self._scheduler.start()
        logger.info("定时任务调度器已启动")

    def stop(self) -> None:
        if not self._scheduler.running:
            return
        self._scheduler.shutdown(wait=False)
        logger.info("定时任务调度器已停止")

    def add_interval_job(
        self,
        func: Callable[..., Any],
        *,
        job_id: str,
        name: str | None = None,
        seconds: int = 0,
        minutes: int = 0,
        hours: int = 0,
        **kwargs: Any,
    ) -> None:
        """
        注册间隔任务；同 job_id 的任务会被替换

        额外的关键字参数作为任务函数的参数传入。
        """
        self._scheduler.add_job(
            func,
            trigger="interval",
            seconds=seconds,
            minutes=minutes,
            hours=hours,
            id=job_id,
            name=name or job_id,
            kwargs=kwargs or None,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        logger.info(
            "已注册定时任务: {} ({}) 间隔 {}h{}m{}s",
            name or job_id,
            job_id,
            hours,
            minutes,
            seconds,
        )

    def remove_job(self, job_id: str) -> bool:
        try:
            self._scheduler.remove_job(job_id)
        except JobLookupError:
            return False
        logger.info("已移除定时任务: {}", job_id)
        return True

    def get_job_info(self, job_id: str) -> dict | None:
        job = self._scheduler.get_job(job_id)
        if job is None:
            return None
        next_run = getattr(job, "next_run_time", None)
        return {
            "id": job.id,
            "name": job.name,
            "next_run_time": next_run.isoformat() if next_run else None,
        }


_scheduler: SchedulerService | None = None


def get_scheduler() -> SchedulerService:
    global _scheduler
    if _scheduler is None:
        _scheduler = SchedulerService()
    return _scheduler


__all__ = ["SchedulerService", "get_scheduler"]
