"""
应用入口

启动：初始化离线队列数据库 -> 装配分配服务 -> 加载服务端已有分配 -> 启动对账轮询
关闭：停止轮询与调度器 -> 关闭 HTTP 连接池
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from src.api.admin.assignments.routes import router as assignments_router
from src.clients.http_client import HTTPClientPool, close_http_clients
from src.config import config
from src.core.logger import logger
from src.database import init_db
from src.services.assignment.service import get_assignment_services
from src.services.system.scheduler import get_scheduler


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    services = get_assignment_services()

    if services.session.is_valid:
        try:
            await services.orchestrator.refresh_index()
        except Exception as e:
            logger.exception("启动时加载已有分配失败: {}", e)

    pending = services.queue.count()
    if pending:
        logger.info("离线队列中有 {} 条待同步分配", pending)

    scheduler = get_scheduler()
    if config.reconcile_enabled:
        scheduler.start()
        await services.poller.start()
    else:
        logger.info("后台离线对账已禁用")

    try:
        yield
    finally:
        await services.poller.stop()
        scheduler.stop()
        await close_http_clients()
        logger.info("应用已关闭")


def create_app() -> FastAPI:
    app = FastAPI(
        title="Assignment Orchestrator",
        description="AI-ranked professional assignment with offline queueing",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(assignments_router)

    @app.get("/health")
    async def health():
        services = get_assignment_services()
        return {
            "status": "ok",
            "authenticated": services.session.is_valid,
            "pending_sync": services.queue.count(),
            "reconcile_job": get_scheduler().get_job_info(services.poller.JOB_ID),
            "http_pool": HTTPClientPool.get_pool_stats(),
        }

    return app


app = create_app()
