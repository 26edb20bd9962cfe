"""
后端 HTTP 连接池

所有对任务后端的调用共享一个 httpx.AsyncClient（keep-alive 复用），
应用关闭时由 lifespan 统一释放。超时与连接数来自 Config。
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx

from src.config import config
from src.core.logger import logger

USER_AGENT = "assignment-orchestrator/0.1"

_pool_lock = asyncio.Lock()


def build_timeout() -> httpx.Timeout:
    # 读超时会被分类为 NetworkError，从而进入离线队列
    return httpx.Timeout(
        connect=config.http_connect_timeout,
        read=config.http_read_timeout,
        write=config.http_write_timeout,
        pool=config.http_pool_timeout,
    )


def build_limits() -> httpx.Limits:
    return httpx.Limits(
        max_connections=config.http_max_connections,
        max_keepalive_connections=config.http_keepalive_connections,
        keepalive_expiry=config.http_keepalive_expiry,
    )


async def _log_response(response: httpx.Response) -> None:
    logger.debug(
        "后端响应: {} {} -> {}",
        response.request.method,
        response.request.url.path,
        response.status_code,
    )


class HTTPClientPool:
    """进程内共享的后端客户端（单例）"""

    _instance: HTTPClientPool | None = None
    _client: httpx.AsyncClient | None = None
    _created_count = 0

    def __new__(cls) -> "HTTPClientPool":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    @classmethod
    def _is_open(cls) -> bool:
        return cls._client is not None and not cls._client.is_closed

    @classmethod
    async def get_default_client_async(cls) -> httpx.AsyncClient:
        if cls._is_open():
            return cls._client  # type: ignore[return-value]

        async with _pool_lock:
            if not cls._is_open():
                cls._client = httpx.AsyncClient(
                    timeout=build_timeout(),
                    limits=build_limits(),
                    follow_redirects=True,
                    headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
                    event_hooks={"response": [_log_response]},
                )
                cls._created_count += 1
                logger.info(
                    "后端连接池已创建: max_connections={} keepalive={} read_timeout={}s",
                    config.http_max_connections,
                    config.http_keepalive_connections,
                    config.http_read_timeout,
                )
        return cls._client  # type: ignore[return-value]

    @classmethod
    async def close_all(cls) -> None:
        if cls._client is None:
            return
        await cls._client.aclose()
        cls._client = None
        logger.info("后端连接池已关闭")

    @classmethod
    def get_pool_stats(cls) -> dict[str, Any]:
        return {
            "open": cls._is_open(),
            "created": cls._created_count,
            "max_connections": config.http_max_connections,
            "keepalive_connections": config.http_keepalive_connections,
        }


async def close_http_clients() -> None:
    await HTTPClientPool.close_all()
