"""
服务配置

所有配置项均从环境变量读取，未设置时使用默认值。

使用方式:
    from src.config import config

    config.backend_api_url
    config.reconcile_interval_seconds
"""

from __future__ import annotations

import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return int(value)


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return float(value)


class Config:
    """运行时配置（进程内单例 config）"""

    def __init__(self) -> None:
        # 远端后端
        self.backend_api_url = os.getenv("BACKEND_API_URL", "https://app.prozlab.com").rstrip("/")
        self.backend_access_token = os.getenv("BACKEND_ACCESS_TOKEN", "")
        # ngrok 隧道会返回 HTML 提示页，需附加跳过参数
        self.backend_ngrok_bypass = _env_bool("BACKEND_NGROK_BYPASS", False)

        # HTTP 客户端
        self.http_connect_timeout = _env_float("HTTP_CONNECT_TIMEOUT", 10.0)
        self.http_read_timeout = _env_float("HTTP_READ_TIMEOUT", 30.0)
        self.http_write_timeout = _env_float("HTTP_WRITE_TIMEOUT", 30.0)
        self.http_pool_timeout = _env_float("HTTP_POOL_TIMEOUT", 10.0)
        self.http_max_connections = _env_int("HTTP_MAX_CONNECTIONS", 50)
        self.http_keepalive_connections = _env_int("HTTP_KEEPALIVE_CONNECTIONS", 10)
        self.http_keepalive_expiry = _env_float("HTTP_KEEPALIVE_EXPIRY", 30.0)

        # 候选排序
        self.rank_default_limit = _env_int("RANK_DEFAULT_LIMIT", 10)
        self.rank_max_limit = _env_int("RANK_MAX_LIMIT", 50)

        # 离线队列
        self.pending_queue_database_url = os.getenv(
            "PENDING_QUEUE_DATABASE_URL", "sqlite:///./data/pending_assignments.db"
        )
        self.pending_queue_namespace = os.getenv("PENDING_QUEUE_NAMESPACE", "pendingAssignments")

        # 后台对账
        self.reconcile_enabled = _env_bool("RECONCILE_ENABLED", True)
        self.reconcile_interval_seconds = _env_int("RECONCILE_INTERVAL_SECONDS", 60)

        # 分配默认值
        self.default_assignment_notes = os.getenv(
            "DEFAULT_ASSIGNMENT_NOTES", "Task assigned by admin"
        )
        self.default_estimated_hours = _env_float("DEFAULT_ESTIMATED_HOURS", 8.0)
        self.default_proposed_rate = _env_float("DEFAULT_PROPOSED_RATE", 50.0)

    def __repr__(self) -> str:
        return (
            f"Config(backend_api_url={self.backend_api_url!r}, "
            f"pending_queue_namespace={self.pending_queue_namespace!r}, "
            f"reconcile_enabled={self.reconcile_enabled})"
        )


config = Config()
