"""
本地数据库连接管理

离线队列使用同步 Session：写入/删除都在事件循环的单个步骤内完成，
不会在 "更新索引 + 持久化队列" 之间让出控制权。
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker

from src.config import config
from src.core.logger import logger
from src.models.database import Base

_engine: Engine | None = None
_session_factory: sessionmaker | None = None


def build_engine(database_url: str) -> Engine:
    """创建引擎；SQLite 文件所在目录不存在时自动创建"""
    url = make_url(database_url)
    connect_args: dict = {}
    if url.get_backend_name() == "sqlite":
        connect_args["check_same_thread"] = False
        if url.database and url.database != ":memory:":
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)
    return create_engine(database_url, connect_args=connect_args, future=True)


def build_session_factory(engine: Engine) -> Callable[[], Session]:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False, future=True)


def init_db(database_url: str | None = None) -> Engine:
    """初始化全局引擎并建表（幂等）"""
    global _engine, _session_factory
    url = database_url or config.pending_queue_database_url
    if _engine is None or str(_engine.url) != url:
        _engine = build_engine(url)
        _session_factory = build_session_factory(_engine)
    Base.metadata.create_all(_engine)
    logger.info("本地离线队列数据库已就绪: {}", _engine.url.render_as_string(hide_password=True))
    return _engine


def get_session_factory() -> Callable[[], Session]:
    if _session_factory is None:
        init_db()
    assert _session_factory is not None  # noqa: S101
    return _session_factory
