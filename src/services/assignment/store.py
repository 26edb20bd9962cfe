"""
持久化存储接口

离线队列只依赖 DurableStore 的三个操作：append / list_all / remove_by_key。
存储按 namespace 隔离，进程重启后数据仍在。
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Protocol

from sqlalchemy import func
from sqlalchemy.orm import Session

from src.core.logger import logger
from src.database import get_session_factory
from src.models.database import PendingAssignment


@dataclass(frozen=True)
class StoredEntry:
    key: int
    payload: dict[str, Any]
    created_at: datetime | None = None


class DurableStore(Protocol):
    namespace: str

    def append(self, key: int, payload: dict[str, Any]) -> None: ...

    def list_all(self) -> list[StoredEntry]: ...

    def remove_by_key(self, key: int) -> bool: ...

    def max_key(self) -> int: ...


class SqlAlchemyDurableStore:
    """
    基于 SQLAlchemy 的持久化存储（默认 SQLite 文件）

    所有操作都是同步的：调用方在一次事件循环步骤内完成 "更新索引 + 写存储"。
    """

    def __init__(
        self,
        namespace: str,
        session_factory: Callable[[], Session] | None = None,
    ) -> None:
        if not namespace or not namespace.strip():
            raise ValueError("namespace must not be empty")
        self.namespace = namespace.strip()
        self._session_factory = session_factory or get_session_factory()

    def append(self, key: int, payload: dict[str, Any]) -> None:
        db = self._session_factory()
        try:
            db.add(PendingAssignment(namespace=self.namespace, seq=int(key), payload=payload))
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
        logger.debug("离线存储写入: namespace={} key={}", self.namespace, key)

    def list_all(self) -> list[StoredEntry]:
        db = self._session_factory()
        try:
            rows = (
                db.query(PendingAssignment)
                .filter(PendingAssignment.namespace == self.namespace)
                .order_by(PendingAssignment.seq.asc())
                .all()
            )
        finally:
            db.close()

        entries: list[StoredEntry] = []
        for row in rows:
            if not isinstance(row.payload, dict):
                # 损坏的条目保留在库中，交给人工处理
                logger.error(
                    "离线存储条目格式异常，已跳过: namespace={} key={}", self.namespace, row.seq
                )
                continue
            entries.append(StoredEntry(key=row.seq, payload=row.payload, created_at=row.created_at))
        return entries

    def remove_by_key(self, key: int) -> bool:
        db = self._session_factory()
        try:
            deleted = (
                db.query(PendingAssignment)
                .filter(
                    PendingAssignment.namespace == self.namespace,
                    PendingAssignment.seq == int(key),
                )
                .delete(synchronize_session=False)
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
        if deleted:
            logger.debug("离线存储删除: namespace={} key={}", self.namespace, key)
        return bool(deleted)

    def max_key(self) -> int:
        """当前 namespace 内最大的键（包括格式异常的条目），空时为 0"""
        db = self._session_factory()
        try:
            value = (
                db.query(func.max(PendingAssignment.seq))
                .filter(PendingAssignment.namespace == self.namespace)
                .scalar()
            )
        finally:
            db.close()
        return int(value or 0)


__all__ = ["StoredEntry", "DurableStore", "SqlAlchemyDurableStore"]
