"""
本地持久化表定义

pending_assignments 只是客户端侧的离线暂存区，不是业务数据库：
网络不可达时的分配尝试写入这里，对账成功后删除。
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, Integer, String, UniqueConstraint
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PendingAssignment(Base):
    """离线分配暂存记录（按 namespace 隔离，seq 在 namespace 内单调递增）"""

    __tablename__ = "pending_assignments"
    __table_args__ = (UniqueConstraint("namespace", "seq", name="uq_pending_namespace_seq"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    namespace = Column(String(100), nullable=False, index=True)
    seq = Column(Integer, nullable=False)
    payload = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    def __repr__(self) -> str:
        return f"PendingAssignment(namespace={self.namespace!r}, seq={self.seq})"


__all__ = ["Base", "PendingAssignment"]
