"""
分配尝试数据模型

AssignmentAttempt 是本地对 "把请求 X 分配给候选人 Y" 的一次尝试：
submitted -> confirmed | conflict | queued_offline | failed

序列化格式沿用离线暂存的字段名（service_request_id / proz_id / timestamp），
旧格式（没有 sequence 的条目）也能读取。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any

from src.config import config
from src.core.enums import AssignmentStatus
from src.models.task import TaskAssignmentCreate


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value.strip():
        text = value.strip()
        # JavaScript toISOString() 以 Z 结尾
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return _utcnow()
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return _utcnow()


def _optional_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    return float(value)


@dataclass
class AssignmentDetails:
    """操作员提交分配时附带的信息"""

    assignment_notes: str | None = None
    estimated_hours: float | None = None
    proposed_rate: float | None = None
    due_date: str | None = None

    @classmethod
    def defaults(cls) -> "AssignmentDetails":
        return cls(
            assignment_notes=config.default_assignment_notes,
            estimated_hours=config.default_estimated_hours,
            proposed_rate=config.default_proposed_rate,
        )

    def __post_init__(self) -> None:
        if isinstance(self.due_date, (date, datetime)):
            self.due_date = self.due_date.isoformat()


@dataclass
class AssignmentAttempt:
    request_id: str
    candidate_id: str
    sequence: int
    assignment_notes: str | None = None
    estimated_hours: float | None = None
    proposed_rate: float | None = None
    due_date: str | None = None
    status: AssignmentStatus = AssignmentStatus.SUBMITTED
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @classmethod
    def create(
        cls,
        request_id: str,
        candidate_id: str,
        sequence: int,
        details: AssignmentDetails,
    ) -> "AssignmentAttempt":
        return cls(
            request_id=request_id,
            candidate_id=candidate_id,
            sequence=sequence,
            assignment_notes=details.assignment_notes,
            estimated_hours=details.estimated_hours,
            proposed_rate=details.proposed_rate,
            due_date=details.due_date,
        )

    def transition(self, status: AssignmentStatus) -> None:
        self.status = status
        self.updated_at = _utcnow()

    def to_create(self) -> TaskAssignmentCreate:
        """构造 assign-task 请求体"""
        return TaskAssignmentCreate(
            service_request_id=self.request_id,
            proz_id=self.candidate_id,
            assignment_notes=self.assignment_notes,
            estimated_hours=self.estimated_hours,
            proposed_rate=self.proposed_rate,
            due_date=self.due_date,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "sequence": self.sequence,
            "service_request_id": self.request_id,
            "proz_id": self.candidate_id,
            "assignment_notes": self.assignment_notes,
            "estimated_hours": self.estimated_hours,
            "proposed_rate": self.proposed_rate,
            "due_date": self.due_date,
            "status": self.status.value,
            "timestamp": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], *, sequence: int | None = None) -> "AssignmentAttempt":
        """
        从持久化数据恢复

        Args:
            data: to_dict() 的输出，或旧版离线暂存条目
            sequence: 存储键；优先于 data 中的 sequence
        """
        request_id = str(data.get("service_request_id") or data.get("request_id") or "").strip()
        candidate_id = str(data.get("proz_id") or data.get("candidate_id") or "").strip()
        if not request_id or not candidate_id:
            raise ValueError("stored assignment is missing service_request_id or proz_id")

        seq = sequence if sequence is not None else data.get("sequence")
        if seq is None:
            raise ValueError("stored assignment has no sequence number")

        raw_status = str(data.get("status") or AssignmentStatus.QUEUED_OFFLINE.value)
        # 旧版条目使用 pending_sync
        if raw_status == "pending_sync":
            raw_status = AssignmentStatus.QUEUED_OFFLINE.value

        created_at = _parse_datetime(data.get("timestamp") or data.get("created_at"))
        return cls(
            request_id=request_id,
            candidate_id=candidate_id,
            sequence=int(seq),
            assignment_notes=data.get("assignment_notes"),
            estimated_hours=_optional_float(data.get("estimated_hours")),
            proposed_rate=_optional_float(data.get("proposed_rate")),
            due_date=data.get("due_date"),
            status=AssignmentStatus(raw_status),
            created_at=created_at,
            updated_at=_parse_datetime(data.get("updated_at") or created_at),
        )


__all__ = ["AssignmentDetails", "AssignmentAttempt"]
