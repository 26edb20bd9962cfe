"""
任务分配相关的 API 数据模型

字段名与远端后端保持一致（proz_id / service_request_id 等）。
作为客户端模型，允许额外字段以兼容后端新增属性。
"""

from __future__ import annotations

import math
from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.core.enums import TaskPriority, TaskStatus


def _finite_float(value: Any) -> float | None:
    """转换为有限浮点数；None、NaN、Inf 与无法解析的值返回 None"""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


class BaseModelWithExtras(BaseModel):
    model_config = ConfigDict(extra="allow")


class WorkRequest(BaseModelWithExtras):
    """服务请求（由外部创建，状态仅由编排器或远端修改）"""

    id: str
    service_title: str = ""
    service_description: str = ""
    service_category: str = ""
    budget_min: float | None = None
    budget_max: float | None = None
    priority: TaskPriority = TaskPriority.MEDIUM
    remote_work_allowed: bool = False
    deadline: datetime | None = None
    status: TaskStatus = TaskStatus.PENDING


class Candidate(BaseModelWithExtras):
    """
    AI 排序返回的候选专业人员

    仅作为一次排序调用的推荐结果，不持久化。
    """

    proz_id: str
    name: str = ""
    email: str = ""
    location: str | None = None
    rating: float = 0.0
    years_experience: float | None = None
    hourly_rate: float | None = None
    specialties: set[str] = Field(default_factory=set)
    profile_image_url: str | None = None
    score: float = 0.0
    reasons: list[str] = Field(default_factory=list)

    @field_validator("proz_id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> str:
        text = str(value).strip() if value is not None else ""
        if not text:
            raise ValueError("proz_id must not be empty")
        return text

    # 以下均为展示字段：格式不对时降级为默认值，只有 proz_id 无效才会丢弃候选

    @field_validator("name", "email", mode="before")
    @classmethod
    def _text_or_empty(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @field_validator("location", "profile_image_url", mode="before")
    @classmethod
    def _optional_text(cls, value: Any) -> str | None:
        return None if value is None else str(value)

    @field_validator("years_experience", "hourly_rate", mode="before")
    @classmethod
    def _optional_number(cls, value: Any) -> float | None:
        number = _finite_float(value)
        return number if number is not None and number >= 0 else None

    @field_validator("score", mode="before")
    @classmethod
    def _clamp_score(cls, value: Any) -> float:
        return min(max(_finite_float(value) or 0.0, 0.0), 1.0)

    @field_validator("rating", mode="before")
    @classmethod
    def _clamp_rating(cls, value: Any) -> float:
        return min(max(_finite_float(value) or 0.0, 0.0), 5.0)

    @field_validator("specialties", mode="before")
    @classmethod
    def _split_specialties(cls, value: Any) -> Any:
        # 部分接口把专长返回为逗号分隔字符串
        if value is None:
            return set()
        if isinstance(value, str):
            return {part.strip() for part in value.split(",") if part.strip()}
        if isinstance(value, (list, tuple, set)):
            return {str(part).strip() for part in value if part is not None and str(part).strip()}
        return set()

    @field_validator("reasons", mode="before")
    @classmethod
    def _wrap_reasons(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        if isinstance(value, (list, tuple)):
            return [str(part) for part in value if part is not None]
        return []

    @property
    def confidence_percent(self) -> int:
        return round(self.score * 100)


class TaskAssignmentCreate(BaseModel):
    """提交到 assign-task 端点的请求体"""

    service_request_id: str
    proz_id: str
    assignment_notes: str | None = None
    estimated_hours: float | None = None
    proposed_rate: float | None = None
    due_date: str | None = None

    @field_validator("service_request_id", "proz_id", mode="before")
    @classmethod
    def _strip_ids(cls, value: Any) -> str:
        text = str(value).strip() if value is not None else ""
        if not text:
            raise ValueError("identifier must not be empty")
        return text

    @field_validator("due_date", mode="before")
    @classmethod
    def _iso_due_date(cls, value: Any) -> Any:
        if isinstance(value, (date, datetime)):
            return value.isoformat()
        return value

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class TaskAssignmentRecord(BaseModelWithExtras):
    """后端返回的分配记录（字段以后端为准，这里只声明用到的部分）"""

    id: str | None = None
    service_request_id: str | None = None
    proz_id: str | None = None
    status: str | None = None
    assigned_at: datetime | None = None


__all__ = [
    "BaseModelWithExtras",
    "WorkRequest",
    "Candidate",
    "TaskAssignmentCreate",
    "TaskAssignmentRecord",
]
