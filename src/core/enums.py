"""
枚举定义

任务/分配生命周期、分类结果类型、编排器状态。
"""

from enum import Enum


class TaskStatus(str, Enum):
    """服务请求状态"""

    PENDING = "pending"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TaskPriority(str, Enum):
    """服务请求优先级"""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class AssignmentStatus(str, Enum):
    """本地分配尝试的生命周期"""

    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    CONFLICT = "conflict"
    QUEUED_OFFLINE = "queued_offline"
    FAILED = "failed"


# 这些状态表示请求已被（或即将被）占用，新的分配必须被本地短路
HOLDING_STATUSES = frozenset(
    {
        AssignmentStatus.SUBMITTED,
        AssignmentStatus.QUEUED_OFFLINE,
        AssignmentStatus.CONFIRMED,
        AssignmentStatus.CONFLICT,
    }
)


class OutcomeKind(str, Enum):
    """响应分类结果类型"""

    SUCCESS = "success"
    BUSINESS_CONFLICT = "business_conflict"
    AUTH_ERROR = "auth_error"
    NETWORK_ERROR = "network_error"
    MALFORMED_RESPONSE = "malformed_response"


class OrchestratorState(str, Enum):
    """分配编排状态机"""

    IDLE = "idle"
    CHECKING = "checking"
    SUBMITTING = "submitting"
    CONFIRMED = "confirmed"
    CONFLICT = "conflict"
    QUEUED_OFFLINE = "queued_offline"
    ABORTED = "aborted"


__all__ = [
    "TaskStatus",
    "TaskPriority",
    "AssignmentStatus",
    "HOLDING_STATUSES",
    "OutcomeKind",
    "OrchestratorState",
]
