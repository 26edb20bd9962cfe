"""
Orchestration 模块

提供分配编排相关的组件：
- ErrorClassifier: 响应分类器，把原始响应/传输异常归为五类结果（纯逻辑，无副作用）
- ErrorHandlerService: 结果处理服务，负责分类后的副作用（通知、会话失效）
- CandidateResolver: 候选解析器，获取 AI 排序的候选专业人员
- AssignmentOrchestrator: 分配编排器，幂等去重 + 离线排队
"""

from .assignment_orchestrator import AssignmentOrchestrator, AssignmentOutcome
from .candidate_resolver import CandidateResolver, RankingResult
from .error_classifier import ErrorClassifier
from .error_handler import ErrorHandlerService

__all__ = [
    "AssignmentOrchestrator",
    "AssignmentOutcome",
    "CandidateResolver",
    "RankingResult",
    "ErrorClassifier",
    "ErrorHandlerService",
]
