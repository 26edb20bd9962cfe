"""
分配服务装配

把会话、后端客户端、离线队列、编排器、对账器组装为进程内单例，
API 层和后台任务共享同一套实例（同一个内存索引、同一个离线队列）。
"""

from __future__ import annotations

from dataclasses import dataclass

import httpx

from src.clients.task_backend import TaskBackendClient
from src.config import config
from src.core.logger import logger
from src.services.assignment.offline_queue import OfflineQueue
from src.services.assignment.reconciler import OfflineReconciler, ReconcilePoller
from src.services.assignment.store import DurableStore, SqlAlchemyDurableStore
from src.services.auth.session import SessionState
from src.services.notification.sink import (
    LoggingNotificationSink,
    NotificationSink,
    RecentNotificationSink,
)
from src.services.orchestration.assignment_orchestrator import AssignmentOrchestrator
from src.services.orchestration.candidate_resolver import CandidateResolver
from src.services.orchestration.error_handler import ErrorHandlerService


@dataclass
class AssignmentServices:
    session: SessionState
    backend: TaskBackendClient
    resolver: CandidateResolver
    queue: OfflineQueue
    orchestrator: AssignmentOrchestrator
    reconciler: OfflineReconciler
    poller: ReconcilePoller
    notifications: RecentNotificationSink


def build_assignment_services(
    *,
    session: SessionState | None = None,
    store: DurableStore | None = None,
    client: httpx.AsyncClient | None = None,
    base_url: str | None = None,
    notifier: NotificationSink | None = None,
) -> AssignmentServices:
    session = session or SessionState(config.backend_access_token)
    store = store or SqlAlchemyDurableStore(config.pending_queue_namespace)
    notifications = RecentNotificationSink(forward_to=notifier or LoggingNotificationSink())

    backend = TaskBackendClient(session, base_url=base_url, client=client)
    resolver = CandidateResolver(
        backend,
        default_limit=config.rank_default_limit,
        max_limit=config.rank_max_limit,
    )
    queue = OfflineQueue(store)
    handler = ErrorHandlerService(session, notifications)
    orchestrator = AssignmentOrchestrator(backend, resolver, queue, handler)
    reconciler = OfflineReconciler(orchestrator)
    poller = ReconcilePoller(reconciler, session)

    logger.debug(
        "分配服务已装配: backend={} namespace={}", backend.base_url, queue.namespace
    )
    return AssignmentServices(
        session=session,
        backend=backend,
        resolver=resolver,
        queue=queue,
        orchestrator=orchestrator,
        reconciler=reconciler,
        poller=poller,
        notifications=notifications,
    )


_services: AssignmentServices | None = None


def get_assignment_services() -> AssignmentServices:
    global _services
    if _services is None:
        _services = build_assignment_services()
    return _services


__all__ = [
    "AssignmentServices",
    "build_assignment_services",
    "get_assignment_services",
]
