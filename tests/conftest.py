import os

# 测试环境不写日志文件；必须在导入 src 之前设置
os.environ.setdefault("LOG_DISABLE_FILE", "true")

from typing import Callable

import httpx
import pytest

from src.clients.task_backend import TaskBackendClient
from src.database import build_engine, build_session_factory
from src.models.database import Base
from src.services.assignment.offline_queue import OfflineQueue
from src.services.assignment.store import SqlAlchemyDurableStore
from src.services.auth.session import SessionState
from src.services.notification.sink import RecentNotificationSink
from src.services.orchestration.assignment_orchestrator import AssignmentOrchestrator
from src.services.orchestration.candidate_resolver import CandidateResolver
from src.services.orchestration.error_handler import ErrorHandlerService

BASE_URL = "https://backend.test"


@pytest.fixture
def queue_db_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'queue.db'}"


@pytest.fixture
def store_factory(queue_db_url: str) -> Callable[..., SqlAlchemyDurableStore]:
    """每次调用都新建引擎，模拟进程重启后重新打开同一个数据库文件"""

    def _make(namespace: str = "pendingAssignments") -> SqlAlchemyDurableStore:
        engine = build_engine(queue_db_url)
        Base.metadata.create_all(engine)
        return SqlAlchemyDurableStore(namespace, build_session_factory(engine))

    return _make


@pytest.fixture
def store(store_factory) -> SqlAlchemyDurableStore:
    return store_factory()


@pytest.fixture
def session() -> SessionState:
    return SessionState("test-token")


@pytest.fixture
def notifications() -> RecentNotificationSink:
    return RecentNotificationSink()


@pytest.fixture
def make_backend(session: SessionState):
    """用 MockTransport 构造后端客户端；handler 可以是同步或异步函数"""
    clients: list[httpx.AsyncClient] = []

    def _make(handler) -> TaskBackendClient:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        clients.append(client)
        return TaskBackendClient(session, base_url=BASE_URL, client=client, ngrok_bypass=False)

    return _make


@pytest.fixture
def make_orchestrator(make_backend, store, session, notifications):
    def _make(handler) -> AssignmentOrchestrator:
        backend = make_backend(handler)
        resolver = CandidateResolver(backend, default_limit=10, max_limit=50)
        handler_service = ErrorHandlerService(session, notifications)
        return AssignmentOrchestrator(backend, resolver, OfflineQueue(store), handler_service)

    return _make
