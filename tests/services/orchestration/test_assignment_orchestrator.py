import asyncio
import json

import httpx
import pytest

from src.core.enums import AssignmentStatus, OrchestratorState, TaskStatus
from src.core.exceptions import InvalidIdentifierError
from src.models.task import WorkRequest
from src.services.assignment.models import AssignmentDetails
from src.services.notification.sink import NotificationLevel
from src.services.orchestration.assignment_orchestrator import AbortReason, ConflictReason
from src.services.orchestration.error_handler import (
    MSG_ALREADY_ASSIGNED,
    MSG_ASSIGNED,
    MSG_QUEUED_OFFLINE,
)
from tests.helpers import json_response

ASSIGN_PATH = "/api/v1/tasks/admin/assign-task"
RANK_PATH = "/api/v1/tasks/admin/ai-match"
CONFLICT_DETAIL = {"detail": "Task already assigned to this professional"}


class Recorder:
    """按路径记录请求，并返回预设响应"""

    def __init__(self, responses: dict) -> None:
        self.responses = responses
        self.requests: list[httpx.Request] = []

    def calls(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses[request.url.path]
        if callable(response):
            return response(request)
        return response


@pytest.mark.asyncio
async def test_assign_success_confirms_and_marks_request(make_orchestrator, notifications) -> None:
    backend = Recorder({ASSIGN_PATH: json_response(200, {"id": "a-1", "status": "assigned"})})
    orchestrator = make_orchestrator(backend)
    orchestrator.track_request(WorkRequest(id="req-1", service_title="Audit"))

    outcome = await orchestrator.assign("req-1", "p1")

    assert outcome.state == OrchestratorState.CONFIRMED
    assert outcome.is_success and not outcome.is_provisional
    assert outcome.message == MSG_ASSIGNED
    assert outcome.transitions == [
        OrchestratorState.IDLE,
        OrchestratorState.CHECKING,
        OrchestratorState.SUBMITTING,
        OrchestratorState.CONFIRMED,
    ]
    assert orchestrator.get_request("req-1").status == TaskStatus.ASSIGNED
    assert orchestrator.current_attempt("req-1").status == AssignmentStatus.CONFIRMED
    assert orchestrator.is_request_assigned("req-1")

    body = json.loads(backend.calls(ASSIGN_PATH)[0].content)
    assert body["service_request_id"] == "req-1"
    assert body["proz_id"] == "p1"
    assert body["assignment_notes"] == "Task assigned by admin"
    assert body["estimated_hours"] == 8.0
    assert body["proposed_rate"] == 50.0

    assert notifications.recent()[-1].level == NotificationLevel.SUCCESS


@pytest.mark.asyncio
async def test_assign_sends_operator_details(make_orchestrator) -> None:
    backend = Recorder({ASSIGN_PATH: json_response(200, {})})
    orchestrator = make_orchestrator(backend)

    details = AssignmentDetails(
        assignment_notes="Urgent", estimated_hours=3, proposed_rate=80, due_date="2026-11-01"
    )
    await orchestrator.assign(" req-1 ", " p1 ", details)

    body = json.loads(backend.calls(ASSIGN_PATH)[0].content)
    assert body == {
        "service_request_id": "req-1",
        "proz_id": "p1",
        "assignment_notes": "Urgent",
        "estimated_hours": 3,
        "proposed_rate": 80,
        "due_date": "2026-11-01",
    }


@pytest.mark.asyncio
async def test_concurrent_assign_submits_once(make_orchestrator) -> None:
    started = asyncio.Event()
    release = asyncio.Event()
    calls = 0

    async def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        started.set()
        await release.wait()
        return json_response(200, {"id": "a-1"})

    orchestrator = make_orchestrator(handler)

    first = asyncio.create_task(orchestrator.assign("req-1", "p1"))
    await started.wait()

    second = await orchestrator.assign("req-1", "p1")
    assert second.state == OrchestratorState.CONFLICT
    assert second.reason == ConflictReason.LOCAL_DUPLICATE
    assert second.message == MSG_ALREADY_ASSIGNED
    assert second.is_success

    release.set()
    outcome = await first
    assert outcome.state == OrchestratorState.CONFIRMED
    assert calls == 1


@pytest.mark.asyncio
async def test_network_failure_queues_offline(make_orchestrator, notifications) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    orchestrator = make_orchestrator(handler)
    outcome = await orchestrator.assign("req-1", "p1")

    assert outcome.state == OrchestratorState.QUEUED_OFFLINE
    assert outcome.is_provisional
    assert outcome.message == MSG_QUEUED_OFFLINE
    assert notifications.recent()[-1].title == "Assignment Created (Offline Mode)"

    pending = orchestrator.list_pending()
    assert len(pending) == 1
    assert pending[0].request_id == "req-1"
    assert pending[0].candidate_id == "p1"
    assert pending[0].status == AssignmentStatus.QUEUED_OFFLINE
    assert orchestrator.list_pending("p1") == pending
    assert orchestrator.list_pending("p2") == []

    assert orchestrator.is_request_assigned("req-1")


@pytest.mark.asyncio
async def test_queued_request_is_not_resubmitted(make_orchestrator) -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        raise httpx.ConnectError("connection refused", request=request)

    orchestrator = make_orchestrator(handler)
    await orchestrator.assign("req-1", "p1")
    again = await orchestrator.assign("req-1", "p2")

    assert again.state == OrchestratorState.CONFLICT
    assert again.reason == ConflictReason.LOCAL_DUPLICATE
    assert calls == 1
    assert len(orchestrator.list_pending()) == 1


@pytest.mark.asyncio
async def test_server_conflict_is_idempotent_success(make_orchestrator, notifications) -> None:
    backend = Recorder({ASSIGN_PATH: json_response(400, CONFLICT_DETAIL)})
    orchestrator = make_orchestrator(backend)
    orchestrator.track_request(WorkRequest(id="req-1"))

    outcome = await orchestrator.assign("req-1", "p1")

    assert outcome.state == OrchestratorState.CONFLICT
    assert outcome.reason == ConflictReason.SERVER
    assert outcome.is_success
    assert orchestrator.is_request_assigned("req-1")
    assert orchestrator.list_pending() == []
    assert orchestrator.get_request("req-1").status == TaskStatus.ASSIGNED
    assert notifications.recent()[-1].level == NotificationLevel.SUCCESS


@pytest.mark.asyncio
async def test_auth_failure_invalidates_session(make_orchestrator, session) -> None:
    backend = Recorder({ASSIGN_PATH: json_response(401, {"detail": "Could not validate credentials"})})
    orchestrator = make_orchestrator(backend)

    outcome = await orchestrator.assign("req-1", "p1")

    assert outcome.state == OrchestratorState.ABORTED
    assert outcome.reason == AbortReason.AUTH
    assert outcome.session_invalidated
    assert not outcome.is_success
    assert not session.is_valid
    assert session.invalidation_reason == "Could not validate credentials"
    assert orchestrator.list_pending() == []
    assert not orchestrator.is_request_assigned("req-1")


@pytest.mark.asyncio
async def test_malformed_response_aborts_and_releases_guard(
    make_orchestrator, notifications
) -> None:
    responses = [
        httpx.Response(200, content=b"<html>tunnel</html>", headers={"content-type": "text/html"}),
        json_response(200, {"id": "a-1"}),
    ]

    def handler(request: httpx.Request) -> httpx.Response:
        return responses.pop(0)

    orchestrator = make_orchestrator(handler)

    first = await orchestrator.assign("req-1", "p1")
    assert first.state == OrchestratorState.ABORTED
    assert first.reason == AbortReason.MALFORMED
    assert notifications.recent()[-1].level == NotificationLevel.ERROR
    assert orchestrator.list_pending() == []
    assert not orchestrator.is_request_assigned("req-1")

    retry = await orchestrator.assign("req-1", "p1")
    assert retry.state == OrchestratorState.CONFIRMED


@pytest.mark.asyncio
async def test_generic_error_detail_is_reported(make_orchestrator) -> None:
    backend = Recorder({ASSIGN_PATH: json_response(404, {"detail": "Service request not found"})})
    orchestrator = make_orchestrator(backend)

    outcome = await orchestrator.assign("req-1", "p1")

    assert outcome.state == OrchestratorState.ABORTED
    assert outcome.reason == AbortReason.MALFORMED
    assert outcome.message == "Service request not found"


@pytest.mark.asyncio
async def test_unexpected_exception_releases_guard(make_orchestrator) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise RuntimeError("bug")

    orchestrator = make_orchestrator(handler)
    with pytest.raises(RuntimeError):
        await orchestrator.assign("req-1", "p1")

    assert orchestrator.current_attempt("req-1") is None
    assert not orchestrator.is_request_assigned("req-1")


@pytest.mark.asyncio
@pytest.mark.parametrize("request_id, candidate_id", [("", "p1"), ("req-1", " "), ("req-1", None)])
async def test_assign_rejects_empty_identifiers(make_orchestrator, request_id, candidate_id) -> None:
    orchestrator = make_orchestrator(Recorder({}))
    with pytest.raises(InvalidIdentifierError):
        await orchestrator.assign(request_id, candidate_id)


@pytest.mark.asyncio
async def test_sequences_increase_across_attempts(make_orchestrator) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("offline", request=request)

    orchestrator = make_orchestrator(handler)
    for index in range(3):
        await orchestrator.assign(f"req-{index}", "p1")

    sequences = [attempt.sequence for attempt in orchestrator.list_pending()]
    assert sequences == sorted(sequences)
    assert len(set(sequences)) == 3


# ============== 自动分配 ==============


@pytest.mark.asyncio
async def test_assign_top_match_picks_first_candidate(make_orchestrator) -> None:
    backend = Recorder(
        {
            RANK_PATH: json_response(
                200,
                [
                    {"proz_id": "p1", "score": 0.8},
                    {"proz_id": "p2", "score": 0.8},
                ],
            ),
            ASSIGN_PATH: json_response(200, {"id": "a-1"}),
        }
    )
    orchestrator = make_orchestrator(backend)

    outcome = await orchestrator.assign_top_match("req-1")

    assert outcome.state == OrchestratorState.CONFIRMED
    assert outcome.candidate_id == "p1"
    assert outcome.ranking is not None
    assign_calls = backend.calls(ASSIGN_PATH)
    assert len(assign_calls) == 1
    assert json.loads(assign_calls[0].content)["proz_id"] == "p1"


@pytest.mark.asyncio
async def test_assign_top_match_without_candidates_aborts(make_orchestrator) -> None:
    backend = Recorder({RANK_PATH: json_response(200, {"items": []})})
    orchestrator = make_orchestrator(backend)

    outcome = await orchestrator.assign_top_match("req-1")

    assert outcome.state == OrchestratorState.ABORTED
    assert outcome.reason == AbortReason.NO_CANDIDATES
    assert backend.calls(ASSIGN_PATH) == []


@pytest.mark.asyncio
async def test_assign_top_match_ranking_offline_aborts(make_orchestrator) -> None:
    def rank_offline(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("offline", request=request)

    backend = Recorder({RANK_PATH: rank_offline})
    orchestrator = make_orchestrator(backend)

    outcome = await orchestrator.assign_top_match("req-1")

    assert outcome.reason == AbortReason.NO_CANDIDATES
    assert orchestrator.list_pending() == []


@pytest.mark.asyncio
async def test_assign_top_match_ranking_auth_failure(make_orchestrator, session) -> None:
    backend = Recorder({RANK_PATH: json_response(403, {"detail": "Token has expired"})})
    orchestrator = make_orchestrator(backend)

    outcome = await orchestrator.assign_top_match("req-1")

    assert outcome.reason == AbortReason.AUTH
    assert outcome.session_invalidated
    assert not session.is_valid


@pytest.mark.asyncio
async def test_assign_top_match_skips_ranking_when_already_assigned(make_orchestrator) -> None:
    backend = Recorder({ASSIGN_PATH: json_response(200, {})})
    orchestrator = make_orchestrator(backend)
    await orchestrator.assign("req-1", "p1")

    outcome = await orchestrator.assign_top_match("req-1")

    assert outcome.state == OrchestratorState.CONFLICT
    assert backend.calls(RANK_PATH) == []


# ============== 服务端已有分配 ==============


@pytest.mark.asyncio
async def test_refresh_index_blocks_remote_assignments(make_orchestrator) -> None:
    backend = Recorder(
        {
            "/api/v1/tasks/admin/assignments": json_response(
                200,
                {
                    "assignments": [
                        {"service_request_id": "req-1", "proz_id": "p9", "status": "assigned"},
                        {"service_request_id": "req-2", "proz_id": "p9", "status": "cancelled"},
                        {"proz_id": "p9"},
                    ],
                    "total": 3,
                },
            ),
        }
    )
    orchestrator = make_orchestrator(backend)
    orchestrator.track_request(WorkRequest(id="req-1"))

    added = await orchestrator.refresh_index()

    assert added == 1
    assert orchestrator.is_request_assigned("req-1")
    assert not orchestrator.is_request_assigned("req-2")
    assert orchestrator.get_request("req-1").status == TaskStatus.ASSIGNED

    outcome = await orchestrator.assign("req-1", "p1")
    assert outcome.reason == ConflictReason.LOCAL_DUPLICATE
    assert backend.calls(ASSIGN_PATH) == []


@pytest.mark.asyncio
async def test_refresh_index_failure_keeps_index(make_orchestrator) -> None:
    def offline(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("offline", request=request)

    orchestrator = make_orchestrator(offline)
    assert await orchestrator.refresh_index() == 0
    assert not orchestrator.is_request_assigned("req-1")


@pytest.mark.asyncio
async def test_offline_write_failure_releases_guard(
    make_orchestrator, store, notifications, monkeypatch: pytest.MonkeyPatch
) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("offline", request=request)

    def broken_append(key: int, payload: dict) -> None:
        raise RuntimeError("disk full")

    monkeypatch.setattr(store, "append", broken_append)
    orchestrator = make_orchestrator(handler)

    outcome = await orchestrator.assign("req-1", "p1")

    assert outcome.state == OrchestratorState.ABORTED
    assert outcome.reason == AbortReason.STORAGE
    assert not outcome.is_success
    assert outcome.attempt.status == AssignmentStatus.FAILED
    assert notifications.recent()[-1].level == NotificationLevel.ERROR
    assert orchestrator.current_attempt("req-1") is None
    assert not orchestrator.is_request_assigned("req-1")

    monkeypatch.undo()
    retry = await orchestrator.assign("req-1", "p1")
    assert retry.state == OrchestratorState.QUEUED_OFFLINE
    assert [a.request_id for a in orchestrator.list_pending()] == ["req-1"]


@pytest.mark.asyncio
async def test_assign_top_match_keeps_candidate_with_sparse_profile(make_orchestrator) -> None:
    backend = Recorder(
        {
            RANK_PATH: json_response(
                200,
                [
                    {"proz_id": "p1", "name": None, "email": None, "years_experience": 2.5, "score": 0.92},
                    {"proz_id": "p2", "name": "Bo", "score": 0.81},
                ],
            ),
            ASSIGN_PATH: json_response(200, {"id": "a-1"}),
        }
    )
    orchestrator = make_orchestrator(backend)

    outcome = await orchestrator.assign_top_match("req-1")

    assert outcome.state == OrchestratorState.CONFIRMED
    assert outcome.candidate_id == "p1"
    assert [c.proz_id for c in outcome.ranking.candidates] == ["p1", "p2"]
    assert json.loads(backend.calls(ASSIGN_PATH)[0].content)["proz_id"] == "p1"
