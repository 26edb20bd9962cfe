import httpx
import pytest

from src.core.exceptions import InvalidIdentifierError
from src.services.orchestration.candidate_resolver import CandidateResolver, parse_candidates
from src.services.orchestration.classified import AuthError, NetworkError, Success
from tests.helpers import json_response

CANDIDATES = [
    {"proz_id": "p1", "name": "Ana", "score": 0.92, "specialties": "tax, audit"},
    {"proz_id": "p2", "name": "Bo", "score": 0.92, "reasons": "same city"},
    {"proz_id": "p3", "name": "Cy", "score": 0.41},
]


@pytest.mark.asyncio
async def test_rank_keeps_backend_order(make_backend) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return json_response(200, CANDIDATES)

    resolver = CandidateResolver(make_backend(handler), default_limit=10, max_limit=50)
    result = await resolver.rank("req-1")

    assert result.ok
    assert [c.proz_id for c in result.candidates] == ["p1", "p2", "p3"]
    assert result.top.proz_id == "p1"
    assert result.candidates[0].specialties == {"tax", "audit"}
    assert result.candidates[1].reasons == ["same city"]
    assert result.candidates[0].confidence_percent == 92

    request = seen[0]
    assert request.url.path == "/api/v1/tasks/admin/ai-match"
    assert request.url.params["service_request_id"] == "req-1"
    assert request.url.params["limit"] == "10"
    assert request.headers["authorization"] == "Bearer test-token"


@pytest.mark.asyncio
async def test_rank_clamps_limit_to_max(make_backend) -> None:
    limits: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        limits.append(request.url.params["limit"])
        return json_response(200, [])

    resolver = CandidateResolver(make_backend(handler), default_limit=10, max_limit=50)
    result = await resolver.rank("req-1", limit=500)

    assert limits == ["50"]
    assert result.ok
    assert result.candidates == []
    assert result.top is None


@pytest.mark.asyncio
@pytest.mark.parametrize("envelope_key", ["items", "data", "results"])
async def test_rank_accepts_envelopes(make_backend, envelope_key: str) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return json_response(200, {envelope_key: CANDIDATES[:1], "total": 1})

    resolver = CandidateResolver(make_backend(handler))
    result = await resolver.rank("req-1", limit=5)

    assert [c.proz_id for c in result.candidates] == ["p1"]


@pytest.mark.asyncio
async def test_rank_network_failure_returns_empty(make_backend) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    resolver = CandidateResolver(make_backend(handler))
    result = await resolver.rank("req-1")

    assert result.candidates == []
    assert isinstance(result.outcome, NetworkError)
    assert not result.ok


@pytest.mark.asyncio
async def test_rank_auth_failure_is_reported(make_backend) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return json_response(401, {"detail": "Token has expired"})

    resolver = CandidateResolver(make_backend(handler))
    result = await resolver.rank("req-1")

    assert result.candidates == []
    assert isinstance(result.outcome, AuthError)


@pytest.mark.asyncio
@pytest.mark.parametrize("request_id", ["", "   ", None])
async def test_rank_rejects_empty_request_id(make_backend, request_id) -> None:
    def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover
        raise AssertionError("backend must not be called")

    resolver = CandidateResolver(make_backend(handler))
    with pytest.raises(InvalidIdentifierError):
        await resolver.rank(request_id)


@pytest.mark.asyncio
@pytest.mark.parametrize("limit", [0, -3, True, 2.5])
async def test_rank_rejects_invalid_limit(make_backend, limit) -> None:
    def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover
        raise AssertionError("backend must not be called")

    resolver = CandidateResolver(make_backend(handler))
    with pytest.raises(InvalidIdentifierError):
        await resolver.rank("req-1", limit=limit)


def test_parse_candidates_skips_invalid_items() -> None:
    payload = [
        {"proz_id": "p1", "score": 1.7},
        {"name": "no id"},
        "garbage",
        {"proz_id": "  ", "score": 0.3},
        {"proz_id": 42, "score": None},
    ]
    candidates = parse_candidates(payload, "req-1")

    assert [c.proz_id for c in candidates] == ["p1", "42"]
    assert candidates[0].score == 1.0
    assert candidates[1].score == 0.0


def test_parse_candidates_unknown_shape() -> None:
    assert parse_candidates({"unexpected": True}) == []
    assert parse_candidates(Success([]).payload) == []


def test_parse_candidates_tolerates_display_fields() -> None:
    payload = [
        {
            "proz_id": "p1",
            "name": None,
            "email": None,
            "location": None,
            "years_experience": 2.5,
            "hourly_rate": "n/a",
            "rating": "bad",
            "specialties": ["tax", None, 7],
            "reasons": ["close", None],
            "score": 0.92,
        },
        {"proz_id": "p2", "score": 0.81},
    ]
    candidates = parse_candidates(payload, "req-1")

    assert [c.proz_id for c in candidates] == ["p1", "p2"]
    first = candidates[0]
    assert first.name == "" and first.email == ""
    assert first.years_experience == 2.5
    assert first.hourly_rate is None
    assert first.rating == 0.0
    assert first.specialties == {"tax", "7"}
    assert first.reasons == ["close"]


@pytest.mark.parametrize("score", [float("nan"), float("inf"), "-Infinity", "high"])
def test_parse_candidates_non_finite_score_is_zero(score) -> None:
    candidates = parse_candidates([{"proz_id": "p1", "score": score}], "req-1")

    assert candidates[0].score == 0.0
    assert candidates[0].confidence_percent == 0


@pytest.mark.asyncio
async def test_rank_with_nan_score(make_backend) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            content=b'[{"proz_id": "p1", "score": NaN}]',
            headers={"content-type": "application/json"},
        )

    result = await CandidateResolver(make_backend(handler)).rank("req-1")

    assert result.top.proz_id == "p1"
    assert result.top.confidence_percent == 0
