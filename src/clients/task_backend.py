"""
任务后端客户端

远端后端是一个可靠性不确定的 HTTP 服务。所有调用都经过 ErrorClassifier，
调用方只会拿到 ClassifiedResult，不会看到传输层异常。
"""

from __future__ import annotations

from typing import Any

import httpx

from src.clients.http_client import HTTPClientPool
from src.config import config
from src.core.logger import logger
from src.models.task import TaskAssignmentCreate
from src.services.auth.session import SessionState
from src.services.orchestration.classified import ClassifiedResult, RawResponse
from src.services.orchestration.error_classifier import ErrorClassifier, get_error_classifier

NGROK_BYPASS_PARAM = "ngrok-skip-browser-warning"


class TaskBackendClient:
    """ai-match / assign-task / assignments 三个端点的客户端"""

    RANKING_PATH = "/api/v1/tasks/admin/ai-match"
    ASSIGN_PATH = "/api/v1/tasks/admin/assign-task"
    ASSIGNMENTS_PATH = "/api/v1/tasks/admin/assignments"

    def __init__(
        self,
        session: SessionState,
        *,
        base_url: str | None = None,
        client: httpx.AsyncClient | None = None,
        classifier: ErrorClassifier | None = None,
        ngrok_bypass: bool | None = None,
    ) -> None:
        self.session = session
        self.base_url = (base_url or config.backend_api_url).rstrip("/")
        self._client = client
        self.classifier = classifier or get_error_classifier()
        self.ngrok_bypass = config.backend_ngrok_bypass if ngrok_bypass is None else ngrok_bypass

    async def fetch_matches(self, request_id: str, limit: int) -> ClassifiedResult[Any]:
        return await self._request(
            "GET",
            self.RANKING_PATH,
            params={"service_request_id": request_id, "limit": limit},
            request_id=request_id,
            empty_value=list,
        )

    async def submit_assignment(self, data: TaskAssignmentCreate) -> ClassifiedResult[Any]:
        return await self._request(
            "POST",
            self.ASSIGN_PATH,
            json=data.to_payload(),
            request_id=data.service_request_id,
        )

    async def fetch_assignments(
        self, page: int = 1, page_size: int = 50, status: str | None = None
    ) -> ClassifiedResult[Any]:
        params: dict[str, Any] = {"page": page, "page_size": page_size}
        if status:
            params["status"] = status
        return await self._request("GET", self.ASSIGNMENTS_PATH, params=params)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        return await HTTPClientPool.get_default_client_async()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
        request_id: str | None = None,
        empty_value: Any = dict,
    ) -> ClassifiedResult[Any]:
        query = dict(params or {})
        if self.ngrok_bypass:
            query[NGROK_BYPASS_PARAM] = "true"

        headers = {"Accept": "application/json", **self.session.auth_headers()}
        url = f"{self.base_url}{path}"
        client = await self._get_client()

        logger.debug("  [{}] {} {}", request_id, method, url)
        try:
            response = await client.request(
                method, url, params=query or None, json=json, headers=headers
            )
        except (httpx.TransportError, OSError) as exc:
            return self.classifier.classify_exception(exc, request_id=request_id)

        return self.classifier.classify_response(
            RawResponse.from_httpx(response),
            empty_value=empty_value,
            request_id=request_id,
        )
