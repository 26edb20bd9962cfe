"""管理员任务分配端点"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from src.core.exceptions import InvalidIdentifierError
from src.services.assignment.models import AssignmentDetails
from src.services.assignment.service import AssignmentServices, get_assignment_services
from src.services.orchestration.assignment_orchestrator import (
    AbortReason,
    AssignmentOutcome,
)
from src.services.orchestration.classified import describe

router = APIRouter(prefix="/api/admin/assignments", tags=["Admin - Assignments"])


class AssignRequest(BaseModel):
    service_request_id: str = Field(..., min_length=1)
    proz_id: str = Field(..., min_length=1)
    assignment_notes: str | None = None
    estimated_hours: float | None = Field(None, gt=0)
    proposed_rate: float | None = Field(None, ge=0)
    due_date: str | None = None

    def details(self) -> AssignmentDetails:
        defaults = AssignmentDetails.defaults()
        return AssignmentDetails(
            assignment_notes=self.assignment_notes or defaults.assignment_notes,
            estimated_hours=self.estimated_hours or defaults.estimated_hours,
            proposed_rate=self.proposed_rate if self.proposed_rate is not None else defaults.proposed_rate,
            due_date=self.due_date,
        )


class SessionTokenRequest(BaseModel):
    access_token: str = Field(..., min_length=1)


def _outcome_response(outcome: AssignmentOutcome) -> dict[str, Any]:
    """Aborted 结果映射为 HTTP 错误，其余原样返回"""
    if outcome.reason == AbortReason.AUTH:
        raise HTTPException(status_code=401, detail=outcome.message)
    if outcome.reason == AbortReason.MALFORMED:
        raise HTTPException(status_code=502, detail=outcome.message)
    if outcome.reason == AbortReason.STORAGE:
        raise HTTPException(status_code=503, detail=outcome.message)
    return outcome.to_dict()


# ============== 路由 ==============


@router.get("/matches/{request_id}")
async def get_matches(
    request_id: str,
    limit: int | None = Query(None, ge=1, description="返回候选数量上限"),
    services: AssignmentServices = Depends(get_assignment_services),
):
    """获取服务请求的 AI 排序候选

    **路径参数**
    - request_id (str): 服务请求 ID

    **返回字段**
    - request_id (str): 服务请求 ID
    - outcome (str): 排序调用的分类结果
    - candidates (List[dict]): 候选列表（按分数降序，保持后端顺序）
        - proz_id (str): 专业人员 ID
        - score (float): 匹配分数 [0, 1]
        - confidence_percent (int): 置信度百分比
    - assigned (bool): 该请求是否已分配（含离线排队）
    """
    try:
        ranking = await services.resolver.rank(request_id, limit)
    except InvalidIdentifierError as e:
        raise HTTPException(status_code=422, detail=e.message)

    return {
        "request_id": ranking.request_id,
        "outcome": describe(ranking.outcome),
        "candidates": [
            {**c.model_dump(mode="json"), "confidence_percent": c.confidence_percent}
            for c in ranking.candidates
        ],
        "assigned": services.orchestrator.is_request_assigned(ranking.request_id),
    }


@router.post("/assign")
async def assign_professional(
    body: AssignRequest,
    services: AssignmentServices = Depends(get_assignment_services),
):
    """把服务请求分配给指定专业人员

    后端不可达时分配写入离线队列，返回 provisional=true。
    已分配（本地或服务端）时返回 state=conflict，这是幂等成功。

    **错误**
    - 401: 会话失效，需要重新登录
    - 422: 请求 ID / 专业人员 ID 为空
    - 502: 后端返回了无法解析的响应
    - 503: 后端不可达且离线队列写入失败
    """
    try:
        outcome = await services.orchestrator.assign(
            body.service_request_id, body.proz_id, body.details()
        )
    except InvalidIdentifierError as e:
        raise HTTPException(status_code=422, detail=e.message)
    return _outcome_response(outcome)


@router.post("/assign-top/{request_id}")
async def assign_top_match(
    request_id: str,
    limit: int | None = Query(None, ge=1),
    services: AssignmentServices = Depends(get_assignment_services),
):
    """自动分配：分配给 AI 排序第一名

    没有候选时返回 state=aborted, reason=no_candidates，不调用分配端点。
    """
    try:
        outcome = await services.orchestrator.assign_top_match(request_id, limit=limit)
    except InvalidIdentifierError as e:
        raise HTTPException(status_code=422, detail=e.message)
    return _outcome_response(outcome)


@router.get("/pending")
async def list_pending_assignments(
    proz_id: str | None = Query(None, description="只列出分配给该专业人员的条目"),
    services: AssignmentServices = Depends(get_assignment_services),
):
    """列出离线队列中待同步的分配

    **返回字段**
    - items (List[dict]): 按序列号升序的离线分配
    - total (int): 条目数
    """
    items = [attempt.to_dict() for attempt in services.orchestrator.list_pending(proz_id)]
    return {"items": items, "total": len(items)}


@router.post("/reconcile")
async def reconcile_pending(
    proz_id: str | None = Query(None),
    services: AssignmentServices = Depends(get_assignment_services),
):
    """立即重放离线队列"""
    if not services.session.is_valid:
        raise HTTPException(status_code=401, detail="Session is not authenticated")
    report = await services.reconciler.reconcile(proz_id)
    return report.to_dict()


@router.get("/status/{request_id}")
async def get_assignment_status(
    request_id: str,
    services: AssignmentServices = Depends(get_assignment_services),
):
    """查询服务请求的分配状态（确认与离线排队同样视为已分配）"""
    request_id = request_id.strip()
    if not request_id:
        raise HTTPException(status_code=422, detail="request id must be a non-empty identifier")

    orchestrator = services.orchestrator
    attempt = orchestrator.current_attempt(request_id)
    return {
        "request_id": request_id,
        "assigned": orchestrator.is_request_assigned(request_id),
        "pending_sync": orchestrator.queue.has_pending(request_id),
        "attempt": attempt.to_dict() if attempt else None,
    }


@router.put("/session")
async def update_session(
    body: SessionTokenRequest,
    services: AssignmentServices = Depends(get_assignment_services),
):
    """更新访问后端使用的 bearer token（重新登录后调用）"""
    try:
        services.session.set_token(body.access_token)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return {"message": "Session updated", "authenticated": services.session.is_valid}


@router.get("/notifications")
async def list_notifications(
    services: AssignmentServices = Depends(get_assignment_services),
):
    """最近的操作员通知"""
    return {
        "items": [
            {
                "level": n.level.value,
                "title": n.title,
                "message": n.message,
                "request_id": n.request_id,
                "created_at": n.created_at.isoformat(),
            }
            for n in services.notifications.recent()
        ]
    }
