"""
FastAPI routes: in-app village alerts.

    GET   /api/v1/alerts               — active alerts for the caller's village
    POST  /api/v1/alerts               — create + fan out (admins only)
    PATCH /api/v1/alerts/{id}/read     — mark the caller's delivery read
    PATCH /api/v1/alerts/{id}/resolve  — active → resolved (admins only)
    GET   /api/v1/user/alerts          — the caller's delivery ledger
"""

from __future__ import annotations

from typing import Any, Dict, List

from fastapi import APIRouter, Depends

from backend.app.alerts.alert_service import AlertWorkflow
from backend.app.api.deps import get_current_user, get_workflow
from backend.app.api.schemas import AlertCreateRequest, AlertCreatedResponse, MarkReadResponse
from backend.app.storage.tables import User

router = APIRouter(prefix="/api/v1", tags=["alerts"])


@router.get("/alerts", summary="Active alerts for your village")
async def list_alerts(
    user: User = Depends(get_current_user),
    workflow: AlertWorkflow = Depends(get_workflow),
) -> List[Dict[str, Any]]:
    alerts = await workflow.list_alerts_for(user)
    return [a.to_dict() for a in alerts]


@router.post(
    "/alerts",
    response_model=AlertCreatedResponse,
    summary="Create an alert",
    description=(
        "Persists the alert, records one delivery per resident of the target "
        "villages, optionally sends SMS, and broadcasts alert_created to every "
        "live client. Responds once the whole sequence has finished."
    ),
)
async def create_alert(
    body: AlertCreateRequest,
    user: User = Depends(get_current_user),
    workflow: AlertWorkflow = Depends(get_workflow),
):
    outcome = await workflow.create_alert(user, body.to_request())
    return outcome.to_dict()


@router.patch("/alerts/{alert_id}/read", response_model=MarkReadResponse)
async def mark_alert_read(
    alert_id: str,
    user: User = Depends(get_current_user),
    workflow: AlertWorkflow = Depends(get_workflow),
):
    updated = await workflow.mark_read(user, alert_id)
    return MarkReadResponse(alert_id=alert_id, updated=updated)


@router.patch("/alerts/{alert_id}/resolve", summary="Resolve an active alert")
async def resolve_alert(
    alert_id: str,
    user: User = Depends(get_current_user),
    workflow: AlertWorkflow = Depends(get_workflow),
) -> Dict[str, Any]:
    alert = await workflow.resolve_alert(user, alert_id)
    return alert.to_dict()


@router.get("/user/alerts", summary="Your alert deliveries, newest first")
async def list_my_alert_deliveries(
    user: User = Depends(get_current_user),
    workflow: AlertWorkflow = Depends(get_workflow),
) -> List[Dict[str, Any]]:
    deliveries = await workflow.list_my_deliveries(user)
    return [d.to_dict() for d in deliveries]
