"""
FastAPI routes: standalone SMS alerts.

    GET  /api/v1/sms-alerts                 — history (all, or the caller's own)
    POST /api/v1/sms-alerts                 — send to every verified resident
    GET  /api/v1/sms-alerts/service-status  — transport configured / credits
"""

from __future__ import annotations

from typing import Any, Dict, List

from fastapi import APIRouter, Depends

from backend.app.alerts.alert_service import AlertWorkflow, require_alert_sender
from backend.app.alerts.channels.sms_gateway import SmsTransport
from backend.app.api.deps import get_current_user, get_transport, get_workflow
from backend.app.api.schemas import SmsAlertCreateRequest, SmsAlertSentResponse
from backend.app.core.errors import ExternalServiceError
from backend.app.storage.tables import User

router = APIRouter(prefix="/api/v1/sms-alerts", tags=["sms-alerts"])


@router.get("")
async def list_sms_alerts(
    user: User = Depends(get_current_user),
    workflow: AlertWorkflow = Depends(get_workflow),
) -> List[Dict[str, Any]]:
    sms_alerts = await workflow.list_sms_alerts(user)
    return [s.to_dict() for s in sms_alerts]


@router.post("", response_model=SmsAlertSentResponse, summary="Send an SMS alert")
async def send_sms_alert(
    body: SmsAlertCreateRequest,
    user: User = Depends(get_current_user),
    workflow: AlertWorkflow = Depends(get_workflow),
):
    outcome = await workflow.send_sms_alert(user, body.to_request())
    return outcome.to_dict()


@router.get("/service-status", summary="SMS provider status")
async def sms_service_status(
    user: User = Depends(get_current_user),
    transport: SmsTransport = Depends(get_transport),
) -> Dict[str, Any]:
    """
    Provider, configured flag, credit balance and sender name.

    A configured gateway that cannot be reached is a 502; an unconfigured
    one is reported as such with a 200.
    """
    require_alert_sender(user)
    status = await transport.status()
    if status.configured and status.error:
        raise ExternalServiceError("sms", status.error, provider=status.provider)
    return status.to_dict()
