"""
FastAPI routes: map incidents (emergency pins).

    GET    /api/v1/emergency-pins              — all pins, newest first
    POST   /api/v1/emergency-pins              — report (verified phone required)
    PATCH  /api/v1/emergency-pins/{id}/status  — active / resolved / false_alarm
    DELETE /api/v1/emergency-pins/{id}         — reporter or admin
"""

from __future__ import annotations

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Response

from backend.app.api.deps import get_current_user, get_incident_service
from backend.app.api.schemas import EmergencyPinCreateRequest, PinStatusUpdateRequest
from backend.app.incidents.incident_service import IncidentService
from backend.app.storage.tables import User

router = APIRouter(prefix="/api/v1/emergency-pins", tags=["incidents"])


@router.get("")
async def list_emergency_pins(
    incidents: IncidentService = Depends(get_incident_service),
) -> List[Dict[str, Any]]:
    pins = await incidents.list_pins()
    return [p.to_dict() for p in pins]


@router.post("", status_code=201)
async def report_emergency_pin(
    body: EmergencyPinCreateRequest,
    user: User = Depends(get_current_user),
    incidents: IncidentService = Depends(get_incident_service),
) -> Dict[str, Any]:
    pin = await incidents.report(user, body.to_report())
    return pin.to_dict()


@router.patch("/{pin_id}/status")
async def update_emergency_pin_status(
    pin_id: str,
    body: PinStatusUpdateRequest,
    user: User = Depends(get_current_user),
    incidents: IncidentService = Depends(get_incident_service),
) -> Dict[str, Any]:
    pin = await incidents.update_status(user, pin_id, body.status)
    return pin.to_dict()


@router.delete("/{pin_id}", status_code=204)
async def delete_emergency_pin(
    pin_id: str,
    user: User = Depends(get_current_user),
    incidents: IncidentService = Depends(get_incident_service),
):
    await incidents.delete(user, pin_id)
    return Response(status_code=204)
