"""
FastAPI routes: emergency-services directory and call log.

    GET  /api/v1/emergency-services         — directory (?district= narrows it)
    POST /api/v1/emergency-services         — add an entry (system admins)
    POST /api/v1/emergency-services/call    — log a call made from the app
    GET  /api/v1/emergency-services/calls   — the caller's call history
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query

from backend.app.api.deps import get_current_user, get_emergency_directory
from backend.app.api.schemas import EmergencyCallLogRequest, EmergencyServiceCreateRequest
from backend.app.emergency_services.directory import EmergencyDirectory
from backend.app.storage.tables import User

router = APIRouter(prefix="/api/v1/emergency-services", tags=["emergency-services"])


@router.get("")
async def list_emergency_services(
    district: Optional[str] = Query(None, description="Keep island-wide numbers plus this district's"),
    directory: EmergencyDirectory = Depends(get_emergency_directory),
) -> List[Dict[str, Any]]:
    services = await directory.list_services(district)
    return [s.to_dict() for s in services]


@router.post("", status_code=201)
async def add_emergency_service(
    body: EmergencyServiceCreateRequest,
    user: User = Depends(get_current_user),
    directory: EmergencyDirectory = Depends(get_emergency_directory),
) -> Dict[str, Any]:
    service = await directory.add_service(user, body.to_entry())
    return service.to_dict()


@router.post("/call", status_code=201)
async def log_emergency_call(
    body: EmergencyCallLogRequest,
    user: User = Depends(get_current_user),
    directory: EmergencyDirectory = Depends(get_emergency_directory),
) -> Dict[str, Any]:
    call = await directory.log_call(user, body.to_record())
    return call.to_dict()


@router.get("/calls")
async def list_my_emergency_calls(
    user: User = Depends(get_current_user),
    directory: EmergencyDirectory = Depends(get_emergency_directory),
) -> List[Dict[str, Any]]:
    calls = await directory.list_calls(user)
    return [c.to_dict() for c in calls]
