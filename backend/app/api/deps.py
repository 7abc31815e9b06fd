"""
FastAPI dependencies.

Services live on ``app.state`` (built in main.create_app) and are handed to
route handlers through ``Depends``. The caller's identity comes from the
upstream session layer as an ``X-User-Id`` header.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, Header, Request

from backend.app.alerts.alert_service import AlertWorkflow
from backend.app.alerts.channels.sms_gateway import SmsTransport
from backend.app.core.errors import AuthenticationError
from backend.app.emergency_services.directory import EmergencyDirectory
from backend.app.incidents.incident_service import IncidentService
from backend.app.residents.phone_verification import PhoneVerificationService
from backend.app.residents.profile_service import ProfileService
from backend.app.storage.repository import AlertStorage
from backend.app.storage.tables import User


def get_storage(request: Request) -> AlertStorage:
    return request.app.state.storage


def get_transport(request: Request) -> SmsTransport:
    return request.app.state.transport


def get_workflow(request: Request) -> AlertWorkflow:
    return request.app.state.workflow


def get_incident_service(request: Request) -> IncidentService:
    return request.app.state.incidents


def get_profile_service(request: Request) -> ProfileService:
    return request.app.state.profiles


def get_phone_verification(request: Request) -> PhoneVerificationService:
    return request.app.state.phone_verification


def get_emergency_directory(request: Request) -> EmergencyDirectory:
    return request.app.state.emergency_directory


async def get_current_user(
    x_user_id: Optional[str] = Header(None),
    storage: AlertStorage = Depends(get_storage),
) -> User:
    """Resolve ``X-User-Id`` to a User; 401 when missing or unknown."""
    if not x_user_id:
        raise AuthenticationError()

    user = await storage.get_user(x_user_id)
    if user is None:
        raise AuthenticationError("Unknown user")

    return user
