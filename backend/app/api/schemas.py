"""
Pydantic schemas for the alerting API.

Separated from the route handlers so they are reusable across
the codebase (WebSocket handlers, tests).

Enum-valued fields are plain strings here: the services parse them and raise
ValidationError, so a bad value gets the same error body as every other
domain rule.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from backend.app.alerts.models import AlertRequest, SmsAlertRequest
from backend.app.emergency_services.models import CallRecord, ServiceEntry
from backend.app.incidents.models import IncidentReport


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class AlertCreateRequest(BaseModel):
    """Request body for POST /api/v1/alerts."""
    type: str = Field(
        ..., description="emergency / warning / info / weather",
        examples=["emergency"],
    )
    title: str = Field(..., examples=["Wildfire approaching"])
    message: str = Field(..., examples=["Evacuate towards the main square now."])
    target_villages: List[str] = Field(
        default_factory=list,
        description="Village ids. Ignored for village admins, who always reach their own village.",
    )
    send_sms: bool = Field(False, description="Also SMS every verified resident")

    def to_request(self) -> AlertRequest:
        return AlertRequest(
            type=self.type,
            title=self.title,
            message=self.message,
            target_villages=list(self.target_villages),
            send_sms=self.send_sms,
        )


class SmsAlertCreateRequest(BaseModel):
    """Request body for POST /api/v1/sms-alerts."""
    message: str = Field(..., examples=["Road to Kakopetria closed by flooding."])
    alert_type: str = Field("info", examples=["warning"])
    priority: str = Field("normal", description="urgent / normal / low")
    target_villages: List[str] = Field(default_factory=list)

    def to_request(self) -> SmsAlertRequest:
        return SmsAlertRequest(
            message=self.message,
            alert_type=self.alert_type,
            priority=self.priority,
            target_villages=list(self.target_villages),
        )


class EmergencyPinCreateRequest(BaseModel):
    """Request body for POST /api/v1/emergency-pins."""
    type: str = Field(..., description="fire / smoke / flood / accident / medical / ...",
                      examples=["fire"])
    latitude: float = Field(..., description="Latitude in decimal degrees", examples=[34.9167])
    longitude: float = Field(..., description="Longitude in decimal degrees", examples=[32.8833])
    description: Optional[str] = Field(None, examples=["Smoke visible above the ridge"])
    location: Optional[str] = Field(None, examples=["Near the old mill"])

    def to_report(self) -> IncidentReport:
        return IncidentReport(
            type=self.type,
            latitude=self.latitude,
            longitude=self.longitude,
            description=self.description,
            location=self.location,
        )


class PinStatusUpdateRequest(BaseModel):
    status: str = Field(..., description="active / resolved / false_alarm", examples=["resolved"])


class ProfileUpdateRequest(BaseModel):
    """Request body for PUT /api/v1/user/profile. Omitted fields are left as they are."""
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    address: Optional[str] = None
    village_id: Optional[str] = Field(None, description="Joining a village puts you in reach of its alerts")
    emergency_contact_name: Optional[str] = None
    emergency_contact_phone: Optional[str] = None
    emergency_contact_relationship: Optional[str] = None

    def to_changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class SendVerificationRequest(BaseModel):
    phone: str = Field(..., examples=["+35799123456"])


class VerifyPhoneRequest(BaseModel):
    code: str = Field(..., examples=["482913"])


class EmergencyServiceCreateRequest(BaseModel):
    """Request body for POST /api/v1/emergency-services (system admins)."""
    name: str = Field(..., examples=["Emergency Services"])
    type: str = Field(..., description="police / fire / ambulance / general", examples=["general"])
    phone: str = Field(..., examples=["112"])
    short_code: Optional[str] = Field(None, examples=["112"])
    description: Optional[str] = None
    district: Optional[str] = Field(None, description="Leave empty for island-wide numbers")
    is_emergency: bool = True
    is_primary: bool = False

    def to_entry(self) -> ServiceEntry:
        return ServiceEntry(**self.model_dump())


class EmergencyCallLogRequest(BaseModel):
    """Request body for POST /api/v1/emergency-services/call."""
    service_id: str
    emergency_pin_id: Optional[str] = Field(None, description="Incident the call is about")
    latitude: Optional[float] = Field(None, description="Caller position when dialling")
    longitude: Optional[float] = None
    notes: Optional[str] = None

    def to_record(self) -> CallRecord:
        return CallRecord(**self.model_dump())


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class MarkReadResponse(BaseModel):
    alert_id: str
    updated: bool = Field(..., description="False when already read or never delivered")


class AlertCreatedResponse(BaseModel):
    """Response for POST /api/v1/alerts."""
    alert: Dict[str, Any]
    recipient_count: int
    deliveries_recorded: int
    deliveries_failed: int
    sms_alert: Optional[Dict[str, Any]] = None
    dispatch: Optional[Dict[str, Any]] = None


class SmsAlertSentResponse(BaseModel):
    sms_alert: Dict[str, Any]
    dispatch: Dict[str, Any]
