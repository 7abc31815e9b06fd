"""
events.py — Typed events pushed to live clients.

Each state change that browsers care about has its own event class with a
fixed ``type`` discriminator and a fixed payload shape:

    Event class         type                      data
    ───────────────     ──────────────────────    ─────────────────────────────
    IncidentCreated     emergency_pin_created     the new pin
    IncidentUpdated     emergency_pin_updated     the updated pin
    IncidentDeleted     emergency_pin_deleted     {"id": pin id}
    AlertCreated        alert_created             {"alert", "target_users"}
    SmsAlertSent        sms_alert_sent            {"sms_alert", "dispatch"}

Wire format (JSON text frame):

    {"type": "alert_created", "data": {...}}
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, List, Optional, Union

from backend.app.alerts.models import DispatchResult
from backend.app.storage.tables import Alert, EmergencyPin, SmsAlert


@dataclass(frozen=True)
class _Event(ABC):
    """Base class only; every concrete event fixes ``type`` and builds ``data``."""

    type: ClassVar[str] = ""

    @abstractmethod
    def data(self) -> Dict[str, Any]:
        ...

    def to_message(self) -> Dict[str, Any]:
        return {"type": self.type, "data": self.data()}

    def to_json(self) -> str:
        return json.dumps(self.to_message(), default=str)


@dataclass(frozen=True)
class IncidentCreated(_Event):
    type: ClassVar[str] = "emergency_pin_created"
    pin: EmergencyPin

    def data(self) -> Dict[str, Any]:
        return self.pin.to_dict()


@dataclass(frozen=True)
class IncidentUpdated(_Event):
    type: ClassVar[str] = "emergency_pin_updated"
    pin: EmergencyPin

    def data(self) -> Dict[str, Any]:
        return self.pin.to_dict()


@dataclass(frozen=True)
class IncidentDeleted(_Event):
    type: ClassVar[str] = "emergency_pin_deleted"
    pin_id: str

    def data(self) -> Dict[str, Any]:
        return {"id": self.pin_id}


@dataclass(frozen=True)
class AlertCreated(_Event):
    type: ClassVar[str] = "alert_created"
    alert: Alert
    target_users: List[str] = field(default_factory=list)
    dispatch: Optional[DispatchResult] = None

    def data(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "alert": self.alert.to_dict(),
            "target_users": list(self.target_users),
        }
        if self.dispatch is not None:
            data["dispatch"] = self.dispatch.to_dict()
        return data


@dataclass(frozen=True)
class SmsAlertSent(_Event):
    type: ClassVar[str] = "sms_alert_sent"
    sms_alert: SmsAlert
    dispatch: DispatchResult

    def data(self) -> Dict[str, Any]:
        return {
            "sms_alert": self.sms_alert.to_dict(),
            "dispatch": self.dispatch.to_dict(),
        }


RealtimeEvent = Union[
    IncidentCreated,
    IncidentUpdated,
    IncidentDeleted,
    AlertCreated,
    SmsAlertSent,
]

EVENT_TYPES = tuple(
    cls.type for cls in (
        IncidentCreated, IncidentUpdated, IncidentDeleted, AlertCreated, SmsAlertSent,
    )
)
