"""
incident_service.py — Map incident reporting.

Residents drop pins on the map; every change is pushed to connected
browsers so the map updates without polling.

Only residents with a verified phone may report. The check happens before
anything is written or broadcast, so an unverified caller leaves no trace.
"""

from __future__ import annotations

import logging
from typing import List

from backend.app.core.errors import (
    AuthorizationError,
    NotFoundError,
    PhoneVerificationRequiredError,
    ValidationError,
)
from backend.app.incidents.models import (
    DESCRIPTION_MAX,
    LATITUDE_RANGE,
    LONGITUDE_RANGE,
    EmergencyType,
    IncidentReport,
    PinStatus,
)
from backend.app.realtime.events import IncidentCreated, IncidentDeleted, IncidentUpdated
from backend.app.realtime.hub import BroadcastHub
from backend.app.storage.repository import AlertStorage
from backend.app.storage.tables import EmergencyPin, User

logger = logging.getLogger(__name__)


def check_coordinate(value, bounds, field: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a number", field=field)

    low, high = bounds
    if not (low <= number <= high):
        raise ValidationError(
            f"{field} must be between {low} and {high}, got {number}",
            field=field,
        )
    return number


def parse_enum(enum_cls, value, field: str):
    try:
        return enum_cls(value)
    except ValueError:
        raise ValidationError(
            f"Invalid {field} '{value}'. Must be one of: {[m.value for m in enum_cls]}",
            field=field,
        )


class IncidentService:

    def __init__(self, storage: AlertStorage, hub: BroadcastHub):
        self.storage = storage
        self.hub = hub

    async def _get_pin(self, pin_id: str) -> EmergencyPin:
        pin = await self.storage.get_emergency_pin(pin_id)
        if pin is None:
            raise NotFoundError("Emergency pin", id=pin_id)
        return pin

    async def list_pins(self) -> List[EmergencyPin]:
        return await self.storage.list_emergency_pins()

    async def report(self, caller: User, report: IncidentReport) -> EmergencyPin:
        """
        Persist a new incident and broadcast ``emergency_pin_created``.

        Raises
        ------
        PhoneVerificationRequiredError
            Caller's phone is not verified.
        ValidationError
            Unknown type, coordinates out of range, description too long.
        """
        if not caller.phone_verified:
            logger.info("Rejected incident report from unverified user %s", caller.id,
                        extra={"user_id": caller.id})
            raise PhoneVerificationRequiredError(caller.id)

        incident_type = parse_enum(EmergencyType, report.type, "type")
        latitude = check_coordinate(report.latitude, LATITUDE_RANGE, "latitude")
        longitude = check_coordinate(report.longitude, LONGITUDE_RANGE, "longitude")

        description = (report.description or "").strip() or None
        if description and len(description) > DESCRIPTION_MAX:
            raise ValidationError(
                f"description is {len(description)} characters; the limit is {DESCRIPTION_MAX}",
                field="description",
            )

        pin = await self.storage.create_emergency_pin(
            user_id=caller.id,
            type=incident_type.value,
            latitude=latitude,
            longitude=longitude,
            description=description,
            location=(report.location or "").strip() or None,
            status=PinStatus.ACTIVE.value,
        )
        logger.info(
            "Incident %s [%s] reported by %s at (%.5f, %.5f)",
            pin.id, pin.type, caller.id, latitude, longitude,
            extra={"pin_id": pin.id, "user_id": caller.id},
        )

        await self.hub.publish(IncidentCreated(pin=pin))
        return pin

    async def update_status(self, caller: User, pin_id: str, status) -> EmergencyPin:
        new_status = parse_enum(PinStatus, status, "status")

        pin = await self.storage.update_emergency_pin_status(pin_id, new_status.value)
        if pin is None:
            raise NotFoundError("Emergency pin", id=pin_id)

        logger.info("Incident %s → %s by %s", pin_id, new_status.value, caller.id,
                    extra={"pin_id": pin_id, "user_id": caller.id})

        await self.hub.publish(IncidentUpdated(pin=pin))
        return pin

    async def delete(self, caller: User, pin_id: str) -> None:
        """Remove a pin. Only its reporter or an admin may do this."""
        pin = await self._get_pin(pin_id)

        if pin.user_id != caller.id and not caller.is_admin:
            raise AuthorizationError("Only the reporter or an admin can delete this pin",
                                     pin_id=pin_id)

        if not await self.storage.delete_emergency_pin(pin_id):
            raise NotFoundError("Emergency pin", id=pin_id)

        logger.info("Incident %s deleted by %s", pin_id, caller.id,
                    extra={"pin_id": pin_id, "user_id": caller.id})

        await self.hub.publish(IncidentDeleted(pin_id=pin_id))
