"""
directory.py — Emergency phone directory and call log.

The app never places the call itself; the client dials and then reports the
call here so responders can later see who called whom, from where, and about
which incident.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from backend.app.core.errors import AuthorizationError, NotFoundError, ValidationError
from backend.app.emergency_services.models import NOTES_MAX, CallRecord, ServiceEntry, ServiceType
from backend.app.incidents.incident_service import check_coordinate, parse_enum
from backend.app.incidents.models import LATITUDE_RANGE, LONGITUDE_RANGE
from backend.app.residents.models import normalise_phone
from backend.app.storage.repository import AlertStorage
from backend.app.storage.tables import EmergencyService, EmergencyServiceCall, User

logger = logging.getLogger(__name__)


def _required(value: Optional[str], field: str) -> str:
    text = (value or "").strip()
    if not text:
        raise ValidationError(f"{field} must not be empty", field=field)
    return text


class EmergencyDirectory:

    def __init__(self, storage: AlertStorage):
        self.storage = storage

    async def list_services(self, district: Optional[str] = None) -> List[EmergencyService]:
        return await self.storage.list_emergency_services(district)

    async def add_service(self, caller: User, entry: ServiceEntry) -> EmergencyService:
        """Add a directory entry. System admins only."""
        if not caller.is_system_admin:
            raise AuthorizationError("Only system admins can edit the emergency directory")

        service_type = parse_enum(ServiceType, entry.type, "type")
        service = await self.storage.create_emergency_service(
            name=_required(entry.name, "name"),
            type=service_type.value,
            # short codes like 112 are valid numbers here, so no E.164 check
            phone=_required(normalise_phone(entry.phone), "phone"),
            short_code=(entry.short_code or "").strip() or None,
            description=(entry.description or "").strip() or None,
            district=(entry.district or "").strip() or None,
            is_emergency=entry.is_emergency,
            is_primary=entry.is_primary,
        )
        logger.info("Emergency service %s (%s) added by %s", service.name, service.type, caller.id,
                    extra={"user_id": caller.id})
        return service

    async def log_call(self, caller: User, record: CallRecord) -> EmergencyServiceCall:
        """
        Record that ``caller`` called a service.

        Raises
        ------
        NotFoundError
            Unknown service or incident.
        ValidationError
            Half a location, coordinates out of range, notes too long.
        """
        service = await self.storage.get_emergency_service(record.service_id)
        if service is None:
            raise NotFoundError("Emergency service", id=record.service_id)

        if record.emergency_pin_id and await self.storage.get_emergency_pin(record.emergency_pin_id) is None:
            raise NotFoundError("Emergency pin", id=record.emergency_pin_id)

        location = None
        if (record.latitude is None) != (record.longitude is None):
            raise ValidationError("latitude and longitude must be given together", field="latitude")
        if record.latitude is not None:
            location = {
                "lat": check_coordinate(record.latitude, LATITUDE_RANGE, "latitude"),
                "lng": check_coordinate(record.longitude, LONGITUDE_RANGE, "longitude"),
            }

        notes = (record.notes or "").strip() or None
        if notes and len(notes) > NOTES_MAX:
            raise ValidationError(
                f"notes is {len(notes)} characters; the limit is {NOTES_MAX}", field="notes",
            )

        call = await self.storage.log_emergency_service_call(
            user_id=caller.id,
            service_id=service.id,
            emergency_pin_id=record.emergency_pin_id or None,
            user_location=location,
            notes=notes,
        )
        logger.info(
            "User %s called %s (%s)", caller.id, service.name, service.phone,
            extra={"user_id": caller.id, "pin_id": record.emergency_pin_id},
        )
        return call

    async def list_calls(self, caller: User) -> List[EmergencyServiceCall]:
        return await self.storage.get_emergency_service_calls_by_user(caller.id)
