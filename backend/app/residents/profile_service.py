"""
profile_service.py — Resident profile updates and village assignment.

Joining a village is what puts a resident in reach of that village's alerts,
so ``village_id`` must name an existing village. Admin flags, the phone number
and its verification state are not profile fields and cannot be set here.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping

from backend.app.core.errors import AuthorizationError, NotFoundError, ValidationError
from backend.app.residents.models import PROFILE_FIELD_LIMITS
from backend.app.storage.repository import AlertStorage
from backend.app.storage.tables import User

logger = logging.getLogger(__name__)


def clean_profile_changes(changes: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Trim and length-check submitted profile fields.

    Blank strings clear the field. Unknown fields are rejected rather than
    ignored so a client asking for ``is_system_admin`` gets told no.
    """
    cleaned: Dict[str, Any] = {}
    for field, value in changes.items():
        limit = PROFILE_FIELD_LIMITS.get(field)
        if limit is None:
            raise ValidationError(f"'{field}' is not an editable profile field", field=field)

        if value is None:
            cleaned[field] = None
            continue
        if not isinstance(value, str):
            raise ValidationError(f"{field} must be a string", field=field)

        text = value.strip()
        if len(text) > limit:
            raise ValidationError(
                f"{field} is {len(text)} characters; the limit is {limit}",
                field=field,
            )
        cleaned[field] = text or None
    return cleaned


class ProfileService:

    def __init__(self, storage: AlertStorage):
        self.storage = storage

    async def update_profile(self, caller: User, changes: Mapping[str, Any]) -> User:
        """
        Apply a partial profile update for the caller.

        Raises
        ------
        ValidationError
            Unknown or oversized field, or a village that does not exist.
        AuthorizationError
            A village admin (not system admin) tried to change village;
            their admin scope is tied to it.
        """
        cleaned = clean_profile_changes(changes)

        if "village_id" in cleaned and cleaned["village_id"] != caller.village_id:
            if caller.is_village_admin and not caller.is_system_admin:
                raise AuthorizationError(
                    "Village admins cannot move to another village",
                    village_id=caller.village_id,
                )
            village_id = cleaned["village_id"]
            if village_id is not None and await self.storage.get_village(village_id) is None:
                raise ValidationError(
                    f"Unknown village '{village_id}'", field="village_id",
                )

        if not cleaned:
            return caller

        user = await self.storage.update_user(caller.id, **cleaned)
        if user is None:
            raise NotFoundError("User", id=caller.id)

        logger.info(
            "Profile of %s updated (%s)", caller.id, ", ".join(sorted(cleaned)),
            extra={"user_id": caller.id},
        )
        if "village_id" in cleaned and cleaned["village_id"] != caller.village_id:
            logger.info(
                "User %s moved from village %s to %s",
                caller.id, caller.village_id, cleaned["village_id"],
                extra={"user_id": caller.id},
            )
        return user
