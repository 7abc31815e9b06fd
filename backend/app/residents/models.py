"""
models.py — Resident profile fields and verification constants.

A resident reaches alert targeting only through ``village_id``, and SMS
alerts only once ``phone_verified`` is set. The first is edited through the
profile; the second only through the SMS code flow, never directly.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict

# Profile fields a resident may edit, with their length limits
PROFILE_FIELD_LIMITS: Dict[str, int] = {
    "first_name": 100,
    "last_name": 100,
    "address": 500,
    "village_id": 36,
    "emergency_contact_name": 100,
    "emergency_contact_phone": 32,
    "emergency_contact_relationship": 50,
}

# International format with country code, e.g. +35799123456
PHONE_PATTERN = re.compile(r"^\+[1-9]\d{7,14}$")

VERIFICATION_CODE_DIGITS = 6


def normalise_phone(raw: Any) -> str:
    """Drop spaces, dashes and brackets; the rest must match PHONE_PATTERN."""
    return re.sub(r"[\s\-()]", "", str(raw or ""))


@dataclass(frozen=True)
class VerificationIssued:
    """What the caller learns after a code was sent (never the code itself)."""
    phone: str
    expires_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {"phone": self.phone, "expires_at": self.expires_at.isoformat()}
