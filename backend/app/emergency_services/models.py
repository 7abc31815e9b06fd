"""
models.py — Emergency-services directory types.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

NOTES_MAX = 1000


class ServiceType(str, Enum):
    POLICE    = "police"
    FIRE      = "fire"
    AMBULANCE = "ambulance"
    GENERAL   = "general"


@dataclass
class ServiceEntry:
    """A directory entry as submitted by a system admin."""
    name: str
    type: Union[str, ServiceType]
    phone: str
    short_code: Optional[str] = None
    description: Optional[str] = None
    district: Optional[str] = None
    is_emergency: bool = True
    is_primary: bool = False


@dataclass
class CallRecord:
    """A call a resident started from the directory."""
    service_id: str
    emergency_pin_id: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    notes: Optional[str] = None
