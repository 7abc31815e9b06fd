"""
models.py — Incident (emergency pin) classification and lifecycle.

    none ──report──▶ ACTIVE ──▶ RESOLVED | FALSE_ALARM
                       ▲              │
                       └── reopen ────┘

Any status may be set from any other; a pin that turned out to be real after
being marked a false alarm simply goes back to ACTIVE.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union


LATITUDE_RANGE = (-90.0, 90.0)
LONGITUDE_RANGE = (-180.0, 180.0)
DESCRIPTION_MAX = 1000


class EmergencyType(str, Enum):
    FIRE     = "fire"
    SMOKE    = "smoke"
    FLOOD    = "flood"
    ACCIDENT = "accident"
    MEDICAL  = "medical"
    WEATHER  = "weather"
    SECURITY = "security"
    OTHER    = "other"


class PinStatus(str, Enum):
    ACTIVE      = "active"
    RESOLVED    = "resolved"
    FALSE_ALARM = "false_alarm"


@dataclass
class IncidentReport:
    """A map incident as submitted by a resident; ``type`` may still be a raw string."""
    type: Union[str, EmergencyType]
    latitude: float
    longitude: float
    description: Optional[str] = None
    location: Optional[str] = None
