"""
models.py — Shared data structures for the alerting system.

Defines:
    • AlertType / AlertStatus      — in-app alert classification + lifecycle
    • SmsDeliveryStatus / SmsPriority — SMS record rollup + urgency
    • SmsRecipient    — the slice of a user the SMS loop needs
    • DispatchResult  — outcome of one SMS dispatch run
    • LedgerPopulation — outcome of bulk delivery-ledger population
    • AlertRequest / SmsAlertRequest — validated workflow inputs
    • AlertOutcome / SmsAlertOutcome — workflow results returned to callers

═══════════════════════════════════════════════════════════════════════════
ALERT LIFECYCLE
═══════════════════════════════════════════════════════════════════════════

    none ──create──▶ ACTIVE ──resolve──▶ RESOLVED

There is no cancelled or expired state. Resolving twice is rejected.

═══════════════════════════════════════════════════════════════════════════
SMS DELIVERY ROLLUP
═══════════════════════════════════════════════════════════════════════════

    PENDING ──dispatch loop completes──▶ SENT | PARTIALLY_SENT | FAILED

    successes   failures    status
    ─────────   ────────    ──────────────
    0           any         FAILED          (includes 0/0: nobody to reach)
    > 0         0           SENT
    > 0         > 0         PARTIALLY_SENT

Recipients without a verified phone are never contacted; they are counted
as failures and reported separately as ``skipped_count``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Union

if TYPE_CHECKING:
    from backend.app.storage.tables import Alert, SmsAlert


# Message limits
ALERT_TITLE_MAX = 120
ALERT_MESSAGE_MAX = 280
SMS_MAX_GSM7 = 160      # single GSM 7-bit segment


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════

class AlertType(str, Enum):
    EMERGENCY = "emergency"
    WARNING   = "warning"
    INFO      = "info"
    WEATHER   = "weather"


class AlertStatus(str, Enum):
    ACTIVE   = "active"
    RESOLVED = "resolved"


class SmsDeliveryStatus(str, Enum):
    """Rollup state of an SmsAlert record."""
    PENDING        = "pending"          # created, dispatch loop not finished
    SENT           = "sent"             # every recipient reached
    PARTIALLY_SENT = "partially_sent"   # some reached, some not
    FAILED         = "failed"           # nobody reached

    @property
    def is_terminal(self) -> bool:
        return self is not SmsDeliveryStatus.PENDING


class SmsPriority(str, Enum):
    URGENT = "urgent"
    NORMAL = "normal"
    LOW    = "low"


# Companion SMS priority for an in-app alert that also goes out by SMS
SMS_PRIORITY_BY_ALERT_TYPE: Dict[AlertType, SmsPriority] = {
    AlertType.EMERGENCY: SmsPriority.URGENT,
    AlertType.WARNING:   SmsPriority.NORMAL,
    AlertType.INFO:      SmsPriority.NORMAL,
    AlertType.WEATHER:   SmsPriority.NORMAL,
}


# ═══════════════════════════════════════════════════════════════════════════
# Data Structures
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class SmsRecipient:
    """A candidate SMS recipient, as resolved from the user directory."""
    user_id: str
    phone: Optional[str]
    phone_verified: bool

    @property
    def is_eligible(self) -> bool:
        """Only verified, non-empty phone numbers are ever contacted."""
        return self.phone_verified and bool(self.phone and self.phone.strip())


@dataclass(frozen=True)
class DispatchResult:
    """Outcome of one SmsDispatcher run."""
    success_count: int
    failure_count: int
    skipped_count: int
    status: SmsDeliveryStatus

    @property
    def total(self) -> int:
        """Number of recipients handed to the dispatcher."""
        return self.success_count + self.failure_count

    @property
    def attempted(self) -> int:
        """Number of transport calls actually made."""
        return self.total - self.skipped_count

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "skipped_count": self.skipped_count,
            "attempted": self.attempted,
            "status": self.status.value,
        }


@dataclass(frozen=True)
class LedgerPopulation:
    """Outcome of writing one delivery-ledger row per resolved recipient."""
    recorded: int = 0
    failed: int = 0
    failed_user_ids: List[str] = field(default_factory=list)


@dataclass
class AlertRequest:
    """Input for an in-app alert, as submitted by an admin (enums may still be raw strings)."""
    type: Union[str, AlertType]
    title: str
    message: str
    target_villages: List[str] = field(default_factory=list)
    send_sms: bool = False


@dataclass
class SmsAlertRequest:
    """Input for a standalone SMS alert."""
    message: str
    alert_type: Union[str, AlertType] = AlertType.INFO
    priority: Union[str, SmsPriority] = SmsPriority.NORMAL
    target_villages: List[str] = field(default_factory=list)


@dataclass
class AlertOutcome:
    """What the alert-creation caller gets back."""
    alert: "Alert"
    recipient_ids: List[str]
    ledger: LedgerPopulation
    sms_alert: Optional["SmsAlert"] = None
    dispatch: Optional[DispatchResult] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alert": self.alert.to_dict(),
            "recipient_count": len(self.recipient_ids),
            "deliveries_recorded": self.ledger.recorded,
            "deliveries_failed": self.ledger.failed,
            "sms_alert": self.sms_alert.to_dict() if self.sms_alert else None,
            "dispatch": self.dispatch.to_dict() if self.dispatch else None,
        }


@dataclass
class SmsAlertOutcome:
    sms_alert: "SmsAlert"
    dispatch: DispatchResult

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sms_alert": self.sms_alert.to_dict(),
            "dispatch": self.dispatch.to_dict(),
        }
