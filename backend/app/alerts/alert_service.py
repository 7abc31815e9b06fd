"""
alert_service.py — Alert creation orchestration.

This is the coordinator that:
    1. Checks the caller may send alerts
    2. Validates the submitted alert
    3. Narrows the target villages to what the caller may reach
    4. Resolves the residents of those villages
    5. Persists the alert
    6. Writes one delivery-ledger row per resident
    7. Optionally dispatches SMS and persists the rolled-up status
    8. Pushes a live event to every connected browser
    9. Returns the alert plus delivery statistics

═══════════════════════════════════════════════════════════════════════════
ORCHESTRATION FLOW
═══════════════════════════════════════════════════════════════════════════

    ┌─────────────────────┐
    │  1. Authorize       │  village admin or system admin, else 403
    │  2. Validate        │  title / message / type, else 422
    └─────────┬───────────┘  (nothing has been written yet)
              │
              ▼
    ┌─────────────────────┐
    │  3. Village scope   │  village admin → [own village], always
    │  4. Resolve users   │  system admin  → submitted list, de-duplicated
    └─────────┬───────────┘
              │
              ▼
    ┌─────────────────────┐
    │  5. Persist alert   │  status = active
    │  6. Ledger rows     │  one per user; row failures logged, loop goes on
    └─────────┬───────────┘
              │
              ▼
    ┌─────────────────────┐
    │  7. SMS (optional)  │  SmsAlert(pending) → dispatch loop → terminal status
    └─────────┬───────────┘
              │
              ▼
    ┌─────────────────────┐
    │  8. Broadcast       │  alert_created {alert, target_users}
    │  9. Report          │  AlertOutcome
    └─────────────────────┘

═══════════════════════════════════════════════════════════════════════════
FAILURE POLICY
═══════════════════════════════════════════════════════════════════════════

Only authorization and validation errors abort a send, and both are raised
before the first write. A failed ledger row, a bounced SMS or a dead browser
socket is absorbed and shows up in the returned counters instead.

No rollback: if the HTTP caller disconnects mid-send, rows already written
and SMS already sent stay as they are. The caller waits for the whole
sequence, SMS loop included, before getting a response.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from backend.app.alerts.delivery_ledger import DeliveryLedger
from backend.app.alerts.models import (
    ALERT_MESSAGE_MAX,
    ALERT_TITLE_MAX,
    SMS_MAX_GSM7,
    SMS_PRIORITY_BY_ALERT_TYPE,
    AlertOutcome,
    AlertRequest,
    AlertStatus,
    AlertType,
    DispatchResult,
    SmsAlertOutcome,
    SmsAlertRequest,
    SmsDeliveryStatus,
    SmsPriority,
    SmsRecipient,
)
from backend.app.alerts.sms_dispatcher import SmsDispatcher
from backend.app.core.errors import (
    AuthorizationError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationError,
)
from backend.app.realtime.events import AlertCreated, SmsAlertSent
from backend.app.realtime.hub import BroadcastHub
from backend.app.storage.repository import AlertStorage
from backend.app.storage.tables import Alert, AlertDelivery, SmsAlert, User

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Authorization & Scoping
# ═══════════════════════════════════════════════════════════════════════════

def require_alert_sender(caller: User) -> None:
    """Raise AuthorizationError unless ``caller`` may send alerts."""
    if not (caller.is_village_admin or caller.is_system_admin):
        raise AuthorizationError(
            "Only village admins can send alerts",
            user_id=caller.id,
        )


def effective_target_villages(caller: User, submitted: Iterable[str]) -> List[str]:
    """
    Villages an alert from ``caller`` actually reaches.

    A village admin always reaches exactly their own village, whatever was
    submitted. A system admin's list is honoured in order, minus blanks and
    duplicates.
    """
    if caller.is_system_admin:
        seen: List[str] = []
        for village_id in submitted:
            if village_id and village_id not in seen:
                seen.append(village_id)
        return seen

    if not caller.village_id:
        raise AuthorizationError(
            "Village admin has no village assigned",
            user_id=caller.id,
        )
    return [caller.village_id]


def _unique_users(users: Iterable[User]) -> List[User]:
    seen = set()
    unique: List[User] = []
    for user in users:
        if user.id in seen or not user.village_id:
            continue
        seen.add(user.id)
        unique.append(user)
    return unique


def _to_sms_recipients(users: Iterable[User]) -> List[SmsRecipient]:
    return [
        SmsRecipient(user_id=u.id, phone=u.phone, phone_verified=bool(u.phone_verified))
        for u in users
    ]


# ═══════════════════════════════════════════════════════════════════════════
# Validation
# ═══════════════════════════════════════════════════════════════════════════

def _parse_alert_type(value) -> AlertType:
    try:
        return AlertType(value)
    except ValueError:
        raise ValidationError(
            f"Invalid alert type '{value}'. Must be one of: {[t.value for t in AlertType]}",
            field="type",
        )


def _parse_sms_priority(value) -> SmsPriority:
    try:
        return SmsPriority(value)
    except ValueError:
        raise ValidationError(
            f"Invalid priority '{value}'. Must be one of: {[p.value for p in SmsPriority]}",
            field="priority",
        )


def _require_text(value: Optional[str], field: str, limit: int) -> str:
    text = (value or "").strip()
    if not text:
        raise ValidationError(f"{field} must not be empty", field=field)
    if len(text) > limit:
        raise ValidationError(
            f"{field} is {len(text)} characters; the limit is {limit}",
            field=field, limit=limit,
        )
    return text


def validate_alert_request(request: AlertRequest) -> AlertRequest:
    """Return a normalised copy of ``request`` or raise ValidationError."""
    message_limit = SMS_MAX_GSM7 if request.send_sms else ALERT_MESSAGE_MAX
    return AlertRequest(
        type=_parse_alert_type(request.type),
        title=_require_text(request.title, "title", ALERT_TITLE_MAX),
        message=_require_text(request.message, "message", message_limit),
        target_villages=list(request.target_villages or []),
        send_sms=bool(request.send_sms),
    )


def validate_sms_request(request: SmsAlertRequest) -> SmsAlertRequest:
    return SmsAlertRequest(
        message=_require_text(request.message, "message", SMS_MAX_GSM7),
        alert_type=_parse_alert_type(request.alert_type),
        priority=_parse_sms_priority(request.priority),
        target_villages=list(request.target_villages or []),
    )


# ═══════════════════════════════════════════════════════════════════════════
# Workflow
# ═══════════════════════════════════════════════════════════════════════════

class AlertWorkflow:
    """
    Owns Alert and AlertDelivery creation and SmsAlert status transitions.

    Parameters
    ----------
    storage : AlertStorage
    hub : BroadcastHub
    dispatcher : SmsDispatcher
    ledger : DeliveryLedger | None
        Defaults to a ledger over ``storage``.
    """

    def __init__(
        self,
        storage: AlertStorage,
        hub: BroadcastHub,
        dispatcher: SmsDispatcher,
        ledger: Optional[DeliveryLedger] = None,
    ):
        self.storage = storage
        self.hub = hub
        self.dispatcher = dispatcher
        self.ledger = ledger or DeliveryLedger(storage)

    async def _resolve_recipients(self, village_ids: List[str]) -> List[User]:
        users = await self.storage.get_users_by_villages(village_ids)
        return _unique_users(users)

    async def _dispatch_sms(
        self,
        sms_alert: SmsAlert,
        users: List[User],
    ) -> tuple[SmsAlert, DispatchResult]:
        """Run the SMS loop and persist the terminal status exactly once."""
        dispatch = await self.dispatcher.dispatch(sms_alert.message, _to_sms_recipients(users))

        updated = await self.storage.update_sms_alert_delivery_status(
            sms_alert.id, dispatch.status.value,
        )
        if updated is None:
            updated = await self.storage.get_sms_alert(sms_alert.id) or sms_alert

        logger.info(
            "SmsAlert %s → %s (%d/%d reached, recipient_count=%d)",
            sms_alert.id, dispatch.status.value,
            dispatch.success_count, dispatch.total, sms_alert.recipient_count,
            extra={
                "sms_alert_id": sms_alert.id,
                "delivery_status": dispatch.status.value,
                "success_count": dispatch.success_count,
                "failure_count": dispatch.failure_count,
            },
        )
        return updated, dispatch

    # ── In-app alert ──

    async def create_alert(self, caller: User, request: AlertRequest) -> AlertOutcome:
        """
        Create an in-app alert, record deliveries, optionally SMS, broadcast.

        Raises
        ------
        AuthorizationError
            Caller is not an admin, or is a village admin without a village.
        ValidationError
            Empty or oversized title/message, unknown type.
        """
        require_alert_sender(caller)
        request = validate_alert_request(request)
        targets = effective_target_villages(caller, request.target_villages)

        if targets != request.target_villages:
            logger.info(
                "Narrowed alert targets for %s from %s to %s",
                caller.id, request.target_villages, targets,
            )

        users = await self._resolve_recipients(targets)
        recipient_ids = [u.id for u in users]

        alert = await self.storage.create_alert(
            admin_id=caller.id,
            type=request.type.value,
            title=request.title,
            message=request.message,
            target_villages=targets,
            status=AlertStatus.ACTIVE.value,
            send_sms=request.send_sms,
        )
        logger.info(
            "Alert %s [%s] created by %s for %d villages, %d recipients",
            alert.id, alert.type, caller.id, len(targets), len(recipient_ids),
            extra={"alert_id": alert.id, "recipient_count": len(recipient_ids)},
        )

        ledger = await self.ledger.record_deliveries(alert.id, recipient_ids)

        sms_alert: Optional[SmsAlert] = None
        dispatch: Optional[DispatchResult] = None
        if request.send_sms:
            sms_alert = await self.storage.create_sms_alert(
                sender_id=caller.id,
                message=request.message,
                alert_type=request.type.value,
                priority=SMS_PRIORITY_BY_ALERT_TYPE[request.type].value,
                target_villages=targets,
                recipient_count=len(users),
                delivery_status=SmsDeliveryStatus.PENDING.value,
            )
            sms_alert, dispatch = await self._dispatch_sms(sms_alert, users)

        await self.hub.publish(AlertCreated(
            alert=alert, target_users=recipient_ids, dispatch=dispatch,
        ))

        return AlertOutcome(
            alert=alert,
            recipient_ids=recipient_ids,
            ledger=ledger,
            sms_alert=sms_alert,
            dispatch=dispatch,
        )

    # ── Standalone SMS alert ──

    async def send_sms_alert(self, caller: User, request: SmsAlertRequest) -> SmsAlertOutcome:
        """SMS-only alert: no in-app Alert row and no ledger entries."""
        require_alert_sender(caller)
        request = validate_sms_request(request)
        targets = effective_target_villages(caller, request.target_villages)

        users = await self._resolve_recipients(targets)

        sms_alert = await self.storage.create_sms_alert(
            sender_id=caller.id,
            message=request.message,
            alert_type=request.alert_type.value,
            priority=request.priority.value,
            target_villages=targets,
            recipient_count=len(users),
            delivery_status=SmsDeliveryStatus.PENDING.value,
        )
        sms_alert, dispatch = await self._dispatch_sms(sms_alert, users)

        await self.hub.publish(SmsAlertSent(sms_alert=sms_alert, dispatch=dispatch))

        return SmsAlertOutcome(sms_alert=sms_alert, dispatch=dispatch)

    async def list_sms_alerts(self, caller: User) -> List[SmsAlert]:
        """System admins see every SMS alert; village admins see their own."""
        require_alert_sender(caller)
        if caller.is_system_admin:
            return await self.storage.list_sms_alerts()
        return await self.storage.list_sms_alerts_by_sender(caller.id)

    # ── Lifecycle ──

    async def resolve_alert(self, caller: User, alert_id: str) -> Alert:
        """Move an alert from active to resolved."""
        require_alert_sender(caller)

        alert = await self.storage.get_alert(alert_id)
        if alert is None:
            raise NotFoundError("Alert", id=alert_id)

        if not caller.is_system_admin:
            own = alert.admin_id == caller.id
            in_scope = caller.village_id in (alert.target_villages or [])
            if not (own or in_scope):
                raise AuthorizationError(
                    "Alert is outside your village", alert_id=alert_id,
                )

        if alert.status != AlertStatus.ACTIVE.value:
            raise InvalidStateTransitionError(
                "Alert", alert.status, AlertStatus.RESOLVED.value,
            )

        resolved = await self.storage.update_alert_status(alert_id, AlertStatus.RESOLVED.value)
        logger.info("Alert %s resolved by %s", alert_id, caller.id, extra={"alert_id": alert_id})
        return resolved or alert

    # ── Recipient views ──

    async def list_alerts_for(self, caller: User) -> List[Alert]:
        """Active alerts targeting the caller's village."""
        if not caller.village_id:
            return []
        return await self.storage.get_active_alerts_for_village(caller.village_id)

    async def mark_read(self, caller: User, alert_id: str) -> bool:
        return await self.ledger.mark_read(alert_id, caller.id)

    async def list_my_deliveries(self, caller: User) -> List[AlertDelivery]:
        return await self.ledger.list_for_user(caller.id)
