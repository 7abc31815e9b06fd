"""
sms_dispatcher.py — Per-recipient SMS loop with success/failure accounting.

═══════════════════════════════════════════════════════════════════════════
ALGORITHM
═══════════════════════════════════════════════════════════════════════════

    for each candidate recipient, in order:
        no verified phone?  → failure (skipped, transport never called)
        transport.send()    → success
        transport raises    → failure, continue with the next recipient

    status = FAILED          if successes == 0
             SENT            if failures == 0
             PARTIALLY_SENT  otherwise

Failures are isolated per iteration: one bad number, an expired token or a
provider outage for one call never stops the remaining sends.

Invariant: success_count + failure_count == len(recipients). This can differ
from an SmsAlert's recipient_count, which is fixed at send time from the
resolved target users before any filtering.
"""

from __future__ import annotations

import logging
from typing import Sequence

from backend.app.alerts.channels.sms_gateway import SmsTransport
from backend.app.alerts.models import DispatchResult, SmsDeliveryStatus, SmsRecipient

logger = logging.getLogger(__name__)


def derive_delivery_status(success_count: int, failure_count: int) -> SmsDeliveryStatus:
    """Roll per-recipient outcomes up into a terminal SmsAlert status."""
    if success_count == 0:
        return SmsDeliveryStatus.FAILED
    if failure_count == 0:
        return SmsDeliveryStatus.SENT
    return SmsDeliveryStatus.PARTIALLY_SENT


class SmsDispatcher:
    """Send one message to many recipients through a single transport."""

    def __init__(self, transport: SmsTransport):
        self.transport = transport

    async def dispatch(
        self,
        message: str,
        recipients: Sequence[SmsRecipient],
    ) -> DispatchResult:
        success_count = 0
        failure_count = 0
        skipped_count = 0

        for recipient in recipients:
            if not recipient.is_eligible:
                failure_count += 1
                skipped_count += 1
                logger.debug(
                    "Skipping SMS for user %s (phone missing or unverified)",
                    recipient.user_id,
                )
                continue

            try:
                await self.transport.send(recipient.phone.strip(), message)
                success_count += 1
            except Exception as exc:
                failure_count += 1
                logger.warning(
                    "SMS to user %s failed via %s: %s",
                    recipient.user_id, getattr(self.transport, "name", "transport"), exc,
                    extra={"user_id": recipient.user_id},
                )

        status = derive_delivery_status(success_count, failure_count)

        logger.info(
            "SMS dispatch complete: %d sent, %d failed (%d skipped) → %s",
            success_count, failure_count, skipped_count, status.value,
            extra={
                "recipient_count": len(recipients),
                "success_count": success_count,
                "failure_count": failure_count,
                "delivery_status": status.value,
            },
        )

        return DispatchResult(
            success_count=success_count,
            failure_count=failure_count,
            skipped_count=skipped_count,
            status=status,
        )
