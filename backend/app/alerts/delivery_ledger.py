"""
delivery_ledger.py — Per-recipient delivery and read receipts for in-app alerts.

One row per (alert, user), written when the alert is created. ``read_at``
moves from null to a timestamp once; later reads leave it untouched.

The ledger does not deduplicate: the workflow passes each resolved user
exactly once.
"""

from __future__ import annotations

import logging
from typing import Iterable, List

from backend.app.alerts.models import LedgerPopulation
from backend.app.storage.repository import AlertStorage
from backend.app.storage.tables import AlertDelivery

logger = logging.getLogger(__name__)


class DeliveryLedger:

    def __init__(self, storage: AlertStorage):
        self.storage = storage

    async def record_delivery(self, alert_id: str, user_id: str) -> AlertDelivery:
        """Insert one row with delivered_at=now and read_at=null."""
        return await self.storage.create_alert_delivery(alert_id, user_id)

    async def record_deliveries(
        self, alert_id: str, user_ids: Iterable[str],
    ) -> LedgerPopulation:
        """
        Record one row per user, in order.

        A failed insert is logged and counted; the remaining users are
        still recorded. Partial population beats failing the whole alert.
        """
        recorded = 0
        failed: List[str] = []

        for user_id in user_ids:
            try:
                await self.record_delivery(alert_id, user_id)
                recorded += 1
            except Exception as exc:
                failed.append(user_id)
                logger.error(
                    "Ledger insert failed for alert %s user %s: %s",
                    alert_id, user_id, exc,
                    extra={"alert_id": alert_id, "user_id": user_id},
                )

        if failed:
            logger.warning(
                "Alert %s ledger partially populated: %d recorded, %d failed",
                alert_id, recorded, len(failed),
                extra={"alert_id": alert_id},
            )

        return LedgerPopulation(recorded=recorded, failed=len(failed), failed_user_ids=failed)

    async def mark_read(self, alert_id: str, user_id: str) -> bool:
        """
        Set read_at if it is still null.

        Returns True on the first read only. A repeated call, or a call for a
        row that does not exist, is a no-op that returns False.
        """
        changed = await self.storage.mark_alert_delivery_read(alert_id, user_id)
        if changed:
            logger.debug("Alert %s read by %s", alert_id, user_id)
        return changed

    async def list_for_user(self, user_id: str) -> List[AlertDelivery]:
        """Rows for ``user_id``, newest delivery first."""
        return await self.storage.get_user_alert_deliveries(user_id)
