"""
repository.py — Persistence collaborator for the alerting core.

Every method opens its own session and commits a single-row statement.
Nothing here relies on multi-row transactions: callers that write many
rows (the delivery ledger) handle per-row failure themselves.

Usage:
    storage = AlertStorage(session_factory)
    users = await storage.get_users_by_villages(["v-1", "v-2"])
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterable, List, Optional

from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.app.storage.tables import (
    Alert,
    AlertDelivery,
    EmergencyPin,
    EmergencyService,
    EmergencyServiceCall,
    SmsAlert,
    User,
    Village,
)

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class AlertStorage:
    """Async CRUD over the alerting tables."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def _insert(self, row: Any) -> Any:
        async with self._session_factory() as session:
            session.add(row)
            await session.commit()
            await session.refresh(row)
            return row

    # ── Users ──

    async def get_user(self, user_id: str) -> Optional[User]:
        async with self._session_factory() as session:
            return await session.get(User, user_id)

    async def create_user(self, **fields: Any) -> User:
        return await self._insert(User(**fields))

    async def update_user(self, user_id: str, **fields: Any) -> Optional[User]:
        """Apply ``fields`` to one user. Returns None for an unknown id."""
        async with self._session_factory() as session:
            user = await session.get(User, user_id)
            if user is None:
                return None
            for name, value in fields.items():
                setattr(user, name, value)
            user.updated_at = _now()
            await session.commit()
            await session.refresh(user)
            return user

    async def verify_user_phone(self, user_id: str) -> Optional[User]:
        """Mark the phone verified, enable alerts and clear the pending code."""
        return await self.update_user(
            user_id,
            phone_verified=True,
            alerts_enabled=True,
            phone_verification_code=None,
            phone_verification_expiry=None,
            phone_verification_attempts=0,
        )

    async def get_users_by_villages(self, village_ids: Iterable[str]) -> List[User]:
        """Users whose village is one of ``village_ids``; users with no village never match."""
        ids = [v for v in village_ids if v]
        if not ids:
            return []
        async with self._session_factory() as session:
            result = await session.execute(
                select(User)
                .where(User.village_id.in_(ids))
                .order_by(User.created_at, User.id)
            )
            return list(result.scalars().all())

    # ── Villages ──

    async def list_villages(self) -> List[Village]:
        async with self._session_factory() as session:
            result = await session.execute(select(Village).order_by(Village.name))
            return list(result.scalars().all())

    async def get_village(self, village_id: str) -> Optional[Village]:
        async with self._session_factory() as session:
            return await session.get(Village, village_id)

    async def create_village(self, name: str, district: str) -> Village:
        return await self._insert(Village(name=name, district=district))

    # ── Alerts ──

    async def create_alert(self, **fields: Any) -> Alert:
        return await self._insert(Alert(**fields))

    async def get_alert(self, alert_id: str) -> Optional[Alert]:
        async with self._session_factory() as session:
            return await session.get(Alert, alert_id)

    async def get_active_alerts_for_village(self, village_id: str) -> List[Alert]:
        """
        Active alerts whose target list contains ``village_id``, newest first.

        Membership is checked in Python because JSON containment operators
        differ between PostgreSQL and SQLite.
        """
        async with self._session_factory() as session:
            result = await session.execute(
                select(Alert)
                .where(Alert.status == "active")
                .order_by(Alert.created_at.desc())
            )
            return [
                alert for alert in result.scalars().all()
                if village_id in (alert.target_villages or [])
            ]

    async def update_alert_status(self, alert_id: str, status: str) -> Optional[Alert]:
        async with self._session_factory() as session:
            alert = await session.get(Alert, alert_id)
            if alert is None:
                return None
            alert.status = status
            alert.updated_at = _now()
            await session.commit()
            await session.refresh(alert)
            return alert

    # ── Alert deliveries ──

    async def create_alert_delivery(self, alert_id: str, user_id: str) -> AlertDelivery:
        return await self._insert(AlertDelivery(alert_id=alert_id, user_id=user_id))

    async def get_user_alert_deliveries(self, user_id: str) -> List[AlertDelivery]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(AlertDelivery)
                .where(AlertDelivery.user_id == user_id)
                .order_by(AlertDelivery.delivered_at.desc())
            )
            return list(result.scalars().all())

    async def get_alert_deliveries(self, alert_id: str) -> List[AlertDelivery]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(AlertDelivery).where(AlertDelivery.alert_id == alert_id)
            )
            return list(result.scalars().all())

    async def mark_alert_delivery_read(self, alert_id: str, user_id: str) -> bool:
        """Set read_at on an unread row. Returns True if a row changed."""
        async with self._session_factory() as session:
            result = await session.execute(
                update(AlertDelivery)
                .where(
                    AlertDelivery.alert_id == alert_id,
                    AlertDelivery.user_id == user_id,
                    AlertDelivery.read_at.is_(None),
                )
                .values(read_at=_now())
            )
            await session.commit()
            return result.rowcount > 0

    # ── SMS alerts ──

    async def create_sms_alert(self, **fields: Any) -> SmsAlert:
        return await self._insert(SmsAlert(**fields))

    async def get_sms_alert(self, sms_alert_id: str) -> Optional[SmsAlert]:
        async with self._session_factory() as session:
            return await session.get(SmsAlert, sms_alert_id)

    async def list_sms_alerts(self) -> List[SmsAlert]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(SmsAlert).order_by(SmsAlert.sent_at.desc())
            )
            return list(result.scalars().all())

    async def list_sms_alerts_by_sender(self, sender_id: str) -> List[SmsAlert]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(SmsAlert)
                .where(SmsAlert.sender_id == sender_id)
                .order_by(SmsAlert.sent_at.desc())
            )
            return list(result.scalars().all())

    async def update_sms_alert_delivery_status(
        self, sms_alert_id: str, status: str,
    ) -> Optional[SmsAlert]:
        """
        Move a pending SmsAlert to ``status``.

        Returns None when the record does not exist or has already left
        ``pending``; a terminal status is never overwritten.
        """
        async with self._session_factory() as session:
            sms_alert = await session.get(SmsAlert, sms_alert_id)
            if sms_alert is None:
                return None
            if sms_alert.delivery_status != "pending":
                logger.warning(
                    "SmsAlert %s already %s; ignoring transition to %s",
                    sms_alert_id, sms_alert.delivery_status, status,
                )
                return None
            sms_alert.delivery_status = status
            await session.commit()
            await session.refresh(sms_alert)
            return sms_alert

    # ── Emergency pins ──

    async def list_emergency_pins(self) -> List[EmergencyPin]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(EmergencyPin).order_by(EmergencyPin.created_at.desc())
            )
            return list(result.scalars().all())

    async def get_emergency_pin(self, pin_id: str) -> Optional[EmergencyPin]:
        async with self._session_factory() as session:
            return await session.get(EmergencyPin, pin_id)

    async def create_emergency_pin(
        self, *, latitude: float, longitude: float, **fields: Any,
    ) -> EmergencyPin:
        return await self._insert(EmergencyPin(
            latitude=Decimal(str(latitude)).quantize(Decimal("1e-8")),
            longitude=Decimal(str(longitude)).quantize(Decimal("1e-8")),
            **fields,
        ))

    async def update_emergency_pin_status(
        self, pin_id: str, status: str,
    ) -> Optional[EmergencyPin]:
        async with self._session_factory() as session:
            pin = await session.get(EmergencyPin, pin_id)
            if pin is None:
                return None
            pin.status = status
            pin.updated_at = _now()
            await session.commit()
            await session.refresh(pin)
            return pin

    async def delete_emergency_pin(self, pin_id: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(EmergencyPin).where(EmergencyPin.id == pin_id)
            )
            await session.commit()
            return result.rowcount > 0

    # ── Emergency services ──

    async def list_emergency_services(
        self, district: Optional[str] = None,
    ) -> List[EmergencyService]:
        """
        The services directory, primary numbers first.

        With ``district`` set, island-wide numbers (no district) are kept and
        other districts' numbers are left out.
        """
        query = select(EmergencyService).order_by(
            EmergencyService.is_primary.desc(), EmergencyService.name,
        )
        if district:
            query = query.where(or_(
                EmergencyService.district.is_(None),
                EmergencyService.district == district,
            ))
        async with self._session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def get_emergency_service(self, service_id: str) -> Optional[EmergencyService]:
        async with self._session_factory() as session:
            return await session.get(EmergencyService, service_id)

    async def create_emergency_service(self, **fields: Any) -> EmergencyService:
        return await self._insert(EmergencyService(**fields))

    async def log_emergency_service_call(self, **fields: Any) -> EmergencyServiceCall:
        return await self._insert(EmergencyServiceCall(**fields))

    async def get_emergency_service_calls_by_user(
        self, user_id: str,
    ) -> List[EmergencyServiceCall]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(EmergencyServiceCall)
                .where(EmergencyServiceCall.user_id == user_id)
                .order_by(EmergencyServiceCall.call_initiated.desc())
            )
            return list(result.scalars().all())
