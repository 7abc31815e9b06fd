"""
tables.py — ORM entities persisted by the storage collaborator.

Only the columns the alerting core reads or writes are modelled here.
``target_villages`` is a JSON list so the same schema works on PostgreSQL
and on the SQLite database used by the test-suite.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, Boolean, DateTime, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.core.database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class User(Base):
    """A resident or administrator."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    email: Mapped[Optional[str]] = mapped_column(String(255), unique=True, nullable=True)
    first_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    phone_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    village_id: Mapped[Optional[str]] = mapped_column(String(36), index=True, nullable=True)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    emergency_contact_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    emergency_contact_phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    emergency_contact_relationship: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    alerts_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    # pending SMS verification; cleared once the phone is verified
    phone_verification_code: Mapped[Optional[str]] = mapped_column(String(12), nullable=True)
    phone_verification_expiry: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    phone_verification_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_village_admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_system_admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now, onupdate=_now)

    @property
    def is_admin(self) -> bool:
        return self.is_village_admin or self.is_system_admin

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "phone": self.phone,
            "phone_verified": self.phone_verified,
            "village_id": self.village_id,
            "address": self.address,
            "emergency_contact_name": self.emergency_contact_name,
            "emergency_contact_phone": self.emergency_contact_phone,
            "emergency_contact_relationship": self.emergency_contact_relationship,
            "alerts_enabled": self.alerts_enabled,
            "is_village_admin": self.is_village_admin,
            "is_system_admin": self.is_system_admin,
        }


class Village(Base):
    __tablename__ = "villages"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    district: Mapped[str] = mapped_column(String(120), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "district": self.district}


class Alert(Base):
    """An in-app alert created by a village or system admin."""

    __tablename__ = "alerts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    admin_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    target_villages: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="active", nullable=False)
    send_sms: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now, onupdate=_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "admin_id": self.admin_id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "target_villages": list(self.target_villages or []),
            "status": self.status,
            "send_sms": self.send_sms,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class AlertDelivery(Base):
    """One row per (alert, recipient): the delivery ledger."""

    __tablename__ = "alert_deliveries"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    alert_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    user_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    delivered_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "alert_id": self.alert_id,
            "user_id": self.user_id,
            "delivered_at": _iso(self.delivered_at),
            "read_at": _iso(self.read_at),
        }


class SmsAlert(Base):
    """Record of one SMS send, with its rolled-up delivery status."""

    __tablename__ = "sms_alerts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    sender_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    alert_type: Mapped[str] = mapped_column(String(20), nullable=False)
    priority: Mapped[str] = mapped_column(String(20), default="normal", nullable=False)
    target_villages: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)
    recipient_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    delivery_status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)
    sent_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "sender_id": self.sender_id,
            "message": self.message,
            "alert_type": self.alert_type,
            "priority": self.priority,
            "target_villages": list(self.target_villages or []),
            "recipient_count": self.recipient_count,
            "delivery_status": self.delivery_status,
            "sent_at": _iso(self.sent_at),
        }


class EmergencyPin(Base):
    """An incident reported on the map."""

    __tablename__ = "emergency_pins"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    latitude: Mapped[Decimal] = mapped_column(Numeric(10, 8), nullable=False)
    longitude: Mapped[Decimal] = mapped_column(Numeric(11, 8), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    location: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="active", nullable=False)
    verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now, onupdate=_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "type": self.type,
            # fixed precision on the wire, same as the column
            "latitude": f"{Decimal(self.latitude):.8f}",
            "longitude": f"{Decimal(self.longitude):.8f}",
            "description": self.description,
            "location": self.location,
            "status": self.status,
            "verified": self.verified,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class EmergencyService(Base):
    """A phone number in the emergency-services directory (112, fire, ambulance, ...)."""

    __tablename__ = "emergency_services"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    phone: Mapped[str] = mapped_column(String(32), nullable=False)
    short_code: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # None for island-wide numbers
    district: Mapped[Optional[str]] = mapped_column(String(120), index=True, nullable=True)
    is_emergency: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_primary: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "phone": self.phone,
            "short_code": self.short_code,
            "description": self.description,
            "district": self.district,
            "is_emergency": self.is_emergency,
            "is_primary": self.is_primary,
        }


class EmergencyServiceCall(Base):
    """A call to an emergency service started from the app."""

    __tablename__ = "emergency_service_calls"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    service_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    emergency_pin_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    call_initiated: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)
    user_location: Mapped[Optional[Dict[str, float]]] = mapped_column(JSON, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "service_id": self.service_id,
            "emergency_pin_id": self.emergency_pin_id,
            "call_initiated": _iso(self.call_initiated),
            "user_location": self.user_location,
            "notes": self.notes,
        }
