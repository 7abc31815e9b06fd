"""
phone_verification.py — Verify a resident's phone with a one-time SMS code.

═══════════════════════════════════════════════════════════════════════════
FLOW
═══════════════════════════════════════════════════════════════════════════

    send_code(phone) ──▶ store phone + code + expiry ──▶ SMS the code
    confirm(code)    ──▶ match + not expired ──▶ phone_verified = True
                                                 alerts_enabled = True

    • Requesting a code for a different number clears phone_verified until
      the new number is confirmed, so alerts never go to an unproven phone.
    • A code is valid for PHONE_VERIFICATION_TTL_MINUTES.
    • After PHONE_VERIFICATION_MAX_ATTEMPTS wrong codes the pending code is
      discarded and a new one must be requested.
    • The code is stored before it is sent; if the SMS fails the caller gets
      a 502 and simply asks again.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from backend.app.alerts.channels.sms_gateway import SmsTransport, SmsTransportError, mask_phone
from backend.app.core.config import settings
from backend.app.core.errors import ExternalServiceError, NotFoundError, ValidationError
from backend.app.residents.models import (
    PHONE_PATTERN,
    VERIFICATION_CODE_DIGITS,
    VerificationIssued,
    normalise_phone,
)
from backend.app.storage.repository import AlertStorage
from backend.app.storage.tables import User

logger = logging.getLogger(__name__)


def generate_code() -> str:
    return f"{secrets.randbelow(10 ** VERIFICATION_CODE_DIGITS):0{VERIFICATION_CODE_DIGITS}d}"


def _utc(value: datetime) -> datetime:
    # SQLite hands timestamps back without tzinfo
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class PhoneVerificationService:
    """
    Issue and confirm SMS verification codes.

    Parameters
    ----------
    storage : AlertStorage
    transport : SmsTransport
        The same transport alert SMS go through.
    code_factory, clock :
        Injected in tests; default to a random 6-digit code and UTC now.
    """

    def __init__(
        self,
        storage: AlertStorage,
        transport: SmsTransport,
        *,
        ttl: Optional[timedelta] = None,
        max_attempts: Optional[int] = None,
        code_factory: Callable[[], str] = generate_code,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.storage = storage
        self.transport = transport
        self.ttl = ttl or timedelta(minutes=settings.PHONE_VERIFICATION_TTL_MINUTES)
        self.max_attempts = max_attempts or settings.PHONE_VERIFICATION_MAX_ATTEMPTS
        self.code_factory = code_factory
        self.clock = clock

    def _message(self, code: str) -> str:
        minutes = int(self.ttl.total_seconds() // 60)
        return (
            f"Your village alert verification code: {code}. "
            f"Valid for {minutes} minutes. Do not share this code."
        )

    async def send_code(self, caller: User, raw_phone: str) -> VerificationIssued:
        """
        Store a fresh code for ``raw_phone`` and SMS it.

        Raises
        ------
        ValidationError
            Phone is not in international format.
        ExternalServiceError
            The SMS transport refused the message.
        """
        phone = normalise_phone(raw_phone)
        if not PHONE_PATTERN.match(phone):
            raise ValidationError(
                "Invalid phone number format. Include the country code (e.g. +357...)",
                field="phone",
            )

        code = self.code_factory()
        expires_at = self.clock() + self.ttl
        fields = dict(
            phone=phone,
            phone_verification_code=code,
            phone_verification_expiry=expires_at,
            phone_verification_attempts=0,
        )
        if phone != caller.phone:
            fields.update(phone_verified=False, alerts_enabled=False)

        if await self.storage.update_user(caller.id, **fields) is None:
            raise NotFoundError("User", id=caller.id)

        try:
            await self.transport.send(phone, self._message(code))
        except SmsTransportError as exc:
            logger.warning(
                "Verification SMS to %s for %s failed: %s", mask_phone(phone), caller.id, exc,
                extra={"user_id": caller.id},
            )
            raise ExternalServiceError("sms", "Could not send verification code")

        logger.info(
            "Verification code sent to %s for %s", mask_phone(phone), caller.id,
            extra={"user_id": caller.id},
        )
        return VerificationIssued(phone=phone, expires_at=expires_at)

    async def confirm(self, caller: User, code: str) -> User:
        """
        Check ``code`` against the pending one and mark the phone verified.

        Raises
        ------
        ValidationError
            No pending code, code expired, or code wrong (``attempts_left``
            in the error details).
        """
        user = await self.storage.get_user(caller.id)
        if user is None:
            raise NotFoundError("User", id=caller.id)

        pending = user.phone_verification_code
        if not pending or user.phone_verification_expiry is None:
            raise ValidationError("No verification code pending; request a new one", field="code")

        if self.clock() > _utc(user.phone_verification_expiry):
            await self.storage.update_user(
                user.id, phone_verification_code=None, phone_verification_expiry=None,
            )
            raise ValidationError("Verification code expired; request a new one", field="code")

        submitted = str(code or "").strip().encode()
        if not secrets.compare_digest(submitted, pending.encode()):
            attempts = (user.phone_verification_attempts or 0) + 1
            if attempts >= self.max_attempts:
                await self.storage.update_user(
                    user.id,
                    phone_verification_code=None,
                    phone_verification_expiry=None,
                    phone_verification_attempts=0,
                )
                logger.warning(
                    "Verification for %s locked after %d wrong codes", user.id, attempts,
                    extra={"user_id": user.id},
                )
                raise ValidationError(
                    "Too many wrong codes; request a new one", field="code", attempts_left=0,
                )
            await self.storage.update_user(user.id, phone_verification_attempts=attempts)
            raise ValidationError(
                "Invalid verification code", field="code",
                attempts_left=self.max_attempts - attempts,
            )

        verified = await self.storage.verify_user_phone(user.id)
        logger.info("Phone verified for %s", user.id, extra={"user_id": user.id})
        return verified
