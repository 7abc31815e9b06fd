"""
sms_gateway.py — Outbound SMS transports.

A transport sends one message to one phone number and either returns or
raises. It knows nothing about alerts, villages or recipients; the
per-recipient loop and its accounting live in sms_dispatcher.

═══════════════════════════════════════════════════════════════════════════
PROVIDERS
═══════════════════════════════════════════════════════════════════════════

    SMS_PROVIDER    Transport               Behaviour
    ────────────    ─────────────────────   ─────────────────────────────────
    simulation      SimulationTransport     log the message, always succeed
    carrier         SmsCarrierTransport     HTTP gateway (bearer token)

Carrier gateway API:

    POST {base}/send        {"numbers": "+357...", "message": "...", "sendname": "..."}
                            → {"status": "success", "details": {"messageid": "..."}}
    GET  {base}/credits     → {"status": "success", "details": 1250}
    GET  {base}/sendname    → {"status": "success", "details": "VillageAlert"}

A missing token, a network error, a non-2xx response or a body whose status
is not "success" all raise SmsTransportError.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

import httpx

from backend.app.core.config import Settings

logger = logging.getLogger(__name__)


class SmsTransportError(Exception):
    """One SMS could not be handed to the provider."""


class SmsTransport(Protocol):
    name: str

    async def send(self, phone: str, message: str) -> None: ...


@dataclass
class SmsServiceStatus:
    provider: str
    configured: bool
    credits: Optional[float] = None
    sendname: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider,
            "configured": self.configured,
            "credits": self.credits,
            "sendname": self.sendname,
            "error": self.error,
        }


def mask_phone(phone: str) -> str:
    return phone[:4] + "***" + phone[-2:] if len(phone) > 6 else "***"


# ═══════════════════════════════════════════════════════════════════════════
# Simulation
# ═══════════════════════════════════════════════════════════════════════════

class SimulationTransport:
    """Development transport: logs and succeeds."""

    name = "simulation"
    configured = True

    async def send(self, phone: str, message: str) -> None:
        logger.info(
            "[SMS/simulated] → %s: %d chars → '%s'",
            mask_phone(phone), len(message),
            message[:50] + ("..." if len(message) > 50 else ""),
        )

    async def status(self) -> SmsServiceStatus:
        return SmsServiceStatus(provider=self.name, configured=True)

    async def aclose(self) -> None:
        return None


# ═══════════════════════════════════════════════════════════════════════════
# HTTP carrier gateway
# ═══════════════════════════════════════════════════════════════════════════

class SmsCarrierTransport:
    """
    Client for the carrier's bulk-SMS HTTP API.

    Parameters
    ----------
    base_url : str
        API root, e.g. ``https://www.smsservicecenter.nl/api/v2``.
    api_token : str | None
        Bearer token. When empty every send raises.
    sendname : str
        Default sender name shown on handsets.
    timeout_seconds : float
    client : httpx.AsyncClient | None
        Injected client (tests pass one backed by httpx.MockTransport).
    """

    name = "carrier"

    def __init__(
        self,
        base_url: str,
        api_token: Optional[str],
        *,
        sendname: Optional[str] = None,
        timeout_seconds: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_token = api_token
        self.sendname = sendname
        self.timeout_seconds = timeout_seconds
        self._client = client

    @property
    def configured(self) -> bool:
        return bool(self.api_token)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout_seconds)
        return self._client

    def _headers(self) -> Dict[str, str]:
        return {
            "Accept": "application/json",
            "Authorization": f"Bearer {self.api_token}",
        }

    async def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        if not self.configured:
            raise SmsTransportError("SMS service not configured (missing API token)")

        try:
            response = await self._get_client().request(
                method, f"{self.base_url}{path}", headers=self._headers(), **kwargs,
            )
        except httpx.HTTPError as exc:
            raise SmsTransportError(f"SMS gateway unreachable: {exc}") from exc

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        if response.is_error:
            raise SmsTransportError(
                f"SMS gateway HTTP {response.status_code}: "
                f"{body.get('message', 'Unknown error')}"
            )
        if body.get("status") != "success":
            raise SmsTransportError(body.get("message") or "SMS gateway rejected the request")
        return body

    async def send(self, phone: str, message: str) -> None:
        payload: Dict[str, Any] = {"numbers": phone, "message": message}
        if self.sendname:
            payload["sendname"] = self.sendname

        body = await self._request("POST", "/send", json=payload)
        details = body.get("details") or {}
        logger.info(
            "[SMS/carrier] Sent to %s (message id %s)",
            mask_phone(phone), details.get("messageid"),
        )

    async def get_credits(self) -> float:
        body = await self._request("GET", "/credits")
        return float(body.get("details") or 0)

    async def get_sendname(self) -> Optional[str]:
        body = await self._request("GET", "/sendname")
        return body.get("details")

    async def status(self) -> SmsServiceStatus:
        """Configured flag plus credit balance and sender name, best effort."""
        if not self.configured:
            return SmsServiceStatus(
                provider=self.name, configured=False,
                error="SMS_CARRIER_API_TOKEN not set",
            )

        result = SmsServiceStatus(provider=self.name, configured=True)
        try:
            result.credits = await self.get_credits()
            result.sendname = await self.get_sendname()
        except SmsTransportError as exc:
            result.error = str(exc)
        return result

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


# ═══════════════════════════════════════════════════════════════════════════
# Factory
# ═══════════════════════════════════════════════════════════════════════════

def build_transport(settings: Settings) -> SmsTransport:
    """Pick the transport named by settings.SMS_PROVIDER."""
    provider = settings.SMS_PROVIDER.lower()

    if provider == "simulation":
        return SimulationTransport()

    if provider == "carrier":
        if not settings.SMS_CARRIER_API_TOKEN:
            logger.warning(
                "SMS_PROVIDER=carrier but SMS_CARRIER_API_TOKEN is not set; "
                "every SMS will fail",
            )
        return SmsCarrierTransport(
            settings.SMS_CARRIER_BASE_URL,
            settings.SMS_CARRIER_API_TOKEN,
            sendname=settings.SMS_CARRIER_SENDNAME,
            timeout_seconds=settings.SMS_TIMEOUT_SECONDS,
        )

    raise ValueError(f"Unknown SMS provider: {settings.SMS_PROVIDER}")
