"""
hub.py — In-memory registry of live WebSocket connections with fan-out.

═══════════════════════════════════════════════════════════════════════════
DELIVERY POLICY
═══════════════════════════════════════════════════════════════════════════

Best effort, no backlog:

    • publish() serialises the event once and writes it to a snapshot of the
      live set taken under the lock.
    • A connection already closed at write time is skipped and dropped.
    • A write that raises, or that does not finish within the send timeout
      (WS_SEND_TIMEOUT_SECONDS), is logged and that connection is dropped.
      Each stalled client holds up a publish for at most one timeout.
    • publish() never raises to its caller.
    • A connection registered after publish() returns never sees that event;
      there is no replay.

Ordering: publishes are serialised by their own lock, so every connection
sees events in publish() call order.

The hub is per-process and owned by the application instance; it is not
shared across uvicorn workers.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, List, Optional, Protocol, Set

from starlette.websockets import WebSocketState

from backend.app.core.config import settings
from backend.app.realtime.events import RealtimeEvent

logger = logging.getLogger(__name__)


class Connection(Protocol):
    """Anything the hub can push text frames to (starlette WebSocket, test fakes)."""

    async def send_text(self, data: str) -> None: ...


def _is_closed(connection: Any) -> bool:
    state = getattr(connection, "application_state", None)
    return state == WebSocketState.DISCONNECTED


class BroadcastHub:
    """Fan out realtime events to every registered connection."""

    def __init__(self, send_timeout: Optional[float] = None) -> None:
        self._send_timeout = (
            settings.WS_SEND_TIMEOUT_SECONDS if send_timeout is None else send_timeout
        )
        self._connections: Set[Connection] = set()
        self._lock = asyncio.Lock()
        self._publish_lock = asyncio.Lock()

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    async def register(self, connection: Connection) -> None:
        async with self._lock:
            self._connections.add(connection)
            count = len(self._connections)
        logger.info(
            "Realtime client connected (total: %d)", count,
            extra={"connection_count": count},
        )

    async def unregister(self, connection: Connection) -> None:
        """Remove a connection. Removing an absent connection is a no-op."""
        async with self._lock:
            if connection not in self._connections:
                return
            self._connections.discard(connection)
            count = len(self._connections)
        logger.info(
            "Realtime client disconnected (total: %d)", count,
            extra={"connection_count": count},
        )

    async def publish(self, event: RealtimeEvent) -> int:
        """
        Push ``event`` to every live connection.

        Returns
        -------
        int
            Number of connections the frame was written to.
        """
        async with self._publish_lock:
            try:
                message = event.to_json()
            except Exception:
                logger.exception("Could not serialise %s event", event.type)
                return 0

            async with self._lock:
                connections: List[Connection] = list(self._connections)

            if not connections:
                logger.debug("No realtime clients for %s", event.type)
                return 0

            delivered = 0
            dropped: List[Connection] = []

            for connection in connections:
                if _is_closed(connection):
                    dropped.append(connection)
                    continue
                try:
                    await asyncio.wait_for(
                        connection.send_text(message), self._send_timeout,
                    )
                    delivered += 1
                except asyncio.TimeoutError:
                    logger.warning(
                        "Dropping realtime client after %s write timed out (%.2fs)",
                        event.type, self._send_timeout,
                        extra={"event_type": event.type},
                    )
                    dropped.append(connection)
                except Exception as exc:
                    logger.warning(
                        "Dropping realtime client after failed %s write: %s",
                        event.type, exc,
                        extra={"event_type": event.type},
                    )
                    dropped.append(connection)

            if dropped:
                async with self._lock:
                    for connection in dropped:
                        self._connections.discard(connection)

            logger.info(
                "Published %s to %d/%d clients",
                event.type, delivered, len(connections),
                extra={"event_type": event.type, "connection_count": delivered},
            )
            return delivered

    async def close_all(self) -> None:
        """Close every connection (application shutdown)."""
        async with self._lock:
            connections = list(self._connections)
            self._connections.clear()
        for connection in connections:
            close = getattr(connection, "close", None)
            if close is None:
                continue
            try:
                await close(code=1001)
            except Exception as exc:
                logger.debug("Ignoring error while closing client: %s", exc)
