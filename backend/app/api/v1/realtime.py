"""
WebSocket endpoint for live events.

Clients connect, receive a ``connected`` greeting, then every event the
BroadcastHub publishes. Inbound frames are ignored except ``ping``, which
is answered with ``{"type": "pong"}`` so proxies keep the socket open.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from backend.app.core.config import settings
from backend.app.realtime.hub import BroadcastHub

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


@router.websocket(settings.WS_PATH)
async def websocket_events(websocket: WebSocket):
    hub: BroadcastHub = websocket.app.state.hub

    await websocket.accept()
    await hub.register(websocket)

    try:
        await websocket.send_json({"type": "connected", "data": {}})
        while True:
            text = await websocket.receive_text()
            if text.strip().lower() == "ping":
                await websocket.send_json({"type": "pong", "data": {}})
    except WebSocketDisconnect:
        pass
    finally:
        await hub.unregister(websocket)
