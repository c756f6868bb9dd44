# rentmap/entrypoints/api/routers/realtime.py
from __future__ import annotations

import json
import logging
import uuid

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ....integrations.realtime import UNKNOWN_EVENT, error_event

log = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


@router.websocket("/ws")
async def listings_socket(websocket: WebSocket) -> None:
    """
    Client protocol: {"event": "...", "data": {...}} frames.
    Inbound: subscribe | unsubscribe | unsubscribeAll | getSubscriptions | pong
    Outbound: connected | subscriptionConfirmed | subscriptionRemoved |
              allSubscriptionsRemoved | subscriptions | newListing | error
    """
    hub = websocket.app.state.services.hub
    connection_id = f"conn_{uuid.uuid4().hex[:12]}"

    await websocket.accept()
    await websocket.send_json(hub.connect(connection_id, websocket.send_json))
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except ValueError:
                await websocket.send_json(error_event(UNKNOWN_EVENT, "Invalid JSON"))
                continue
            reply = hub.handle_message(connection_id, message)
            if reply is not None:
                await websocket.send_json(reply)
    except WebSocketDisconnect:
        pass
    finally:
        hub.disconnect(connection_id)
