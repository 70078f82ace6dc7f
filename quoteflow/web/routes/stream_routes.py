"""
WebSocket endpoint for the live push channel.
"""

from __future__ import annotations

import json

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from quoteflow.core.exceptions import AuthenticationError, ConnectionLimitError
from quoteflow.core.logging import get_logger
from quoteflow.web.broadcast import EVENT_ERROR, BroadcastHub, PushConnection, extract_token

logger = get_logger(__name__)

router = APIRouter()

CLOSE_UNAUTHORIZED = 4401
CLOSE_TOO_MANY_CONNECTIONS = 4429


@router.websocket("/ws/live")
async def live_stream(websocket: WebSocket) -> None:
    """Push channel: server events ``dataUpdate``, ``pauseStateChanged`` and ``topMovers``."""
    hub: BroadcastHub = websocket.app.state.broadcast_hub
    address = websocket.client.host if websocket.client else "unknown"
    token = extract_token(websocket.query_params, websocket.headers, websocket.cookies)
    connection = PushConnection(address, websocket.send_json)

    # Register only once the transport can carry broadcasts.
    await websocket.accept()
    try:
        hub.admit(connection, token)
    except AuthenticationError as exc:
        await websocket.close(code=CLOSE_UNAUTHORIZED, reason=exc.message)
        return
    except ConnectionLimitError as exc:
        await websocket.close(code=CLOSE_TOO_MANY_CONNECTIONS, reason=exc.message)
        return

    try:
        await hub.welcome(connection)
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                await connection.send(EVENT_ERROR, {"message": "Invalid JSON"})
                continue
            await hub.handle_message(connection, message)
    except WebSocketDisconnect:
        logger.debug(f"Push client {address} disconnected")
    finally:
        hub.disconnect(connection)
