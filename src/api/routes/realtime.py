"""
Realtime endpoint
=================

WS /ws -- one persistent connection per client.

The bearer token may come as ``?token=`` or an ``Authorization`` header.
A missing or invalid token still connects, anonymously, with ping as
its only capability.  Frames (text or binary) are JSON commands tagged
by ``type``.
"""

import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from src.api.dependencies import get_gateway, get_session_factory
from src.api.security import resolve_user

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


def _token(websocket: WebSocket) -> str | None:
    token = websocket.query_params.get("token")
    if token:
        return token
    header = websocket.headers.get("authorization", "")
    scheme, _, credentials = header.partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials
    return None


@router.websocket("/ws")
async def realtime(websocket: WebSocket):
    await websocket.accept()
    user = await resolve_user(_token(websocket), get_session_factory(websocket))
    gateway = get_gateway(websocket)
    conn = await gateway.open(websocket, user)
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            raw = message.get("text") or message.get("bytes")
            if raw:
                await gateway.handle(conn, raw)
    except WebSocketDisconnect:
        pass
    finally:
        await gateway.close(conn)
