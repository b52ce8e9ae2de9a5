"""
WebSocket transport for the event hub — GET /ws?token=<jwt>

The handshake carries the caller's access token. The session is joined to the
caller's room before the socket is accepted; everything published to that
room is written out as {"event": ..., "data": ...}. Inbound frames are read
only to notice the disconnect. Disconnects and send failures both end in
hub.leave().
"""
import asyncio
import logging

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status

from socialhub.auth import decode_access_token
from socialhub.config import settings
from socialhub.errors import Unauthorized
from socialhub.realtime.connection import Connection

logger = logging.getLogger(__name__)
router = APIRouter()


@router.websocket("/ws")
async def realtime(websocket: WebSocket, token: str = Query("")):
    try:
        identity = decode_access_token(token)
    except Unauthorized:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    hub = websocket.app.state.hub
    connection = Connection(identity, max_pending=settings.realtime_queue_size)
    hub.join(identity, connection)
    try:
        await websocket.accept()
        logger.info("User %s connected (%r)", identity, connection)
        await _serve(websocket, connection)
    finally:
        hub.leave(connection)
        logger.info("User %s disconnected (%r)", identity, connection)


async def _serve(websocket: WebSocket, connection: Connection) -> None:
    sender = asyncio.create_task(connection.pump(websocket))
    receiver = asyncio.create_task(_drain(websocket))
    try:
        done, _ = await asyncio.wait({sender, receiver}, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                logger.warning("Realtime session %r ended: %s", connection, task.exception())
    finally:
        for task in (sender, receiver):
            task.cancel()


async def _drain(websocket: WebSocket) -> None:
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        return
