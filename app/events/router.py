"""WebSocket push channel for lead status changes."""

import asyncio
import json
import logging
from typing import Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status

from app.auth.security import token_user_id

from .broker import event_broker

logger = logging.getLogger(__name__)

router = APIRouter(tags=["events"])


async def _send_events(websocket: WebSocket, queue: asyncio.Queue) -> None:
    while True:
        event = await queue.get()
        await websocket.send_json(event)


async def _receive_pings(websocket: WebSocket) -> None:
    while True:
        raw = await websocket.receive_text()
        try:
            message = json.loads(raw)
        except ValueError:
            continue
        if isinstance(message, dict) and message.get("type") == "ping":
            await websocket.send_json({"type": "pong"})


@router.websocket("/ws")
async def event_stream(
    websocket: WebSocket,
    token: Optional[str] = Query(None),
    last_event_id: Optional[int] = Query(None, description="Replay buffered events after this id"),
    epoch: Optional[str] = Query(None, description="Epoch of the event last_event_id came from"),
) -> None:
    """
    Push channel. Authenticate with ?token=<JWT>. Each message is
    {id, epoch, type, data, timestamp}; reconnect with ?last_event_id=<id>&epoch=<epoch>
    to resume. Ids from another epoch (a restarted server) replay the whole buffer.
    Send {"type": "ping"} to keep the connection alive; the server answers {"type": "pong"}.
    """
    user_id = token_user_id(token)
    if user_id is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    queue, backlog = await event_broker.subscribe(last_event_id, epoch)
    logger.info("WebSocket connected: user=%s, last_event_id=%s", user_id, last_event_id)
    tasks = []
    try:
        for event in backlog:
            await websocket.send_json(event)
        tasks = [
            asyncio.create_task(_send_events(websocket, queue)),
            asyncio.create_task(_receive_pings(websocket)),
        ]
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            exc = task.exception()
            if exc is not None and not isinstance(exc, WebSocketDisconnect):
                logger.warning("WebSocket stream for user %s ended with error: %s", user_id, exc)
    except WebSocketDisconnect:
        pass
    finally:
        for task in tasks:
            task.cancel()
        await event_broker.unsubscribe(queue)
        logger.info("WebSocket disconnected: user=%s", user_id)
