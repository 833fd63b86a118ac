"""
Reconnecting consumer for the /ws push channel.

Reconnects at a fixed interval up to a capped number of consecutive attempts,
resumes with last_event_id and drops events it has already delivered. Ids are
only compared within one server epoch; a new epoch resets the resume point.
"""

import asyncio
import contextlib
import inspect
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Union
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from websockets.asyncio.client import connect
from websockets.exceptions import WebSocketException

logger = logging.getLogger(__name__)

EventHandler = Callable[[Dict[str, Any]], Union[None, Awaitable[None]]]

RECONNECT_INTERVAL_SECONDS = 5.0
MAX_RECONNECT_ATTEMPTS = 10
PING_INTERVAL_SECONDS = 30.0


class EventStreamClient:
    def __init__(
        self,
        url: str,
        on_event: EventHandler,
        token: Optional[str] = None,
        reconnect_interval: float = RECONNECT_INTERVAL_SECONDS,
        max_reconnect_attempts: int = MAX_RECONNECT_ATTEMPTS,
        ping_interval: float = PING_INTERVAL_SECONDS,
        connector: Callable[[str], Any] = connect,
    ) -> None:
        self.url = url
        self.token = token
        self.last_event_id: Optional[int] = None
        self.epoch: Optional[str] = None
        self._on_event = on_event
        self._reconnect_interval = reconnect_interval
        self._max_reconnect_attempts = max_reconnect_attempts
        self._ping_interval = ping_interval
        self._connector = connector
        self._stopped = asyncio.Event()

    def stream_url(self) -> str:
        """URL for the next connection, carrying the token and the resume point."""
        parts = urlsplit(self.url)
        query = dict(parse_qsl(parts.query))
        if self.token:
            query["token"] = self.token
        if self.last_event_id is not None:
            query["last_event_id"] = str(self.last_event_id)
            if self.epoch is not None:
                query["epoch"] = self.epoch
        return urlunsplit(parts._replace(query=urlencode(query)))

    def stop(self) -> None:
        self._stopped.set()

    async def run(self) -> None:
        """Consume events until stop() is called. Raises ConnectionError once retries are exhausted."""
        attempts = 0
        while not self._stopped.is_set():
            try:
                async with self._connector(self.stream_url()) as ws:
                    attempts = 0
                    logger.info("Connected to %s", self.url)
                    await self._consume(ws)
            except (OSError, asyncio.TimeoutError, WebSocketException) as e:
                logger.warning("Event stream connection failed: %s", e)

            if self._stopped.is_set():
                break
            attempts += 1
            if attempts > self._max_reconnect_attempts:
                logger.error("Giving up on %s after %d reconnect attempts", self.url, attempts - 1)
                raise ConnectionError(f"Event stream unavailable after {attempts - 1} reconnect attempts")
            logger.info(
                "Reconnecting in %.1fs (attempt %d/%d)",
                self._reconnect_interval, attempts, self._max_reconnect_attempts,
            )
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=self._reconnect_interval)
            except asyncio.TimeoutError:
                pass

    async def _consume(self, ws) -> None:
        keepalive = asyncio.create_task(self._keepalive(ws))
        try:
            async for raw in ws:
                await self._handle(raw)
                if self._stopped.is_set():
                    break
        finally:
            keepalive.cancel()
            with contextlib.suppress(asyncio.CancelledError, WebSocketException):
                await keepalive

    async def _keepalive(self, ws) -> None:
        while True:
            await asyncio.sleep(self._ping_interval)
            await ws.send(json.dumps({"type": "ping"}))

    async def _handle(self, raw) -> None:
        try:
            message = json.loads(raw)
        except ValueError:
            logger.warning("Dropping malformed event: %r", raw)
            return
        if not isinstance(message, dict) or message.get("type") == "pong":
            return
        event_id = message.get("id")
        if not isinstance(event_id, int):
            return
        epoch = message.get("epoch")
        if epoch is not None and epoch != self.epoch:
            if self.epoch is not None:
                logger.info("Event stream epoch changed from %s to %s, resetting resume point", self.epoch, epoch)
            self.epoch = epoch
            self.last_event_id = None
        if self.last_event_id is not None and event_id <= self.last_event_id:
            logger.debug("Dropping duplicate event %d", event_id)
            return
        self.last_event_id = event_id
        result = self._on_event(message)
        if inspect.isawaitable(result):
            await result
