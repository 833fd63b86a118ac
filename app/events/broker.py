"""Event broker for real-time lead status updates."""

import asyncio
import logging
from collections import deque
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional, Set, Tuple
from uuid import uuid4

from app.core.config import settings

logger = logging.getLogger(__name__)

SUBSCRIBER_QUEUE_SIZE = 100


class EventBroker:
    """In-memory event broker feeding the /ws push channel.

    Every event gets a monotonically increasing integer id. The last
    ``buffer_size`` events are kept so a reconnecting client can resume
    from the last id it saw. Ids restart with the process, so every event
    also carries the broker's ``epoch``; an id is only comparable with ids
    of the same epoch.
    """

    def __init__(self, buffer_size: int = 500):
        self.epoch = uuid4().hex
        self._subscribers: Set[asyncio.Queue] = set()
        self._buffer: Deque[Dict[str, Any]] = deque(maxlen=buffer_size)
        self._last_id = 0
        self._lock = asyncio.Lock()

    @property
    def last_event_id(self) -> int:
        return self._last_id

    async def subscribe(
        self,
        last_event_id: Optional[int] = None,
        epoch: Optional[str] = None,
    ) -> Tuple[asyncio.Queue, List[Dict[str, Any]]]:
        """Subscribe to live events.

        Returns the queue for live events and the buffered events with
        ``id > last_event_id`` (empty when last_event_id is None). When
        ``epoch`` is given and differs from this broker's, last_event_id
        belongs to an earlier process and the whole buffer is replayed.
        Both are taken under the lock so nothing is missed or delivered twice.
        """
        if last_event_id is not None and epoch is not None and epoch != self.epoch:
            logger.info("Subscriber resumed from epoch %s, replaying full buffer", epoch)
            last_event_id = 0
        queue: asyncio.Queue = asyncio.Queue(maxsize=SUBSCRIBER_QUEUE_SIZE)
        async with self._lock:
            self._subscribers.add(queue)
            if last_event_id is None:
                backlog: List[Dict[str, Any]] = []
            else:
                backlog = [e for e in self._buffer if e["id"] > last_event_id]
            logger.debug("New subscription, total: %d", len(self._subscribers))
        return queue, backlog

    async def unsubscribe(self, queue: asyncio.Queue) -> None:
        async with self._lock:
            self._subscribers.discard(queue)
            logger.debug("Removed subscription, total: %d", len(self._subscribers))

    async def publish(self, event_type: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """Publish an event to all subscribers and return it."""
        async with self._lock:
            self._last_id += 1
            event = {
                "id": self._last_id,
                "epoch": self.epoch,
                "type": event_type,
                "data": data,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
            self._buffer.append(event)
            subscribers = list(self._subscribers)

        count = 0
        for queue in subscribers:
            try:
                queue.put_nowait(event)
                count += 1
            except asyncio.QueueFull:
                # Slow consumer; it can resume from the replay buffer
                logger.warning("Event queue full, dropping event %d", event["id"])

        if count > 0:
            logger.debug("Published %s to %d subscribers", event_type, count)
        return event

    async def publish_lead_event(
        self,
        lead_id: int,
        event_type: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Convenience method for lead status events."""
        payload = {"student_id": lead_id, **(data or {})}
        return await self.publish(f"lead.{event_type}", payload)

    def get_subscriber_count(self) -> int:
        return len(self._subscribers)


# Singleton instance
event_broker = EventBroker(buffer_size=settings.event_buffer_size)
