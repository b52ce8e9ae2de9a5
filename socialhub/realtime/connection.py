"""
One live WebSocket session.

The hub only ever calls ``deliver``, which enqueues without awaiting. A pump
task owned by the WebSocket endpoint drains the queue in order and writes
each event as {"event": <name>, "data": <payload>}. When the queue is full
the event is dropped rather than blocking the publisher.
"""
import asyncio
import itertools
import logging
from typing import Any

from fastapi import WebSocket

from socialhub.telemetry import REALTIME_EVENTS_DROPPED

logger = logging.getLogger(__name__)

_ids = itertools.count(1)


class Connection:
    def __init__(self, identity: str, max_pending: int = 256) -> None:
        self.id = next(_ids)
        self.identity = identity
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_pending)

    def __repr__(self) -> str:
        return f"Connection(id={self.id}, identity={self.identity!r})"

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def deliver(self, event: str, payload: Any) -> bool:
        try:
            self._queue.put_nowait({"event": event, "data": payload})
        except asyncio.QueueFull:
            REALTIME_EVENTS_DROPPED.inc()
            logger.warning(
                "Dropping %s event for %r: %d events pending", event, self, self.pending
            )
            return False
        return True

    async def pump(self, websocket: WebSocket) -> None:
        """Write queued events to the socket until cancelled or the send fails."""
        while True:
            frame = await self._queue.get()
            await websocket.send_json(frame)
