"""In-process event stream for run updates.

The engine publishes one event per tick outcome and per executed trade;
presentation layers (the WebSocket endpoint) subscribe per run. Each
subscriber owns a bounded queue, so a slow consumer only loses its own
oldest events and never blocks the tick loop.
"""

import asyncio
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from tradesim.utils.timeutils import utcnow

logger = logging.getLogger(__name__)


@dataclass
class RunEvent:
    run_id: str
    type: str  # "tick", "skipped", "trade", "completed"
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "type": self.type,
            "timestamp": self.timestamp.isoformat(),
            "data": self.data,
        }


class EventBus:
    def __init__(self, max_queue_size: int = 1000):
        self.max_queue_size = max_queue_size
        self._subscribers: dict[str, set[asyncio.Queue]] = {}

    def subscribe(self, run_id: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.max_queue_size)
        self._subscribers.setdefault(run_id, set()).add(queue)
        return queue

    def unsubscribe(self, run_id: str, queue: asyncio.Queue):
        queues = self._subscribers.get(run_id)
        if not queues:
            return
        queues.discard(queue)
        if not queues:
            del self._subscribers[run_id]

    @contextmanager
    def subscription(self, run_id: str):
        queue = self.subscribe(run_id)
        try:
            yield queue
        finally:
            self.unsubscribe(run_id, queue)

    def subscriber_count(self, run_id: str) -> int:
        return len(self._subscribers.get(run_id, ()))

    def publish(self, event: RunEvent):
        for queue in list(self._subscribers.get(event.run_id, ())):
            if queue.full():
                # Drop the oldest event for this subscriber only
                queue.get_nowait()
                logger.debug(f"[run_{event.run_id}] Subscriber queue full, dropped oldest event")
            queue.put_nowait(event)
