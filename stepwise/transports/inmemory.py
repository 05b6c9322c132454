"""In-memory transport for testing."""

from __future__ import annotations

import asyncio
import heapq
import itertools
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import AsyncIterator, Dict, List, Optional, Tuple

from ..clock import Clock, utcnow
from ..contracts import PerformStepTask
from .base import BaseTransport


@dataclass(order=True)
class ScheduledMessage:
    """A message waiting in an in-memory queue until ``run_at``."""

    run_at: datetime
    sequence: int
    message: PerformStepTask = field(compare=False)


class InMemoryTransport(BaseTransport[ScheduledMessage]):
    """Simple in-process delayed queue for unit tests.

    Messages are ordered by ``run_at`` and only delivered once the clock has
    reached it. Pass a fake clock to control delivery from tests.
    """

    def __init__(self, clock: Optional[Clock] = None) -> None:
        self._queues: Dict[str, List[ScheduledMessage]] = defaultdict(list)
        self._lock = asyncio.Lock()
        self._clock = clock or utcnow
        self._sequence = itertools.count()

    async def publish(
        self, topic: str, message: PerformStepTask, run_at: Optional[datetime] = None
    ) -> None:
        """Publish message to in-memory queue."""
        scheduled = ScheduledMessage(
            run_at=run_at or self._clock(), sequence=next(self._sequence), message=message
        )
        async with self._lock:
            heapq.heappush(self._queues[topic], scheduled)

    def pending(self, topic: str) -> List[PerformStepTask]:
        """Return queued messages in delivery order without consuming them."""
        return [scheduled.message for scheduled in sorted(self._queues[topic])]

    def clear(self, topic: Optional[str] = None) -> None:
        if topic is None:
            self._queues.clear()
        else:
            self._queues[topic].clear()

    async def take_due(self, topic: str) -> Optional[ScheduledMessage]:
        """Pop the earliest message if it is due, without waiting."""
        async with self._lock:
            queue = self._queues[topic]
            if queue and queue[0].run_at <= self._clock():
                return heapq.heappop(queue)
        return None

    async def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[ScheduledMessage, PerformStepTask]]:
        """Subscribe to messages from topic.

        Args:
            topic: The topic to subscribe to
            lifespan: Maximum time in seconds to keep connection open. If None, runs indefinitely.
        """
        start_time = asyncio.get_event_loop().time() if lifespan else None

        while True:
            if lifespan and start_time:
                elapsed = asyncio.get_event_loop().time() - start_time
                if elapsed >= lifespan:
                    break

            scheduled = await self.take_due(topic)
            if scheduled is not None:
                yield scheduled, scheduled.message
                continue

            await asyncio.sleep(0.1)

    async def ack(self, raw_message: ScheduledMessage) -> None:
        """No-op acknowledgment for in-memory transport."""
        pass
