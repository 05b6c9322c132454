"""Redis transport for cross-process delayed delivery."""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime
from typing import Any, AsyncIterator, Optional, Tuple

import redis.asyncio as redis
from pydantic import ValidationError

from ..contracts import PerformStepTask
from .base import BaseTransport

logger = logging.getLogger(__name__)


class RedisTransport(BaseTransport[str]):
    """Redis-based transport backed by a sorted set per topic.

    The score of each member is the UNIX time at which it becomes due.
    Consumers claim a due member by removing it, so only one consumer
    receives each message.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        poll_interval: float = 0.5,
    ) -> None:
        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self.poll_interval = poll_interval
        self._redis: Optional[Any] = None

    def _key(self, topic: str) -> str:
        return f"stepwise:{topic}:scheduled"

    async def connect(self) -> None:
        """Connect to Redis."""
        self._redis = redis.Redis(
            host=self.host,
            port=self.port,
            db=self.db,
            password=self.password,
            decode_responses=True,
        )
        # Test connection
        await self._redis.ping()

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def publish(
        self, topic: str, message: PerformStepTask, run_at: Optional[datetime] = None
    ) -> None:
        """Add message to the topic's sorted set, scored by due time."""
        if not self._redis:
            await self.connect()

        score = run_at.timestamp() if run_at else time.time()
        await self._redis.zadd(self._key(topic), {message.to_json(): score})

    async def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[str, PerformStepTask]]:
        """Poll the sorted set for due messages."""
        if not self._redis:
            await self.connect()

        key = self._key(topic)
        start_time = asyncio.get_event_loop().time() if lifespan else None

        while True:
            if lifespan and start_time:
                elapsed = asyncio.get_event_loop().time() - start_time
                if elapsed >= lifespan:
                    break

            due = await self._redis.zrangebyscore(key, "-inf", time.time(), start=0, num=1)
            # zrem returns 0 when another consumer claimed the member first
            if due and await self._redis.zrem(key, due[0]):
                message_json = due[0]
                try:
                    message = PerformStepTask.from_json(message_json)
                except ValidationError as e:
                    logger.error(f"Failed to parse message on {key}: {e}")
                    continue
                yield message_json, message
                continue

            await asyncio.sleep(self.poll_interval)

    async def ack(self, raw_message: str) -> None:
        """No-op acknowledgment for Redis transport (message already claimed)."""
        pass

