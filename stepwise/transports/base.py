"""Delayed task queue interface the schedulers publish wake-ups to."""

from __future__ import annotations

import abc
from datetime import datetime
from typing import AsyncIterator, Generic, Optional, Tuple, TypeVar

from ..contracts import PerformStepTask

RawMessageT = TypeVar("RawMessageT")


class BaseTransport(Generic[RawMessageT], metaclass=abc.ABCMeta):
    """A queue that holds each task back until its ``run_at``.

    Implementations deliver at least once. Tasks may also arrive early, late
    or more than once, which ``Journey.perform_next_step`` detects.
    ``RawMessageT`` is whatever the backend needs to acknowledge a delivery.
    """

    async def __aenter__(self) -> "BaseTransport[RawMessageT]":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.disconnect()

    async def connect(self) -> None:
        """Open backend connections. Backends connect lazily when not called."""

    async def disconnect(self) -> None:
        """Release backend connections."""

    @abc.abstractmethod
    async def publish(
        self, topic: str, message: PerformStepTask, run_at: Optional[datetime] = None
    ) -> None:
        """Hold ``message`` on ``topic`` until ``run_at``, or deliver it right away."""

    @abc.abstractmethod
    def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[RawMessageT, PerformStepTask]]:
        """Iterate over due messages on ``topic``.

        Args:
            topic: Topic to consume.
            lifespan: Seconds after which iteration stops. Runs until
                cancelled when None.
        """

    @abc.abstractmethod
    async def ack(self, raw_message: RawMessageT) -> None:
        """Mark a delivered message as handled."""

    async def nack(self, raw_message: RawMessageT, requeue: bool = True) -> None:
        """Give a delivered message back. Backends without redelivery just ack it."""
        await self.ack(raw_message)
