"""Transports carrying ``PerformStepTask`` wake-ups to workers."""

from __future__ import annotations

import os
from typing import Optional

from ..clock import Clock
from ..config import StepwiseConfig, load_config
from .base import BaseTransport
from .inmemory import InMemoryTransport, ScheduledMessage

BACKENDS = ("inmemory", "redis")


def get_transport(
    backend: Optional[str] = None,
    config: Optional[StepwiseConfig] = None,
    clock: Optional[Clock] = None,
) -> BaseTransport:
    """Build the transport selected by ``backend``.

    The backend comes from the argument, ``STEPWISE_TRANSPORT`` or
    ``transport.backend`` in the configuration, in that order. ``clock`` only
    applies to the in-memory transport, which uses it to decide when messages
    are due.
    """
    config = config or load_config()
    name = (backend or os.getenv("STEPWISE_TRANSPORT") or config.transport.backend).lower()
    if name not in BACKENDS:
        raise ValueError(f"Unsupported transport backend: {name} (expected one of {BACKENDS})")

    if name == "inmemory":
        return InMemoryTransport(clock=clock)

    from .redis import RedisTransport

    return RedisTransport(**config.transport.redis.model_dump())


__all__ = ["BACKENDS", "BaseTransport", "InMemoryTransport", "ScheduledMessage", "get_transport"]
