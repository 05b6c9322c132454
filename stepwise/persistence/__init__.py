"""Persistence layer for stepwise journeys."""

from __future__ import annotations

import os
from typing import Optional

from ..config import StepwiseConfig, load_config
from .inmemory import InMemoryJourneyRepository
from .models import (
    ACTIVE_STATES,
    TERMINAL_STATES,
    HeroRef,
    JourneyRecord,
    JourneyState,
)
from .repository import JourneyRepository
from .sql import JourneyRow, SQLJourneyRepository

_repository_instance: JourneyRepository | None = None


def _async_database_url(database_url: str) -> str:
    """Pick the async driver for URLs given without one."""
    if database_url.startswith("sqlite://"):
        return database_url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    if database_url.startswith("postgres://"):
        return database_url.replace("postgres://", "postgresql+asyncpg://", 1)
    if database_url.startswith("postgresql://"):
        return database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return database_url


def get_repository(
    database_url: Optional[str] = None, config: Optional[StepwiseConfig] = None
) -> JourneyRepository:
    """Factory function to obtain a journey repository.

    The backend is selected based on ``database_url`` which can be provided
    explicitly, via environment variable ``STEPWISE_DATABASE_URL`` or
    ``DATABASE_URL``, or from loaded configuration. When no database is
    configured, an in-memory repository is returned.
    """

    global _repository_instance
    if _repository_instance is not None and database_url is None and config is None:
        return _repository_instance

    config = config or load_config()
    database_url = (
        database_url
        or os.getenv("STEPWISE_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or config.database_url
    )

    if not database_url:
        _repository_instance = InMemoryJourneyRepository()
    else:
        _repository_instance = SQLJourneyRepository(_async_database_url(database_url))
    return _repository_instance


__all__ = [
    "ACTIVE_STATES",
    "TERMINAL_STATES",
    "HeroRef",
    "JourneyRecord",
    "JourneyState",
    "JourneyRepository",
    "JourneyRow",
    "InMemoryJourneyRepository",
    "SQLJourneyRepository",
    "get_repository",
]
