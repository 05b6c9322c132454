"""In-memory implementation of the journey repository."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Dict, Optional

from ..errors import JourneyNotFound, JourneyUniquenessViolation
from .models import HeroRef, JourneyRecord, JourneyState, TERMINAL_STATES
from .repository import JourneyRepository


class InMemoryJourneyRepository(JourneyRepository):
    """Store journeys in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. Row locks are ``asyncio.Lock``
    instances, so mutual exclusion holds within a single event loop.
    """

    def __init__(self) -> None:
        self._journeys: Dict[str, JourneyRecord] = {}
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    # ------------------------------------------------------------------
    def _check_unique(self, record: JourneyRecord) -> None:
        for other in self._journeys.values():
            if record.conflicts_with(other):
                raise JourneyUniquenessViolation(
                    f"{record.journey_type} already has an active journey {other.id} "
                    f"for hero {record.hero_type}:{record.hero_id}"
                )

    def _write(self, record: JourneyRecord) -> JourneyRecord:
        self._check_unique(record)
        self._journeys[record.id] = record.model_copy(deep=True)
        return record.model_copy(deep=True)

    # ------------------------------------------------------------------
    async def insert(self, record: JourneyRecord) -> JourneyRecord:
        if record.id in self._journeys:
            raise JourneyUniquenessViolation(f"Journey {record.id} already exists")
        return self._write(record)

    async def get(self, journey_id: str) -> JourneyRecord | None:
        record = self._journeys.get(journey_id)
        return record.model_copy(deep=True) if record else None

    async def update(self, record: JourneyRecord) -> JourneyRecord:
        if record.id not in self._journeys:
            raise JourneyNotFound(f"Journey {record.id} does not exist")
        return self._write(record)

    @asynccontextmanager
    async def lock(self, journey_id: str) -> AsyncIterator[JourneyRecord]:
        async with self._locks[journey_id]:
            stored = self._journeys.get(journey_id)
            if stored is None:
                raise JourneyNotFound(f"Journey {journey_id} does not exist")
            record = stored.model_copy(deep=True)
            yield record
            if record != stored and journey_id in self._journeys:
                self._write(record)

    async def find_ready_due_before(self, cutoff: datetime) -> list[JourneyRecord]:
        return [
            r.model_copy(deep=True)
            for r in self._journeys.values()
            if r.state is JourneyState.READY
            and r.next_step_name is not None
            and r.next_step_to_be_performed_at is not None
            and r.next_step_to_be_performed_at < cutoff
        ]

    async def find_stuck(self, since: datetime) -> list[JourneyRecord]:
        return [
            r.model_copy(deep=True)
            for r in self._journeys.values()
            if r.state is JourneyState.PERFORMING
            and r.updated_at is not None
            and r.updated_at <= since
        ]

    async def delete_completed(self, before: datetime) -> int:
        doomed = [
            r.id
            for r in self._journeys.values()
            if r.state in TERMINAL_STATES
            and r.updated_at is not None
            and r.updated_at <= before
        ]
        for journey_id in doomed:
            del self._journeys[journey_id]
            self._locks.pop(journey_id, None)
        return len(doomed)

    async def list_journeys(
        self,
        journey_type: Optional[str] = None,
        hero: Optional[HeroRef] = None,
        state: Optional[JourneyState] = None,
    ) -> list[JourneyRecord]:
        return [
            r.model_copy(deep=True)
            for r in self._journeys.values()
            if (journey_type is None or r.journey_type == journey_type)
            and (hero is None or r.hero == hero)
            and (state is None or r.state is state)
        ]
