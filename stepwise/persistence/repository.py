"""Repository abstraction for journey persistence."""

from __future__ import annotations

from datetime import datetime
from typing import AsyncContextManager, Optional, Protocol

from .models import HeroRef, JourneyRecord, JourneyState


class JourneyRepository(Protocol):
    """Protocol for journey storage backends.

    Backends must provide an exclusive per-row lock, enforce the
    one-active-journey-per-hero constraint on every write and return copies,
    never live references to stored state.
    """

    async def insert(self, record: JourneyRecord) -> JourneyRecord:
        """Persist a new journey row."""

    async def get(self, journey_id: str) -> JourneyRecord | None:
        """Retrieve the journey row by id."""

    async def update(self, record: JourneyRecord) -> JourneyRecord:
        """Overwrite all columns of an existing row."""

    def lock(self, journey_id: str) -> AsyncContextManager[JourneyRecord]:
        """Hold an exclusive lock on the row for the duration of the block.

        Yields a fresh copy of the row. Changes made to the yielded record are
        written back atomically when the block exits without an exception.
        """

    async def find_ready_due_before(self, cutoff: datetime) -> list[JourneyRecord]:
        """Return ``ready`` journeys with a next step due before ``cutoff``."""

    async def find_stuck(self, since: datetime) -> list[JourneyRecord]:
        """Return ``performing`` journeys last updated at or before ``since``."""

    async def delete_completed(self, before: datetime) -> int:
        """Delete ``canceled``/``finished`` journeys last updated at or before ``before``."""

    async def list_journeys(
        self,
        journey_type: Optional[str] = None,
        hero: Optional[HeroRef] = None,
        state: Optional[JourneyState] = None,
    ) -> list[JourneyRecord]:
        """Return all persisted journeys matching the filters."""
