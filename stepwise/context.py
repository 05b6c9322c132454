"""Engine context passed to journeys, schedulers, workers and housekeeping."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING, Optional

from .clock import Clock, utcnow
from .config import StepwiseConfig, load_config
from .errors import JourneyNotFound
from .persistence import JourneyRecord, JourneyRepository, get_repository
from .registry import lookup_journey_type
from .scheduler import CyclicScheduler, ForwardScheduler, Scheduler
from .transports import BaseTransport, get_transport

if TYPE_CHECKING:
    from .journey import Journey


@dataclass
class EngineContext:
    """Collaborators and settings shared by everything operating on journeys."""

    repository: JourneyRepository
    transport: BaseTransport
    scheduler: Scheduler = field(default_factory=ForwardScheduler)
    clock: Clock = utcnow
    delete_completed_after: Optional[timedelta] = timedelta(days=30)
    stuck_after: timedelta = timedelta(days=2)

    @classmethod
    def from_config(
        cls, config: Optional[StepwiseConfig] = None, clock: Optional[Clock] = None
    ) -> "EngineContext":
        """Wire the repository, transport and scheduler selected by ``config``."""
        config = config or load_config()
        if config.scheduler.kind == "cyclic":
            scheduler: Scheduler = CyclicScheduler(config.scheduler.cycle_duration)
        else:
            scheduler = ForwardScheduler()
        return cls(
            repository=(
                get_repository(database_url=config.database_url)
                if config.database_url
                else get_repository()
            ),
            transport=get_transport(config=config, clock=clock),
            scheduler=scheduler,
            clock=clock or utcnow,
            delete_completed_after=config.housekeeping.delete_completed_after,
            stuck_after=config.housekeeping.stuck_after,
        )

    def load(self, record: JourneyRecord) -> "Journey":
        """Instantiate the registered Journey class for ``record``."""
        journey_class = lookup_journey_type(record.journey_type)
        return journey_class(record, self)

    async def find(self, journey_id: str) -> "Journey":
        record = await self.repository.get(journey_id)
        if record is None:
            raise JourneyNotFound(f"Journey {journey_id} does not exist")
        return self.load(record)
