"""Schedulers decide when a wake-up for a journey is handed to the transport."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING, Protocol, Union

from .contracts import PERFORM_STEP_TOPIC, PerformStepTask

if TYPE_CHECKING:
    from .context import EngineContext
    from .journey import Journey

logger = logging.getLogger(__name__)


class Scheduler(Protocol):
    """Ensures a wake-up is delivered no earlier than the journey's due time."""

    async def schedule(self, journey: "Journey") -> None:
        """Arrange for ``perform_next_step`` to be called for ``journey``."""


class ForwardScheduler:
    """Enqueues a task for every journey that gets sent to ``schedule``.

    The task is published with the exact due time, however far in the future
    that is. This is the simplest option if the queue supports far-ahead
    scheduling. Queues that cap the delay of a message, or that slow down with
    many future messages, are better served by :class:`CyclicScheduler`.
    """

    async def schedule(self, journey: "Journey") -> None:
        due = journey.next_step_to_be_performed_at
        if due is None:
            logger.debug(f"{journey} has nothing to schedule")
            return
        run_at = max(due, journey.context.clock())
        task = PerformStepTask.for_journey(journey, run_at=run_at)
        await journey.context.transport.publish(PERFORM_STEP_TOPIC, task, run_at=run_at)
        logger.debug(f"Enqueued {journey.next_step_name} of {journey} for {run_at.isoformat()}")


class CyclicScheduler(ForwardScheduler):
    """Only enqueues tasks for journeys coming up within one cycle.

    ``run_scheduling_cycle`` has to be called on a fixed timer with the same
    period as ``cycle_duration`` (``stepwise scheduler cycle`` from cron). Every
    cycle enqueues the journeys due before the next cycle starts, including
    any which are overdue. No task is ever enqueued further ahead than one
    cycle, at the cost of timing precision bounded by ``cycle_duration``.
    """

    def __init__(self, cycle_duration: Union[timedelta, int, float]) -> None:
        if not isinstance(cycle_duration, timedelta):
            cycle_duration = timedelta(seconds=cycle_duration)
        if cycle_duration <= timedelta(0):
            raise ValueError("cycle_duration must be positive")
        self.cycle_duration = cycle_duration

    async def run_scheduling_cycle(self, context: "EngineContext") -> int:
        """Enqueue every ready journey due before the next cycle.

        Returns:
            Number of journeys enqueued.
        """
        cutoff = context.clock() + self.cycle_duration
        records = await context.repository.find_ready_due_before(cutoff)
        enqueued = 0
        for record in records:
            try:
                await ForwardScheduler.schedule(self, context.load(record))
                enqueued += 1
            except Exception:
                logger.exception(f"Could not enqueue journey {record.id} ({record.journey_type})")
        logger.info(f"Scheduling cycle enqueued {enqueued} journeys due before {cutoff.isoformat()}")
        return enqueued

    async def schedule(self, journey: "Journey") -> None:
        # The previous cycle ran at most one cycle_duration ago, so anything due
        # before the next one has to be enqueued right now.
        due = journey.next_step_to_be_performed_at
        if due is None:
            return
        if due - journey.context.clock() <= self.cycle_duration:
            await super().schedule(journey)
