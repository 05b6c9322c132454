"""Helpers for testing journeys."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Optional, Union

from .context import EngineContext
from .contracts import PERFORM_STEP_TOPIC
from .transports import InMemoryTransport
from .worker import StepWorker

if TYPE_CHECKING:
    from .journey import Journey


class FakeClock:
    """Clock that only moves when told to. Pass it as ``EngineContext.clock``."""

    def __init__(self, now: Optional[datetime] = None) -> None:
        self.now = now or datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: Optional[timedelta] = None, **kwargs: float) -> datetime:
        """Move forward by ``delta`` or by ``timedelta(**kwargs)``."""
        self.now += delta if delta is not None else timedelta(**kwargs)
        return self.now

    def travel_to(self, moment: datetime) -> datetime:
        self.now = moment
        return self.now


async def perform_enqueued_tasks(
    context: EngineContext, topic: str = PERFORM_STEP_TOPIC
) -> int:
    """Perform every task that is due on the in-memory transport.

    Tasks enqueued while performing are performed too if they are due.
    Exceptions raised by steps propagate.

    Returns:
        Number of tasks performed.
    """
    transport = context.transport
    if not isinstance(transport, InMemoryTransport):
        raise TypeError("perform_enqueued_tasks needs an InMemoryTransport")
    worker = StepWorker(context, topic=topic)
    performed = 0
    while True:
        scheduled = await transport.take_due(topic)
        if scheduled is None:
            return performed
        await worker.perform(scheduled.message)
        performed += 1


async def speedrun_journey(
    journey: "Journey",
    clock: Optional[FakeClock] = None,
    maximum_steps: Union[str, int] = "reasonable",
) -> None:
    """Run ``journey`` to completion, skipping across the waiting periods.

    With a ``clock``, time travels to just after each step is due. Without
    one, each step is made due immediately. Raises ``AssertionError`` if the
    journey has neither finished nor been canceled after ``maximum_steps``
    attempts: ``"reasonable"`` (ten times the number of steps),
    ``"unlimited"`` or an integer.
    """
    if maximum_steps == "reasonable":
        n_steps = len(journey.definition.steps) * 10
    elif maximum_steps == "unlimited":
        n_steps = 0xFFFF
    elif isinstance(maximum_steps, int) and not isinstance(maximum_steps, bool):
        n_steps = maximum_steps
    else:
        raise ValueError(
            f"maximum_steps may be 'reasonable', 'unlimited' or an int, was {maximum_steps!r}"
        )

    await journey.save()
    for _ in range(n_steps):
        await journey.reload()
        if journey.is_canceled or journey.is_finished:
            break
        due = journey.next_step_to_be_performed_at
        if clock is not None:
            if due is not None and due > clock():
                clock.travel_to(due + timedelta(seconds=1))
        else:
            await journey._update(next_step_to_be_performed_at=journey.context.clock())
        await journey.perform_next_step()

    await journey.reload()
    if not (journey.is_canceled or journey.is_finished):
        raise AssertionError(
            f"{journey!r} did not finish or cancel after performing {n_steps} steps"
        )


async def immediately_perform_single_step(journey: "Journey", step_name: str) -> None:
    """Perform the named step right away, regardless of the journey's schedule."""
    await journey.save()
    await journey._update(
        next_step_name=step_name, next_step_to_be_performed_at=journey.context.clock()
    )
    await journey.perform_next_step()
