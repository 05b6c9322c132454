"""Methods steering a journey from inside or outside of a step."""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING, Any, Dict, NoReturn, Optional, Union

from .errors import InvalidJourneyState
from .persistence import TERMINAL_STATES, JourneyState
from .persistence.models import generate_idempotency_key
from .step import OutcomeKind, StepInterrupted, StepOutcome, to_timedelta

if TYPE_CHECKING:
    from .journey import Journey


class FlowControl:
    """Mixin providing ``cancel``, ``pause``, ``finish``, ``resume``, ``skip`` and ``reattempt``.

    Inside a step, every method except ``resume`` aborts the
    running step body. Code following the call does not get executed.
    """

    async def cancel(self: "Journey") -> None:
        """End the journey. No further steps are performed."""
        if self._current_step is not None:
            await self._update(state=JourneyState.CANCELED)
            self._interrupt(StepOutcome(OutcomeKind.CANCEL))
        await self._set_state_unless_terminal(JourneyState.CANCELED)
        self.logger.info("Canceled")

    async def pause(self: "Journey") -> None:
        """Stop the journey until :meth:`resume` is called.

        Wake-ups delivered while paused are ignored. Useful when the hero is
        under review, an external service is down or a step has a bug that
        needs fixing first.
        """
        if self._current_step is not None:
            await self._update(state=JourneyState.PAUSED)
            self._interrupt(StepOutcome(OutcomeKind.PAUSE))
        await self._set_state_unless_terminal(JourneyState.PAUSED)
        self.logger.info("Paused")

    async def finish(self: "Journey") -> None:
        """Mark the journey finished. Remaining steps are not performed."""
        if self._current_step is not None:
            await self._update(state=JourneyState.FINISHED)
            self._interrupt(StepOutcome(OutcomeKind.FINISH))
        await self._set_state_unless_terminal(
            JourneyState.FINISHED, self._finish_changes(None)
        )
        self.logger.info("Finished")

    async def resume(self: "Journey") -> None:
        """Make a paused journey ready again and schedule its next step."""
        if self._current_step is not None:
            raise InvalidJourneyState("resume() can only be used outside of a step")
        async with self.context.repository.lock(self.id) as row:
            if row.state is not JourneyState.PAUSED:
                raise InvalidJourneyState(
                    f"{type(self).__name__} to resume must be paused, but was {row.state.value}"
                )
            self._apply_to(
                row, {"state": JourneyState.READY, "idempotency_key": generate_idempotency_key()}
            )
        self._adopt(row)
        self.logger.info(f"Resumed, next step {self.next_step_name}")
        await self.schedule()

    async def skip(self: "Journey") -> None:
        """Move past the scheduled step without performing it.

        Inside a step, the rest of the body is skipped and the journey
        continues with the following step (or finishes).
        """
        if self._current_step is not None:
            self._interrupt(StepOutcome(OutcomeKind.SKIP))
        async with self.context.repository.lock(self.id) as row:
            if row.state is not JourneyState.READY:
                raise InvalidJourneyState(
                    f"{type(self).__name__} to skip a step must be ready, but was {row.state.value}"
                )
            skipped_step_name = row.next_step_name
            self._apply_to(row, self._advance_changes(skipped_step_name))
        self._adopt(row)
        self.logger.info(f"Skipped {skipped_step_name}")
        if self.is_ready:
            await self.schedule()

    async def reattempt(self: "Journey", wait: Union[timedelta, int, float, None] = None) -> None:
        """Perform the current step again after ``wait`` (defaults to the step's own wait).

        Only has an effect inside a step. The step gets restarted from the
        beginning, so it should be idempotent.
        """
        if self._current_step is None:
            self.logger.warning("reattempt() called outside of a step, ignoring")
            return
        delay: Optional[timedelta] = to_timedelta(wait, "wait")
        if delay is None:
            delay = self._current_step.wait
        self._interrupt(StepOutcome.reattempt(delay))

    # ------------------------------------------------------------------
    def _interrupt(self: "Journey", outcome: StepOutcome) -> NoReturn:
        self._step_signal = outcome
        raise StepInterrupted(outcome)

    async def _set_state_unless_terminal(
        self: "Journey", state: JourneyState, changes: Optional[Dict[str, Any]] = None
    ) -> None:
        async with self.context.repository.lock(self.id) as row:
            if row.state in TERMINAL_STATES:
                raise InvalidJourneyState(
                    f"{type(self).__name__} is already {row.state.value}, cannot become {state.value}"
                )
            self._apply_to(row, changes or {"state": state})
        self._adopt(row)
