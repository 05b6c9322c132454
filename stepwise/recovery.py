"""Recovery of journeys left in the ``performing`` state."""

from __future__ import annotations

from datetime import timedelta
from enum import Enum
from typing import TYPE_CHECKING

from .persistence import JourneyState

if TYPE_CHECKING:
    from .journey import Journey


class RecoveryPolicy(str, Enum):
    """What ``recover()`` does with a journey stuck in ``performing``."""

    REATTEMPT = "reattempt"
    CANCEL = "cancel"


class Recovery:
    """Mixin providing ``recover``.

    Journeys get stuck in ``performing`` when the worker running a step
    crashes or gets killed, or when a step raised with ``on_exception="none"``.
    Set ``when_stuck`` on the journey class to choose what happens to them.
    """

    async def recover(self: "Journey") -> None:
        """Reattempt or cancel the journey if it is still ``performing``."""
        async with self.context.repository.lock(self.id) as row:
            if row.state is not JourneyState.PERFORMING:
                self.logger.debug(f"Not recovering, journey is {row.state.value}")
                return
            if self.when_stuck is RecoveryPolicy.REATTEMPT:
                changes = self._reattempt_changes(row.next_step_name, wait=timedelta(0))
            else:
                changes = {"state": JourneyState.CANCELED}
            self._apply_to(row, changes)
        self._adopt(row)
        self.logger.info(f"Recovered with {self.when_stuck.value}, now {self.state.value}")
        if self.is_ready:
            await self.schedule()
