"""Step definitions and the outcome of running one."""

from __future__ import annotations

import inspect
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Optional, Union

from .conditional import Conditional
from .errors import MissingStepImplementation, StepConfigurationError

if TYPE_CHECKING:
    from .journey import Journey


class ExceptionPolicy(str, Enum):
    """What happens to the journey when a step body raises."""

    REATTEMPT = "reattempt"
    CANCEL = "cancel"
    PAUSE = "pause"
    SKIP = "skip"
    FINISH = "finish"
    NONE = "none"

    @classmethod
    def coerce(cls, value: Union["ExceptionPolicy", str, None]) -> "ExceptionPolicy":
        if value is None:
            return cls.NONE
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).rstrip("!"))
        except ValueError:
            raise StepConfigurationError(
                f"on_exception must be one of {[p.value for p in cls]}, but was {value!r}"
            ) from None


class OutcomeKind(str, Enum):
    CONTINUE = "continue"
    CANCEL = "cancel"
    PAUSE = "pause"
    REATTEMPT = "reattempt"
    SKIP = "skip"
    FINISH = "finish"
    # Leave the journey "performing" for recovery to pick up
    HOLD = "hold"


@dataclass(frozen=True)
class StepOutcome:
    """Typed result of running a step body."""

    kind: OutcomeKind = OutcomeKind.CONTINUE
    wait: Optional[timedelta] = None

    @classmethod
    def proceed(cls) -> "StepOutcome":
        return cls(OutcomeKind.CONTINUE)

    @classmethod
    def reattempt(cls, wait: timedelta) -> "StepOutcome":
        return cls(OutcomeKind.REATTEMPT, wait=wait)


class StepInterrupted(Exception):
    """Raised by flow control methods to abort the running step body."""

    def __init__(self, outcome: StepOutcome) -> None:
        super().__init__(outcome.kind.value)
        self.outcome = outcome


@dataclass(frozen=True)
class InlineBody:
    """Step body given as a function taking the journey."""

    fn: Callable[[Any], Any]


@dataclass(frozen=True)
class NamedMethod:
    """Step body resolved at call time to the journey method of the same name."""

    name: str


StepBody = Union[InlineBody, NamedMethod]


def to_timedelta(value: Union[timedelta, int, float, None], argument: str) -> Optional[timedelta]:
    if value is None or isinstance(value, timedelta):
        return value
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise StepConfigurationError(f"{argument} must be a timedelta or seconds, but was {value!r}")
    return timedelta(seconds=value)


@dataclass(frozen=True)
class StepDefinition:
    """Describes a step in a journey.

    Instances are immutable and shared by every journey of the type that
    declared them. When the step gets performed, the body is invoked with the
    journey as its context.
    """

    name: str
    seq: int
    body: StepBody
    wait: timedelta = timedelta(0)
    on_exception: ExceptionPolicy = ExceptionPolicy.PAUSE
    skip_if: Conditional = field(default_factory=lambda: Conditional(False))

    def __post_init__(self) -> None:
        if self.wait < timedelta(0):
            raise StepConfigurationError(
                f"wait: cannot be negative, but computed was {self.wait.total_seconds()}s"
            )

    async def perform_in_context_of(self, journey: "Journey") -> StepOutcome:
        """Run the step body for ``journey`` and report how it ended.

        Exceptions other than flow control interruptions propagate to the caller.
        """
        if await self.skip_if.satisfied_by(journey):
            journey.logger.info(f"skipping {self.name} as its skip condition is satisfied")
            return StepOutcome.proceed()

        try:
            result = self._resolve_callable(journey)()
            if inspect.isawaitable(result):
                await result
        except StepInterrupted as interrupt:
            return interrupt.outcome
        return StepOutcome.proceed()

    def _resolve_callable(self, journey: "Journey") -> Callable[[], Any]:
        if isinstance(self.body, InlineBody):
            fn = self.body.fn
            return lambda: fn(journey)
        method = getattr(journey, self.body.name, None)
        if not callable(method):
            raise MissingStepImplementation(
                f"No implementation for step {self.name!r}: "
                f"{type(journey).__name__} has no method {self.body.name!r} and no body was given"
            )
        return method
