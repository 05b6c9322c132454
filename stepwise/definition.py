"""Immutable journey type configuration and the builder that produces it."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, Any, Callable, List, Optional, Tuple, Union

from .conditional import Conditional
from .errors import StepConfigurationError
from .step import (
    ExceptionPolicy,
    InlineBody,
    NamedMethod,
    StepDefinition,
    to_timedelta,
)

if TYPE_CHECKING:
    from .journey import Journey

Duration = Union[timedelta, int, float]


@dataclass(frozen=True)
class JourneyDefinition:
    """Ordered steps plus journey-level cancel and skip conditions."""

    steps: Tuple[StepDefinition, ...] = ()
    cancel_conditions: Tuple[Conditional, ...] = ()
    skip_conditions: Tuple[Conditional, ...] = ()

    @property
    def step_names(self) -> List[str]:
        return [step.name for step in self.steps]

    @property
    def first(self) -> Optional[StepDefinition]:
        return self.steps[0] if self.steps else None

    def lookup(self, step_name: Optional[str]) -> Optional[StepDefinition]:
        """Return the step named ``step_name``, if any."""
        if step_name is None:
            return None
        return next((step for step in self.steps if step.name == str(step_name)), None)

    def following(self, step: StepDefinition) -> Optional[StepDefinition]:
        index = step.seq + 1
        return self.steps[index] if index < len(self.steps) else None

    def wait_after(self, step: Optional[StepDefinition]) -> timedelta:
        """Sum of waits of the steps following ``step`` (all steps when None)."""
        start = step.seq + 1 if step else 0
        return sum((s.wait for s in self.steps[start:]), timedelta(0))

    async def should_cancel(self, journey: "Journey") -> bool:
        for condition in self.cancel_conditions:
            if await condition.satisfied_by(journey):
                return True
        return False

    async def should_skip(self, journey: "Journey") -> bool:
        for condition in self.skip_conditions:
            if await condition.satisfied_by(journey):
                return True
        return False


class FlowBuilder:
    """Collects steps and conditions for a journey type.

    Seeded with the parent type's definition, so subclasses append to what
    they inherit. ``build()`` freezes the result.
    """

    def __init__(self, base: Optional[JourneyDefinition] = None) -> None:
        base = base or JourneyDefinition()
        self._steps: List[StepDefinition] = list(base.steps)
        self._cancel_conditions: List[Conditional] = list(base.cancel_conditions)
        self._skip_conditions: List[Conditional] = list(base.skip_conditions)

    def step(
        self,
        name: Optional[str] = None,
        *,
        wait: Optional[Duration] = None,
        after: Optional[Duration] = None,
        before_step: Optional[str] = None,
        after_step: Optional[str] = None,
        on_exception: Union[ExceptionPolicy, str, None] = ExceptionPolicy.PAUSE,
        skip_if: Any = False,
        if_: Any = True,
        body: Optional[Callable[[Any], Any]] = None,
    ) -> StepDefinition:
        """Define a step.

        Steps are stacked top to bottom and get performed in sequence, unless
        ``before_step`` or ``after_step`` place the step next to an existing one.

        Args:
            name: Name of the step. Defaults to ``step_<n>``. Without a ``body``
                the journey method with this name is called.
            wait: Delay after the previous step before this one becomes due.
            after: Delay counted from the start of the journey. Converted to
                ``wait`` by subtracting the waits of the steps placed before it.
                Mutually exclusive with ``wait``.
            before_step: Insert before the named step.
            after_step: Insert after the named step.
            on_exception: Policy applied when the body raises.
            skip_if: The body is not run when this condition is satisfied.
            if_: The body is only run when this condition is satisfied.
            body: Function called with the journey.
        """
        wait_delta = to_timedelta(wait, "wait")
        after_delta = to_timedelta(after, "after")
        if wait_delta is not None and after_delta is not None:
            raise StepConfigurationError("Either wait: or after: can be specified, but not both")
        if before_step is not None and after_step is not None:
            raise StepConfigurationError(
                "Either before_step: or after_step: can be specified, but not both"
            )
        position = len(self._steps)
        if before_step is not None:
            position = self._position_of(before_step, "before_step")
        elif after_step is not None:
            position = self._position_of(after_step, "after_step") + 1

        if after_delta is not None:
            accumulated = sum((s.wait for s in self._steps[:position]), timedelta(0))
            wait_delta = after_delta - accumulated
        wait_delta = wait_delta if wait_delta is not None else timedelta(0)
        if wait_delta < timedelta(0):
            raise StepConfigurationError(
                f"wait: cannot be negative, but computed was {wait_delta.total_seconds()}s"
            )

        name = str(name) if name is not None else f"step_{len(self._steps) + 1}"
        if name in (s.name for s in self._steps):
            raise StepConfigurationError(f"Step named {name!r} already defined")

        if body is not None and not callable(body):
            raise StepConfigurationError(f"body must be callable, but was {body!r}")

        step_definition = StepDefinition(
            name=name,
            seq=position,
            body=InlineBody(body) if body is not None else NamedMethod(name),
            wait=wait_delta,
            on_exception=ExceptionPolicy.coerce(on_exception),
            skip_if=_skip_condition(skip_if, if_),
        )
        self._steps.insert(position, step_definition)
        self._steps = [dataclasses.replace(s, seq=i) for i, s in enumerate(self._steps)]
        return self._steps[position]

    def cancel_if(self, condition: Any) -> None:
        """Cancel the journey before its next step when ``condition`` is satisfied."""
        self._cancel_conditions.append(Conditional.wrap(condition))

    def skip_if(self, condition: Any) -> None:
        """Skip the scheduled step when ``condition`` is satisfied."""
        self._skip_conditions.append(Conditional.wrap(condition))

    def build(self) -> JourneyDefinition:
        return JourneyDefinition(
            steps=tuple(self._steps),
            cancel_conditions=tuple(self._cancel_conditions),
            skip_conditions=tuple(self._skip_conditions),
        )

    def _position_of(self, step_name: str, argument: str) -> int:
        for index, existing in enumerate(self._steps):
            if existing.name == str(step_name):
                return index
        raise StepConfigurationError(
            f"Step named {str(step_name)!r} not found for {argument}: parameter"
        )


def _skip_condition(skip_if: Any, if_: Any) -> Conditional:
    if if_ is True:
        return Conditional.wrap(skip_if)
    # skip when skip_if holds or if_ does not
    return Conditional([Conditional(skip_if, negate=True), Conditional.wrap(if_)], negate=True)
