"""The Journey base class and its step-performing state machine."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, ClassVar, Dict, List, Optional

from .context import EngineContext
from .definition import FlowBuilder, JourneyDefinition
from .errors import JourneyNotFound, JourneyNotPersisted, MissingStepImplementation
from .flow_control import FlowControl
from .persistence import HeroRef, JourneyRecord, JourneyState
from .persistence.models import generate_idempotency_key
from .recovery import Recovery, RecoveryPolicy
from .registry import register_journey_type
from .step import ExceptionPolicy, OutcomeKind, StepDefinition, StepOutcome

logger = logging.getLogger(__name__)


class JourneyLogger(logging.LoggerAdapter):
    """Prefixes messages with ``[<Type>:<id> at <step>]``."""

    def process(self, msg: Any, kwargs: Any) -> Any:
        journey = self.extra["journey"]
        tag = f"{type(journey).__name__}:{journey.id}"
        if journey.current_step is not None:
            tag += f" at {journey.current_step.name}"
        return f"[{tag}] {msg}", kwargs


class Journey(FlowControl, Recovery):
    """A workflow instance progressing through the steps of its type.

    Subclasses declare their steps by overriding :meth:`configure`::

        class SignupJourney(Journey):
            @classmethod
            def configure(cls, flow):
                flow.step("send_welcome_email")
                flow.step("send_reminder", wait=timedelta(days=2))

            async def send_welcome_email(self):
                ...

    Steps and conditions of the parent class are inherited, and the ones
    declared in ``configure`` are appended to them. The resulting
    :class:`JourneyDefinition` is frozen when the class is created.
    """

    journey_type: ClassVar[str] = "stepwise.journey.Journey"
    definition: ClassVar[JourneyDefinition] = JourneyDefinition()
    when_stuck: ClassVar[RecoveryPolicy] = RecoveryPolicy.REATTEMPT

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        if "journey_type" not in cls.__dict__:
            cls.journey_type = f"{cls.__module__}.{cls.__qualname__}"
        cls.when_stuck = RecoveryPolicy(cls.when_stuck)

        flow = FlowBuilder(cls.definition)
        if "configure" in cls.__dict__:
            cls.configure(flow)
        cls.definition = flow.build()
        register_journey_type(cls)

    @classmethod
    def configure(cls, flow: FlowBuilder) -> None:
        """Declare steps and conditions on ``flow``. Override in subclasses."""

    def __init__(self, record: JourneyRecord, context: EngineContext) -> None:
        self.context = context
        self.record = record.model_copy(deep=True)
        self._persisted = record.model_copy(deep=True)
        self._current_step: Optional[StepDefinition] = None
        self._step_signal: Optional[StepOutcome] = None
        self.logger = JourneyLogger(logger, {"journey": self})

    def __repr__(self) -> str:
        return (
            f"<{type(self).__name__} id={self.id} state={self.state.value} "
            f"next_step={self.next_step_name}>"
        )

    # ------------------------------------------------------------------
    # Creation and lookup
    @classmethod
    async def create(
        cls,
        context: EngineContext,
        hero: Any = None,
        allow_multiple: bool = False,
        data: Optional[Dict[str, Any]] = None,
    ) -> "Journey":
        """Persist a new journey and schedule its first step.

        Args:
            context: Engine context to run the journey with.
            hero: Optional subject of the journey. A ``HeroRef``, a
                ``(type, id)`` pair or any object with an ``id``.
            allow_multiple: When false, creating a second active journey of
                this type for the same hero raises ``JourneyUniquenessViolation``.
            data: Initial contents of ``journey.data``.
        """
        now = context.clock()
        hero_ref = HeroRef.of(hero) if hero is not None else None
        record = JourneyRecord(
            journey_type=cls.journey_type,
            hero_type=hero_ref.type if hero_ref else None,
            hero_id=hero_ref.id if hero_ref else None,
            allow_multiple=allow_multiple,
            data=dict(data or {}),
            created_at=now,
            updated_at=now,
        )
        first = cls.definition.first
        if first is None:
            record.state = JourneyState.FINISHED
        else:
            record.next_step_name = first.name
            record.next_step_to_be_performed_at = now + first.wait
            record.idempotency_key = generate_idempotency_key()

        journey = cls(await context.repository.insert(record), context)
        journey.logger.info(f"Created, next step {journey.next_step_name}")
        if journey.is_ready:
            await journey.schedule()
        return journey

    @classmethod
    async def for_hero(cls, context: EngineContext, hero: Any) -> List["Journey"]:
        """Return all journeys of this type for ``hero``."""
        records = await context.repository.list_journeys(
            journey_type=cls.journey_type, hero=HeroRef.of(hero)
        )
        return [cls(record, context) for record in records]

    # ------------------------------------------------------------------
    # Persisted attributes
    @property
    def id(self) -> str:
        return self.record.id

    @property
    def state(self) -> JourneyState:
        return self.record.state

    @property
    def hero(self) -> Optional[HeroRef]:
        return self.record.hero

    @property
    def allow_multiple(self) -> bool:
        return self.record.allow_multiple

    @property
    def data(self) -> Dict[str, Any]:
        """Free-form journey attributes. Call :meth:`save` after changing them in a step."""
        return self.record.data

    @property
    def previous_step_name(self) -> Optional[str]:
        return self.record.previous_step_name

    @property
    def next_step_name(self) -> Optional[str]:
        return self.record.next_step_name

    @property
    def next_step_to_be_performed_at(self):
        return self.record.next_step_to_be_performed_at

    @property
    def idempotency_key(self) -> Optional[str]:
        return self.record.idempotency_key

    @property
    def steps_entered(self) -> int:
        return self.record.steps_entered

    @property
    def steps_completed(self) -> int:
        return self.record.steps_completed

    @property
    def created_at(self):
        return self.record.created_at

    @property
    def updated_at(self):
        return self.record.updated_at

    @property
    def is_ready(self) -> bool:
        return self.state is JourneyState.READY

    @property
    def is_performing(self) -> bool:
        return self.state is JourneyState.PERFORMING

    @property
    def is_paused(self) -> bool:
        return self.state is JourneyState.PAUSED

    @property
    def is_canceled(self) -> bool:
        return self.state is JourneyState.CANCELED

    @property
    def is_finished(self) -> bool:
        return self.state is JourneyState.FINISHED

    @property
    def changed(self) -> bool:
        """Whether the journey differs from what was last read or written."""
        return self.record != self._persisted

    @property
    def current_step(self) -> Optional[StepDefinition]:
        """The step being performed, only set while its body runs."""
        return self._current_step

    @property
    def time_remaining_until_final_step(self) -> timedelta:
        return self.definition.wait_after(self._current_step)

    # ------------------------------------------------------------------
    # Persistence helpers
    async def save(self) -> None:
        """Write all attributes of the journey to the repository."""
        await self._update()

    async def reload(self) -> None:
        record = await self.context.repository.get(self.id)
        if record is None:
            raise JourneyNotFound(f"Journey {self.id} does not exist")
        self._adopt(record)

    async def schedule(self) -> None:
        """Ask the scheduler to deliver a wake-up for the next step."""
        await self.context.scheduler.schedule(self)

    def _adopt(self, record: JourneyRecord) -> None:
        self.record = record.model_copy(deep=True)
        self._persisted = record.model_copy(deep=True)

    async def _update(self, **changes: Any) -> None:
        for name, value in changes.items():
            setattr(self.record, name, value)
        self.record.updated_at = self.context.clock()
        self._adopt(await self.context.repository.update(self.record))

    def _apply_to(self, row: JourneyRecord, changes: Dict[str, Any]) -> None:
        for name, value in changes.items():
            setattr(row, name, value)
        row.updated_at = self.context.clock()

    async def _apply_and_enqueue(self, changes: Dict[str, Any]) -> None:
        await self._update(**changes)
        if self.is_ready:
            await self.schedule()

    # ------------------------------------------------------------------
    # Transitions
    def _schedule_changes(
        self,
        step: StepDefinition,
        wait: Optional[timedelta],
        current_step_name: Optional[str],
    ) -> Dict[str, Any]:
        wait = step.wait if wait is None else wait
        return {
            "state": JourneyState.READY,
            "previous_step_name": current_step_name,
            "next_step_name": step.name,
            "next_step_to_be_performed_at": self.context.clock() + wait,
            "idempotency_key": generate_idempotency_key(),
        }

    def _finish_changes(self, current_step_name: Optional[str]) -> Dict[str, Any]:
        changes: Dict[str, Any] = {
            "state": JourneyState.FINISHED,
            "next_step_name": None,
            "next_step_to_be_performed_at": None,
        }
        if current_step_name is not None:
            changes["previous_step_name"] = current_step_name
        return changes

    def _advance_changes(self, current_step_name: Optional[str]) -> Dict[str, Any]:
        """Changes moving past ``current_step_name`` without performing it."""
        if current_step_name is None:
            return self._finish_changes(None)
        current = self.definition.lookup(current_step_name)
        if current is None:
            self.logger.warning(f"No definition for step {current_step_name!r}, pausing")
            return {"state": JourneyState.PAUSED}
        following = self.definition.following(current)
        if following is None:
            return self._finish_changes(current.name)
        return self._schedule_changes(following, None, current.name)

    def _reattempt_changes(
        self, current_step_name: Optional[str], wait: Optional[timedelta]
    ) -> Dict[str, Any]:
        if current_step_name is None:
            return self._finish_changes(None)
        current = self.definition.lookup(current_step_name)
        if current is None:
            self.logger.warning(f"No definition for step {current_step_name!r}, pausing")
            return {"state": JourneyState.PAUSED}
        return self._schedule_changes(current, wait, current.name)

    # ------------------------------------------------------------------
    async def perform_next_step(self, idempotency_key: Optional[str] = None) -> None:
        """Perform the next step if this wake-up is still the one expected.

        Checks under a row lock that the journey is ready, that its next step
        has not changed since it was loaded and that ``idempotency_key`` (when
        given) is the current one. Stale or duplicate wake-ups return without
        doing anything. Premature ones get re-enqueued.

        Exceptions raised by the step body propagate after the journey state
        resulting from the step's ``on_exception`` policy has been saved.
        """
        expected_step_name = self.next_step_name
        async with self.context.repository.lock(self.id) as row:
            reason = _reason_not_to_perform(row, expected_step_name, idempotency_key)
            if reason is None:
                self._apply_to(row, {"state": JourneyState.PERFORMING})
        self._adopt(row)
        if reason is not None:
            self.logger.debug(f"Not performing {expected_step_name}: {reason}")
            return

        current_step_name = self.next_step_name
        if await self.definition.should_cancel(self):
            self.logger.info("Canceling as a cancel condition is satisfied")
            await self._update(state=JourneyState.CANCELED)
            return
        if await self.definition.should_skip(self):
            self.logger.info(f"Skipping {current_step_name} as a skip condition is satisfied")
            await self._apply_and_enqueue(self._advance_changes(current_step_name))
            return
        if current_step_name is None:
            self.logger.debug("No next step, finishing journey")
            await self._update(**self._finish_changes(None))
            return

        step = self.definition.lookup(current_step_name)
        if step is None:
            self.logger.warning(f"No definition for step {current_step_name!r}, pausing")
            await self._update(state=JourneyState.PAUSED)
            return

        due = self.next_step_to_be_performed_at
        if due is not None and due > self.context.clock():
            self.logger.warning(f"Tried to perform {current_step_name} prematurely, due at {due.isoformat()}")
            await self._update(state=JourneyState.READY)
            await self.schedule()
            return

        self._current_step = step
        try:
            error = await self._perform_step(step)
        finally:
            self._current_step = None
            self._step_signal = None
        if error is not None:
            raise error

    async def _perform_step(self, step: StepDefinition) -> Optional[Exception]:
        await self._update(steps_entered=self.steps_entered + 1)
        self.logger.debug(f"Entering step {step.name}")

        error: Optional[Exception] = None
        try:
            outcome = await step.perform_in_context_of(self)
        except Exception as exc:
            error = exc
            if self.changed:
                await self.save()
            outcome = self._step_signal or self._outcome_for_exception(step, exc)
        else:
            if self.changed:
                raise JourneyNotPersisted(
                    f"{self!r} had its attributes changed but was not saved inside step "
                    f"{step.name!r}. Subsequent steps would see a stale journey; call "
                    "`await journey.save()` after changing it inside a step."
                )
            outcome = self._step_signal or outcome
            await self._update(steps_completed=self.steps_completed + 1)
            self.logger.debug(f"Completed {step.name} without exceptions")

        await self._conclude_step(step, outcome)
        return error

    def _outcome_for_exception(self, step: StepDefinition, exc: Exception) -> StepOutcome:
        policy = step.on_exception
        if isinstance(exc, MissingStepImplementation):
            policy = ExceptionPolicy.PAUSE
        self.logger.warning(
            f"{type(exc).__name__} raised in {step.name}, applying on_exception={policy.value}"
        )
        if policy is ExceptionPolicy.REATTEMPT:
            return StepOutcome.reattempt(step.wait)
        if policy is ExceptionPolicy.CANCEL:
            return StepOutcome(OutcomeKind.CANCEL)
        if policy is ExceptionPolicy.PAUSE:
            return StepOutcome(OutcomeKind.PAUSE)
        if policy is ExceptionPolicy.SKIP:
            return StepOutcome(OutcomeKind.SKIP)
        return StepOutcome(OutcomeKind.HOLD)

    async def _conclude_step(self, step: StepDefinition, outcome: StepOutcome) -> None:
        kind = outcome.kind
        if kind is OutcomeKind.HOLD:
            self.logger.warning(f"Left performing after {step.name} raised, awaiting recovery")
        elif kind is OutcomeKind.CANCEL or self.is_canceled:
            if not self.is_canceled:
                await self._update(state=JourneyState.CANCELED)
            self.logger.info(f"Has been canceled inside {step.name}")
        elif kind is OutcomeKind.PAUSE or self.is_paused:
            if not self.is_paused:
                await self._update(state=JourneyState.PAUSED)
            self.logger.info(f"Has been paused inside {step.name}")
        elif kind is OutcomeKind.REATTEMPT:
            wait = outcome.wait if outcome.wait is not None else step.wait
            self.logger.info(f"Will reattempt {step.name} in {wait.total_seconds()}s")
            await self._apply_and_enqueue(self._schedule_changes(step, wait, step.name))
        elif kind is OutcomeKind.SKIP:
            self.logger.info(f"Skipped the remainder of {step.name}")
            await self._apply_and_enqueue(self._advance_changes(step.name))
        elif kind is OutcomeKind.FINISH or self.is_finished:
            self.logger.info(f"Has been finished inside {step.name}")
            await self._update(**self._finish_changes(step.name))
        else:
            following = self.definition.following(step)
            if following is not None:
                self.logger.info(f"Will continue to {following.name}")
                await self._apply_and_enqueue(self._schedule_changes(following, None, step.name))
            else:
                self.logger.info("Journey completed")
                await self._update(**self._finish_changes(step.name))


def _reason_not_to_perform(
    row: JourneyRecord, expected_step_name: Optional[str], idempotency_key: Optional[str]
) -> Optional[str]:
    if row.state is not JourneyState.READY:
        return f"journey is {row.state.value}"
    if row.next_step_name != expected_step_name:
        return f"next step changed to {row.next_step_name}"
    if idempotency_key is not None and idempotency_key != row.idempotency_key:
        return "idempotency key does not match, the task is stale"
    return None
