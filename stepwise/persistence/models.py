"""Data models for persisted journey state."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class JourneyState(str, Enum):
    READY = "ready"
    PAUSED = "paused"
    PERFORMING = "performing"
    CANCELED = "canceled"
    FINISHED = "finished"


ACTIVE_STATES = (JourneyState.READY, JourneyState.PERFORMING, JourneyState.PAUSED)
TERMINAL_STATES = (JourneyState.CANCELED, JourneyState.FINISHED)


class HeroRef(BaseModel):
    """Weak reference to the subject a journey runs on behalf of."""

    model_config = ConfigDict(frozen=True)

    type: str
    id: str

    @classmethod
    def of(cls, hero: Any) -> "HeroRef":
        """Build a reference from a ``HeroRef``, a ``(type, id)`` pair or any object with an ``id``."""
        if isinstance(hero, HeroRef):
            return hero
        if isinstance(hero, tuple) and len(hero) == 2:
            return cls(type=str(hero[0]), id=str(hero[1]))
        hero_id = getattr(hero, "id", None)
        if hero_id is None:
            raise ValueError(f"Cannot reference {hero!r} as a hero: it has no id")
        return cls(type=type(hero).__name__, id=str(hero_id))


def generate_journey_id() -> str:
    return uuid.uuid4().hex


def generate_idempotency_key() -> str:
    return uuid.uuid4().hex


class JourneyRecord(BaseModel):
    """One persisted journey row."""

    id: str = Field(default_factory=generate_journey_id)
    journey_type: str
    state: JourneyState = JourneyState.READY
    hero_type: Optional[str] = None
    hero_id: Optional[str] = None
    allow_multiple: bool = False
    previous_step_name: Optional[str] = None
    next_step_name: Optional[str] = None
    next_step_to_be_performed_at: Optional[datetime] = None
    idempotency_key: Optional[str] = None
    steps_entered: int = 0
    steps_completed: int = 0
    data: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def hero(self) -> Optional[HeroRef]:
        if self.hero_type is None or self.hero_id is None:
            return None
        return HeroRef(type=self.hero_type, id=self.hero_id)

    def conflicts_with(self, other: "JourneyRecord") -> bool:
        """Whether both rows would violate the one-active-journey-per-hero rule."""
        if self.id == other.id or self.allow_multiple or other.allow_multiple:
            return False
        if self.hero is None or self.journey_type != other.journey_type:
            return False
        return (
            self.hero == other.hero
            and self.state in ACTIVE_STATES
            and other.state in ACTIVE_STATES
        )
