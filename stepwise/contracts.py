"""Message contracts exchanged with the task queue."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from .journey import Journey

PERFORM_STEP_TOPIC = "stepwise.perform_step"


class PerformStepTask(BaseModel):
    """Wake-up asking a worker to perform the next step of a journey."""

    message_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    journey_id: str
    journey_type: str
    idempotency_key: Optional[str] = None
    run_at: Optional[datetime] = None
    enqueued_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def for_journey(cls, journey: "Journey", run_at: Optional[datetime] = None) -> "PerformStepTask":
        return cls(
            journey_id=journey.id,
            journey_type=journey.journey_type,
            idempotency_key=journey.idempotency_key,
            run_at=run_at,
        )

    def to_json(self) -> str:
        """Serialize message to JSON."""
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str | bytes) -> "PerformStepTask":
        """Deserialize message from JSON."""
        return cls.model_validate_json(data)
