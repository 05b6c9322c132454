"""Worker performing journey steps as wake-ups arrive from the transport."""

from __future__ import annotations

import logging
from typing import Optional

from .context import EngineContext
from .contracts import PERFORM_STEP_TOPIC, PerformStepTask
from .errors import JourneyNotFound, UnknownJourneyType

logger = logging.getLogger(__name__)


class StepWorker:
    """Performs journey steps by listening to transport messages."""

    def __init__(self, context: EngineContext, topic: str = PERFORM_STEP_TOPIC) -> None:
        self._context = context
        self._topic = topic
        self.handled_count = 0

    async def start(self, lifespan: Optional[float] = None) -> None:
        """Start listening for wake-ups on the worker's topic."""
        logger.info(f"Worker listening on {self._topic}")
        transport = self._context.transport
        async for raw_message, task in transport.subscribe(self._topic, lifespan=lifespan):
            try:
                await self.handle(task)
            finally:
                await transport.ack(raw_message)

    async def handle(self, task: PerformStepTask) -> None:
        """Perform the task, logging any exception the step raised."""
        self.handled_count += 1
        try:
            await self.perform(task)
        except Exception:
            logger.exception(
                f"Step of journey {task.journey_id} ({task.journey_type}) raised"
            )

    async def perform(self, task: PerformStepTask) -> None:
        """Perform the task. Exceptions raised by the step propagate."""
        try:
            journey = await self._context.find(task.journey_id)
        except JourneyNotFound:
            # Deleted by housekeeping or elsewhere since the task was enqueued
            logger.info(f"Dropping task for missing journey {task.journey_id}")
            return
        except UnknownJourneyType:
            logger.error(
                f"Dropping task for journey {task.journey_id}: type {task.journey_type} is not registered"
            )
            return
        await journey.perform_next_step(idempotency_key=task.idempotency_key)
