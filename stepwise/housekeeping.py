"""Periodic maintenance: recovering stuck journeys and deleting completed ones.

Run these from a cron table (``stepwise housekeeping``) or any other timer.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Optional

from .context import EngineContext

logger = logging.getLogger(__name__)


async def recover_stuck_journeys(
    context: EngineContext, stuck_for: Optional[timedelta] = None
) -> int:
    """Call ``recover()`` on journeys ``performing`` for longer than ``stuck_for``.

    Args:
        context: Engine context to load journeys with.
        stuck_for: Defaults to ``context.stuck_after``.

    Returns:
        Number of journeys recovered.
    """
    since = context.clock() - (stuck_for or context.stuck_after)
    records = await context.repository.find_stuck(since)
    recovered = 0
    for record in records:
        try:
            await context.load(record).recover()
            recovered += 1
        except Exception:
            logger.exception(f"Failed to recover journey {record.id} ({record.journey_type})")
    if records:
        logger.info(f"Recovered {recovered} of {len(records)} stuck journeys")
    return recovered


async def delete_completed_journeys(
    context: EngineContext, completed_for: Optional[timedelta] = None
) -> int:
    """Delete canceled and finished journeys last updated before ``now - completed_for``.

    ``completed_for`` defaults to ``context.delete_completed_after``. Nothing
    gets deleted when both are None.
    """
    completed_for = completed_for or context.delete_completed_after
    if completed_for is None:
        logger.debug("Deletion of completed journeys is disabled")
        return 0
    deleted = await context.repository.delete_completed(context.clock() - completed_for)
    logger.info(f"Deleted {deleted} completed journeys")
    return deleted


async def run_housekeeping(context: EngineContext) -> tuple[int, int]:
    """Recover stuck journeys, then delete completed ones."""
    recovered = await recover_stuck_journeys(context)
    deleted = await delete_completed_journeys(context)
    return recovered, deleted
