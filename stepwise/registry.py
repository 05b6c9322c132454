"""Registry mapping stored ``journey_type`` values to Journey classes.

Journey subclasses register themselves when they are defined, so a worker
only needs to import the modules declaring them.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Dict, Type

from .errors import UnknownJourneyType

if TYPE_CHECKING:
    from .journey import Journey

logger = logging.getLogger(__name__)

_JOURNEY_TYPES: Dict[str, Type["Journey"]] = {}


def register_journey_type(journey_class: Type["Journey"]) -> None:
    """Add ``journey_class`` under its ``journey_type``, replacing any previous entry."""
    name = journey_class.journey_type
    previous = _JOURNEY_TYPES.get(name)
    if previous is not None and previous is not journey_class:
        logger.debug(f"Journey type {name} redefined")
    _JOURNEY_TYPES[name] = journey_class


def lookup_journey_type(name: str) -> Type["Journey"]:
    try:
        return _JOURNEY_TYPES[name]
    except KeyError:
        raise UnknownJourneyType(
            f"No journey class registered as {name!r}; import the module that defines it"
        ) from None


def registered_journey_types() -> Dict[str, Type["Journey"]]:
    return dict(_JOURNEY_TYPES)


__all__ = ["register_journey_type", "lookup_journey_type", "registered_journey_types"]
