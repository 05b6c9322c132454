"""Exceptions raised by stepwise."""

from __future__ import annotations


class StepwiseError(Exception):
    """Base class for all stepwise errors."""


class StepConfigurationError(StepwiseError, ValueError):
    """Raised when a journey type is declared with invalid steps or conditions."""


class JourneyNotPersisted(StepwiseError):
    """A step changed the journey but did not save it."""


class MissingStepImplementation(StepwiseError):
    """A step has neither an inline body nor a method with its name."""


class JourneyUniquenessViolation(StepwiseError):
    """Another active journey of the same type already exists for the hero."""


class InvalidJourneyState(StepwiseError):
    """A flow control operation is not permitted in the journey's current state."""


class JourneyNotFound(StepwiseError):
    """The journey row does not exist (it may have been deleted)."""


class UnknownJourneyType(StepwiseError):
    """No journey class is registered under the stored ``journey_type``."""
