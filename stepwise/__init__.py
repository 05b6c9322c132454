"""Stepwise: durable multi-step journeys driven by a task queue."""

from .conditional import Conditional
from .config import StepwiseConfig, load_config
from .context import EngineContext
from .definition import FlowBuilder, JourneyDefinition
from .errors import (
    InvalidJourneyState,
    JourneyNotFound,
    JourneyNotPersisted,
    JourneyUniquenessViolation,
    MissingStepImplementation,
    StepConfigurationError,
    StepwiseError,
    UnknownJourneyType,
)
from .housekeeping import delete_completed_journeys, recover_stuck_journeys, run_housekeeping
from .journey import Journey
from .persistence import HeroRef, JourneyState, get_repository
from .recovery import RecoveryPolicy
from .scheduler import CyclicScheduler, ForwardScheduler, Scheduler
from .step import ExceptionPolicy, StepDefinition
from .transports import get_transport
from .worker import StepWorker

__version__ = "0.1.0"
__all__ = [
    "Conditional",
    "CyclicScheduler",
    "EngineContext",
    "ExceptionPolicy",
    "FlowBuilder",
    "ForwardScheduler",
    "HeroRef",
    "InvalidJourneyState",
    "Journey",
    "JourneyDefinition",
    "JourneyNotFound",
    "JourneyNotPersisted",
    "JourneyState",
    "JourneyUniquenessViolation",
    "MissingStepImplementation",
    "RecoveryPolicy",
    "Scheduler",
    "StepConfigurationError",
    "StepDefinition",
    "StepWorker",
    "StepwiseConfig",
    "StepwiseError",
    "UnknownJourneyType",
    "delete_completed_journeys",
    "get_repository",
    "get_transport",
    "load_config",
    "recover_stuck_journeys",
    "run_housekeeping",
]
