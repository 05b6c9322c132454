import uuid

import pytest

from stepwise import EngineContext, Journey
from stepwise.persistence import InMemoryJourneyRepository
from stepwise.testing import FakeClock
from stepwise.transports import InMemoryTransport


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def transport(clock):
    return InMemoryTransport(clock=clock)


@pytest.fixture
def repository():
    return InMemoryJourneyRepository()


@pytest.fixture
def context(repository, transport, clock):
    return EngineContext(repository=repository, transport=transport, clock=clock)


@pytest.fixture
def side_effects():
    """Names of things journeys did, in order."""
    return []


@pytest.fixture
def make_journey():
    """Create a Journey subclass whose ``configure`` calls ``configure_flow``.

    Extra keyword arguments become class attributes (step methods included).
    Every class gets a unique ``journey_type``.
    """

    def factory(configure_flow=None, base=Journey, name="TestJourney", **namespace):
        if configure_flow is not None:
            namespace["configure"] = classmethod(lambda cls, flow: configure_flow(flow))
        namespace.setdefault("journey_type", f"tests.{name}.{uuid.uuid4().hex[:8]}")
        return type(name, (base,), namespace)

    return factory
