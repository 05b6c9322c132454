"""Tests for the journey testing helpers."""

from datetime import timedelta

import pytest

from stepwise.testing import (
    FakeClock,
    immediately_perform_single_step,
    perform_enqueued_tasks,
    speedrun_journey,
)


def test_fake_clock_moves_only_when_told():
    clock = FakeClock()
    start = clock()
    assert clock() == start
    assert clock.advance(minutes=5) == start + timedelta(minutes=5)
    assert clock.advance(timedelta(hours=1)) == start + timedelta(minutes=65)
    assert clock.travel_to(start) == start


def _three_steps(side_effects):
    def configure(flow):
        flow.step("a", wait=timedelta(days=1), body=lambda j: side_effects.append("a"))
        flow.step("b", wait=timedelta(days=7), body=lambda j: side_effects.append("b"))
        flow.step("c", wait=timedelta(days=30), body=lambda j: side_effects.append("c"))

    return configure


@pytest.mark.asyncio
async def test_speedrun_with_time_travel(make_journey, context, clock, side_effects):
    start = clock()
    journey = await make_journey(_three_steps(side_effects)).create(context)

    await speedrun_journey(journey, clock=clock)

    assert side_effects == ["a", "b", "c"]
    assert journey.is_finished
    assert clock() >= start + timedelta(days=38)


@pytest.mark.asyncio
async def test_speedrun_without_time_travel(make_journey, context, clock, side_effects):
    start = clock()
    journey = await make_journey(_three_steps(side_effects)).create(context)

    await speedrun_journey(journey)

    assert side_effects == ["a", "b", "c"]
    assert clock() == start


@pytest.mark.asyncio
async def test_speedrun_gives_up_on_journeys_that_never_end(make_journey, context, clock):
    journey_class = make_journey(lambda flow: flow.step("forever", body=lambda j: j.reattempt(wait=60)))
    journey = await journey_class.create(context)

    with pytest.raises(AssertionError):
        await speedrun_journey(journey, clock=clock, maximum_steps=3)
    with pytest.raises(ValueError):
        await speedrun_journey(journey, maximum_steps="a lot")


@pytest.mark.asyncio
async def test_immediately_perform_single_step(make_journey, context, side_effects):
    journey = await make_journey(_three_steps(side_effects)).create(context)

    await immediately_perform_single_step(journey, "b")

    assert side_effects == ["b"]
    assert journey.next_step_name == "c"


@pytest.mark.asyncio
async def test_perform_enqueued_tasks_needs_in_memory_transport(context):
    context.transport = object()
    with pytest.raises(TypeError):
        await perform_enqueued_tasks(context)
