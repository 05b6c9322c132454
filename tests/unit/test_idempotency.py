"""Tests guarding against duplicate, stale and concurrent wake-ups."""

import asyncio

import pytest

from stepwise.testing import perform_enqueued_tasks


def _two_steps(side_effects):
    def configure(flow):
        flow.step("a", body=lambda j: side_effects.append("a"))
        flow.step("b", body=lambda j: side_effects.append("b"))

    return configure


@pytest.mark.asyncio
async def test_wrong_idempotency_key_is_ignored(make_journey, context, side_effects):
    journey = await make_journey(_two_steps(side_effects)).create(context)

    await journey.perform_next_step(idempotency_key="not-the-key")

    assert side_effects == []
    assert journey.is_ready
    assert journey.steps_entered == 0


@pytest.mark.asyncio
async def test_key_rotates_and_old_key_is_rejected(make_journey, context, side_effects):
    journey = await make_journey(_two_steps(side_effects)).create(context)
    first_key = journey.idempotency_key

    await journey.perform_next_step(idempotency_key=first_key)
    assert journey.next_step_name == "b"
    assert journey.idempotency_key != first_key

    await journey.perform_next_step(idempotency_key=first_key)
    assert side_effects == ["a"]
    assert journey.next_step_name == "b"


@pytest.mark.asyncio
async def test_stale_instance_does_not_repeat_a_step(make_journey, context, side_effects):
    journey = await make_journey(_two_steps(side_effects)).create(context)
    stale = await context.find(journey.id)

    await journey.perform_next_step()
    await stale.perform_next_step()

    assert side_effects == ["a"]
    assert stale.next_step_name == "b"


@pytest.mark.asyncio
async def test_duplicate_tasks_perform_the_step_once(make_journey, context, side_effects):
    journey = await make_journey(_two_steps(side_effects)).create(context)
    await journey.schedule()
    await journey.schedule()

    await perform_enqueued_tasks(context)
    await journey.reload()

    assert side_effects == ["a", "b"]
    assert journey.is_finished
    assert journey.steps_entered == 2


@pytest.mark.asyncio
async def test_concurrent_wake_ups_perform_the_step_once(make_journey, context, side_effects):
    async def slow_step(journey):
        await asyncio.sleep(0.01)
        side_effects.append("a")

    def configure(flow):
        flow.step("a", body=slow_step)
        flow.step("b", wait=3600, body=lambda j: side_effects.append("b"))

    journey = await make_journey(configure).create(context)
    key = journey.idempotency_key
    copies = [await context.find(journey.id) for _ in range(5)]

    await asyncio.gather(*(copy.perform_next_step(idempotency_key=key) for copy in copies))
    await journey.reload()

    assert side_effects == ["a"]
    assert journey.steps_entered == 1
    assert journey.next_step_name == "b"
