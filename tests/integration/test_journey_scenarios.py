"""End-to-end journeys driven through the transport by a worker."""

from datetime import timedelta

import pytest

from stepwise import Journey
from stepwise.contracts import PERFORM_STEP_TOPIC
from stepwise.testing import perform_enqueued_tasks


@pytest.mark.asyncio
async def test_three_step_journey_with_waits(context, transport, clock, side_effects):
    class Onboarding(Journey):
        @classmethod
        def configure(cls, flow):
            flow.step("welcome", wait=timedelta(hours=10))
            flow.step("tips", wait=timedelta(minutes=5))
            flow.step("survey")

        def welcome(self):
            side_effects.append("welcome")

        def tips(self):
            side_effects.append("tips")

        def survey(self):
            side_effects.append("survey")

    start = clock()
    journey = await Onboarding.create(context, hero=("User", "42"))
    pending = transport.pending(PERFORM_STEP_TOPIC)
    assert [task.run_at for task in pending] == [start + timedelta(hours=10)]

    clock.travel_to(start + timedelta(hours=10))
    assert await perform_enqueued_tasks(context) == 1
    assert side_effects == ["welcome"]
    await journey.reload()
    assert journey.next_step_name == "tips"
    assert journey.next_step_to_be_performed_at == start + timedelta(hours=10, minutes=5)

    clock.travel_to(start + timedelta(hours=10, minutes=4))
    assert await perform_enqueued_tasks(context) == 0
    await journey.perform_next_step(idempotency_key=journey.idempotency_key)
    assert side_effects == ["welcome"]
    assert journey.is_ready

    clock.travel_to(start + timedelta(hours=10, minutes=5, seconds=1))
    await perform_enqueued_tasks(context)
    await journey.reload()
    assert side_effects == ["welcome", "tips", "survey"]
    assert journey.is_finished
    assert journey.steps_entered == journey.steps_completed == 3


@pytest.mark.asyncio
async def test_keys_differ_after_every_scheduling_transition(make_journey, context, clock):
    seen = []

    async def reattempt_once(journey):
        if journey.steps_entered == 1:
            await journey.reattempt(wait=timedelta(minutes=5))

    def configure(flow):
        flow.step("a", body=reattempt_once)
        flow.step("b", body=lambda j: None)
        flow.step("c", body=lambda j: None)
        flow.step("d", body=lambda j: None)

    journey = await make_journey(configure).create(context)
    seen.append(journey.idempotency_key)

    await journey.perform_next_step()  # reattempt
    seen.append(journey.idempotency_key)
    assert journey.next_step_to_be_performed_at == clock() + timedelta(minutes=5)

    clock.advance(minutes=5)
    await journey.perform_next_step()  # advance to b
    seen.append(journey.idempotency_key)

    await journey.skip()  # skip b, c is next
    seen.append(journey.idempotency_key)

    await journey.pause()
    await journey.resume()
    seen.append(journey.idempotency_key)

    assert journey.next_step_name == "c"
    assert all(a != b for a, b in zip(seen, seen[1:]))


@pytest.mark.asyncio
async def test_terminal_journeys_ignore_wake_ups(make_journey, context, side_effects):
    journey_class = make_journey(lambda flow: flow.step("a", body=lambda j: side_effects.append("a")))
    canceled = await journey_class.create(context)
    await canceled.cancel()
    finished = await journey_class.create(context)
    await finished.perform_next_step()

    for journey in (canceled, finished):
        updated_at = journey.updated_at
        await journey.perform_next_step()
        await journey.perform_next_step(idempotency_key=journey.idempotency_key)
        assert journey.updated_at == updated_at

    assert side_effects == ["a"]
    assert canceled.is_canceled
    assert finished.is_finished
