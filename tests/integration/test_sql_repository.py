"""Journeys persisted through SQLAlchemy on SQLite."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from stepwise import EngineContext, HeroRef, JourneyNotFound, JourneyUniquenessViolation
from stepwise.persistence import JourneyRecord, JourneyState, SQLJourneyRepository
from stepwise.testing import perform_enqueued_tasks

NOW = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def sql_repository(tmp_path):
    repo = SQLJourneyRepository(f"sqlite+aiosqlite:///{tmp_path / 'journeys.db'}")
    await repo.init_db()
    yield repo
    await repo.dispose()


def _record(**overrides) -> JourneyRecord:
    values = dict(
        journey_type="tests.Journey",
        next_step_name="a",
        next_step_to_be_performed_at=NOW,
        idempotency_key="key",
        created_at=NOW,
        updated_at=NOW,
    )
    values.update(overrides)
    return JourneyRecord(**values)


@pytest.mark.asyncio
async def test_insert_get_update_round_trip(sql_repository):
    record = _record(hero_type="User", hero_id="1", data={"nested": {"x": [1, 2]}})
    await sql_repository.insert(record)

    loaded = await sql_repository.get(record.id)
    assert loaded == record
    assert loaded.next_step_to_be_performed_at.tzinfo is not None
    assert loaded.hero == HeroRef(type="User", id="1")

    loaded.state = JourneyState.PAUSED
    loaded.data["visits"] = 3
    await sql_repository.update(loaded)
    assert await sql_repository.get(record.id) == loaded

    assert await sql_repository.get("missing") is None
    with pytest.raises(JourneyNotFound):
        await sql_repository.update(_record())


@pytest.mark.asyncio
async def test_lock_writes_changes_back(sql_repository):
    record = _record()
    await sql_repository.insert(record)

    async with sql_repository.lock(record.id) as row:
        row.state = JourneyState.PERFORMING
        row.steps_entered = 1
    stored = await sql_repository.get(record.id)
    assert stored.state is JourneyState.PERFORMING
    assert stored.steps_entered == 1

    with pytest.raises(RuntimeError):
        async with sql_repository.lock(record.id) as row:
            row.state = JourneyState.CANCELED
            raise RuntimeError("abort")
    assert (await sql_repository.get(record.id)).state is JourneyState.PERFORMING

    with pytest.raises(JourneyNotFound):
        async with sql_repository.lock("missing"):
            pass


@pytest.mark.asyncio
async def test_uniqueness_index(sql_repository):
    await sql_repository.insert(_record(hero_type="User", hero_id="1"))

    with pytest.raises(JourneyUniquenessViolation):
        await sql_repository.insert(_record(hero_type="User", hero_id="1"))

    await sql_repository.insert(_record(hero_type="User", hero_id="1", allow_multiple=True))
    await sql_repository.insert(_record(hero_type="User", hero_id="1", state=JourneyState.FINISHED))
    await sql_repository.insert(_record(journey_type="tests.Other", hero_type="User", hero_id="1"))
    await sql_repository.insert(_record())
    await sql_repository.insert(_record())

    assert len(await sql_repository.list_journeys(hero=HeroRef(type="User", id="1"))) == 4


@pytest.mark.asyncio
async def test_scans(sql_repository):
    due = _record(next_step_to_be_performed_at=NOW + timedelta(seconds=10))
    later = _record(next_step_to_be_performed_at=NOW + timedelta(hours=1))
    paused = _record(state=JourneyState.PAUSED)
    stuck = _record(state=JourneyState.PERFORMING, updated_at=NOW - timedelta(days=3))
    old = _record(state=JourneyState.FINISHED, updated_at=NOW - timedelta(days=40))
    recent = _record(state=JourneyState.CANCELED, updated_at=NOW)
    for record in (due, later, paused, stuck, old, recent):
        await sql_repository.insert(record)

    ready = await sql_repository.find_ready_due_before(NOW + timedelta(minutes=1))
    assert [r.id for r in ready] == [due.id]

    stuck_found = await sql_repository.find_stuck(NOW - timedelta(days=2))
    assert [r.id for r in stuck_found] == [stuck.id]

    assert await sql_repository.delete_completed(NOW - timedelta(days=30)) == 1
    assert await sql_repository.get(old.id) is None
    assert await sql_repository.get(recent.id) is not None

    paused_found = await sql_repository.list_journeys(state=JourneyState.PAUSED)
    assert [r.id for r in paused_found] == [paused.id]


@pytest.mark.asyncio
async def test_journey_runs_on_sql_repository(sql_repository, transport, clock, make_journey, side_effects):
    context = EngineContext(repository=sql_repository, transport=transport, clock=clock)

    async def count(journey):
        side_effects.append(journey.next_step_name)
        journey.data["count"] = journey.data.get("count", 0) + 1
        await journey.save()

    def configure(flow):
        flow.step("a", body=count)
        flow.step("b", wait=60, body=count)

    journey_class = make_journey(configure)
    journey = await journey_class.create(context, hero=("User", "9"))
    with pytest.raises(JourneyUniquenessViolation):
        await journey_class.create(context, hero=("User", "9"))

    await perform_enqueued_tasks(context)
    clock.advance(seconds=60)
    await perform_enqueued_tasks(context)
    await journey.reload()

    assert side_effects == ["a", "b"]
    assert journey.is_finished
    assert journey.data == {"count": 2}
    assert journey.steps_completed == 2


@pytest.mark.asyncio
async def test_concurrent_wake_ups_perform_the_step_once(
    sql_repository, transport, clock, make_journey, side_effects
):
    context = EngineContext(repository=sql_repository, transport=transport, clock=clock)

    async def record_step(journey):
        side_effects.append(journey.next_step_name)

    def configure(flow):
        flow.step("a", body=record_step)
        flow.step("b", wait=60, body=record_step)

    journey = await make_journey(configure).create(context)
    copies = [await context.find(journey.id) for _ in range(5)]

    await asyncio.gather(
        *(copy.perform_next_step(idempotency_key=journey.idempotency_key) for copy in copies)
    )
    await journey.reload()

    assert side_effects == ["a"]
    assert journey.steps_entered == 1
    assert journey.steps_completed == 1
    assert journey.next_step_name == "b"
