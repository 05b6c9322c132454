import asyncio

import pytest
from typer.testing import CliRunner

import stepwise.persistence as persistence
from stepwise import EngineContext, Journey
from stepwise.cli import app
from stepwise.persistence import InMemoryJourneyRepository, JourneyState
from stepwise.transports import InMemoryTransport


class CliJourney(Journey):
    @classmethod
    def configure(cls, flow):
        flow.step("first", body=lambda j: None)
        flow.step("second", wait=3600, body=lambda j: None)


@pytest.fixture(autouse=True)
def _environment(tmp_path, monkeypatch):
    monkeypatch.setenv("STEPWISE_CONFIG", str(tmp_path / "missing.yaml"))
    monkeypatch.delenv("STEPWISE_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("STEPWISE_TRANSPORT", raising=False)


def _setup_repo(monkeypatch) -> InMemoryJourneyRepository:
    repo = InMemoryJourneyRepository()
    monkeypatch.setattr(persistence, "_repository_instance", repo)
    return repo


def _create(repo, **kwargs) -> Journey:
    context = EngineContext(repository=repo, transport=InMemoryTransport())
    return asyncio.run(CliJourney.create(context, **kwargs))


def test_journey_list_shows_journeys(monkeypatch):
    repo = _setup_repo(monkeypatch)
    first = _create(repo, hero=("User", "1"))
    second = _create(repo, hero=("User", "2"))

    runner = CliRunner()
    result = runner.invoke(app, ["journey", "list"])
    assert result.exit_code == 0, result.stdout
    assert first.id in result.stdout
    assert second.id in result.stdout
    assert "ready" in result.stdout

    result = runner.invoke(app, ["journey", "list", "--hero-type", "User", "--hero-id", "2"])
    assert second.id in result.stdout
    assert first.id not in result.stdout

    result = runner.invoke(app, ["journey", "list", "--state", "paused"])
    assert "No journeys found" in result.stdout


def test_journey_show_and_missing(monkeypatch):
    repo = _setup_repo(monkeypatch)
    journey = _create(repo, hero=("User", "1"))

    runner = CliRunner()
    result = runner.invoke(app, ["journey", "show", journey.id])
    assert result.exit_code == 0, result.stdout
    assert journey.id in result.stdout
    assert "Next step: first" in result.stdout
    assert "Hero: User:1" in result.stdout

    result_missing = runner.invoke(app, ["journey", "show", "missing-id"])
    assert result_missing.exit_code == 1
    assert "Journey not found" in result_missing.stdout


def test_journey_flow_control_commands(monkeypatch):
    repo = _setup_repo(monkeypatch)
    journey = _create(repo)
    runner = CliRunner()

    result = runner.invoke(app, ["journey", "pause", journey.id])
    assert result.exit_code == 0, result.stdout
    assert "now paused" in result.stdout

    result = runner.invoke(app, ["journey", "resume", journey.id])
    assert result.exit_code == 0, result.stdout
    assert "now ready" in result.stdout

    result = runner.invoke(app, ["journey", "skip", journey.id])
    assert result.exit_code == 0, result.stdout
    record = asyncio.run(repo.get(journey.id))
    assert record.next_step_name == "second"

    result = runner.invoke(app, ["journey", "cancel", journey.id])
    assert result.exit_code == 0, result.stdout
    assert asyncio.run(repo.get(journey.id)).state is JourneyState.CANCELED

    result = runner.invoke(app, ["journey", "cancel", journey.id])
    assert result.exit_code == 1
    assert "already canceled" in result.stdout

    result = runner.invoke(app, ["journey", "pause", "missing-id"])
    assert result.exit_code == 1
    assert "Journey not found" in result.stdout


def test_housekeeping_command(monkeypatch):
    _setup_repo(monkeypatch)
    result = CliRunner().invoke(app, ["housekeeping"])
    assert result.exit_code == 0, result.stdout
    assert "Recovered 0 stuck journeys, deleted 0 completed journeys" in result.stdout


def test_scheduler_cycle_requires_cyclic_scheduler(monkeypatch, tmp_path):
    _setup_repo(monkeypatch)
    runner = CliRunner()

    result = runner.invoke(app, ["scheduler", "cycle"])
    assert result.exit_code == 1

    config_path = tmp_path / "cyclic.yaml"
    config_path.write_text("scheduler:\n  kind: cyclic\n  cycle_duration_seconds: 60\n")
    result = runner.invoke(app, ["--config", str(config_path), "scheduler", "cycle"])
    assert result.exit_code == 0, result.stdout
    assert "Enqueued 0 journeys" in result.stdout
