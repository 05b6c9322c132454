"""Command line interface for running stepwise workers and maintenance jobs."""

from __future__ import annotations

import asyncio
import importlib
import logging
import os
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable, List, Optional

import typer

from .config import StepwiseConfig, load_config
from .context import EngineContext
from .errors import InvalidJourneyState, JourneyNotFound, UnknownJourneyType
from .housekeeping import run_housekeeping
from .persistence import HeroRef, JourneyState
from .scheduler import CyclicScheduler
from .worker import StepWorker

app = typer.Typer(help="CLI for stepwise journeys")

# Command groups
worker_app = typer.Typer(help="Commands for running workers")
scheduler_app = typer.Typer(help="Commands for the cyclic scheduler")
journey_app = typer.Typer(help="Commands for inspecting and steering journeys")

app.add_typer(worker_app, name="worker")
app.add_typer(scheduler_app, name="scheduler")
app.add_typer(journey_app, name="journey")


def _import_modules(modules: List[str]) -> None:
    if os.getcwd() not in sys.path:
        sys.path.insert(0, os.getcwd())
    for module in modules:
        importlib.import_module(module)


def _context(ctx: typer.Context) -> EngineContext:
    config: StepwiseConfig = ctx.obj["config"]
    return EngineContext.from_config(config)


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to a YAML config file"),
    module: List[str] = typer.Option(
        [], "--module", "-m", help="Module declaring journey types (repeatable)"
    ),
) -> None:
    """Stepwise CLI entry point."""
    loaded = load_config(str(config) if config else None)
    logging.basicConfig(
        level=loaded.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    _import_modules(module)
    ctx.obj = {"config": loaded}


@worker_app.command("run")
def worker_run(
    ctx: typer.Context,
    lifespan: Optional[float] = typer.Option(None, help="Stop after this many seconds"),
) -> None:
    """
    Run a worker performing journey steps.

    The worker listens on the configured transport and performs the next
    step of each journey a wake-up arrives for.

    Example:
        stepwise -m myapp.journeys worker run
        stepwise -m myapp.journeys worker run --lifespan 300
    """
    worker = StepWorker(_context(ctx))
    typer.echo("Starting worker")
    asyncio.run(worker.start(lifespan=lifespan))


@scheduler_app.command("cycle")
def scheduler_cycle(ctx: typer.Context) -> None:
    """
    Enqueue all journeys due before the next scheduling cycle.

    Requires ``scheduler.kind: cyclic``. Run it from cron every
    ``cycle_duration_seconds``.
    """
    context = _context(ctx)
    if not isinstance(context.scheduler, CyclicScheduler):
        typer.secho("Configured scheduler is not cyclic", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    count = asyncio.run(context.scheduler.run_scheduling_cycle(context))
    typer.echo(f"Enqueued {count} journeys")


@app.command("housekeeping")
def housekeeping(ctx: typer.Context) -> None:
    """Recover stuck journeys and delete completed ones."""
    recovered, deleted = asyncio.run(run_housekeeping(_context(ctx)))
    typer.echo(f"Recovered {recovered} stuck journeys, deleted {deleted} completed journeys")


@journey_app.command("list")
def journey_list(
    ctx: typer.Context,
    journey_type: Optional[str] = typer.Option(None, "--type", help="Filter by journey type"),
    state: Optional[JourneyState] = typer.Option(None, help="Filter by state"),
    hero_type: Optional[str] = typer.Option(None, help="Filter by hero type (with --hero-id)"),
    hero_id: Optional[str] = typer.Option(None, help="Filter by hero id (with --hero-type)"),
) -> None:
    """
    List journeys with their state and next step.

    Example:
        stepwise journey list --state paused
        # Output: 4f1c...    myapp.journeys.Onboarding    paused    send_reminder
    """
    hero = HeroRef(type=hero_type, id=hero_id) if hero_type and hero_id else None
    repo = _context(ctx).repository
    records = asyncio.run(repo.list_journeys(journey_type=journey_type, hero=hero, state=state))
    if not records:
        typer.echo("No journeys found")
        return
    for record in records:
        typer.echo(
            f"{record.id}\t{record.journey_type}\t{record.state.value}\t{record.next_step_name or '-'}"
        )


@journey_app.command("show")
def journey_show(ctx: typer.Context, journey_id: str) -> None:
    """Show all attributes of a journey."""
    record = asyncio.run(_context(ctx).repository.get(journey_id))
    if record is None:
        typer.echo("Journey not found")
        raise typer.Exit(code=1)
    typer.echo(f"Journey: {record.id}")
    typer.echo(f"Type: {record.journey_type}")
    typer.echo(f"State: {record.state.value}")
    if record.hero is not None:
        typer.echo(f"Hero: {record.hero.type}:{record.hero.id}")
    typer.echo(f"Previous step: {record.previous_step_name or '-'}")
    typer.echo(f"Next step: {record.next_step_name or '-'}")
    due = record.next_step_to_be_performed_at
    typer.echo(f"Due at: {due.isoformat() if due else '-'}")
    typer.echo(f"Steps entered/completed: {record.steps_entered}/{record.steps_completed}")
    typer.echo(f"Updated at: {record.updated_at.isoformat() if record.updated_at else '-'}")
    if record.data:
        typer.echo(f"Data: {record.data}")


def _steer(
    ctx: typer.Context, journey_id: str, operation: Callable[[Any], Awaitable[None]]
) -> None:
    context = _context(ctx)

    async def _run() -> str:
        journey = await context.find(journey_id)
        await operation(journey)
        return journey.state.value

    try:
        state = asyncio.run(_run())
    except JourneyNotFound:
        typer.echo("Journey not found")
        raise typer.Exit(code=1)
    except (InvalidJourneyState, UnknownJourneyType) as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(f"Journey {journey_id} is now {state}")


@journey_app.command("pause")
def journey_pause(ctx: typer.Context, journey_id: str) -> None:
    """Pause a journey. Its wake-ups are ignored until it is resumed."""
    _steer(ctx, journey_id, lambda journey: journey.pause())


@journey_app.command("resume")
def journey_resume(ctx: typer.Context, journey_id: str) -> None:
    """Resume a paused journey and schedule its next step."""
    _steer(ctx, journey_id, lambda journey: journey.resume())


@journey_app.command("cancel")
def journey_cancel(ctx: typer.Context, journey_id: str) -> None:
    """Cancel a journey."""
    _steer(ctx, journey_id, lambda journey: journey.cancel())


@journey_app.command("skip")
def journey_skip(ctx: typer.Context, journey_id: str) -> None:
    """Skip the scheduled step of a ready journey."""
    _steer(ctx, journey_id, lambda journey: journey.skip())


if __name__ == "__main__":
    app()
