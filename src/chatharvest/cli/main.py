"""chatharvest CLI - Main entry point.

Provides commands for running a harvest against a live browser and for
inspecting, repairing and exporting the persisted run.

Exit codes:
    0: Success
    1: Run failed or is not admissible
    2: Configuration error
    3: Runtime error
"""

import asyncio
import sys
from pathlib import Path
from typing import NoReturn

import click
from playwright.async_api import Error as PlaywrightError

from ..capture import export_json, export_markdown, repair_records, verify_report
from ..config import HarvestSettings, get_settings
from ..exceptions import HarvestException
from ..fsm import TickDriver
from ..logging import log_file_for_today, mark_logging_configured, setup_logging
from ..model import Phase, RunState
from ..persistence import JsonSerializer
from ..runtime import HarvestStorage, build_machine
from ..web import browser_page, watch_routes
from .formatters import format_json, format_repair_plan, format_status

# Exit codes
EXIT_SUCCESS = 0
EXIT_EXECUTION_FAILED = 1
EXIT_CONFIG_ERROR = 2
EXIT_RUNTIME_ERROR = 3


def _settings(ctx: click.Context) -> HarvestSettings:
    return ctx.obj["settings"]


def _storage(ctx: click.Context) -> HarvestStorage:
    return HarvestStorage.open(_settings(ctx).data_path)


def _unreadable(e: HarvestException) -> NoReturn:
    click.echo(f"Error: {e}", err=True)
    sys.exit(EXIT_CONFIG_ERROR)


def _load_state(storage: HarvestStorage) -> RunState | None:
    try:
        return storage.store.load()
    except HarvestException as e:
        _unreadable(e)


@click.group()
@click.version_option(prog_name="chatharvest")
@click.option("--data-path", type=click.Path(path_type=Path), help="Run state and ledger directory")
@click.option("--output-path", type=click.Path(path_type=Path), help="Artifact directory")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.option("--log-file", is_flag=True, help="Also write logs to the daily log file")
@click.pass_context
def main(
    ctx: click.Context,
    data_path: Path | None,
    output_path: Path | None,
    verbose: bool,
    log_file: bool,
) -> None:
    """chatharvest - resumable harvesting of virtualized conversation lists."""
    ctx.ensure_object(dict)

    settings = get_settings()
    updates: dict[str, Path] = {}
    if data_path:
        updates["data_path"] = data_path
    if output_path:
        updates["output_path"] = output_path
    if updates:
        settings = settings.model_copy(update=updates)

    level = "DEBUG" if verbose or settings.debug_mode else settings.log_level
    setup_logging(
        level=level,
        log_file=log_file_for_today(settings.log_path) if log_file else None,
        structured=False,
    )
    mark_logging_configured()

    ctx.obj["settings"] = settings
    ctx.obj["verbose"] = verbose


async def _run(
    settings: HarvestSettings,
    anchor_url: str | None,
    storage_state: Path | None,
    headless: bool,
    resume: bool,
) -> RunState | None:
    storage = HarvestStorage.open(settings.data_path)

    async with browser_page(headless=headless, storage_state=storage_state) as page:
        machine = build_machine(page, settings, storage)
        driver = TickDriver.from_settings(machine, settings)
        unwatch = watch_routes(page, driver)
        try:
            if resume:
                await machine.resume()
            else:
                await machine.start(anchor_url)
            return await driver.run_until_settled()
        finally:
            unwatch()


@main.command()
@click.argument("anchor_url", required=False)
@click.option(
    "--storage-state",
    type=click.Path(exists=True, path_type=Path),
    help="Playwright storage state with a logged-in session",
)
@click.option("--headless", is_flag=True, help="Run the browser without a window")
@click.option("--resume", is_flag=True, help="Continue the persisted run instead of starting over")
@click.pass_context
def run(
    ctx: click.Context,
    anchor_url: str | None,
    storage_state: Path | None,
    headless: bool,
    resume: bool,
) -> None:
    """Harvest every item listed at ANCHOR_URL.

    ANCHOR_URL: The list view to enumerate (not needed with --resume)
    """
    settings = _settings(ctx)

    if resume:
        state = _load_state(_storage(ctx))
        if state is None or not state.is_active:
            click.echo("Error: No active run to resume", err=True)
            sys.exit(EXIT_CONFIG_ERROR)
    elif not anchor_url:
        click.echo("Error: ANCHOR_URL is required unless --resume is given", err=True)
        sys.exit(EXIT_CONFIG_ERROR)

    try:
        state = asyncio.run(_run(settings, anchor_url, storage_state, headless, resume))
    except (HarvestException, PlaywrightError) as e:
        click.echo(f"Runtime error: {e}", err=True)
        if ctx.obj.get("verbose"):
            import traceback

            traceback.print_exc()
        sys.exit(EXIT_RUNTIME_ERROR)

    if state is None:
        click.echo("Error: Run state disappeared", err=True)
        sys.exit(EXIT_RUNTIME_ERROR)

    click.echo(format_status(_storage(ctx).control.status()))

    if state.phase is Phase.DONE:
        sys.exit(EXIT_SUCCESS)
    if state.stop_requested:
        click.echo("Run stopped; continue with: chatharvest run --resume")
        sys.exit(EXIT_SUCCESS)
    sys.exit(EXIT_EXECUTION_FAILED)


@main.command()
@click.option("--json", "as_json", is_flag=True, help="Print machine-readable JSON")
@click.pass_context
def status(ctx: click.Context, as_json: bool) -> None:
    """Show the persisted run."""
    try:
        summary = _storage(ctx).control.status()
    except HarvestException as e:
        _unreadable(e)
    click.echo(format_json(summary) if as_json else format_status(summary))


@main.command()
@click.pass_context
def stop(ctx: click.Context) -> None:
    """Ask the running harvest to stop after its current step."""
    try:
        requested = _storage(ctx).control.request_stop()
    except HarvestException as e:
        _unreadable(e)
    click.echo("Stop requested." if requested else "No active run to stop.")


@main.command()
@click.pass_context
def verify(ctx: click.Context) -> None:
    """Report whether the run is complete and its records are valid."""
    report = verify_report(_load_state(_storage(ctx)))
    click.echo(format_json(report))
    sys.exit(EXIT_SUCCESS if report["admissible"] else EXIT_EXECUTION_FAILED)


@main.command()
@click.option("--apply", is_flag=True, help="Remove invalid records (default: preview only)")
@click.pass_context
def repair(ctx: click.Context, apply: bool) -> None:
    """Preview or apply removal of invalid records."""
    storage = _storage(ctx)
    try:
        plan = repair_records(storage.store, storage.ledger, dry_run=not apply, index=storage.index)
    except HarvestException as e:
        _unreadable(e)
    click.echo(format_repair_plan(plan.to_dict()))


@main.command()
@click.option("--output", "-o", type=click.Path(path_type=Path), help="Write to a file instead of stdout")
@click.option("--all-runs", is_flag=True, help="Include events of earlier runs")
@click.pass_context
def ledger(ctx: click.Context, output: Path | None, all_runs: bool) -> None:
    """Dump ledger events as JSON."""
    storage = _storage(ctx)
    state = _load_state(storage)
    run_id = None if all_runs or state is None else state.run_id
    events = [event.model_dump(mode="json") for event in storage.ledger.events(run_id=run_id)]

    if output:
        output.parent.mkdir(parents=True, exist_ok=True)
        JsonSerializer().serialize(events, output)
        click.echo(f"Ledger written to: {output} ({len(events)} events)")
    else:
        click.echo(format_json(events))


@main.command()
@click.option(
    "--format",
    "export_format",
    type=click.Choice(["json", "markdown"]),
    default="json",
    help="Export format",
)
@click.option("--output", "-o", type=click.Path(path_type=Path), help="Output file")
@click.pass_context
def export(ctx: click.Context, export_format: str, output: Path | None) -> None:
    """Export the whole run as one JSON or Markdown file."""
    settings = _settings(ctx)
    storage = _storage(ctx)
    state = _load_state(storage)
    if state is None:
        click.echo("Error: No run to export", err=True)
        sys.exit(EXIT_CONFIG_ERROR)

    suffix = ".json" if export_format == "json" else ".md"
    output = output or settings.output_path / f"{state.run_id}__export{suffix}"
    output.parent.mkdir(parents=True, exist_ok=True)

    if export_format == "json":
        payload = export_json(state, storage.ledger, min_turns_warn=settings.min_turns_warn)
        JsonSerializer().serialize(payload, output)
    else:
        output.write_text(export_markdown(state), encoding="utf-8")

    click.echo(f"Export written to: {output}")


@main.command()
@click.confirmation_option(prompt="Discard the persisted run state?")
@click.pass_context
def clear(ctx: click.Context) -> None:
    """Discard the persisted run state and record index (the ledger is kept)."""
    storage = _storage(ctx)
    cleared = storage.store.clear()
    storage.index.clear()
    click.echo("Run state cleared." if cleared else "No run state to clear.")


if __name__ == "__main__":
    main()
