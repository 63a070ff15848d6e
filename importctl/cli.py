"""CLI interface for importctl."""

import json
import logging
import sys
import time
from typing import Callable, List, Optional

import click

from .commands import handle_command
from .config import Settings, get_settings
from .engine import FetchTask, ThreadedFetchEngine
from .errors import InvalidRequest
from .models import JobStatus
from .scheduler import ImportScheduler

logger = logging.getLogger(__name__)

DATE_TYPE = click.DateTime(formats=["%Y-%m-%d"])


def _simulated_fetch(delay: float) -> Callable[[FetchTask], None]:
    """Fetch stand-in that only waits ``delay`` seconds per task."""
    def fetch(task: FetchTask) -> None:
        logger.debug("Fetching %s", task.name)
        time.sleep(delay)
    return fetch


def _run_jobs(settings: Settings, delay: float, watch: bool,
              submit: Callable[[ImportScheduler], None]) -> None:
    """Submit jobs to a fresh scheduler, wait for them and print the outcome."""
    engine = ThreadedFetchEngine(
        _simulated_fetch(delay),
        max_threads=settings.max_import_threads,
        max_connect_tries=settings.max_connect_tries,
    )
    scheduler = ImportScheduler(engine, settings)
    try:
        try:
            submit(scheduler)
        except InvalidRequest as e:
            click.echo(f"✗ Invalid request: {e}", err=True)
            sys.exit(1)

        try:
            while not scheduler.wait_until_idle(timeout=0.5):
                if watch:
                    executing = scheduler.get_status_snapshot().executing
                    if executing is not None:
                        click.echo(f"  {executing.request_type:<24} {executing.perc_completed or 0:>3}%")
        except KeyboardInterrupt:
            click.echo("\nCancelling imports...")
            scheduler.cancel_all()
            scheduler.wait_until_idle(timeout=10)

        snapshot = scheduler.get_status_snapshot()
        click.echo(snapshot.to_json(indent=2))
        failed = [view for view in snapshot.history if view.status == JobStatus.FAILED]
        if failed:
            click.echo(f"✗ {len(failed)} of {len(snapshot.history)} job(s) failed", err=True)
            sys.exit(1)
        click.echo(f"✓ {len(snapshot.history)} job(s) completed")
    finally:
        scheduler.close()
        engine.shutdown(wait=False)


def run_options(func):
    func = click.option("--watch", is_flag=True, help="Print progress while waiting")(func)
    func = click.option("--delay", default=0.2, show_default=True,
                        help="Simulated seconds per fetch task")(func)
    return func


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool):
    """ImportCTL - Import Job Scheduler"""
    settings = get_settings()
    level = logging.DEBUG if verbose else getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    ctx.obj = settings


@cli.command()
@click.option("--start-date", type=DATE_TYPE, help="First day to import (YYYY-MM-DD)")
@click.option("--end-date", type=DATE_TYPE, help="Last day to import, default today")
@click.option("--days", type=int, help="Number of days before the end date")
@run_options
@click.pass_obj
def daily(settings: Settings, start_date, end_date, days: Optional[int], delay: float, watch: bool):
    """Import daily sensor data.

    Example:
        importctl daily --end-date 2021-01-31 --days 30
    """
    start = start_date.date() if start_date else None
    end = end_date.date() if end_date else None

    def submit(scheduler: ImportScheduler) -> None:
        if start is not None:
            scheduler.submit_daily_range(start, end)
        else:
            scheduler.submit_daily_days(end, days)

    _run_jobs(settings, delay, watch, submit)


@cli.command()
@click.option("--start-date", type=DATE_TYPE, help="First month to import (YYYY-MM-DD)")
@click.option("--end-date", type=DATE_TYPE, help="Last month to import, default this month")
@click.option("--months", type=int, help="Number of months before the end date")
@run_options
@click.pass_obj
def monthly(settings: Settings, start_date, end_date, months: Optional[int], delay: float, watch: bool):
    """Import monthly sensor data.

    Example:
        importctl monthly --months 12
    """
    start = start_date.date() if start_date else None
    end = end_date.date() if end_date else None

    def submit(scheduler: ImportScheduler) -> None:
        if start is not None:
            scheduler.submit_monthly_range(start, end)
        else:
            scheduler.submit_monthly_months(end, months)

    _run_jobs(settings, delay, watch, submit)


@cli.command()
@click.option("--end-wy", type=int, help="Last water year, default the current one")
@click.option("--years", type=int, help="Number of water years")
@run_options
@click.pass_obj
def forecast(settings: Settings, end_wy: Optional[int], years: Optional[int], delay: float, watch: bool):
    """Import seasonal water supply forecasts.

    Example:
        importctl forecast --end-wy 2021 --years 2
    """
    _run_jobs(settings, delay, watch,
              lambda scheduler: scheduler.submit_seasonal_forecast_range(end_wy, years))


@cli.command()
@click.argument("sensor_ids", nargs=-1, type=int, required=True)
@run_options
@click.pass_obj
def por(settings: Settings, sensor_ids: List[int], delay: float, watch: bool):
    """Import the period of record of one or more sensors.

    Example:
        importctl por 101 102 103
    """
    _run_jobs(settings, delay, watch,
              lambda scheduler: scheduler.submit_periods_of_record(list(sensor_ids)))


@cli.command()
@run_options
@click.pass_obj
def stations(settings: Settings, delay: float, watch: bool):
    """Import the station and sensor catalogue.

    Example:
        importctl stations
    """
    _run_jobs(settings, delay, watch, lambda scheduler: scheduler.submit_station_sensor_snapshot())


@cli.command()
@click.argument("commands_file", type=click.File("r"))
@run_options
@click.pass_obj
def run(settings: Settings, commands_file, delay: float, watch: bool):
    """Run a batch of commands from a JSON file.

    The file holds a list of {"command": ..., "payload": ...} objects.

    Example:
        importctl run batch.json
    """
    try:
        batch = json.load(commands_file)
    except json.JSONDecodeError as e:
        click.echo(f"✗ Invalid JSON: {e}", err=True)
        sys.exit(1)
    if not isinstance(batch, list):
        click.echo("✗ Expected a list of commands", err=True)
        sys.exit(1)

    def submit(scheduler: ImportScheduler) -> None:
        for entry in batch:
            if not isinstance(entry, dict):
                click.echo(f"✗ Skipping malformed entry: {entry!r}", err=True)
                continue
            command = str(entry.get("command", ""))
            response = handle_command(scheduler, command, entry.get("payload"))
            if "error" in response:
                click.echo(f"✗ {command}: {response['error']}", err=True)
            elif command != "status":
                click.echo(f"✓ {command}: {response}")

    _run_jobs(settings, delay, watch, submit)


@cli.group()
def config():
    """Show configuration"""
    pass


@config.command()
@click.pass_obj
def show(settings: Settings):
    """Show current configuration.

    Example:
        importctl config show
    """
    click.echo("\nCurrent Configuration:")
    click.echo(f"  default-import-days:    {settings.default_import_days}")
    click.echo(f"  default-import-months:  {settings.default_import_months}")
    click.echo(f"  default-forecast-years: {settings.default_forecast_years}")
    click.echo(f"  max-import-threads:     {settings.max_import_threads}")
    click.echo(f"  max-connect-tries:      {settings.max_connect_tries}")
    click.echo(f"  log-level:              {settings.log_level}")
    click.echo()


if __name__ == "__main__":
    cli()
