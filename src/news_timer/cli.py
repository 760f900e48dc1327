#!/usr/bin/env python3
"""
News Timer CLI

Admin commands against a running News Timer API, plus local helpers to
initialise the database, run the server and open the TUI.
"""

import json
from pathlib import Path

import click

from .allocation import format_clock
from .client import ApiClient
from .config import VERSION, get_settings
from .controller import TimerController
from .errors import NewsTimerError
from .sync import LocalCache


def _echo_notification(message: str, level: str = "info") -> None:
    click.echo(message, err=level != "info")


def _controller(ctx) -> TimerController:
    """Controller for one-shot commands; the scheduler is never started."""
    controller = TimerController(
        ctx.obj["client"], LocalCache(ctx.obj["config"].cache_path), notifier=_echo_notification
    )
    if not controller.load():
        raise click.ClickException("News Timer API is unreachable")
    return controller


class ApiErrorGroup(click.Group):
    """Turns API errors into a one-line message and exit code 1."""

    def invoke(self, ctx):
        try:
            return super().invoke(ctx)
        except NewsTimerError as e:
            raise click.ClickException(f"{e.message} ({e.code})") from e


@click.group(cls=ApiErrorGroup)
@click.option("--api-url", envvar="NEWS_TIMER_API_URL", help="News Timer API base URL")
@click.option("--timeout", type=float, help="Request timeout in seconds")
@click.pass_context
def cli(ctx, api_url, timeout):
    """News Timer - reading time budget for news sources."""
    config = get_settings()
    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    ctx.obj["client"] = ApiClient(api_url or config.api_url, timeout=timeout or config.timeout)


# ============ Sources ============

@cli.command()
@click.pass_context
def sources(ctx):
    """List sources with today's usage."""
    rows = ctx.obj["client"].get_sources()
    if not rows:
        click.echo("No sources")
        return
    for row in rows:
        overrun = f"  +{format_clock(row['overrunTime'])}" if row.get("overrunTime") else ""
        click.echo(
            f"{row['icon']} {row['key']:<24} {format_clock(row['used'])} / "
            f"{format_clock(row['allocated'])}  sessions={row['sessions']}{overrun}"
        )


@cli.command()
@click.argument("name")
@click.option("--icon", help="Emoji shown next to the source")
@click.option("--url", help="Site URL (used for the favicon)")
@click.option("--no-redistribute", is_flag=True, help="Keep existing allocations")
@click.pass_context
def add(ctx, name, icon, url, no_redistribute):
    """Add a source and redistribute the daily limit across all sources."""
    if no_redistribute:
        created = ctx.obj["client"].add_source(name, icon=icon, url=url)
    else:
        created = _controller(ctx).add_source(name, icon=icon, url=url)
        if created is None:
            raise click.ClickException(f"Could not add {name}")
    click.echo(f"✓ Added: {created['key']}")


@cli.command()
@click.argument("key")
@click.pass_context
def remove(ctx, key):
    """Delete a source and all of its usage."""
    ctx.obj["client"].delete_source(key)
    click.echo(f"✓ Removed: {key}")


@cli.command()
@click.argument("key")
@click.argument("minutes", type=int)
@click.pass_context
def allocate(ctx, key, minutes):
    """Set a source's daily allocation in minutes."""
    ctx.obj["client"].update_source_allocation(key, minutes * 60)
    click.echo(f"✓ {key}: {minutes} min")


@cli.command()
@click.argument("total_minutes", type=int)
@click.pass_context
def distribute(ctx, total_minutes):
    """Split TOTAL_MINUTES evenly across all sources."""
    allocations = _controller(ctx).distribute_evenly(total_minutes)
    for key, seconds in allocations.items():
        click.echo(f"  {key:<24} {seconds // 60} min")


# ============ Settings / stats ============

@cli.command()
@click.option("--limit", "limit_minutes", type=int, help="Daily limit in minutes")
@click.option("--auto-start/--no-auto-start", default=None, help="Auto start preference")
@click.pass_context
def settings(ctx, limit_minutes, auto_start):
    """Show settings, or update them when options are given."""
    client = ctx.obj["client"]
    current = client.get_settings()
    if limit_minutes is None and auto_start is None:
        click.echo(f"Daily limit: {current['totalTimeLimit'] // 60} min")
        click.echo(f"Auto start:  {'on' if current['autoStart'] else 'off'}")
        return
    total = limit_minutes * 60 if limit_minutes is not None else current["totalTimeLimit"]
    auto = auto_start if auto_start is not None else current["autoStart"]
    client.update_settings(total, auto)
    click.echo(f"✓ Settings saved (limit {total // 60} min, auto start {'on' if auto else 'off'})")


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Print raw JSON")
@click.pass_context
def stats(ctx, as_json):
    """Today's totals."""
    data = ctx.obj["client"].get_stats()
    if as_json:
        click.echo(json.dumps(data, indent=2))
        return
    click.echo(f"Time used:       {format_clock(data['totalTimeUsed'])}")
    click.echo(f"Sessions:        {data['totalSessions']}")
    click.echo(f"Overrun:         {format_clock(data['totalOverrun'])}")
    click.echo(f"Sources used:    {data['sourcesUsed']}")
    click.echo(f"Avg session:     {format_clock(data['averageSessionTime'])}")


@cli.command()
@click.confirmation_option(prompt="Reset today's usage?")
@click.pass_context
def reset(ctx):
    """Delete today's usage (sources and settings are kept)."""
    ctx.obj["client"].reset()
    click.echo("✓ Daily data has been reset")


@cli.command()
@click.confirmation_option(prompt="Clear today's usage and the local cache?")
@click.pass_context
def clear(ctx):
    """Reset today's usage and drop the offline cache."""
    if not _controller(ctx).clear_all_data():
        raise click.ClickException("Server was not cleared")
    click.echo("✓ All data cleared")


# ============ Export / import ============

@cli.command("export")
@click.argument("output", type=click.Path(dir_okay=False, path_type=Path), required=False)
@click.pass_context
def export_cmd(ctx, output):
    """Export sources, settings and today's stats as JSON."""
    data = json.dumps(_controller(ctx).export_data(), indent=2, ensure_ascii=False)
    if output is None:
        click.echo(data)
        return
    output.write_text(data, encoding="utf-8")
    click.echo(f"✓ Exported to {output}")


@cli.command("import")
@click.argument("source", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def import_cmd(ctx, source):
    """Apply settings and allocations from an export file."""
    try:
        data = json.loads(source.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise click.ClickException(f"Invalid import file: {e}") from e
    applied = _controller(ctx).import_data(data)
    click.echo(f"✓ Imported settings and {applied} allocations")


# ============ Local ============

@cli.command()
@click.pass_context
def health(ctx):
    """Check that the API is reachable."""
    data = ctx.obj["client"].health()
    click.echo(f"{data['status']} (v{data.get('version', '?')}, {data.get('environment', '?')})")


@cli.command("init-db")
@click.option("--db", "db_path", type=click.Path(dir_okay=False, path_type=Path), help="Database file")
@click.option("--no-seed", is_flag=True, help="Skip default sources and settings")
@click.pass_context
def init_db(ctx, db_path, no_seed):
    """Create the SQLite schema (and seed defaults) without starting the server."""
    from .init_db import init_database

    path = init_database(db_path or ctx.obj["config"].db_path, seed_defaults=not no_seed)
    click.echo(f"✓ Database initialized at {path}")


@cli.command()
@click.option("--host", default="0.0.0.0", show_default=True)
@click.option("--port", type=int, help="Defaults to NEWS_TIMER_PORT")
@click.pass_context
def serve(ctx, host, port):
    """Run the API server."""
    import uvicorn

    uvicorn.run("news_timer.main:app", host=host, port=port or ctx.obj["config"].port)


@cli.command()
@click.pass_context
def tui(ctx):
    """Open the terminal dashboard."""
    from .tui import run

    config = ctx.obj["config"]
    client = ctx.obj["client"]
    run(client.base_url, config.cache_path, client.timeout)


@cli.command()
def version():
    """Show the version."""
    click.echo(f"news-timer {VERSION}")


if __name__ == "__main__":
    cli()
