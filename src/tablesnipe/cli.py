"""Click CLI commands for tablesnipe."""

from __future__ import annotations

import asyncio
import logging
import sys
from contextlib import AsyncExitStack
from datetime import datetime, timezone

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from tablesnipe.auth import CredentialStore
from tablesnipe.config import load_settings, load_snipe_request
from tablesnipe.errors import TablesnipeError
from tablesnipe.models import Snipe, SniperSettings, SnipeStatus
from tablesnipe.notifications import build_notifier
from tablesnipe.platforms import build_platform_clients
from tablesnipe.rate_limiter import RateLimiter
from tablesnipe.scheduler import SnipeScheduler, check_clock_offset
from tablesnipe.service import SnipeService
from tablesnipe.sniper import SnipeExecutor
from tablesnipe.store import SnipeStore

console = Console()

STATUS_STYLES = {
    SnipeStatus.PENDING: "cyan",
    SnipeStatus.RUNNING: "yellow",
    SnipeStatus.SUCCESS: "green",
    SnipeStatus.FAILED: "red",
    SnipeStatus.CANCELLED: "dim",
}


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _settings(ctx: click.Context) -> SniperSettings:
    return ctx.obj["settings"]


def _warn_clock_offset() -> None:
    offset = check_clock_offset()
    if offset is None:
        console.print("[yellow]Could not reach NTP server to check clock offset.[/yellow]")
    elif abs(offset) > 0.5:
        console.print(
            f"[red]Warning: System clock is off by {offset:.1f}s! "
            f"Consider syncing with NTP.[/red]"
        )
    else:
        console.print(f"Clock offset: {offset*1000:.0f}ms (OK)")


def _snipe_table(snipes: list[Snipe]) -> Table:
    table = Table(title="Snipes")
    table.add_column("ID", style="bold")
    table.add_column("Platform")
    table.add_column("Restaurant")
    table.add_column("Date")
    table.add_column("Party")
    table.add_column("Times")
    table.add_column("Release (local)")
    table.add_column("Status")
    for s in snipes:
        style = STATUS_STYLES.get(s.status, "")
        table.add_row(
            s.id,
            s.platform.value,
            s.restaurant.restaurant_id,
            s.date.isoformat(),
            str(s.party_size),
            ", ".join(s.preferred_times),
            s.release_time.astimezone().strftime("%Y-%m-%d %H:%M:%S"),
            f"[{style}]{s.status.value}[/{style}]",
        )
    return table


def _display_snipe(snipe: Snipe) -> None:
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="bold")
    table.add_column()
    table.add_row("ID", snipe.id)
    table.add_row("Platform", snipe.platform.value)
    table.add_row("Restaurant", snipe.restaurant.restaurant_id)
    table.add_row("Date", snipe.date.isoformat())
    table.add_row("Party size", str(snipe.party_size))
    for i, pref in enumerate(snipe.preferred_times, 1):
        table.add_row(f"Preference #{i}", pref)
    table.add_row("Release", snipe.release_time.astimezone().strftime("%Y-%m-%d %H:%M:%S %Z"))
    style = STATUS_STYLES.get(snipe.status, "")
    table.add_row("Status", f"[{style}]{snipe.status.value}[/{style}]")
    if snipe.result:
        table.add_row("Result", snipe.result)
    console.print(Panel(table, title=f"Snipe {snipe.id}"))


def _fail(e: Exception) -> None:
    console.print(f"[red]{e}[/red]")
    sys.exit(1)


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.option(
    "-c", "--config",
    type=click.Path(dir_okay=False),
    envvar="TABLESNIPE_CONFIG",
    help="Settings YAML file.",
)
@click.pass_context
def main(ctx: click.Context, verbose: bool, config: str | None) -> None:
    """tablesnipe: grab restaurant reservations the moment they open."""
    _setup_logging(verbose)
    ctx.ensure_object(dict)
    try:
        ctx.obj["settings"] = load_settings(config)
    except TablesnipeError as e:
        _fail(e)


@main.command()
def configure() -> None:
    """Store Resy credentials securely in the OS keyring."""
    api_key = click.prompt("Resy API key")
    auth_token = click.prompt("Resy auth token (blank to log in by password)", default="", show_default=False)
    email = click.prompt("Resy email (for token refresh)", default="", show_default=False)
    password = click.prompt("Resy password", hide_input=True, default="", show_default=False) if email else ""

    CredentialStore().store(
        api_key,
        auth_token=auth_token or None,
        email=email or None,
        password=password or None,
    )
    console.print("[green]Credentials stored.[/green]")


@main.command()
@click.option("--port", default=8422, help="Port to serve on.")
@click.option("--host", default="127.0.0.1", help="Host to bind to.")
@click.pass_context
def serve(ctx: click.Context, port: int, host: str) -> None:
    """Run the snipe server: HTTP API plus the snipe scheduler."""
    import uvicorn

    from tablesnipe.web.app import create_app

    _warn_clock_offset()
    app = create_app(_settings(ctx))
    console.print(f"[bold green]tablesnipe server[/bold green] -> http://{host}:{port}")
    uvicorn.run(app, host=host, port=port, log_level="info")


@main.command()
@click.argument("request_file", type=click.Path(exists=True))
@click.pass_context
def run(ctx: click.Context, request_file: str) -> None:
    """Create a snipe from a YAML file and run it in this process."""
    settings = _settings(ctx)
    try:
        request = load_snipe_request(request_file)
    except TablesnipeError as e:
        _fail(e)

    _warn_clock_offset()

    async def _run() -> Snipe:
        store = SnipeStore(settings.db_path)
        notifier = build_notifier(settings.notifications, console)
        async with AsyncExitStack() as stack:
            stack.callback(store.close)
            close_notifier = getattr(notifier, "aclose", None)
            if close_notifier is not None:
                stack.push_async_callback(close_notifier)
            clients = {
                platform: await stack.enter_async_context(client)
                for platform, client in build_platform_clients().items()
            }
            executor = SnipeExecutor.from_settings(
                settings,
                store,
                clients,
                RateLimiter(settings.rate_limits, settings.default_rate_limit),
                notifier,
            )
            # Only this snipe is armed; other pending snipes belong to the server
            scheduler = SnipeScheduler(store, executor, lead_time=settings.lead_time_seconds)
            stack.callback(scheduler.shutdown)
            service = SnipeService(store, scheduler)

            snipe = service.create_snipe(request)
            _display_snipe(snipe)

            wait = snipe.release_time - datetime.now(timezone.utc)
            hours, remainder = divmod(int(wait.total_seconds()), 3600)
            minutes, seconds = divmod(remainder, 60)
            console.print(f"Release in [bold]{hours}h {minutes}m {seconds}s[/bold]")

            while True:
                current = store.get(snipe.id)
                if current is None or current.status.is_terminal:
                    return current or snipe
                await asyncio.sleep(settings.poll_interval_seconds)

    try:
        result = asyncio.run(_run())
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped. The snipe stays pending for the next server start.[/yellow]")
        sys.exit(130)
    except TablesnipeError as e:
        _fail(e)

    if result.status != SnipeStatus.SUCCESS:
        sys.exit(1)


@main.command("list")
@click.option(
    "--status",
    type=click.Choice([s.value for s in SnipeStatus]),
    help="Only show snipes with this status.",
)
@click.pass_context
def list_cmd(ctx: click.Context, status: str | None) -> None:
    """List persisted snipes, most imminent release first."""
    store = SnipeStore(_settings(ctx).db_path)
    try:
        snipes = store.list_snipes(SnipeStatus(status) if status else None)
    finally:
        store.close()
    if not snipes:
        console.print("No snipes.")
        return
    console.print(_snipe_table(snipes))


def _offline_service(settings: SniperSettings) -> SnipeService:
    # Timers live in the server process; this service only touches the store
    store = SnipeStore(settings.db_path)
    return SnipeService(store)


@main.command()
@click.argument("snipe_id")
@click.pass_context
def show(ctx: click.Context, snipe_id: str) -> None:
    """Show one snipe."""
    service = _offline_service(_settings(ctx))
    try:
        _display_snipe(service.get_snipe(snipe_id))
    except TablesnipeError as e:
        _fail(e)
    finally:
        service.store.close()


@main.command()
@click.argument("snipe_id")
@click.pass_context
def cancel(ctx: click.Context, snipe_id: str) -> None:
    """Cancel a pending snipe."""
    service = _offline_service(_settings(ctx))
    try:
        snipe = service.cancel_snipe(snipe_id)
    except TablesnipeError as e:
        _fail(e)
    finally:
        service.store.close()
    console.print(f"[green]Cancelled {snipe.id}.[/green]")


@main.command()
@click.pass_context
def limits(ctx: click.Context) -> None:
    """Show configured per-platform rate limits."""
    settings = _settings(ctx)
    limiter = RateLimiter(settings.rate_limits, settings.default_rate_limit)
    table = Table(title="Rate limits")
    table.add_column("Platform", style="bold")
    table.add_column("Tokens")
    table.add_column("Refill every")
    for status in limiter.get_all_status():
        limit = settings.rate_limits.get(status.platform, settings.default_rate_limit)
        table.add_row(
            status.platform,
            f"{status.available}/{status.max}",
            f"{limit.refill_interval_seconds:.0f}s (+{limit.refill_rate})",
        )
    console.print(table)


@main.command()
def clock() -> None:
    """Check system clock offset against NTP."""
    _warn_clock_offset()
