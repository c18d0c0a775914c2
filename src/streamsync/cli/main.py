"""
streamsync CLI - Main Entry Point.

Provides the `streamsync` command for inspecting and following a remote log.
"""

import asyncio
import json
import logging
import random
import time
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from streamsync.codec.codec import RecordCodec
from streamsync.core.config import Settings, get_settings
from streamsync.core.filter import ThresholdFilter
from streamsync.core.severity import classify_magnitude, severity_color, should_notify
from streamsync.core.types import Record
from streamsync.errors import StreamSyncError
from streamsync.push.manager import SessionState

# Initialize CLI app
app = typer.Typer(
    name="streamsync",
    help="streamsync - reconcile a remote append-only log with live push notifications",
    no_args_is_help=True,
)

console = Console()

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

DEMO_LOCATIONS = [
    "Offshore Valparaiso",
    "Hokkaido, Japan",
    "Central Anatolia",
    "Kermadec Islands",
    "Southern Alaska",
    "Banda Sea",
    "Northern Sumatra",
    "Gulf of California",
]


def configure_logging(level: str = "WARNING", force: bool = False) -> None:
    """Configure root logging for CLI runs."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format=LOG_FORMAT,
        force=force,
    )


def run_async(coro):
    """Run async function from sync context."""
    return asyncio.run(coro)


def _records_table(records: list[Record], title: str, limit: int | None = None) -> Table:
    table = Table(title=title)
    table.add_column("ID", style="cyan")
    table.add_column("Time (UTC)")
    table.add_column("Mag", justify="right")
    table.add_column("Severity")
    table.add_column("Depth (km)", justify="right")
    table.add_column("Location")

    shown = records if limit is None else records[:limit]
    for record in shown:
        magnitude = record.scalar("magnitude")
        if magnitude is not None:
            color = severity_color(magnitude)
            mag_cell = f"[{color}]{magnitude:.1f}[/{color}]"
            severity = classify_magnitude(magnitude).value
        else:
            mag_cell, severity = "-", "-"
        depth = record.scalar("depth")
        table.add_row(
            record.id,
            record.occurred_at.strftime("%Y-%m-%d %H:%M:%S"),
            mag_cell,
            severity,
            f"{depth:.1f}" if depth is not None else "-",
            str(record.attributes.get("location", "")),
        )
    return table


def _record_json(record: Record) -> dict:
    return {
        "id": record.id,
        "timestamp": record.timestamp,
        "occurred_at": record.occurred_at.isoformat(),
        **record.attributes,
    }


# =============================================================================
# Core Commands
# =============================================================================


@app.command()
def snapshot(
    limit: int = typer.Option(25, "--limit", "-n", min=1, help="Rows to show"),
    format_output: str = typer.Option("table", "--format", "-f", help="Output format: table, json"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at INFO level"),
):
    """Bulk load the configured remote log once and print it, newest first."""
    from streamsync.remote.http import HttpRemoteLog
    from streamsync.sync.loader import BulkLoader

    if verbose:
        configure_logging("INFO", force=True)
    settings = get_settings()

    async def _snapshot():
        codec = RecordCodec.from_settings(settings)
        async with HttpRemoteLog.from_settings(settings) as remote:
            loader = BulkLoader(remote, codec, ThresholdFilter.from_settings(settings), settings.bulk_load_mode)
            return await loader.load()

    try:
        result = run_async(_snapshot())
    except StreamSyncError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    records = list(result.records)
    if format_output == "json":
        console.print_json(data=[_record_json(r) for r in records[:limit]])
        return

    console.print(_records_table(records, f"{settings.schema_key} ({result.remote_total} entries)", limit))
    console.print(
        f"\n[dim]{len(records)} records kept, {result.skipped} undecodable, "
        f"{result.rejected} below {settings.filter_attribute} {settings.filter_minimum}[/dim]"
    )


@app.command()
def watch(
    duration: float | None = typer.Option(None, "--duration", "-d", help="Stop after N seconds"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at INFO level"),
):
    """Follow the remote log: bulk load, then print new records as they arrive."""
    from streamsync.push.websocket import WebSocketPushChannel
    from streamsync.remote.http import HttpRemoteLog
    from streamsync.sync.coordinator import ReconciliationCoordinator

    if verbose:
        configure_logging("INFO", force=True)
    settings = get_settings()

    def _on_new_record(record: Record) -> None:
        if should_notify(record, settings.notify_threshold):
            magnitude = record.scalar("magnitude")
            console.print(
                f"[bold {severity_color(magnitude)}]ALERT[/] M{magnitude:.1f} "
                f"{classify_magnitude(magnitude).value}: {record.label()}"
            )
        else:
            console.print(f"[green]New:[/green] {record.label()}")

    async def _watch():
        channel = WebSocketPushChannel(settings.push_url, open_timeout=settings.subscribe_timeout_seconds)
        async with HttpRemoteLog.from_settings(settings) as remote:
            coordinator = ReconciliationCoordinator.from_settings(
                settings, remote, channel, on_new_record=_on_new_record
            )
            async with coordinator:
                console.print(_records_table(coordinator.records, "Loaded", limit=10))
                console.print(f"[dim]Watching {settings.event_name} on {settings.push_url}[/dim]")
                deadline = time.monotonic() + duration if duration else None
                while deadline is None or time.monotonic() < deadline:
                    await asyncio.sleep(1.0)
            console.print(f"[dim]{len(coordinator.records)} records at cursor {coordinator.cursor}[/dim]")

    try:
        run_async(_watch())
    except KeyboardInterrupt:
        console.print("[yellow]Stopped[/yellow]")


@app.command()
def demo(
    initial: int = typer.Option(8, "--initial", help="Entries in the log before start"),
    count: int = typer.Option(12, "--count", "-c", help="Entries produced while running"),
    drop_every: int = typer.Option(4, "--drop-every", help="Drop every Nth push notification (0: none)"),
    interval: float = typer.Option(0.05, "--interval", help="Seconds between produced entries"),
    seed: int = typer.Option(7, "--seed", help="Random seed for the producer"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at INFO level"),
):
    """Run the reconciler against an in-memory log with a lossy push channel."""
    if verbose:
        configure_logging("INFO", force=True)
    settings = get_settings().model_copy(update={
        "channel_error_retry_seconds": 0.1,
        "subscribe_retry_seconds": 0.1,
        "staleness_check_interval_seconds": 0.0,
    })

    try:
        summary = run_async(run_demo(settings, initial, count, drop_every, interval, seed))
    except StreamSyncError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    console.print(_records_table(summary["records"], "Reconciled store", limit=20))
    console.print(
        f"\n[green]Produced {summary['produced']}[/green], "
        f"dropped {summary['dropped']} notifications, "
        f"store holds {len(summary['records'])} records at cursor {summary['cursor']} "
        f"({summary['announced']} announced live)"
    )


def synthetic_record(index: int, rng: random.Random, base_ms: int) -> Record:
    """Earthquake-like record for the demo producer."""
    record_id = f"eq-{index:05d}"
    return Record(
        id=record_id,
        timestamp=base_ms + index * 60_000 + rng.randint(0, 59_999),
        attributes={
            "location": rng.choice(DEMO_LOCATIONS),
            "magnitude": round(rng.uniform(1.0, 7.5), 1),
            "depth": round(rng.uniform(1.0, 60.0), 3),
            "latitude": round(rng.uniform(-60.0, 60.0), 6),
            "longitude": round(rng.uniform(-180.0, 180.0), 6),
            "url": f"https://quakes.example.org/event/{record_id}",
        },
    )


async def run_demo(
    settings: Settings,
    initial: int,
    count: int,
    drop_every: int,
    interval: float,
    seed: int,
) -> dict:
    """
    Drive a coordinator with an in-memory producer.

    Drops every ``drop_every``-th notification and injects one channel error
    halfway through; the final catch-up shows the store converging anyway.
    """
    from streamsync.push.memory import InMemoryPushChannel
    from streamsync.remote.memory import InMemoryRemoteLog
    from streamsync.sync.coordinator import ReconciliationCoordinator

    rng = random.Random(seed)
    base_ms = int(time.time() * 1000) - (initial + count) * 60_000
    codec = RecordCodec.from_settings(settings)
    remote = InMemoryRemoteLog(codec.encode(synthetic_record(i, rng, base_ms)) for i in range(initial))
    channel = InMemoryPushChannel(remote)

    announced: list[Record] = []
    coordinator = ReconciliationCoordinator.from_settings(
        settings, remote, channel, codec=codec, on_new_record=announced.append
    )

    dropped = 0
    async with coordinator:
        await _wait_for_state(coordinator, SessionState.ACTIVE, settings.subscribe_timeout_seconds)
        for i in range(initial, initial + count):
            remote.append(codec.encode(synthetic_record(i, rng, base_ms)))
            if drop_every and (i - initial + 1) % drop_every == 0:
                dropped += 1
                logger.info(f"Dropping notification for entry {i}")
            else:
                channel.publish(settings.event_name)
            if i - initial == count // 2:
                channel.emit_error()
                await _wait_for_state(coordinator, SessionState.ACTIVE, settings.subscribe_timeout_seconds)
            await asyncio.sleep(interval)

        await coordinator.manager.join()
        await coordinator.catch_up("demo finished")
        records = coordinator.records
        cursor = coordinator.cursor

    return {
        "records": records,
        "cursor": cursor,
        "produced": initial + count,
        "dropped": dropped,
        "announced": len(announced),
    }


async def _wait_for_state(coordinator, state: SessionState, timeout: float) -> None:
    deadline = time.monotonic() + timeout
    while coordinator.state is not state:
        if time.monotonic() > deadline:
            raise StreamSyncError(f"Push subscription did not reach {state.value} within {timeout}s")
        await asyncio.sleep(0.01)


@app.command()
def config(
    show: bool = typer.Option(True, "--show/--no-show", help="Show current configuration"),
    init: bool = typer.Option(False, "--init", "-i", help="Initialize config file"),
    path: Path | None = typer.Option(None, "--path", "-p", help="Config file path"),
):
    """Manage configuration."""
    if init:
        config_path = path or Path.home() / ".streamsync" / "config.yaml"
        config_path.parent.mkdir(parents=True, exist_ok=True)

        default_config = """# streamsync configuration
log_level: WARNING

# Pull API
remote_url: http://localhost:8080
schema_key: earthquakes
# publisher: 0x0000000000000000000000000000000000000000
bulk_load_mode: range
page_size: 100

# Push channel
push_url: ws://localhost:8080/ws
event_name: EarthquakeDetected
bundle_directive: latest

# Filtering
filter_attribute: magnitude
filter_minimum: 2.0
notify_threshold: 4.5
"""
        config_path.write_text(default_config)
        console.print(f"[green]Created config file:[/green] {config_path}")
        return

    if show:
        settings = get_settings()
        table = Table(title="Current Configuration")
        table.add_column("Setting", style="cyan")
        table.add_column("Value")

        for name in type(settings).model_fields:
            value = getattr(settings, name)
            if isinstance(value, (dict, list)):
                value = json.dumps(value)
            table.add_row(name, str(value))

        console.print(table)


@app.command()
def version():
    """Show version information."""
    from streamsync import __version__

    console.print(f"streamsync v{__version__}")


# =============================================================================
# Entry Point
# =============================================================================


def main():
    """Main entry point for the CLI."""
    configure_logging(get_settings().log_level)
    app()


if __name__ == "__main__":
    main()
