"""Main Typer application for atsync."""

import asyncio
import contextlib
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.table import Table

from atsync.cli.errorhandler import handle_cli_errors
from atsync.config.settings import AtsyncSettings, load_settings
from atsync.data_primitives.records import RecordEnvelope, StreamEvent
from atsync.logging_setup import configure_logging, console
from atsync.registry.presentation import build_view
from atsync.runtime import AtsyncRuntime
from atsync.streaming.bus import OPERATION_PREFIX
from atsync.utils.datetime_utils import to_iso
from atsync.utils.text import short_did, truncate_text
from atsync.views.galleries import fetch_galleries

app = typer.Typer(
    name="atsync",
    help="Discover, sync and stream records from an AT Protocol repository",
    add_completion=False,
)


@dataclass
class _CliState:
    config: Path | None = None
    debug: bool = False

    def settings(self, **overrides: Any) -> AtsyncSettings:
        return load_settings(self.config, **overrides)


_state = _CliState()


@app.callback()
def main(
    *,
    config: Annotated[
        Path | None, typer.Option("--config", "-c", help="TOML configuration file", envvar="ATSYNC_CONFIG")
    ] = None,
    log_level: Annotated[str | None, typer.Option("--log-level", help="Logging level (default: INFO)")] = None,
    debug: Annotated[bool, typer.Option("--debug", help="Show full tracebacks on errors")] = False,
) -> None:
    """atsync command line."""
    configure_logging(log_level)
    _state.config = config
    _state.debug = debug


@app.command()
def discover(
    repository: Annotated[str | None, typer.Argument(help="Handle or DID (default: repository.handle)")] = None,
) -> None:
    """List the collections and record shapes a repository holds."""

    async def run() -> None:
        async with AtsyncRuntime.create(_state.settings()) as runtime:
            analysis = await runtime.discover(repository)

        table = Table(title=f"Collections of {analysis.did} ({analysis.mode} mode)", show_header=True)
        table.add_column("Collection", style="cyan", no_wrap=True)
        table.add_column("Service", style="magenta")
        table.add_column("Sampled", justify="right")
        table.add_column("Shapes", style="dim")
        for collection in analysis.collections:
            table.add_row(
                collection.name,
                collection.service,
                str(collection.record_count),
                ", ".join(sorted(collection.sample_shapes)) or "-",
            )
        console.print(table)
        console.print(f"[dim]{analysis.total_records} records sampled, {len(analysis.shapes)} shapes[/dim]")

    with handle_cli_errors(debug=_state.debug):
        asyncio.run(run())


@app.command()
def stats(
    repository: Annotated[str | None, typer.Argument(help="Handle or DID (default: repository.handle)")] = None,
) -> None:
    """Show record counts for a repository."""

    async def run() -> None:
        async with AtsyncRuntime.create(_state.settings()) as runtime:
            result = await runtime.synchronizer.get_repository_stats(runtime.repository(repository))

        summary = Table(title="Repository Statistics", show_header=False)
        summary.add_column("Metric", style="cyan")
        summary.add_column("Value", justify="right")
        summary.add_row("Total records", str(result.total_records))
        summary.add_row("Today", str(result.records_today))
        summary.add_row("This week", str(result.records_this_week))
        summary.add_row("Active collections", str(result.active_collections))
        summary.add_row("Last updated", to_iso(result.last_updated) or "-")
        console.print(summary)

        if result.collection_counts:
            counts = Table(show_header=True)
            counts.add_column("Collection", style="cyan")
            counts.add_column("Records", justify="right")
            for name, count in sorted(result.collection_counts.items(), key=lambda item: -item[1]):
                counts.add_row(name, str(count))
            console.print(counts)

    with handle_cli_errors(debug=_state.debug):
        asyncio.run(run())


@app.command()
def activity(
    repository: Annotated[str | None, typer.Argument(help="Handle or DID (default: repository.handle)")] = None,
    *,
    limit: Annotated[int, typer.Option("--limit", "-n", help="Number of records to show")] = 20,
    offline: Annotated[bool, typer.Option("--offline", help="Serve from the snapshot directory only")] = False,
    blog_posts: Annotated[bool, typer.Option("--blog-posts", help="Include WhiteWind blog posts")] = False,
) -> None:
    """Show recent activity for a repository."""

    async def run() -> None:
        async with AtsyncRuntime.create(_state.settings(), offline=offline) as runtime:
            data = await runtime.get_activity_data(
                repository, activity_limit=limit, include_blog_posts=blog_posts, collections_limit=0
            )
            views = [build_view(runtime.registry, record, max_content_length=80) for record in data.recent_activity]
            posts = [build_view(runtime.registry, record, max_content_length=80) for record in data.blog_posts]

        name = data.profile.display_name or data.profile.handle if data.profile else repository or "-"
        table = Table(title=f"Recent activity: {name} (source: {data.source.value})", show_header=True)
        table.add_column("When", style="dim", no_wrap=True)
        table.add_column("Type", style="magenta")
        table.add_column("Content")
        for view in views:
            table.add_row(to_iso(view.timestamp) or "-", f"{view.icon} {view.type_name}", view.content)
        console.print(table)

        if posts:
            blog = Table(title="Blog posts", show_header=True)
            blog.add_column("When", style="dim", no_wrap=True)
            blog.add_column("Title", style="cyan")
            blog.add_column("Excerpt")
            for view in posts:
                blog.add_row(to_iso(view.timestamp) or "-", view.title, view.content)
            console.print(blog)

    with handle_cli_errors(debug=_state.debug):
        asyncio.run(run())


@app.command()
def galleries(
    repository: Annotated[str | None, typer.Argument(help="Handle or DID (default: repository.handle)")] = None,
) -> None:
    """Group Grain photo records into galleries."""

    async def run() -> None:
        async with AtsyncRuntime.create(_state.settings()) as runtime:
            did = await runtime.synchronizer.resolve_repository(runtime.repository(repository))
            found = await fetch_galleries(runtime.synchronizer, did) if did else []

        table = Table(title="Galleries", show_header=True)
        table.add_column("Gallery", style="cyan")
        table.add_column("Title")
        table.add_column("Images", justify="right")
        table.add_column("Items", justify="right")
        table.add_column("Created", style="dim")
        for gallery in found:
            table.add_row(
                gallery.id,
                truncate_text(gallery.title, 40),
                str(len(gallery.images)),
                str(gallery.item_count),
                to_iso(gallery.created_at) or "-",
            )
        console.print(table)

    with handle_cli_errors(debug=_state.debug):
        asyncio.run(run())


@app.command()
def stream(
    *,
    collection: Annotated[
        list[str] | None, typer.Option("--collection", help="Wanted collection (repeatable)")
    ] = None,
    did: Annotated[list[str] | None, typer.Option("--did", help="Wanted repository DID (repeatable)")] = None,
    filter_key: Annotated[
        list[str] | None,
        typer.Option("--filter", "-f", help="Subscription filter, e.g. '$type:app.bsky.feed.post' (repeatable)"),
    ] = None,
    duration: Annotated[float | None, typer.Option("--duration", help="Stop after this many seconds")] = None,
) -> None:
    """Print live commit events until interrupted."""
    overrides: dict[str, Any] = {}
    if collection:
        overrides["wanted_collections"] = collection
    if did:
        overrides["wanted_dids"] = did

    def show(event: StreamEvent) -> None:
        record = event.record_value or {}
        text = record.get("text") or record.get("title") or ""
        console.print(
            f"[dim]{event.received_at_micros}[/dim] [magenta]{event.operation.value:<6}[/magenta] "
            f"[cyan]{event.collection}[/cyan] {short_did(event.repository_id)} {truncate_text(str(text), 60)}"
        )

    async def run() -> None:
        settings = _state.settings(stream=overrides) if overrides else _state.settings()
        async with AtsyncRuntime.create(settings) as runtime:
            keys = filter_key or [f"{OPERATION_PREFIX}{op}" for op in ("create", "update", "delete")]
            for key in keys:
                runtime.stream.subscribe(key, show)
            done = asyncio.Event()
            runtime.stream.client.on_disconnect = done.set
            async with runtime.stream.consumer():
                console.print(f"[green]Streaming from {settings.stream.endpoint}[/green] (Ctrl-C to stop)")
                with contextlib.suppress(TimeoutError):
                    await asyncio.wait_for(done.wait(), timeout=duration)

    with handle_cli_errors(debug=_state.debug), contextlib.suppress(KeyboardInterrupt):
        asyncio.run(run())


@app.command()
def poll(
    repository: Annotated[str | None, typer.Argument(help="Handle or DID (default: repository.handle)")] = None,
    *,
    interval: Annotated[float | None, typer.Option("--interval", help="Seconds between polls")] = None,
    duration: Annotated[float | None, typer.Option("--duration", help="Stop after this many seconds")] = None,
) -> None:
    """Print new records of every collection by polling the repository."""

    def show(record: RecordEnvelope) -> None:
        text = record.value.get("text") or record.value.get("title") or ""
        console.print(f"[cyan]{record.collection}[/cyan] {record.uri} {truncate_text(str(text), 60)}")

    async def run() -> None:
        settings = _state.settings(stream={"poll_interval": interval}) if interval else _state.settings()
        async with AtsyncRuntime.create(settings) as runtime:
            poller = runtime.poller(repository, on_record=show)
            await poller.start()
            console.print(
                f"[green]Polling {len(poller.collections)} collection(s) every "
                f"{settings.stream.poll_interval:g}s[/green] (Ctrl-C to stop)"
            )
            try:
                if duration:
                    await asyncio.sleep(duration)
                else:
                    await asyncio.Event().wait()
            finally:
                await poller.stop()

    with handle_cli_errors(debug=_state.debug), contextlib.suppress(KeyboardInterrupt):
        asyncio.run(run())
