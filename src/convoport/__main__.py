"""CLI entry point for convoport.

Allows running the exporter as a module:
    python -m convoport sync <thread-id-or-url> ...
"""

import logging
import signal
import sys
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from types import FrameType
from typing import Any, Callable, Iterator, NoReturn, Sequence

import click

from convoport.config import Config, load_config
from convoport.errors import SyncError
from convoport.logging import get_logger, setup_logging
from convoport.models import ThreadDetail
from convoport.sources import build_registry
from convoport.sources.base import AdapterRegistry, SourceAdapter
from convoport.store import KeyValueStore
from convoport.sync.fingerprint import FingerprintStore
from convoport.sync.markdown import format_markdown, safe_filename
from convoport.sync.normalizer import ContentNormalizer
from convoport.sync.notion import (
    NotionClient,
    StoredTokenProvider,
    build_properties,
    database_title,
    is_valid_database_id,
)
from convoport.sync.orchestrator import BulkSyncOrchestrator, JobResult
from convoport.sync.progress import ExportHistory, FailureLog, JobProgressStore
from convoport.sync.rate_limiter import DestinationRateLimiter
from convoport.sync.recovery import Connectivity, ErrorRecovery, reachability_check
from convoport.sync.retry import RetryPolicy
from convoport.sync.uploader import ChunkedUploader
from convoport.sync.validator import DataValidator

logger = get_logger("cli")


def format_timestamp(ts: float) -> str:
    """Format timestamp for display."""
    return datetime.fromtimestamp(ts).strftime("%Y-%m-%d %H:%M:%S")


def fail(message: str) -> NoReturn:
    click.echo(message, err=True)
    sys.exit(1)


def resolve_platform(registry: AdapterRegistry, platform: str | None) -> SourceAdapter | None:
    if platform:
        return registry.get(platform)
    platforms = registry.all_platforms()
    return registry.get(platforms[0]) if platforms else None


def build_orchestrator(
    config: Config,
    store: KeyValueStore,
    adapter: SourceAdapter | None,
) -> BulkSyncOrchestrator:
    """Wire the sync pipeline from configuration."""
    limiter = DestinationRateLimiter(
        requests_per_minute=config.rate_limit.requests_per_minute,
        max_queue_seconds=config.rate_limit.max_queue_seconds,
        backlog_threshold=config.rate_limit.backlog_threshold,
        short_delay=config.rate_limit.short_delay_seconds,
        long_delay=config.rate_limit.long_delay_seconds,
    )
    retry_policy = RetryPolicy(config.retry.max_attempts, config.retry.base_delay_seconds)
    connectivity = Connectivity(check=reachability_check(config.notion.api_base))
    notion = NotionClient(
        config.notion,
        StoredTokenProvider(store, config.notion.api_key),
        connectivity=connectivity,
    )
    platform = adapter.platform if adapter else ""

    def properties(detail: ThreadDetail) -> dict[str, Any]:
        schema = notion.cached_schema() or limiter.throttle(notion.get_database_schema)
        return build_properties(detail, schema, detail.platform or platform)

    return BulkSyncOrchestrator(
        resolve_adapter=lambda: adapter,
        uploader=ChunkedUploader(notion, limiter, retry_policy, append_delay=config.sync.append_delay_seconds),
        fingerprints=FingerprintStore(store),
        jobs=JobProgressStore(store, config.sync.resume_window_seconds),
        failures=FailureLog(store, config.sync.failure_log_size),
        history=ExportHistory(store, config.sync.history_size),
        validator=DataValidator(config.sync.quality_threshold),
        recovery=ErrorRecovery(
            connectivity,
            rate_limit_cooldown=config.sync.rate_limit_cooldown_seconds,
            network_retry_delay=config.sync.network_retry_delay_seconds,
        ),
        retry_policy=retry_policy,
        properties_builder=properties,
        platform=platform,
        checkpoint_every=config.sync.checkpoint_every,
        item_delay=config.sync.item_delay_seconds,
    )


@contextmanager
def stop_on_signal(orchestrator: BulkSyncOrchestrator) -> Iterator[None]:
    """Turn SIGINT/SIGTERM into a graceful stop after the current item."""

    def signal_handler(signum: int, frame: FrameType | None) -> None:
        sig_name = signal.Signals(signum).name
        logger.info("Received signal %s, stopping after current item", sig_name)
        orchestrator.request_stop()

    previous = {sig: signal.signal(sig, signal_handler) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        yield
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


def print_job(result: JobResult | None, stopped: bool = False) -> None:
    if result is None:
        click.echo("Nothing to do.")
        return
    click.echo(
        f"Job {result.job_id}: {result.state.value} | "
        f"\033[32m{result.success} synced\033[0m, {result.skipped} skipped, "
        f"\033[31m{result.failed} failed\033[0m of {result.total}"
    )
    for item in result.items:
        if item.reason:
            click.echo(f"  {item.thread_id}: {item.reason}")
    if stopped:
        click.echo(f"Stopped. Continue with: convoport resume {result.job_id}")


def run_job(orchestrator: BulkSyncOrchestrator, job: Callable[[], JobResult | None]) -> None:
    """Run a job callable under signal handling and report it."""
    with stop_on_signal(orchestrator):
        try:
            result = job()
        except SyncError as e:
            fail(f"Error: {e}")
    print_job(result, stopped=orchestrator.stop_requested)


class App:
    """Per-invocation state shared by subcommands."""

    def __init__(self, config: Config, platform: str | None) -> None:
        self.config = config
        self.platform = platform
        self.store = KeyValueStore(config.state_db)
        self.registry = build_registry(config)

    def adapter(self) -> SourceAdapter | None:
        return resolve_platform(self.registry, self.platform)

    def require_adapter(self) -> SourceAdapter:
        adapter = self.adapter()
        if adapter is None:
            fail("No source configured. Enable one under 'sources' in config.yaml.")
        return adapter

    def resolve_threads(self, refs: Sequence[str]) -> tuple[SourceAdapter, list[str]]:
        """Turn thread ids or thread URLs into one adapter and its thread ids.

        URLs pick their adapter by host; bare ids use --platform or the
        first configured source.
        """
        adapter: SourceAdapter | None = None
        thread_ids = []
        for ref in refs:
            if "://" in ref:
                detected = self.registry.detect(ref)
                thread_id = detected.extract_id(ref) if detected else None
                if detected is None or thread_id is None:
                    fail(f"Not a recognized thread URL: {ref}")
            else:
                detected, thread_id = self.require_adapter(), ref
            if adapter is not None and detected is not adapter:
                fail("All threads must come from the same platform.")
            adapter = detected
            thread_ids.append(thread_id)
        if adapter is None:
            adapter = self.require_adapter()
        return adapter, thread_ids

    def orchestrator(self, adapter: SourceAdapter | None = None) -> BulkSyncOrchestrator:
        return build_orchestrator(self.config, self.store, adapter or self.adapter())


@click.group()
@click.option("--config", "config_path", type=click.Path(path_type=Path), help="Path to config.yaml")
@click.option("--platform", "-p", help="Source platform (grok, gemini, local_export)")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, platform: str | None, verbose: bool) -> None:
    """Export AI chat threads into a Notion database."""
    config = load_config(config_path)
    setup_logging("convoport", log_dir=config.log_dir, level=logging.DEBUG if verbose else logging.INFO)
    app = App(config, platform)
    ctx.obj = app
    ctx.call_on_close(app.store.close)


@cli.command()
@click.option("--page", default=0, help="Zero-based page")
@click.option("--limit", "-n", default=50, help="Threads per page")
@click.pass_obj
def threads(app: App, page: int, limit: int) -> None:
    """List threads on the source platform."""
    adapter = app.require_adapter()
    fingerprints = FingerprintStore(app.store)
    try:
        result = adapter.list_threads(page, limit)
    except SyncError as e:
        fail(f"Error listing threads: {e}")

    for thread in result.threads:
        mark = "\033[32m✓\033[0m" if fingerprints.is_exported(thread.id) else " "
        updated = f" ({thread.updated_at})" if thread.updated_at else ""
        click.echo(f"{mark} {thread.id}  {thread.title}{updated}")
    if result.has_more:
        click.echo(f"-- more on page {page + 1}")


@cli.command()
@click.argument("thread_refs", nargs=-1, required=True, metavar="THREADS...")
@click.option("--force", is_flag=True, help="Export even if unchanged")
@click.pass_obj
def sync(app: App, thread_refs: tuple[str, ...], force: bool) -> None:
    """Export the given threads (ids or URLs) as one resumable job."""
    adapter, thread_ids = app.resolve_threads(thread_refs)
    orchestrator = app.orchestrator(adapter)
    run_job(orchestrator, lambda: orchestrator.run(thread_ids, force=force))


@cli.command("sync-all")
@click.option("--force", is_flag=True, help="Include already exported threads")
@click.pass_obj
def sync_all(app: App, force: bool) -> None:
    """Export every thread not exported yet."""
    orchestrator = app.orchestrator()
    run_job(orchestrator, lambda: orchestrator.sync_all(force=force))


@cli.command()
@click.argument("job_id", required=False)
@click.pass_obj
def resume(app: App, job_id: str | None) -> None:
    """Continue an interrupted job from its last checkpoint."""
    orchestrator = app.orchestrator()
    run_job(orchestrator, lambda: orchestrator.resume(job_id))


@cli.command()
@click.argument("thread")
@click.pass_obj
def retry(app: App, thread: str) -> None:
    """Retry a single failed thread (id or URL)."""
    adapter, (thread_id,) = app.resolve_threads([thread])
    try:
        item = app.orchestrator(adapter).retry_failed(thread_id)
    except SyncError as e:
        fail(f"Error: {e}")
    click.echo(f"{thread_id}: {item.status.value}" + (f" ({item.reason})" if item.reason else ""))


@cli.command()
@click.option("--clear", is_flag=True, help="Forget all recorded failures")
@click.pass_obj
def failures(app: App, clear: bool) -> None:
    """Show recent export failures."""
    log = FailureLog(app.store, app.config.sync.failure_log_size)
    if clear:
        log.clear()
        click.echo("Failure log cleared.")
        return

    records = log.recent()
    if not records:
        click.echo("No failures recorded.")
        return
    for failure in records:
        click.echo(f"\033[36m[{format_timestamp(failure.timestamp)}]\033[0m {failure.id}  {failure.title}")
        click.echo(f"  {failure.reason}")


@cli.command()
@click.pass_obj
def history(app: App) -> None:
    """Show summaries of finished jobs."""
    summaries = ExportHistory(app.store, app.config.sync.history_size).recent()
    if not summaries:
        click.echo("No export history.")
        return
    for summary in summaries:
        click.echo(
            f"\033[36m[{format_timestamp(summary.timestamp)}]\033[0m {summary.platform or '-'}: "
            f"{summary.success}/{summary.total} synced, {summary.skipped} skipped, "
            f"{summary.failed} failed in {summary.duration_seconds}s"
        )


@cli.command("clear-cache")
@click.pass_obj
def clear_cache(app: App) -> None:
    """Forget export records so every thread is exported again."""
    removed = FingerprintStore(app.store).clear()
    click.echo(f"Cleared {removed} export records.")


@cli.command()
@click.pass_obj
def check(app: App) -> None:
    """Test the Notion connection and database access."""
    notion_config = app.config.notion
    if not is_valid_database_id(notion_config.database_id):
        fail("Invalid database ID: expected 32 hex characters (dashes optional).")

    client = NotionClient(notion_config, StoredTokenProvider(app.store, notion_config.api_key))
    try:
        database = client.fetch_database()
    except SyncError as e:
        fail(f"Connection failed: {e}")

    click.echo(f"\033[32mConnected\033[0m to database: {database_title(database)}")
    columns = sorted((database.get("properties") or {}).keys())
    if columns:
        click.echo(f"Properties: {', '.join(columns)}")


@cli.command("export-markdown")
@click.argument("thread_refs", nargs=-1, metavar="[THREADS]...")
@click.option("--all", "export_all", is_flag=True, help="Export every thread on the platform")
@click.option(
    "--output-dir",
    "-o",
    type=click.Path(file_okay=False, path_type=Path),
    default=Path("."),
    help="Directory to write the .md files to",
)
@click.pass_obj
def export_markdown(app: App, thread_refs: tuple[str, ...], export_all: bool, output_dir: Path) -> None:
    """Write threads (ids or URLs) to local markdown files."""
    if export_all:
        adapter = app.require_adapter()
        try:
            thread_ids = [t.id for t in adapter.list_all_threads()]
        except SyncError as e:
            fail(f"Error listing threads: {e}")
    elif thread_refs:
        adapter, thread_ids = app.resolve_threads(thread_refs)
    else:
        fail("Give one or more threads, or --all.")

    output_dir.mkdir(parents=True, exist_ok=True)
    normalizer = ContentNormalizer()
    written: set[Path] = set()
    failed = 0
    for thread_id in thread_ids:
        try:
            detail = normalizer.normalize(adapter.get_thread_detail(thread_id))
        except SyncError as e:
            click.echo(f"Error: {thread_id}: {e}", err=True)
            failed += 1
            continue

        path = output_dir / safe_filename(detail.title)
        if path in written:
            path = path.with_name(f"{path.stem}_{safe_filename(thread_id)}")
        written.add(path)
        path.write_text(format_markdown(detail, detail.platform or adapter.platform), encoding="utf-8")
        click.echo(f"Wrote {path}")

    if len(thread_ids) > 1:
        click.echo(f"Exported {len(written)} of {len(thread_ids)} threads.")
    if failed:
        sys.exit(1)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
