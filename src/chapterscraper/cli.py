"""Command-line interface for chapterscraper."""

from __future__ import annotations

import asyncio
import signal
import sys
from pathlib import Path
from typing import Any, List, NoReturn, Optional

import click
import structlog
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

from chapterscraper import __version__
from chapterscraper.config import ScraperConfig, load_config
from chapterscraper.crawler.http_client import HttpClient
from chapterscraper.errors import ScraperError, render_failure
from chapterscraper.extractor.selector_extractor import ContentExtractor
from chapterscraper.models import ChapterRecord, RunReport
from chapterscraper.observability import configure_logging
from chapterscraper.orchestrator import Orchestrator
from chapterscraper.progress import ProgressReporter, RichProgressSink
from chapterscraper.records import count_existing, read_records
from chapterscraper.scraper import ChapterScraper
from chapterscraper.storage.file_store import FileStore

console = Console()
logger = structlog.get_logger(__name__)

# Exit codes
EXIT_FAILURES = 1
EXIT_SETUP = 2
EXIT_INTERRUPTED = 130


class ShutdownManager:
    """Turns SIGINT/SIGTERM into a graceful stop; a second signal cancels the run."""

    def __init__(self) -> None:
        self.stop_event = asyncio.Event()
        self._signals = (signal.SIGINT, signal.SIGTERM)
        self._task: Optional[asyncio.Task[Any]] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def _handle_signal(self, signum: int) -> None:
        if self.stop_event.is_set():
            console.print("\n[red]Second interrupt, cancelling in-flight work...[/red]")
            if self._task is not None:
                self._task.cancel()
            return
        console.print(
            f"\n[yellow]Received {signal.Signals(signum).name}, finishing in-flight chapters "
            "(press Ctrl+C again to abort)...[/yellow]"
        )
        self.stop_event.set()

    def install(self) -> None:
        """Install handlers on the running loop for the current task."""
        self._loop = asyncio.get_running_loop()
        self._task = asyncio.current_task()
        for sig in self._signals:
            try:
                self._loop.add_signal_handler(sig, self._handle_signal, sig)
            except NotImplementedError:
                # add_signal_handler is unavailable on Windows event loops
                signal.signal(sig, lambda signum, frame: self._loop.call_soon_threadsafe(self._handle_signal, signum))

    def uninstall(self) -> None:
        if self._loop is None:
            return
        for sig in self._signals:
            try:
                self._loop.remove_signal_handler(sig)
            except NotImplementedError:
                signal.signal(sig, signal.SIG_DFL)


def _fail(message: str, code: int) -> NoReturn:
    console.print(f"[red]{escape(message)}[/red]")
    sys.exit(code)


async def scrape(
    config: ScraperConfig,
    records: List[ChapterRecord],
    store: FileStore,
    extractor: ContentExtractor,
) -> RunReport:
    """Run the orchestrator with a live progress display."""
    shutdown = ShutdownManager()
    shutdown.install()
    progress = ProgressReporter(RichProgressSink(console=console, show_events=True))
    try:
        async with HttpClient(config.user_agent, config.request_timeout_secs) as client:
            scraper = ChapterScraper(client, extractor, store, progress=progress.channel)
            orchestrator = Orchestrator(
                config,
                scraper.process,
                store,
                progress=progress,
                stop_event=shutdown.stop_event,
            )
            return await orchestrator.run(records)
    finally:
        shutdown.uninstall()


def print_report(report: RunReport) -> None:
    stats = report.statistics
    border = "green" if not stats.permanent_errors else "yellow"
    lines = [
        f"Total records: {stats.total}",
        f"Already present: {stats.existing}",
        f"Succeeded: {stats.success}",
        f"Failed: {stats.permanent_errors}",
        f"Recoverable errors seen: {stats.recoverable_errors}",
        f"Retries: {stats.retries}",
        f"Completion: {stats.completion_rate:.1%}",
        f"Duration: {report.duration:.2f}s",
    ]
    if report.stopped_early:
        lines.append("[yellow]Stopped before all records were processed[/yellow]")
    console.print(Panel("\n".join(lines), title="Scraping complete", border_style=border))

    if report.permanent_failures:
        console.print("[bold]Failed chapters:[/bold]")
        for outcome in report.permanent_failures:
            detail = escape(render_failure(outcome.error))
            console.print(f"  chapter {escape(outcome.item.key)}: {detail}", highlight=False)

    if report.recommendations:
        console.print("[bold]Recommendations:[/bold]")
        for advice in report.recommendations:
            console.print(f"  - {escape(advice)}", highlight=False)


@click.group()
@click.version_option(version=__version__)
def cli() -> None:
    """chapterscraper - fetch a list of chapter pages and save their text."""


@cli.command()
@click.option("--config", "-c", "config_path", type=click.Path(path_type=Path), help="Configuration file path")
@click.option(
    "--input", "-i", "input_file", type=click.Path(path_type=Path), help="CSV file of url,chapter_number rows"
)
@click.option("--output", "-o", "output_dir", type=click.Path(path_type=Path), help="Output directory")
@click.option("--selector", "-s", help="Comma-separated CSS selectors for the content region")
@click.option("--concurrent", type=int, help="Maximum concurrent requests")
@click.option("--delay", type=int, help="Delay between dispatches in milliseconds")
@click.option("--timeout", type=float, help="Request timeout in seconds")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def run(
    config_path: Optional[Path],
    input_file: Optional[Path],
    output_dir: Optional[Path],
    selector: Optional[str],
    concurrent: Optional[int],
    delay: Optional[int],
    timeout: Optional[float],
    verbose: bool,
) -> None:
    """Scrape every chapter listed in the input file."""
    try:
        config = load_config(
            config_path,
            input_file=input_file,
            output_dir=output_dir,
            selector=selector,
            max_concurrent_tasks=concurrent,
            task_delay_ms=delay,
            request_timeout_secs=timeout,
            verbose=True if verbose else None,
        )
        extractor = ContentExtractor(
            config.selector,
            skip_count=config.skip_text_nodes,
            filter_patterns=config.filter_patterns,
            min_content_length=config.min_content_length,
        )
    except ScraperError as e:
        _fail(render_failure(e), EXIT_SETUP)

    configure_logging(config.log_level, config.log_file, config.verbose)
    logger.debug("Configuration loaded", **config.model_dump(mode="json", exclude={"filter_patterns"}))

    store = FileStore(config.output_dir, min_existing_bytes=config.min_existing_file_bytes)
    try:
        records = read_records(config.input_file)
        store.ensure_output_dir()
    except ScraperError as e:
        _fail(render_failure(e), EXIT_SETUP)

    if not records:
        console.print("[yellow]No records found in the input file. Nothing to process.[/yellow]")
        return

    store.cleanup_stale_temp_files()
    existing = count_existing(records, store, config)
    if existing == len(records):
        console.print("[green]All files already exist. Nothing to process.[/green]")
        return

    console.print(
        f"[blue]Processing {len(records) - existing} of {len(records)} chapters "
        f"({config.max_concurrent_tasks} concurrent, {config.task_delay_ms}ms delay)[/blue]"
    )

    try:
        report = asyncio.run(scrape(config, records, store, extractor))
    except ScraperError as e:
        _fail(render_failure(e), EXIT_FAILURES)
    except (KeyboardInterrupt, asyncio.CancelledError):
        _fail("Aborted.", EXIT_INTERRUPTED)

    print_report(report)
    if report.stopped_early:
        sys.exit(EXIT_INTERRUPTED)
    if report.statistics.permanent_errors:
        sys.exit(EXIT_FAILURES)


@cli.command("generate-config")
@click.argument("path", type=click.Path(path_type=Path))
@click.option("--force", is_flag=True, help="Overwrite an existing file")
def generate_config(path: Path, force: bool) -> None:
    """Write a sample YAML configuration file with the default settings."""
    if path.exists() and not force:
        _fail(f"{path} already exists (use --force to overwrite)", EXIT_FAILURES)
    try:
        ScraperConfig.create_sample_config(path)
    except ScraperError as e:
        _fail(render_failure(e), EXIT_FAILURES)
    console.print(f"[green]Sample configuration written to {path}[/green]")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
