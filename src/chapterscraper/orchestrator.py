"""
Run orchestration: validate, skip, dispatch, drain, retry, finalize.

All statistics and the retry queue are touched only from ``Orchestrator.run``;
worker tasks report back exclusively through the outcomes they return.
"""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, List, Optional, Sequence
from uuid import uuid4

import structlog

from chapterscraper.classifier import FailureClass
from chapterscraper.config import ScraperConfig
from chapterscraper.errors import ContentExtractionError, HttpError, InputValidationError, render_failure
from chapterscraper.models import ChapterRecord, OutcomeRecord, RunReport, RunStatistics, WorkItem
from chapterscraper.progress import EventKind, ProgressReporter
from chapterscraper.recovery.retry_queue import RetryQueue
from chapterscraper.storage.file_store import FileStore
from chapterscraper.task_pool import TaskPool, Worker, run_guarded

logger = structlog.get_logger(__name__)

HIGH_ERROR_RATE = 0.2
GOOD_SUCCESS_RATE = 0.95


class Orchestrator:
    """Drives one scraping run over a list of records."""

    def __init__(
        self,
        config: ScraperConfig,
        worker: Worker,
        store: FileStore,
        progress: Optional[ProgressReporter] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        stop_event: Optional[asyncio.Event] = None,
    ):
        self.config = config
        self.worker = worker
        self.store = store
        self.progress = progress if progress is not None else ProgressReporter()
        self._sleep = sleep
        self.stop_event = stop_event

        self.pool = TaskPool(config.max_concurrent_tasks, worker)
        self.retry_queue = RetryQueue(
            max_retries=config.max_retries,
            base_delay=config.retry_base_delay_secs,
            sleep=sleep,
        )
        self.statistics = RunStatistics()

        self.permanent_failures: List[OutcomeRecord] = []
        self.invalid_records: List[InputValidationError] = []
        self.rate_limited = 0
        self.timeouts = 0
        self.extraction_failures = 0

        self.logger = logger.bind(component="orchestrator")

    @property
    def stop_requested(self) -> bool:
        return self.stop_event is not None and self.stop_event.is_set()

    def _refresh(self) -> None:
        self.progress.pump(self.statistics, len(self.pool))

    def _record(self, outcome: OutcomeRecord, attempt: Optional[int] = None) -> None:
        """Apply one outcome to the statistics.

        ``attempt`` is None for main-pass outcomes and the retry number for
        outcomes of the retry pass.
        """
        stats = self.statistics
        if outcome.succeeded:
            stats.success += 1
            return

        error = outcome.error
        if isinstance(error, HttpError):
            if error.status == 429:
                self.rate_limited += 1
            if error.timed_out:
                self.timeouts += 1

        if outcome.failure_class is FailureClass.RECOVERABLE:
            stats.recoverable_errors += 1
            next_attempt = 0 if attempt is None else attempt + 1
            if self.retry_queue.push(outcome.item, next_attempt):
                return
            self.progress.emit(EventKind.ERROR, f"Giving up on chapter {outcome.item.key} after {next_attempt} retries")

        stats.permanent_errors += 1
        self.permanent_failures.append(outcome)
        if isinstance(error, ContentExtractionError):
            self.extraction_failures += 1

    def _validate(self, record: ChapterRecord) -> Optional[WorkItem]:
        try:
            return WorkItem.from_record(
                record,
                self.config.output_dir,
                prefix=self.config.file_prefix,
                extension=self.config.file_extension,
            )
        except InputValidationError as e:
            self.statistics.permanent_errors += 1
            self.invalid_records.append(e)
            self.logger.warning("Invalid record", url=record.url, chapter=record.chapter_number, error=str(e))
            self.progress.emit(EventKind.ERROR, render_failure(e))
            return None

    async def _main_pass(self, records: Sequence[ChapterRecord]) -> bool:
        """Dispatch every record. Returns False if a stop was requested."""
        for record in records:
            if self.stop_requested:
                self.logger.info("Stop requested, no further records will be dispatched")
                return False

            item = self._validate(record)
            if item is None:
                self._refresh()
                continue

            if self.store.is_complete(item.output_path):
                self.statistics.existing += 1
                self.progress.emit(EventKind.SKIP, f"Skipping existing file: {item.output_path.name}")
                self._refresh()
                continue

            harvested = await self.pool.submit_or_drain(item)
            if harvested is not None:
                self._record(harvested)
            self._refresh()

            await self._sleep(self.config.task_delay)
        return True

    async def _retry_pass(self) -> None:
        while self.retry_queue:
            if self.stop_requested:
                self.logger.info("Stop requested, skipping remaining retries", pending=len(self.retry_queue))
                return
            entry = self.retry_queue.pop_one()
            if entry is None:
                break
            await self.retry_queue.wait_backoff(entry.attempt)
            self.statistics.retries += 1
            self.progress.emit(EventKind.INFO, f"Retrying chapter {entry.item.key} (retry {entry.attempt + 1})")
            outcome = await run_guarded(self.worker, entry.item)
            self._record(outcome, attempt=entry.attempt)
            self._refresh()

    async def run(self, records: Sequence[ChapterRecord]) -> RunReport:
        """Process ``records`` and return the run report."""
        start = time.monotonic()
        structlog.contextvars.bind_contextvars(run_id=uuid4().hex[:12])
        self.statistics = RunStatistics(total=len(records))
        self.logger.info(
            "Run starting",
            total=len(records),
            max_concurrent=self.config.max_concurrent_tasks,
            task_delay_ms=self.config.task_delay_ms,
        )
        self.progress.start(len(records))

        try:
            completed = await self._main_pass(records)

            async for outcome in self.pool.iter_drain():
                self._record(outcome)
                self._refresh()

            await self._retry_pass()
        except BaseException:
            # Fatal error or cancellation: do not leave orphaned tasks behind
            if len(self.pool):
                await self.pool.cancel_all()
            raise
        finally:
            self.progress.finish(self.statistics)
            structlog.contextvars.unbind_contextvars("run_id")

        stopped_early = not completed or bool(self.retry_queue)
        report = RunReport(
            statistics=self.statistics,
            recommendations=self.recommendations(),
            duration=time.monotonic() - start,
            permanent_failures=list(self.permanent_failures),
            invalid_records=list(self.invalid_records),
            stopped_early=stopped_early,
        )
        self.logger.info(
            "Run finished",
            duration=round(report.duration, 2),
            peak_in_flight=self.pool.peak_in_flight,
            stopped_early=stopped_early,
            **self.statistics.to_dict(),
        )
        return report

    def recommendations(self) -> List[str]:
        """Human-readable tuning advice derived from the run's failures."""
        stats = self.statistics
        config = self.config
        advice: List[str] = []

        if stats.processed and stats.error_rate > HIGH_ERROR_RATE:
            advice.append(
                f"High error rate ({stats.error_rate:.0%}). Consider lowering max_concurrent_tasks "
                f"(currently {config.max_concurrent_tasks}) or raising task_delay_ms "
                f"(currently {config.task_delay_ms})."
            )
        if self.rate_limited:
            advice.append(
                f"Rate limited {self.rate_limited} time(s). Increase task_delay_ms "
                f"(currently {config.task_delay_ms})."
            )
        if stats.permanent_errors and self.extraction_failures * 2 > stats.permanent_errors:
            advice.append(
                "Most failures were content extraction failures. Review the selector chain "
                f"({config.selector!r}) and skip_text_nodes ({config.skip_text_nodes})."
            )
        if self.timeouts:
            advice.append(
                f"{self.timeouts} request(s) timed out. Consider increasing request_timeout_secs "
                f"(currently {config.request_timeout_secs:g})."
            )
        if not advice and stats.processed and stats.success_rate >= GOOD_SUCCESS_RATE:
            advice.append("Current settings work well for this source.")
        return advice
