"""
Bounded-concurrency task pool with result draining.

The pool never owns any bookkeeping beyond its in-flight set: every result it
harvests is handed back to the caller, which is the only place statistics are
updated.
"""

from __future__ import annotations

import asyncio
import itertools
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Optional

import structlog

from chapterscraper.errors import TaskExecutionError
from chapterscraper.models import OutcomeRecord, WorkItem

logger = structlog.get_logger(__name__)

Worker = Callable[[WorkItem], Awaitable[OutcomeRecord]]


def _crash_outcome(item: WorkItem, error: BaseException) -> OutcomeRecord:
    if isinstance(error, asyncio.CancelledError):
        message = "task was cancelled"
    else:
        message = f"{type(error).__name__}: {error}"
    wrapped = TaskExecutionError(message, url=item.url)
    wrapped.__cause__ = error
    return OutcomeRecord.failure(item, wrapped)


async def run_guarded(worker: Worker, item: WorkItem) -> OutcomeRecord:
    """Run ``worker(item)`` directly, converting a crash into a failure outcome.

    Cancellation of the caller still propagates.
    """
    try:
        return await worker(item)
    except asyncio.CancelledError:
        raise
    except Exception as e:
        logger.warning("Task crashed", url=item.url, key=item.key, error=str(e), exc_info=True)
        return _crash_outcome(item, e)


class TaskPool:
    """Keeps at most ``max_concurrent`` worker tasks in flight."""

    def __init__(self, max_concurrent: int, worker: Worker):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        self.max_concurrent = max_concurrent
        self.worker = worker

        self._in_flight: Dict[asyncio.Task, tuple[int, WorkItem]] = {}
        self._sequence = itertools.count()

        self.peak_in_flight = 0
        self.started = 0
        self.completed = 0

    def __len__(self) -> int:
        return len(self._in_flight)

    def _start(self, item: WorkItem) -> None:
        task = asyncio.create_task(self.worker(item), name=f"chapter-{item.key}")
        self._in_flight[task] = (next(self._sequence), item)
        self.started += 1
        self.peak_in_flight = max(self.peak_in_flight, len(self._in_flight))

    def _harvest(self, task: asyncio.Task) -> OutcomeRecord:
        _, item = self._in_flight.pop(task)
        self.completed += 1
        try:
            outcome = task.result()
        except asyncio.CancelledError as e:
            return _crash_outcome(item, e)
        except Exception as e:
            logger.warning("Task crashed", url=item.url, key=item.key, error=str(e), exc_info=e)
            return _crash_outcome(item, e)
        if not isinstance(outcome, OutcomeRecord):
            return _crash_outcome(item, TypeError(f"worker returned {type(outcome).__name__}"))
        return outcome

    async def _harvest_one(self) -> OutcomeRecord:
        done, _ = await asyncio.wait(self._in_flight.keys(), return_when=asyncio.FIRST_COMPLETED)
        # Several may finish together; take the earliest started, the rest stay queued as done
        task = min(done, key=lambda t: self._in_flight[t][0])
        return self._harvest(task)

    async def submit_or_drain(self, item: WorkItem) -> Optional[OutcomeRecord]:
        """Start ``item``, first harvesting one finished task if the pool is full.

        Returns:
            The harvested outcome, or None if there was spare capacity
        """
        harvested = None
        if len(self._in_flight) >= self.max_concurrent:
            harvested = await self._harvest_one()
        self._start(item)
        return harvested

    async def iter_drain(self) -> AsyncIterator[OutcomeRecord]:
        """Yield each in-flight outcome as soon as it is harvested."""
        while self._in_flight:
            yield await self._harvest_one()

    async def drain_all(self) -> List[OutcomeRecord]:
        """Wait for every in-flight task; the pool is empty afterwards."""
        return [outcome async for outcome in self.iter_drain()]

    async def cancel_all(self) -> List[OutcomeRecord]:
        """Cancel outstanding tasks and harvest them as failures."""
        tasks = list(self._in_flight)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Cancelled in-flight tasks", count=len(tasks))
        return [self._harvest(task) for task in tasks]
