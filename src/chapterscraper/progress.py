"""
Progress reporting.

Tasks never write to the display. They ``emit`` events into a
``ProgressChannel``; the orchestrator's control flow drains the channel and
forwards everything to a single ``ProgressSink``. A broken sink is logged and
otherwise ignored.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, List, Optional, Protocol

import structlog
from rich.console import Console
from rich.markup import escape
from rich.progress import BarColumn, MofNCompleteColumn, Progress, SpinnerColumn, TaskID, TextColumn, TimeElapsedColumn

from chapterscraper.errors import ProgressError

if TYPE_CHECKING:
    from chapterscraper.models import RunStatistics

logger = structlog.get_logger(__name__)


class EventKind(str, Enum):
    SKIP = "skip"
    ERROR = "error"
    RECOVERABLE = "recoverable"
    SUCCESS = "success"
    INFO = "info"


@dataclass(frozen=True)
class ProgressEvent:
    kind: EventKind
    message: str


class ProgressChannel:
    """Unbounded many-writer, single-reader queue of progress events."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[ProgressEvent] = asyncio.Queue()

    def emit(self, kind: EventKind, message: str) -> None:
        self._queue.put_nowait(ProgressEvent(EventKind(kind), message))

    def drain(self) -> List[ProgressEvent]:
        events = []
        while not self._queue.empty():
            events.append(self._queue.get_nowait())
        return events

    def __len__(self) -> int:
        return self._queue.qsize()


class ProgressSink(Protocol):
    def start(self, total: int) -> None: ...

    def on_event(self, event: ProgressEvent) -> None: ...

    def update(self, stats: "RunStatistics", in_flight: int) -> None: ...

    def finish(self, stats: "RunStatistics") -> None: ...


class NullProgressSink:
    """Discards everything."""

    def start(self, total: int) -> None:
        pass

    def on_event(self, event: ProgressEvent) -> None:
        pass

    def update(self, stats: "RunStatistics", in_flight: int) -> None:
        pass

    def finish(self, stats: "RunStatistics") -> None:
        pass


class LoggingProgressSink:
    """Writes progress as structured log events."""

    def __init__(self) -> None:
        self.logger = logger.bind(component="progress")

    def start(self, total: int) -> None:
        self.logger.info("Run started", total=total)

    def on_event(self, event: ProgressEvent) -> None:
        if event.kind is EventKind.ERROR:
            self.logger.warning(event.message, kind=event.kind.value)
        elif event.kind in (EventKind.SKIP, EventKind.INFO):
            self.logger.debug(event.message, kind=event.kind.value)
        else:
            self.logger.info(event.message, kind=event.kind.value)

    def update(self, stats: "RunStatistics", in_flight: int) -> None:
        pass

    def finish(self, stats: "RunStatistics") -> None:
        self.logger.info("Run finished", **stats.to_dict())


_STYLES = {
    EventKind.SKIP: "dim",
    EventKind.ERROR: "red",
    EventKind.RECOVERABLE: "yellow",
    EventKind.SUCCESS: "green",
    EventKind.INFO: "cyan",
}


class RichProgressSink:
    """A rich progress bar with a one-line status underneath."""

    def __init__(self, console: Optional[Console] = None, show_events: bool = True):
        self.console = console or Console(stderr=True)
        self.show_events = show_events
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TimeElapsedColumn(),
            TextColumn("{task.fields[status]}"),
            console=self.console,
        )
        self._task: Optional[TaskID] = None

    def start(self, total: int) -> None:
        self.progress.start()
        self._task = self.progress.add_task("Scraping", total=total, status="")

    def on_event(self, event: ProgressEvent) -> None:
        if self.show_events and event.kind is not EventKind.INFO:
            style = _STYLES[event.kind]
            self.progress.console.print(f"[{style}]{escape(event.message)}[/{style}]", highlight=False)

    def update(self, stats: "RunStatistics", in_flight: int) -> None:
        if self._task is None:
            return
        status = (
            f"ok {stats.success} | failed {stats.permanent_errors} | "
            f"retrying {stats.recoverable_errors} | active {in_flight}"
        )
        done = stats.success + stats.permanent_errors + stats.existing
        self.progress.update(self._task, completed=done, status=status)

    def finish(self, stats: "RunStatistics") -> None:
        self.update(stats, 0)
        self.progress.stop()


class ProgressReporter:
    """Forwards channel events and statistics to a sink, isolating sink failures."""

    def __init__(self, sink: Optional[ProgressSink] = None, channel: Optional[ProgressChannel] = None):
        self.sink: ProgressSink = sink if sink is not None else NullProgressSink()
        self.channel = channel if channel is not None else ProgressChannel()
        self.failures = 0

    def emit(self, kind: EventKind, message: str) -> None:
        self.channel.emit(kind, message)

    def _guard(self, action: str, call, *args) -> None:
        try:
            call(*args)
        except Exception as e:
            self.failures += 1
            error = ProgressError(f"{action} failed: {e}")
            logger.warning("Progress display failed", error=str(error))

    def start(self, total: int) -> None:
        self._guard("start", self.sink.start, total)

    def pump(self, stats: "RunStatistics", in_flight: int) -> None:
        """Forward pending events, then refresh the status line."""
        for event in self.channel.drain():
            self._guard("event", self.sink.on_event, event)
        self._guard("update", self.sink.update, stats, in_flight)

    def finish(self, stats: "RunStatistics") -> None:
        self.pump(stats, 0)
        self._guard("finish", self.sink.finish, stats)
