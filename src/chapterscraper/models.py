"""
Core data structures shared by the pool, the retry queue and the orchestrator.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional
from urllib.parse import urlparse

from chapterscraper.classifier import FailureClass, classify
from chapterscraper.errors import ErrorKind, HttpError, InputValidationError, ScraperError

ALLOWED_SCHEMES = ("http", "https")


@dataclass(frozen=True)
class ChapterRecord:
    """One raw row of the record source, before validation."""

    url: str
    chapter_number: str


@dataclass(frozen=True)
class WorkItem:
    """A validated unit of fetch-extract-persist work."""

    key: str
    url: str
    output_path: Path

    @classmethod
    def from_record(
        cls,
        record: ChapterRecord,
        output_dir: Path,
        prefix: str = "chapter",
        extension: str = "txt",
    ) -> WorkItem:
        """Validate a record and derive its output path.

        Raises:
            InputValidationError: if the key or URL is malformed.
        """
        key = (record.chapter_number or "").strip()
        url = (record.url or "").strip()

        if not key:
            raise InputValidationError("chapter_number", "item key is empty", url=url or None)
        if "/" in key or "\\" in key or key in (".", ".."):
            raise InputValidationError("chapter_number", f"item key {key!r} is not a valid file name", url=url)
        if not url:
            raise InputValidationError("url", f"URL is empty for item {key!r}")

        parsed = urlparse(url)
        if parsed.scheme not in ALLOWED_SCHEMES:
            raise InputValidationError("url", f"unsupported URL scheme {parsed.scheme!r}", url=url)
        if not parsed.netloc:
            raise InputValidationError("url", "URL has no host", url=url)

        return cls(key=key, url=url, output_path=Path(output_dir) / f"{prefix}_{key}.{extension}")


@dataclass(frozen=True)
class OutcomeRecord:
    """Result of one fetch-extract-persist attempt.

    ``error`` is None on success. Tasks only ever return these values; all
    bookkeeping happens on the orchestrator's control flow.
    """

    item: WorkItem
    error: Optional[BaseException] = None
    content_length: int = 0
    elapsed: float = 0.0

    @classmethod
    def success(cls, item: WorkItem, content_length: int, elapsed: float = 0.0) -> OutcomeRecord:
        return cls(item=item, content_length=content_length, elapsed=elapsed)

    @classmethod
    def failure(cls, item: WorkItem, error: BaseException, elapsed: float = 0.0) -> OutcomeRecord:
        return cls(item=item, error=error, elapsed=elapsed)

    @property
    def succeeded(self) -> bool:
        return self.error is None

    @property
    def failure_class(self) -> Optional[FailureClass]:
        if self.error is None:
            return None
        return classify(self.error)

    @property
    def recoverable(self) -> bool:
        return self.failure_class is FailureClass.RECOVERABLE

    @property
    def status(self) -> Optional[int]:
        if isinstance(self.error, HttpError):
            return self.error.status
        return None

    @property
    def kind(self) -> Optional[ErrorKind]:
        if self.error is None:
            return None
        if isinstance(self.error, ScraperError):
            return self.error.kind
        return ErrorKind.TASK_EXECUTION


@dataclass(frozen=True)
class RetryEntry:
    item: WorkItem
    attempt: int


@dataclass
class RunStatistics:
    """Monotonic run counters, written only by the orchestrator."""

    total: int = 0
    existing: int = 0
    success: int = 0
    recoverable_errors: int = 0
    permanent_errors: int = 0
    retries: int = 0

    @property
    def to_process(self) -> int:
        return self.total - self.existing

    @property
    def processed(self) -> int:
        return self.success + self.permanent_errors

    @property
    def success_rate(self) -> float:
        return self.success / self.processed if self.processed else 0.0

    @property
    def error_rate(self) -> float:
        return self.permanent_errors / self.processed if self.processed else 0.0

    @property
    def completion_rate(self) -> float:
        """Share of all records that now have output (fetched or pre-existing)."""
        if not self.total:
            return 1.0
        return (self.success + self.existing) / self.total

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "existing": self.existing,
            "success": self.success,
            "recoverable_errors": self.recoverable_errors,
            "permanent_errors": self.permanent_errors,
            "retries": self.retries,
            "success_rate": round(self.success_rate, 4),
            "error_rate": round(self.error_rate, 4),
            "completion_rate": round(self.completion_rate, 4),
        }


@dataclass
class RunReport:
    statistics: RunStatistics
    recommendations: List[str] = field(default_factory=list)
    duration: float = 0.0
    permanent_failures: List[OutcomeRecord] = field(default_factory=list)
    invalid_records: List[InputValidationError] = field(default_factory=list)
    stopped_early: bool = False
