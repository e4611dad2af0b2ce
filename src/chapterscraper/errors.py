"""
Error taxonomy for chapterscraper.

Every failure the scraper knows how to describe is a ``ScraperError``. Each
subclass carries an ``ErrorKind`` so that the classifier, the progress display
and the final report can treat failures uniformly without isinstance chains.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Optional


class ErrorKind(Enum):
    """Broad error categories used for reporting and classification."""

    CONFIGURATION = "configuration"
    VALIDATION = "validation"
    CSV = "csv"
    HTTP = "http"
    CONTENT_EXTRACTION = "content_extraction"
    FILE_SYSTEM = "file_system"
    TASK_EXECUTION = "task_execution"
    PROGRESS = "progress"


class ExtractionFailure(Enum):
    """Why content extraction produced nothing usable."""

    EMPTY_DOCUMENT = "empty_document"
    NO_MATCH = "no_match"
    EMPTY_CONTENT = "empty_content"
    TOO_SHORT = "too_short"


class ScraperError(Exception):
    """Base class for all scraper failures."""

    kind: ErrorKind = ErrorKind.TASK_EXECUTION

    def __init__(self, message: str, *, url: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.url = url

    @property
    def recoverable(self) -> bool:
        """Whether the failure is presumed transient."""
        from chapterscraper.classifier import is_recoverable

        return is_recoverable(self)

    def __str__(self) -> str:
        return self.message

    def user_friendly_message(self) -> str:
        return self.message

    def debug_info(self) -> str:
        return f"{self.kind.value}: {self.message}"


class ConfigurationError(ScraperError):
    kind = ErrorKind.CONFIGURATION

    def __str__(self) -> str:
        return f"Configuration error: {self.message}"

    def user_friendly_message(self) -> str:
        return f"Configuration issue: {self.message}. Check your config file or command-line arguments."


class InputValidationError(ScraperError):
    """A record, URL, item key or selector failed validation."""

    kind = ErrorKind.VALIDATION

    def __init__(self, field: str, message: str, *, url: Optional[str] = None) -> None:
        super().__init__(message, url=url)
        self.field = field

    def __str__(self) -> str:
        return f"Validation error: {self.field} - {self.message}"

    def user_friendly_message(self) -> str:
        return f"Invalid {self.field}: {self.message}. Please check your input and configuration."

    def debug_info(self) -> str:
        return f"Field: {self.field}, URL: {self.url}, Details: {self.message}"


class CsvError(ScraperError):
    kind = ErrorKind.CSV

    def __str__(self) -> str:
        return f"CSV processing error: {self.message}"

    def user_friendly_message(self) -> str:
        return (
            f"CSV file issue: {self.message}. "
            "Ensure your CSV has the correct format with 'url,chapter_number' columns."
        )


class HttpError(ScraperError):
    """HTTP-level failure. ``status`` is None for connection errors and timeouts."""

    kind = ErrorKind.HTTP

    def __init__(
        self,
        url: str,
        status: Optional[int],
        message: str,
        *,
        timed_out: bool = False,
    ) -> None:
        super().__init__(message, url=url)
        self.status = status
        self.timed_out = timed_out

    def __str__(self) -> str:
        return f"HTTP request error for URL '{self.url}': {self.message}"

    def user_friendly_message(self) -> str:
        url, status = self.url, self.status
        if status == 404:
            return f"Page not found (404): {url}. Check if the URL is correct."
        if status == 403:
            return f"Access denied (403) for {url}. The site might be blocking scrapers."
        if status == 429:
            return f"Rate limited (429) for {url}. Increase delays between requests."
        if status is not None and 500 <= status <= 599:
            return f"Server error ({status}) for {url}: {self.message}. Try again later."
        if status is not None:
            return f"HTTP error ({status}) for {url}: {self.message}"
        if self.timed_out:
            return f"Request timed out for {url}: {self.message}. The server may be overloaded."
        return f"Connection error for {url}: {self.message}. Check your internet connection."

    def debug_info(self) -> str:
        return f"URL: {self.url}, Status: {self.status}, Timed out: {self.timed_out}, Details: {self.message}"


class ContentExtractionError(ScraperError):
    kind = ErrorKind.CONTENT_EXTRACTION

    def __init__(self, reason: ExtractionFailure, message: str, *, url: Optional[str] = None) -> None:
        super().__init__(message, url=url)
        self.reason = reason

    def __str__(self) -> str:
        if self.url:
            return f"Content extraction error for URL '{self.url}': {self.message}"
        return f"Content extraction error: {self.message}"

    def user_friendly_message(self) -> str:
        target = self.url or "document"
        return f"Couldn't extract content from {target}: {self.message}. The page structure might have changed."

    def debug_info(self) -> str:
        return f"URL: {self.url}, Reason: {self.reason.value}, Details: {self.message}"


class FileSystemError(ScraperError):
    kind = ErrorKind.FILE_SYSTEM

    def __init__(self, message: str, path: Optional[Path] = None) -> None:
        super().__init__(message)
        self.path = path

    def __str__(self) -> str:
        return f"File system error: {self.message}"

    def user_friendly_message(self) -> str:
        if self.path is not None:
            return f"File system error at {self.path}: {self.message}. Check file permissions and disk space."
        return f"File system error: {self.message}. Check file permissions and disk space."

    def debug_info(self) -> str:
        return f"Path: {self.path}, Details: {self.message}"


class TaskExecutionError(ScraperError):
    """A task ended abnormally instead of returning an outcome."""

    kind = ErrorKind.TASK_EXECUTION

    def __str__(self) -> str:
        return f"Task execution error: {self.message}"

    def user_friendly_message(self) -> str:
        return f"Task execution failed: {self.message}. This might indicate a programming error."


class ProgressError(ScraperError):
    kind = ErrorKind.PROGRESS

    def __str__(self) -> str:
        return f"Progress tracking error: {self.message}"

    def user_friendly_message(self) -> str:
        return f"Progress tracking error: {self.message}. This doesn't affect scraping functionality."


def render_failure(error: BaseException) -> str:
    """Render a terminal failure with a classification-aware prefix."""
    from chapterscraper.classifier import is_recoverable

    label = "recoverable" if is_recoverable(error) else "error"
    if isinstance(error, ScraperError):
        text = error.user_friendly_message()
        if error.kind in (ErrorKind.CONFIGURATION, ErrorKind.VALIDATION, ErrorKind.CSV):
            text = f"{text} ({error.debug_info()})"
        return f"[{label}] {text}"
    return f"[{label}] {type(error).__name__}: {error}"
