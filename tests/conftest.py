"""
Shared fixtures for the chapterscraper test-suite.
"""

import asyncio
from pathlib import Path
from typing import AsyncGenerator, Callable, Dict, List, Optional

import pytest
import pytest_asyncio

from chapterscraper.config import ScraperConfig
from chapterscraper.errors import HttpError
from chapterscraper.models import ChapterRecord, OutcomeRecord, WorkItem
from chapterscraper.storage.file_store import FileStore


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests for individual components")
    config.addinivalue_line("markers", "integration: Integration tests across modules")


@pytest_asyncio.fixture(autouse=True)
async def cleanup_tasks() -> AsyncGenerator[None, None]:
    """Cancel any task a test leaves behind."""
    tasks_before = asyncio.all_tasks()
    yield
    new_tasks = asyncio.all_tasks() - tasks_before

    for task in new_tasks:
        if not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass


CHAPTER_TEXT = (
    "The rain had not stopped for three days when the caravan finally reached the river crossing. "
    "Nobody spoke as the wagons rolled onto the old ferry."
)


@pytest.fixture
def chapter_html() -> str:
    """A chapter page whose content region survives the default filters."""
    return f"""<!DOCTYPE html>
<html>
<head><title>Chapter 1</title><script>window.dataLayer = [];</script></head>
<body>
  <nav><a href="/">Home</a> <a href="/login">Log in</a></nav>
  <main>
    <h1>Chapter 1</h1>
    <p class="meta">Posted on Monday</p>
    <p>{CHAPTER_TEXT}</p>
    <div class="ad">Advertisement</div>
    <!-- a comment that must never appear -->
    <p>Subscribe to get new chapters</p>
  </main>
  <footer>Privacy Policy</footer>
</body>
</html>"""


@pytest.fixture
def output_dir(tmp_path: Path) -> Path:
    path = tmp_path / "out"
    path.mkdir()
    return path


@pytest.fixture
def input_file(tmp_path: Path) -> Path:
    path = tmp_path / "links.csv"
    path.write_text("url,chapter_number\n", encoding="utf-8")
    return path


@pytest.fixture
def make_config(output_dir: Path, input_file: Path) -> Callable[..., ScraperConfig]:
    """Build a validated config rooted in the test's temp directory."""

    def _make(**overrides) -> ScraperConfig:
        data = {
            "input_file": input_file,
            "output_dir": output_dir,
            "task_delay_ms": 50,
            "retry_base_delay_secs": 1.0,
        }
        data.update(overrides)
        return ScraperConfig.from_mapping(data)

    return _make


@pytest.fixture
def store(output_dir: Path) -> FileStore:
    return FileStore(output_dir)


class RecordingSleep:
    """Drop-in for ``asyncio.sleep`` that records delays and only yields control."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


class ScriptedWorker:
    """A worker whose per-key results are scripted in advance.

    ``script`` maps an item key to a list of results consumed one per call;
    a result is either an exception (returned as a failure outcome) or an int
    content length (success). Keys without a script always succeed.
    """

    def __init__(self, script: Optional[Dict[str, list]] = None, delay: float = 0.0):
        self.script = {key: list(results) for key, results in (script or {}).items()}
        self.delay = delay
        self.calls: List[str] = []
        self.active = 0
        self.peak = 0

    async def __call__(self, item: WorkItem) -> OutcomeRecord:
        self.calls.append(item.key)
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(self.delay)
            results = self.script.get(item.key)
            result = results.pop(0) if results else 500
            if isinstance(result, BaseException):
                return OutcomeRecord.failure(item, result)
            item.output_path.write_text("x" * result, encoding="utf-8")
            return OutcomeRecord.success(item, content_length=result)
        finally:
            self.active -= 1


@pytest.fixture
def scripted_worker() -> Callable[..., ScriptedWorker]:
    return ScriptedWorker


def records_for(*keys: str, host: str = "https://novel.example.com") -> List[ChapterRecord]:
    return [ChapterRecord(url=f"{host}/chapter-{key}", chapter_number=key) for key in keys]


def http_error(status: Optional[int], key: str = "1", timed_out: bool = False) -> HttpError:
    return HttpError(f"https://novel.example.com/chapter-{key}", status, f"HTTP {status}", timed_out=timed_out)


@pytest.fixture
def make_records() -> Callable[..., List[ChapterRecord]]:
    return records_for


@pytest.fixture
def make_http_error() -> Callable[..., HttpError]:
    return http_error


@pytest.fixture
def chapter_text() -> str:
    return CHAPTER_TEXT
