"""
The fetch-extract-persist unit of work run for every chapter.
"""

from __future__ import annotations

import asyncio
import time
from typing import Optional

import structlog

from chapterscraper.crawler.http_client import HttpClient
from chapterscraper.errors import ScraperError, render_failure
from chapterscraper.extractor.selector_extractor import ContentExtractor
from chapterscraper.models import OutcomeRecord, WorkItem
from chapterscraper.progress import EventKind, ProgressChannel
from chapterscraper.storage.file_store import FileStore

logger = structlog.get_logger(__name__)


class ChapterScraper:
    """Fetches one chapter, extracts its content region and saves it.

    Declared failures become failure outcomes. Anything else is a bug and is
    allowed to escape so the task pool can record it.
    """

    def __init__(
        self,
        http_client: HttpClient,
        extractor: ContentExtractor,
        store: FileStore,
        progress: Optional[ProgressChannel] = None,
    ):
        self.http_client = http_client
        self.extractor = extractor
        self.store = store
        self.progress = progress
        self.logger = logger.bind(component="scraper")

    def _emit(self, kind: EventKind, message: str) -> None:
        if self.progress is not None:
            self.progress.emit(kind, message)

    async def process(self, item: WorkItem) -> OutcomeRecord:
        start = time.monotonic()
        self._emit(EventKind.INFO, f"Starting chapter {item.key}: {item.url}")

        try:
            page = await self.http_client.fetch(item.url)

            self._emit(EventKind.INFO, f"Parsing chapter {item.key}")
            # BeautifulSoup parsing is CPU-bound
            loop = asyncio.get_running_loop()
            result = await loop.run_in_executor(None, lambda: self.extractor.extract(page.text, url=item.url))

            length = await self.store.write(item.output_path, result.text)
        except ScraperError as e:
            elapsed = time.monotonic() - start
            self.logger.info("Chapter failed", key=item.key, url=item.url, error=str(e), kind=e.kind.value)
            kind = EventKind.RECOVERABLE if e.recoverable else EventKind.ERROR
            self._emit(kind, f"Chapter {item.key}: {render_failure(e)}")
            return OutcomeRecord.failure(item, e, elapsed=elapsed)

        elapsed = time.monotonic() - start
        self.logger.debug(
            "Chapter saved",
            key=item.key,
            path=str(item.output_path),
            selector=result.selector,
            length=length,
            elapsed=round(elapsed, 3),
        )
        self._emit(EventKind.SUCCESS, f"Completed chapter {item.key} ({length} chars)")
        return OutcomeRecord.success(item, content_length=length, elapsed=elapsed)

    __call__ = process
