"""
Retry queue with exponential backoff for recoverable failures.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, List, Optional

import structlog

from chapterscraper.models import RetryEntry, WorkItem

logger = structlog.get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class RetryQueue:
    """LIFO queue of items awaiting another attempt.

    ``attempt`` counts retries already scheduled for an item: the first retry
    is attempt 0 and waits ``base_delay`` seconds, each later one doubles it.
    An item is refused once ``attempt`` reaches ``max_retries``.
    """

    def __init__(self, max_retries: int = 3, base_delay: float = 1.0, sleep: Sleep = asyncio.sleep):
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if base_delay < 0:
            raise ValueError("base_delay must be >= 0")
        self.max_retries = max_retries
        self.base_delay = base_delay
        self._sleep = sleep
        self._entries: List[RetryEntry] = []
        self.exhausted = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __bool__(self) -> bool:
        return bool(self._entries)

    def push(self, item: WorkItem, attempt: int) -> bool:
        """Queue ``item`` for retry number ``attempt``.

        Returns:
            False if the retry budget is spent and the item was not queued
        """
        if attempt >= self.max_retries:
            self.exhausted += 1
            logger.info("Retry budget exhausted", url=item.url, key=item.key, attempts=attempt)
            return False
        self._entries.append(RetryEntry(item=item, attempt=attempt))
        logger.debug("Queued for retry", url=item.url, key=item.key, attempt=attempt)
        return True

    def pop_one(self) -> Optional[RetryEntry]:
        if not self._entries:
            return None
        return self._entries.pop()

    def backoff_delay(self, attempt: int) -> float:
        return self.base_delay * (2**attempt)

    async def wait_backoff(self, attempt: int) -> None:
        delay = self.backoff_delay(attempt)
        logger.debug("Backing off before retry", attempt=attempt, delay=delay)
        await self._sleep(delay)
