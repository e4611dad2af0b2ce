"""
Single-attempt HTTP client for chapter pages.

Retries are not handled here; a failed fetch surfaces as an ``HttpError`` and
the orchestrator decides whether the item goes back on the retry queue.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Optional

import aiohttp
import structlog

from chapterscraper.errors import HttpError

logger = structlog.get_logger(__name__)


@dataclass
class FetchedPage:
    """A successfully fetched document."""

    url: str
    final_url: str
    status: int
    text: str
    elapsed: float


class HttpClient:
    """Thin wrapper around an ``aiohttp.ClientSession`` shared by all tasks."""

    def __init__(self, user_agent: str, timeout: float = 45.0):
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        self.user_agent = user_agent
        self.timeout = timeout

        # Session will be initialized in initialize()
        self.session: Optional[aiohttp.ClientSession] = None

    @property
    def is_initialized(self) -> bool:
        return self.session is not None

    async def initialize(self) -> None:
        """Initialize the HTTP client session."""
        if self.session is None:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers={"User-Agent": self.user_agent},
            )
            logger.debug("HTTP client session initialized", timeout=self.timeout)

    async def close(self) -> None:
        """Close the HTTP client and clean up resources."""
        if self.session:
            await self.session.close()
            self.session = None
            logger.debug("HTTP client closed")

    async def __aenter__(self) -> "HttpClient":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def fetch(self, url: str) -> FetchedPage:
        """
        Fetch a URL once and return its decoded body.

        Args:
            url: Absolute http(s) URL

        Returns:
            FetchedPage with the final URL, status and text

        Raises:
            HttpError: on timeout (``timed_out``), connection failure
                (``status`` None) or a status >= 400.
        """
        if self.session is None:
            raise RuntimeError("HTTP client not initialized. Call initialize() first.")

        start = time.monotonic()
        logger.debug("Fetching", url=url)

        try:
            async with asyncio.timeout(self.timeout):
                async with self.session.get(url) as response:
                    if response.status >= 400:
                        raise HttpError(url, response.status, f"HTTP {response.status} {response.reason or ''}".strip())
                    text = await response.text(errors="replace")
                    status = response.status
                    final_url = str(response.url)
        except HttpError:
            logger.debug("Fetch rejected", url=url, elapsed=round(time.monotonic() - start, 3))
            raise
        except TimeoutError as e:
            # aiohttp.ServerTimeoutError is also a ClientError; timeouts win
            raise HttpError(url, None, f"request timed out after {self.timeout}s", timed_out=True) from e
        except aiohttp.ClientResponseError as e:
            raise HttpError(url, e.status, e.message or f"HTTP {e.status}") from e
        except aiohttp.ClientError as e:
            raise HttpError(url, None, str(e) or type(e).__name__) from e

        elapsed = time.monotonic() - start
        if final_url != url:
            logger.info("Followed redirect", url=url, final_url=final_url)
        logger.debug("Fetched", url=url, status=status, length=len(text), elapsed=round(elapsed, 3))
        return FetchedPage(url=url, final_url=final_url, status=status, text=text, elapsed=elapsed)
