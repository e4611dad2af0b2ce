"""
Failure classification: transient (retry later) versus permanent (give up).
"""

from __future__ import annotations

import asyncio
from enum import Enum

import aiohttp

from chapterscraper.errors import HttpError, ScraperError

# Rate limited, bad gateway, service unavailable
RECOVERABLE_STATUSES = frozenset({429, 502, 503})


class FailureClass(Enum):
    RECOVERABLE = "recoverable"
    PERMANENT = "permanent"


def classify(error: BaseException) -> FailureClass:
    """Classify a failure as recoverable or permanent.

    Only HTTP-level conditions are ever recoverable: the statuses in
    ``RECOVERABLE_STATUSES``, connection failures that produced no status and
    request timeouts. Everything else (other statuses, extraction and
    validation failures, file-system errors, crashed tasks, unknown
    exceptions) is permanent.
    """
    if isinstance(error, HttpError):
        if error.timed_out or error.status is None:
            return FailureClass.RECOVERABLE
        if error.status in RECOVERABLE_STATUSES:
            return FailureClass.RECOVERABLE
        return FailureClass.PERMANENT

    if isinstance(error, ScraperError):
        return FailureClass.PERMANENT

    if isinstance(error, aiohttp.ClientResponseError):
        if error.status in RECOVERABLE_STATUSES:
            return FailureClass.RECOVERABLE
        return FailureClass.PERMANENT

    if isinstance(error, (asyncio.TimeoutError, TimeoutError, aiohttp.ClientConnectionError)):
        return FailureClass.RECOVERABLE

    return FailureClass.PERMANENT


def is_recoverable(error: BaseException) -> bool:
    return classify(error) is FailureClass.RECOVERABLE
