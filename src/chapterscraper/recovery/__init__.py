"""
Recovery of transient failures.
"""

from .retry_queue import RetryQueue

__all__ = ["RetryQueue"]
