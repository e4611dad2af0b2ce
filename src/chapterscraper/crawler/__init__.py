"""
HTTP fetching for chapter pages.
"""

from .http_client import FetchedPage, HttpClient

__all__ = ["FetchedPage", "HttpClient"]
