"""
chapterscraper - concurrent fetch, extract and save for serialised chapters.
"""

from __future__ import annotations

__version__ = "0.1.0"

from .config import ScraperConfig
from .orchestrator import Orchestrator
from .scraper import ChapterScraper

__all__ = ["__version__", "ChapterScraper", "Orchestrator", "ScraperConfig"]
