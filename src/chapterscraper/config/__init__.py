"""
Configuration management for chapterscraper.
"""

from .config import DEFAULT_FILTER_PATTERNS, DEFAULT_SELECTOR, ScraperConfig, load_config

__all__ = ["DEFAULT_FILTER_PATTERNS", "DEFAULT_SELECTOR", "ScraperConfig", "load_config"]
