"""Utility helpers."""

from .atomic import atomic_write_text, remove_stale_atomic_files

__all__ = ["atomic_write_text", "remove_stale_atomic_files"]
