"""
One-file-per-item persistence for extracted chapters.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import structlog

from chapterscraper.errors import FileSystemError
from chapterscraper.utils.atomic import atomic_write_text, remove_stale_atomic_files

logger = structlog.get_logger(__name__)


class FileStore:
    """Writes chapter text under ``output_dir`` and answers "already done?" queries."""

    def __init__(self, output_dir: Path, min_existing_bytes: int = 1):
        if min_existing_bytes < 0:
            raise ValueError("min_existing_bytes must be >= 0")
        self.output_dir = Path(output_dir)
        self.min_existing_bytes = min_existing_bytes
        self.logger = logger.bind(component="file_store", output_dir=str(self.output_dir))

    def ensure_output_dir(self) -> None:
        """Create the output directory.

        Raises:
            FileSystemError: if the directory cannot be created
        """
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FileSystemError(f"cannot create output directory: {e}", path=self.output_dir) from e
        if not self.output_dir.is_dir():
            raise FileSystemError("output path exists and is not a directory", path=self.output_dir)

    def is_complete(self, path: Path) -> bool:
        """True when ``path`` exists as a file of at least ``min_existing_bytes``."""
        try:
            stat = Path(path).stat()
        except OSError:
            return False
        return Path(path).is_file() and stat.st_size >= self.min_existing_bytes

    async def write(self, path: Path, content: str) -> int:
        """Atomically write ``content`` to ``path`` off the event loop.

        Returns:
            Number of characters written

        Raises:
            FileSystemError: if the write fails
        """
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, atomic_write_text, Path(path), content)
        except OSError as e:
            raise FileSystemError(str(e), path=Path(path)) from e

        self.logger.debug("Saved chapter", path=str(path), length=len(content))
        return len(content)

    def cleanup_stale_temp_files(self, max_age: float = 3600.0) -> int:
        """Remove temp files older than ``max_age`` seconds left by interrupted runs."""
        if not self.output_dir.is_dir():
            return 0
        removed = remove_stale_atomic_files(self.output_dir, max_age=max_age)
        if removed:
            self.logger.info("Removed stale temporary files", count=removed)
        return removed
