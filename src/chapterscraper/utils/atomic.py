"""
Atomic file writing utilities.

Content is written to a temporary file in the target's directory, flushed and
fsynced, then moved into place with ``os.replace``. Readers never observe a
partially written file.
"""

import os
import tempfile
import time
from pathlib import Path

import structlog

logger = structlog.get_logger(__name__)

TEMP_PREFIX = ".atomic_"
TEMP_SUFFIX = ".tmp"


def atomic_write_text(target_path: Path, content: str, encoding: str = "utf-8") -> None:
    """
    Atomically write text content to a file.

    Args:
        target_path: Target file path to write to
        content: Text content to write
        encoding: Text encoding to use (default: utf-8)

    Raises:
        OSError: If the write or the final replace fails
    """
    target_path = Path(target_path)
    target_path.parent.mkdir(parents=True, exist_ok=True)

    temp_file_path = None
    try:
        with tempfile.NamedTemporaryFile(
            mode="w",
            dir=target_path.parent,
            prefix=f"{TEMP_PREFIX}{target_path.name}.",
            suffix=TEMP_SUFFIX,
            delete=False,
            encoding=encoding,
        ) as temp_file:
            temp_file_path = Path(temp_file.name)
            temp_file.write(content)
            temp_file.flush()
            os.fsync(temp_file.fileno())

        os.replace(temp_file_path, target_path)
        logger.debug("Atomic write completed", target=str(target_path), bytes=len(content.encode(encoding)))

    except OSError as e:
        if temp_file_path and temp_file_path.exists():
            try:
                temp_file_path.unlink()
            except OSError as cleanup_error:
                logger.warning(
                    "Failed to clean up temporary file", temp_file=str(temp_file_path), error=str(cleanup_error)
                )
        raise OSError(f"Failed to atomically write {target_path}: {e}") from e


def remove_stale_atomic_files(directory: Path, max_age: float = 3600.0) -> int:
    """
    Remove temporary files left behind by interrupted writes.

    Args:
        directory: Directory to clean
        max_age: Minimum age in seconds before a temp file is considered stale

    Returns:
        Number of files removed
    """
    removed = 0
    now = time.time()
    for temp_file in Path(directory).glob(f"{TEMP_PREFIX}*{TEMP_SUFFIX}"):
        try:
            if temp_file.is_file() and now - temp_file.stat().st_mtime > max_age:
                temp_file.unlink()
                removed += 1
                logger.debug("Removed stale atomic file", path=str(temp_file))
        except FileNotFoundError:
            continue
    return removed
