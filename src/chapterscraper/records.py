"""
Reading the chapter list.

The source is a CSV file of ``url,chapter_number`` rows. Rows are returned
as-is; validation happens when a record becomes a ``WorkItem``.
"""

from __future__ import annotations

import csv
from pathlib import Path
from typing import Iterable, List

import structlog

from chapterscraper.config import ScraperConfig
from chapterscraper.errors import CsvError, InputValidationError
from chapterscraper.models import ChapterRecord, WorkItem
from chapterscraper.storage.file_store import FileStore

logger = structlog.get_logger(__name__)


def read_records(path: Path, has_header: bool = True) -> List[ChapterRecord]:
    """Read ``url,chapter_number`` rows from ``path``.

    Blank lines are skipped. Short rows yield empty fields, which are
    rejected later as invalid records.

    Raises:
        CsvError: if the file cannot be opened or parsed
    """
    path = Path(path)
    records: List[ChapterRecord] = []
    try:
        with open(path, newline="", encoding="utf-8-sig") as f:
            reader = csv.reader(f)
            if has_header:
                next(reader, None)
            for row in reader:
                if not row or all(not cell.strip() for cell in row):
                    continue
                url = row[0] if len(row) > 0 else ""
                chapter = row[1] if len(row) > 1 else ""
                records.append(ChapterRecord(url=url, chapter_number=chapter))
    except FileNotFoundError as e:
        raise CsvError(f"input file not found: {path}") from e
    except (OSError, UnicodeDecodeError) as e:
        raise CsvError(f"cannot read {path}: {e}") from e
    except csv.Error as e:
        raise CsvError(f"malformed CSV in {path}: {e}") from e

    logger.info("Loaded chapter list", path=str(path), records=len(records))
    return records


def count_existing(records: Iterable[ChapterRecord], store: FileStore, config: ScraperConfig) -> int:
    """Count records whose output file is already complete."""
    existing = 0
    for record in records:
        try:
            item = WorkItem.from_record(record, config.output_dir, config.file_prefix, config.file_extension)
        except InputValidationError:
            continue
        if store.is_complete(item.output_path):
            existing += 1
    return existing
