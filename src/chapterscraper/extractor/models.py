"""
Data models for extraction results.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(slots=True, frozen=True)
class ExtractResult:
    """Result of selector-based content extraction."""

    url: Optional[str]
    text: str
    selector: str  # the selector that matched
    text_nodes: int  # text nodes seen in the matched element
    kept_nodes: int  # text nodes that made it into ``text``

    def __post_init__(self) -> None:
        """Validate the result."""
        if not self.text.strip():
            raise ValueError("Extracted text must not be empty")

    @property
    def length(self) -> int:
        return len(self.text.strip())
