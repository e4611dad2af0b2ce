"""
BeautifulSoup-based extraction of a designated content region.

A page is matched against an ordered chain of CSS selectors; the first
selector that matches anything wins. The text nodes of the winning element are
then trimmed, filtered and joined one per line.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Iterator, List, Optional, Sequence, Tuple, Union

import soupsieve
import structlog
from bs4 import BeautifulSoup, NavigableString, Tag
from bs4.element import PreformattedString

from chapterscraper.errors import ContentExtractionError, ExtractionFailure, InputValidationError

from .models import ExtractResult

logger = structlog.get_logger(__name__)

SelectorChain = Union[str, Sequence[str]]

_OPENERS = {"(": ")", "[": "]"}


def split_selector_chain(chain: str) -> List[str]:
    """Split a comma-separated selector chain at top-level commas.

    Commas inside brackets, parentheses or quotes belong to a single selector
    (``a[title="x, y"]``, ``:is(h1, h2)``) and are not split on.
    """
    parts: List[str] = []
    current: List[str] = []
    closers: List[str] = []
    quote: Optional[str] = None

    for char in chain:
        if quote:
            if char == quote:
                quote = None
        elif char in ("'", '"'):
            quote = char
        elif char in _OPENERS:
            closers.append(_OPENERS[char])
        elif closers and char == closers[-1]:
            closers.pop()
        elif char == "," and not closers:
            parts.append("".join(current).strip())
            current = []
            continue
        current.append(char)

    parts.append("".join(current).strip())
    return [part for part in parts if part]


@lru_cache(maxsize=64)
def _compile_chain(chain: Tuple[str, ...]) -> Tuple[Tuple[str, soupsieve.SoupSieve], ...]:
    if not chain:
        raise InputValidationError("selector", "selector chain is empty")

    compiled = []
    for expression in chain:
        try:
            compiled.append((expression, soupsieve.compile(expression)))
        except soupsieve.SelectorSyntaxError as e:
            raise InputValidationError("selector", f"invalid CSS selector {expression!r}: {e}") from e
    return tuple(compiled)


def _normalize_chain(chain: SelectorChain) -> Tuple[str, ...]:
    if isinstance(chain, str):
        return tuple(split_selector_chain(chain))
    return tuple(part.strip() for part in chain if part and part.strip())


def iter_text_nodes(element: Tag) -> Iterator[str]:
    """Yield the element's text nodes in document order.

    Script and style text count as text nodes; comments, CDATA, doctypes and
    processing instructions do not.
    """
    for node in element.descendants:
        if isinstance(node, NavigableString) and not isinstance(node, PreformattedString):
            yield str(node)


class ContentExtractor:
    """Extracts normalized text from the first element matched by a selector chain."""

    name = "selector_chain"

    def __init__(
        self,
        selector_chain: SelectorChain,
        skip_count: int = 0,
        filter_patterns: Sequence[str] = (),
        min_content_length: int = 100,
        parser: str = "html.parser",
    ) -> None:
        if skip_count < 0:
            raise ValueError("skip_count must be >= 0")
        if min_content_length < 0:
            raise ValueError("min_content_length must be >= 0")

        self.selectors = _normalize_chain(selector_chain)
        # Fails fast on an empty chain or a malformed expression
        _compile_chain(self.selectors)

        self.skip_count = skip_count
        self.filter_patterns = tuple(pattern for pattern in filter_patterns if pattern)
        self.min_content_length = min_content_length
        self.parser = parser

    def should_filter(self, text: str) -> bool:
        return any(pattern in text for pattern in self.filter_patterns)

    def extract(
        self,
        html: str,
        selector_chain: Optional[SelectorChain] = None,
        *,
        url: Optional[str] = None,
    ) -> ExtractResult:
        """Extract the content region of ``html``.

        Args:
            html: Raw document text
            selector_chain: Optional override of the configured chain
            url: Source URL, used for error reporting only

        Returns:
            ExtractResult whose text holds one kept text node per line

        Raises:
            ContentExtractionError: if the document is empty, no selector
                matches, or the filtered output is empty or too short.
            InputValidationError: if an overriding chain is malformed.
        """
        if not html or not html.strip():
            raise ContentExtractionError(ExtractionFailure.EMPTY_DOCUMENT, "document is empty", url=url)

        selectors = self.selectors if selector_chain is None else _normalize_chain(selector_chain)
        compiled = _compile_chain(selectors)

        soup = BeautifulSoup(html, self.parser)

        matched: Optional[Tag] = None
        matched_selector = ""
        for expression, pattern in compiled:
            matched = pattern.select_one(soup)
            if matched is not None:
                matched_selector = expression
                break

        if matched is None:
            raise ContentExtractionError(
                ExtractionFailure.NO_MATCH,
                f"no element found matching any of {list(selectors)}",
                url=url,
            )

        lines: List[str] = []
        seen = 0
        for index, node in enumerate(iter_text_nodes(matched)):
            seen += 1
            if index < self.skip_count:
                continue
            text = node.strip()
            if not text or self.should_filter(text):
                continue
            lines.append(text + "\n")

        content = "".join(lines)
        length = len(content.strip())

        if length == 0:
            raise ContentExtractionError(
                ExtractionFailure.EMPTY_CONTENT,
                f"selector {matched_selector!r} matched but produced no text after filtering",
                url=url,
            )
        if length < self.min_content_length:
            raise ContentExtractionError(
                ExtractionFailure.TOO_SHORT,
                f"extracted {length} characters, below the minimum of {self.min_content_length}",
                url=url,
            )

        logger.debug(
            "Content extracted",
            url=url,
            selector=matched_selector,
            text_nodes=seen,
            kept_nodes=len(lines),
            length=length,
        )
        return ExtractResult(
            url=url,
            text=content,
            selector=matched_selector,
            text_nodes=seen,
            kept_nodes=len(lines),
        )
