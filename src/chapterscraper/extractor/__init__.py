"""
Content extraction: selector-chain matching over tolerant HTML parsing.
"""

from .models import ExtractResult
from .selector_extractor import ContentExtractor, iter_text_nodes, split_selector_chain

__all__ = ["ContentExtractor", "ExtractResult", "iter_text_nodes", "split_selector_chain"]
