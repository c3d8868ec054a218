"""Page content extraction: static fetch, headless fallback, URL guard."""

from pagestruct.scrape.extractors import (
    ContentExtractor,
    DOMExtractor,
    ExtractionResult,
    Extractor,
    HeadlessExtractor,
    needs_headless,
)
from pagestruct.scrape.pool import HeadlessPool
from pagestruct.scrape.text import html_to_text
from pagestruct.scrape.url_guard import URLGuard, check_url_syntax, is_private_address

__all__ = [
    "ContentExtractor",
    "DOMExtractor",
    "ExtractionResult",
    "Extractor",
    "HeadlessExtractor",
    "HeadlessPool",
    "URLGuard",
    "check_url_syntax",
    "html_to_text",
    "is_private_address",
    "needs_headless",
]
