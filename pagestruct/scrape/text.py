"""Markup-to-text conversion shared by both extraction strategies."""

from __future__ import annotations

import re

from bs4 import BeautifulSoup, Comment, Doctype, NavigableString, ProcessingInstruction, Tag

# Subtrees rooted at these elements never contribute visible text.
NON_CONTENT_TAGS = frozenset({
    "script",
    "style",
    "head",
    "noscript",
    "template",
    "iframe",
    "svg",
    "object",
    "canvas",
})

_WS_RE = re.compile(r"\s+")


def html_to_text(html: str) -> str:
    """
    Concatenate the page's text nodes, skipping non-content subtrees.

    Each text node is stripped and joined to the next with a single space;
    runs of whitespace inside nodes are collapsed.
    """
    if not html or not html.strip():
        return ""
    soup = BeautifulSoup(html, "html.parser")
    parts: list[str] = []
    # Iterative walk; page nesting can exceed the recursion limit.
    stack: list = [iter(soup.children)]
    while stack:
        child = next(stack[-1], None)
        if child is None:
            stack.pop()
            continue
        if isinstance(child, (Comment, Doctype, ProcessingInstruction)):
            continue
        if isinstance(child, NavigableString):
            text = _WS_RE.sub(" ", str(child)).strip()
            if text:
                parts.append(text)
        elif isinstance(child, Tag):
            if child.name and child.name.lower() in NON_CONTENT_TAGS:
                continue
            stack.append(iter(child.children))
    return " ".join(parts)


def collapse_whitespace(text: str) -> str:
    """Normalise plain-text bodies the same way extracted markup is."""
    return _WS_RE.sub(" ", text or "").strip()
