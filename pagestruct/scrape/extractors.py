"""Page-to-text extraction: static DOM fetch with headless-render fallback.

``DOMExtractor`` issues a plain HTTP GET and converts the markup to text.
``HeadlessExtractor`` renders the page in an isolated browser session taken
from a bounded pool and applies the same text rule. ``ContentExtractor``
runs the primary strategy and decides, via ``needs_headless``, whether to
escalate.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol
from urllib.parse import urlsplit

import httpx

from pagestruct.errors import InvalidInput, ResourceExhausted, ScrapeFailed
from pagestruct.jobs.models import ExtractionMethod, JobOptions
from pagestruct.net import get_with_retry
from pagestruct.scrape.browser import BrowserBackend, RenderedPage
from pagestruct.scrape.pool import HeadlessPool
from pagestruct.scrape.text import collapse_whitespace, html_to_text
from pagestruct.scrape.url_guard import ALLOWED_SCHEMES, URLGuard

logger = logging.getLogger(__name__)

_MARKUP_TYPES = ("html", "xml")


@dataclass
class ExtractionResult:
    """Text extracted from a page and the strategy that produced it."""

    content: str
    method: ExtractionMethod
    details: dict[str, Any] = field(default_factory=dict)


class Extractor(Protocol):
    method: ExtractionMethod

    async def extract(self, url: str) -> ExtractionResult: ...


# ---------------------------------------------------------------------------
# Static fetch
# ---------------------------------------------------------------------------

class DOMExtractor:
    """Plain GET + markup-to-text. Connection errors are retried; non-2xx is a failure."""

    method = ExtractionMethod.DOM

    def __init__(
        self,
        timeout: float = 10.0,
        user_agent: str | None = None,
        client: httpx.AsyncClient | None = None,
        guard: URLGuard | None = None,
        attempts: int = 2,
        backoff: float = 0.5,
    ):
        self.timeout = timeout
        self._headers = {"User-Agent": user_agent} if user_agent else {}
        self._client = client
        self._guard = guard
        self.attempts = attempts
        self.backoff = backoff

    async def extract(self, url: str) -> ExtractionResult:
        try:
            if self._client is not None:
                response = await self._get(self._client, url)
            else:
                async with httpx.AsyncClient(follow_redirects=True) as client:
                    response = await self._get(client, url)
        except httpx.TimeoutException as e:
            raise ScrapeFailed(
                f"Fetch timed out after {self.timeout}s",
                details={"timeout": True, "error": str(e) or type(e).__name__},
            ) from e
        except httpx.HTTPError as e:
            raise ScrapeFailed(
                f"Fetch failed: {e}",
                details={"error": str(e) or type(e).__name__},
            ) from e

        if not response.is_success:
            raise ScrapeFailed(
                f"Fetch returned HTTP {response.status_code}",
                details={"http_status": response.status_code},
            )

        content_type = response.headers.get("content-type", "").lower()
        if not content_type or any(t in content_type for t in _MARKUP_TYPES):
            text = html_to_text(response.text)
        elif content_type.startswith("text/"):
            text = collapse_whitespace(response.text)
        else:
            raise ScrapeFailed(
                f"Unsupported content type: {content_type}",
                details={"http_status": response.status_code, "content_type": content_type},
            )
        return ExtractionResult(
            content=text,
            method=self.method,
            details={"http_status": response.status_code, "final_url": str(response.url)},
        )

    async def _get(self, client: httpx.AsyncClient, url: str) -> httpx.Response:
        if self._guard is not None:
            # Re-check every redirect hop against the private-address guard
            response = await self._fetch(client, url, follow_redirects=False)
            for _ in range(10):
                if not response.is_redirect:
                    return response
                next_url = str(response.next_request.url) if response.next_request else ""
                try:
                    await self._guard.check(next_url)
                except InvalidInput as e:
                    raise ScrapeFailed(
                        f"Redirect to a disallowed address: {next_url}",
                        details={"blocked_redirect": True, "redirect_url": next_url},
                    ) from e
                response = await self._fetch(client, next_url, follow_redirects=False)
            raise httpx.TooManyRedirects("Exceeded 10 redirects", request=response.request)
        return await self._fetch(client, url, follow_redirects=True)

    async def _fetch(self, client: httpx.AsyncClient, url: str, follow_redirects: bool) -> httpx.Response:
        return await get_with_retry(
            client,
            url,
            timeout=self.timeout,
            headers=self._headers,
            follow_redirects=follow_redirects,
            attempts=self.attempts,
            backoff=self.backoff,
        )


# ---------------------------------------------------------------------------
# Headless render
# ---------------------------------------------------------------------------

class HeadlessExtractor:
    """Render in a pooled browser session, then apply the DOM text rule.

    ``timeout`` bounds the whole render: navigation, the settle delay and
    reading the document. Every URL the navigation passed through is checked
    against the private-address guard before the content is used.
    """

    method = ExtractionMethod.HEADLESS
    # Held back from navigation for reading the rendered document
    content_reserve = 1.0

    def __init__(
        self,
        browser: BrowserBackend,
        pool: HeadlessPool,
        timeout: float = 15.0,
        settle_ms: int = 1500,
        guard: URLGuard | None = None,
    ):
        self._browser = browser
        self.pool = pool
        self.timeout = timeout
        self.settle_ms = settle_ms
        self._guard = guard

    @property
    def navigation_timeout(self) -> float:
        return max(self.timeout - self.settle_ms / 1000 - self.content_reserve, self.timeout / 2)

    async def extract(self, url: str) -> ExtractionResult:
        async with self.pool.acquire():
            try:
                async with self._browser.session() as session:
                    page = await asyncio.wait_for(
                        session.render(url, self.navigation_timeout, self.settle_ms),
                        timeout=self.timeout,
                    )
            except asyncio.TimeoutError as e:
                raise ScrapeFailed(
                    f"Headless render timed out after {self.timeout}s",
                    details={"timeout": True},
                ) from e
            except ScrapeFailed:
                raise
            except Exception as e:
                # Playwright surfaces navigation and crash errors as generic Errors
                raise ScrapeFailed(
                    f"Headless render failed: {e}",
                    details={"error": str(e)[:300]},
                ) from e
        await self._check_navigation(page)
        return ExtractionResult(
            content=html_to_text(page.html),
            method=self.method,
            details={"final_url": page.final_url},
        )

    async def _check_navigation(self, page: RenderedPage) -> None:
        if self._guard is None:
            return
        for hop in [*page.redirect_chain, page.final_url]:
            if urlsplit(hop).scheme.lower() not in ALLOWED_SCHEMES:
                continue
            try:
                await self._guard.check(hop)
            except InvalidInput as e:
                raise ScrapeFailed(
                    f"Redirect to a disallowed address: {hop}",
                    details={"blocked_redirect": True, "redirect_url": hop},
                ) from e


# ---------------------------------------------------------------------------
# Strategy selection
# ---------------------------------------------------------------------------

def needs_headless(
    primary: ExtractionResult | None,
    options: JobOptions,
    min_chars: int,
) -> bool:
    """
    Fallback policy. Escalate to headless rendering when any of:

    - the caller asked for ``force_headless``;
    - the primary fetch failed outright (``primary is None``);
    - the primary text is shorter than ``min_chars``.
    """
    if options.force_headless or primary is None:
        return True
    return len(primary.content) < min_chars


class ContentExtractor:
    """Single entry point combining the DOM and headless strategies."""

    def __init__(
        self,
        dom: Extractor,
        headless: Extractor | None = None,
        min_content_chars: int = 100,
        max_content_chars: int = 100_000,
    ):
        self.dom = dom
        self.headless = headless
        self.min_content_chars = min_content_chars
        self.max_content_chars = max_content_chars

    async def extract(self, url: str, options: JobOptions | None = None) -> ExtractionResult:
        options = options or JobOptions()
        primary: ExtractionResult | None = None
        primary_error: ScrapeFailed | None = None

        if not options.force_headless:
            try:
                primary = await self.dom.extract(url)
            except ScrapeFailed as e:
                if e.details.get("blocked_redirect"):
                    raise
                primary_error = e
                logger.info("Primary fetch failed for %s: %s", url, e.message)

        if not needs_headless(primary, options, self.min_content_chars):
            return self._finish(primary)

        if primary is not None:
            logger.info(
                "Primary text too short for %s (%d < %d chars), trying headless",
                url, len(primary.content), self.min_content_chars,
            )

        if self.headless is None:
            if primary is not None and primary.content:
                return self._finish(primary)
            raise self._combined_failure(primary_error, None, headless_disabled=True)

        try:
            rendered = await self.headless.extract(url)
        except ScrapeFailed as e:
            logger.info("Headless render failed for %s: %s", url, e.message)
            if e.details.get("blocked_redirect"):
                raise
            if primary is not None and primary.content:
                logger.warning("Using short DOM text for %s after headless failure", url)
                primary.details["headless_error"] = e.message
                return self._finish(primary)
            raise self._combined_failure(primary_error, e)

        if not rendered.content:
            raise self._combined_failure(
                primary_error, ScrapeFailed("Rendered page contained no text")
            )
        return self._finish(rendered)

    def _finish(self, result: ExtractionResult) -> ExtractionResult:
        if len(result.content) > self.max_content_chars:
            result.details["truncated_from"] = len(result.content)
            result.content = result.content[: self.max_content_chars]
        return result

    @staticmethod
    def _combined_failure(
        primary_error: ScrapeFailed | None,
        headless_error: ScrapeFailed | None,
        headless_disabled: bool = False,
    ) -> ScrapeFailed:
        details: dict[str, Any] = {}
        messages = []
        if primary_error is not None:
            details.update(primary_error.details)
            details["primary_error"] = primary_error.message
            messages.append(f"static fetch: {primary_error.message}")
        if headless_error is not None:
            for key, value in headless_error.details.items():
                details.setdefault(key, value)
            details["headless_error"] = headless_error.message
            messages.append(f"headless: {headless_error.message}")
        if headless_disabled:
            details["headless_disabled"] = True
            messages.append("headless rendering disabled")
        message = "Could not extract page content (" + "; ".join(messages or ["no text"]) + ")"
        # Pool exhaustion keeps its type; details carry resource_exhausted for clients
        cls = ResourceExhausted if isinstance(headless_error, ResourceExhausted) else ScrapeFailed
        return cls(message, details=details)
