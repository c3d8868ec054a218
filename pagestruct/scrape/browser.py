"""Playwright-backed headless browser with one isolated context per session."""

from __future__ import annotations

import asyncio
import logging
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Protocol
from urllib.parse import urlsplit

from playwright.async_api import Browser, Playwright, Route, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from pagestruct.errors import InvalidInput, ScrapeFailed
from pagestruct.scrape.url_guard import ALLOWED_SCHEMES, URLGuard

logger = logging.getLogger(__name__)


@dataclass
class RenderedPage:
    """Document markup plus the URLs the top-level navigation passed through."""

    html: str
    final_url: str
    redirect_chain: list[str] = field(default_factory=list)


class BrowserSession(Protocol):
    async def render(self, url: str, timeout: float, settle_ms: int) -> RenderedPage:
        """Load ``url`` and return the rendered document."""
        ...


class BrowserBackend(Protocol):
    def session(self) -> AbstractAsyncContextManager[BrowserSession]:
        """Async context manager yielding a fresh, isolated session."""
        ...

    async def close(self) -> None: ...


class _PlaywrightSession:
    def __init__(self, context, guard: URLGuard | None = None):
        self._context = context
        self._guard = guard
        self._host_allowed: dict[str, bool] = {}
        self.blocked_navigation: str | None = None

    async def route(self, route: Route) -> None:
        """Abort any request (redirect hops and subresources included) into private address space."""
        request = route.request
        if not await self._allowed(request.url):
            logger.info("Blocked browser request to %s", request.url)
            if request.is_navigation_request():
                self.blocked_navigation = request.url
            await route.abort("blockedbyclient")
            return
        await route.continue_()

    async def _allowed(self, url: str) -> bool:
        parts = urlsplit(url)
        if parts.scheme.lower() not in ALLOWED_SCHEMES:
            # data:, blob: and friends never leave the browser
            return True
        key = f"{parts.scheme}://{parts.netloc}"
        if key not in self._host_allowed:
            try:
                await self._guard.check(url)
                self._host_allowed[key] = True
            except InvalidInput:
                self._host_allowed[key] = False
        return self._host_allowed[key]

    async def render(self, url: str, timeout: float, settle_ms: int) -> RenderedPage:
        page = await self._context.new_page()
        response = None
        try:
            response = await page.goto(url, wait_until="networkidle", timeout=timeout * 1000)
        except PlaywrightTimeoutError:
            # Network never went idle (polling, websockets ...): give scripts a
            # fixed delay and take whatever has rendered.
            logger.debug("networkidle not reached for %s, using fixed settle delay", url)
            await page.wait_for_timeout(settle_ms)
        except PlaywrightError:
            if self.blocked_navigation is not None:
                raise ScrapeFailed(
                    f"Redirect to a disallowed address: {self.blocked_navigation}",
                    details={"blocked_redirect": True, "redirect_url": self.blocked_navigation},
                ) from None
            raise

        chain: list[str] = []
        hop = response.request.redirected_from if response is not None else None
        while hop is not None:
            chain.append(hop.url)
            hop = hop.redirected_from
        chain.reverse()
        return RenderedPage(html=await page.content(), final_url=page.url, redirect_chain=chain)


class PlaywrightBrowser:
    """Lazily launched Chromium shared by all sessions; contexts are per session."""

    def __init__(
        self,
        user_agent: str | None = None,
        launch_args: list[str] | None = None,
        guard: URLGuard | None = None,
    ):
        self._user_agent = user_agent
        self._launch_args = launch_args or ["--disable-dev-shm-usage"]
        self._guard = guard
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._lock = asyncio.Lock()

    async def _ensure_browser(self) -> Browser:
        async with self._lock:
            if self._browser is None or not self._browser.is_connected():
                if self._playwright is None:
                    self._playwright = await async_playwright().start()
                self._browser = await self._playwright.chromium.launch(
                    headless=True, args=self._launch_args
                )
                logger.info("Launched headless Chromium")
            return self._browser

    @asynccontextmanager
    async def session(self) -> AsyncIterator[BrowserSession]:
        browser = await self._ensure_browser()
        context = await browser.new_context(
            user_agent=self._user_agent,
            java_script_enabled=True,
            # Service workers bypass context routing
            service_workers="block",
        )
        try:
            session = _PlaywrightSession(context, self._guard)
            if self._guard is not None and not self._guard.allow_private:
                await context.route("**/*", session.route)
            yield session
        finally:
            try:
                await context.close()
            except Exception as e:  # browser may already be gone
                logger.warning("Failed to close browser context: %s", e)

    async def close(self) -> None:
        async with self._lock:
            if self._browser is not None:
                await self._browser.close()
                self._browser = None
            if self._playwright is not None:
                await self._playwright.stop()
                self._playwright = None
