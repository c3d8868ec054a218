"""Pytest configuration and shared fixtures.

Network collaborators are replaced by in-process fakes: page and schema
servers via ``httpx.MockTransport``, the browser via ``FakeBrowser`` and the
model provider via ``ScriptedProvider``.
"""

import asyncio
import json
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Callable

import httpx
import pytest

from pagestruct.config import Settings
from pagestruct.jobs.store import MemoryJobStore
from pagestruct.orchestrator import JobOrchestrator
from pagestruct.scrape.browser import RenderedPage
from pagestruct.scrape.extractors import ContentExtractor, DOMExtractor, HeadlessExtractor
from pagestruct.scrape.pool import HeadlessPool
from pagestruct.scrape.url_guard import URLGuard
from pagestruct.structure.schema_client import SchemaClient
from pagestruct.structure.structurer import Structurer

PAGE_URL = "https://shop.example.com/product/42"
SPA_URL = "https://app.example.com/dashboard"
SCHEMA_URL = "https://client.example.com/schemas/product"

PRODUCT_SCHEMA = {
    "type": "object",
    "required": ["name", "price"],
    "properties": {
        "name": {"type": "string"},
        "price": {"type": "number"},
        "tags": {"type": "array", "items": {"type": "string"}},
    },
}
PRODUCT_PROMPT = "Extract the product name, price and tags."
VALID_OUTPUT = json.dumps({"name": "Widget", "price": 9.99, "tags": ["tools"]})

LONG_TEXT = ("Widget 3000 is a sturdy tool for everyday repairs. " * 40).strip()


def html_page(body_text: str, title: str = "Product") -> str:
    return (
        "<!doctype html><html><head><title>{title}</title>"
        "<style>body {{ color: red; }}</style></head>"
        "<body><script>var tracking = 1;</script><main><p>{body}</p></main></body></html>"
    ).format(title=title, body=body_text)


def respond(status_code: int = 200, text: str = "", content_type: str = "text/html; charset=utf-8"):
    """Route target producing a fresh Response for every request."""
    return lambda request: httpx.Response(status_code, text=text, headers={"content-type": content_type})


def respond_json(payload, status_code: int = 200):
    return lambda request: httpx.Response(status_code, json=payload)


def connect_error(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("connection refused", request=request)


def make_client(routes: dict[str, Callable[[httpx.Request], httpx.Response]]) -> httpx.AsyncClient:
    def handler(request: httpx.Request) -> httpx.Response:
        target = routes.get(str(request.url))
        if target is None:
            return httpx.Response(404, text="not found")
        return target(request)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


async def public_resolver(host: str) -> list[str]:
    return ["93.184.216.34"]


class FakeSession:
    def __init__(self, browser: "FakeBrowser"):
        self._browser = browser

    async def render(self, url: str, timeout: float, settle_ms: int) -> RenderedPage:
        b = self._browser
        b.rendering += 1
        b.peak_rendering = max(b.peak_rendering, b.rendering)
        b.rendered_urls.append(url)
        try:
            if b.delay:
                await asyncio.sleep(b.delay)
            page = b.pages.get(url)
            if page is None:
                raise RuntimeError(f"net::ERR_NAME_NOT_RESOLVED at {url}")
            if isinstance(page, BaseException):
                raise page
            if isinstance(page, RenderedPage):
                return page
            return RenderedPage(html=page, final_url=url)
        finally:
            b.rendering -= 1


class FakeBrowser:
    """Stands in for PlaywrightBrowser; records session open/close balance."""

    def __init__(self, pages: dict | None = None, delay: float = 0.0):
        self.pages = pages or {}
        self.delay = delay
        self.opened = 0
        self.closed = 0
        self.rendering = 0
        self.peak_rendering = 0
        self.rendered_urls: list[str] = []
        self.shut_down = False

    @asynccontextmanager
    async def session(self):
        self.opened += 1
        try:
            yield FakeSession(self)
        finally:
            self.closed += 1

    async def close(self) -> None:
        self.shut_down = True


class ScriptedProvider:
    """Returns (or raises) the scripted items in order; the last one repeats."""

    def __init__(self, *outputs, delay: float = 0.0, gate: asyncio.Event | None = None):
        self.outputs = list(outputs) or [VALID_OUTPUT]
        self.delay = delay
        self.gate = gate
        self.calls: list[str] = []

    async def complete(self, system: str, user: str, **kwargs) -> str:
        self.calls.append(user)
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        item = self.outputs.pop(0) if len(self.outputs) > 1 else self.outputs[0]
        if isinstance(item, BaseException):
            raise item
        return item


async def _no_sleep(seconds: float) -> None:
    return None


@pytest.fixture
def settings(tmp_path):
    return Settings(
        pagestruct_data_dir=str(tmp_path),
        pagestruct_job_store="memory",
        headless_max_sessions=2,
        headless_acquire_timeout_seconds=0.2,
        llm_backoff_base_seconds=0.0,
        fetch_backoff_seconds=0.0,
        sweep_interval_seconds=3600,
        cors_origins="http://localhost:3000",
    )


@pytest.fixture
def guard():
    return URLGuard(resolver=public_resolver)


@pytest.fixture
def default_routes():
    return {
        PAGE_URL: respond(text=html_page(LONG_TEXT)),
        SPA_URL: respond(text=html_page("Loading application...")),
        SCHEMA_URL: respond_json({"schema": PRODUCT_SCHEMA, "prompt": PRODUCT_PROMPT}),
    }


@pytest.fixture
def fake_browser():
    return FakeBrowser(pages={SPA_URL: html_page(LONG_TEXT), PAGE_URL: html_page(LONG_TEXT)})


@pytest.fixture
def make_orchestrator(default_routes, fake_browser, guard):
    """Factory building an orchestrator over fakes; keyword overrides per test."""

    def _make(
        provider: ScriptedProvider | None = None,
        routes: dict | None = None,
        browser: FakeBrowser | None = None,
        store=None,
        hard_timeout: float = 60.0,
        max_sessions: int = 2,
        **kwargs,
    ) -> JobOrchestrator:
        client = make_client(routes if routes is not None else default_routes)
        pool = HeadlessPool(max_sessions=max_sessions, acquire_timeout=0.2)
        extractor = ContentExtractor(
            dom=DOMExtractor(timeout=5, client=client, guard=guard, backoff=0),
            headless=HeadlessExtractor(browser or fake_browser, pool, timeout=5, settle_ms=0, guard=guard),
            min_content_chars=100,
        )
        return JobOrchestrator(
            store=store or MemoryJobStore(),
            extractor=extractor,
            schema_client=SchemaClient(timeout=5, cache_ttl=60, client=client, backoff=0),
            structurer=Structurer(provider or ScriptedProvider(), max_attempts=3, sleep=_no_sleep),
            guard=guard,
            job_ttl=timedelta(hours=24),
            hard_timeout=hard_timeout,
            **kwargs,
        )

    return _make


@pytest.fixture
def no_sleep():
    return _no_sleep
