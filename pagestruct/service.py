"""Wiring: build the pipeline components from Settings and manage their lifecycle."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta

import httpx

from pagestruct.config import Settings
from pagestruct.jobs.store import JobStore, get_job_store
from pagestruct.llm import LLMProvider, provider_from_settings
from pagestruct.orchestrator import JobOrchestrator
from pagestruct.scrape.browser import BrowserBackend, PlaywrightBrowser
from pagestruct.scrape.extractors import ContentExtractor, DOMExtractor, HeadlessExtractor
from pagestruct.scrape.pool import HeadlessPool
from pagestruct.scrape.url_guard import URLGuard
from pagestruct.structure.schema_client import SchemaClient
from pagestruct.structure.structurer import Structurer
from pagestruct.sweeper import CleanupSweeper

logger = logging.getLogger(__name__)


@dataclass
class Service:
    settings: Settings
    orchestrator: JobOrchestrator
    sweeper: CleanupSweeper
    pool: HeadlessPool
    http_client: httpx.AsyncClient
    browser: BrowserBackend | None

    async def start(self, run_sweeper: bool = True) -> None:
        await self.orchestrator.recover_interrupted()
        if run_sweeper:
            self.sweeper.start()

    async def close(self) -> None:
        await self.sweeper.stop()
        await self.orchestrator.shutdown()
        if self.browser is not None:
            await self.browser.close()
        await self.http_client.aclose()


def build_service(
    settings: Settings,
    store: JobStore | None = None,
    provider: LLMProvider | None = None,
    http_client: httpx.AsyncClient | None = None,
    browser: BrowserBackend | None = None,
    guard: URLGuard | None = None,
) -> Service:
    """Assemble the orchestrator and its collaborators from configuration."""
    store = store or get_job_store(settings)
    guard = guard or URLGuard(allow_private=settings.allow_private_urls)
    # Shared connection pool; every request passes its own timeout
    http_client = http_client or httpx.AsyncClient(
        limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
        timeout=settings.fetch_timeout_seconds,
    )

    pool = HeadlessPool(
        max_sessions=settings.headless_max_sessions,
        acquire_timeout=settings.headless_acquire_timeout_seconds,
    )
    headless = None
    if settings.headless_enabled:
        browser = browser or PlaywrightBrowser(user_agent=settings.user_agent, guard=guard)
        headless = HeadlessExtractor(
            browser=browser,
            pool=pool,
            timeout=settings.headless_timeout_seconds,
            settle_ms=settings.headless_settle_ms,
            guard=guard,
        )
    else:
        logger.info("Headless rendering disabled; static fetch only")

    extractor = ContentExtractor(
        dom=DOMExtractor(
            timeout=settings.fetch_timeout_seconds,
            user_agent=settings.user_agent,
            client=http_client,
            guard=guard,
            attempts=settings.fetch_max_attempts,
            backoff=settings.fetch_backoff_seconds,
        ),
        headless=headless,
        min_content_chars=settings.min_content_chars,
        max_content_chars=settings.max_content_chars,
    )
    schema_client = SchemaClient(
        timeout=settings.schema_fetch_timeout_seconds,
        cache_ttl=settings.schema_cache_ttl_seconds,
        max_entries=settings.schema_cache_max_entries,
        client=http_client,
        attempts=settings.fetch_max_attempts,
        backoff=settings.fetch_backoff_seconds,
    )
    structurer = Structurer(
        provider=provider or provider_from_settings(settings),
        max_attempts=settings.llm_max_attempts,
        backoff_base=settings.llm_backoff_base_seconds,
        backoff_max=settings.llm_backoff_max_seconds,
    )
    orchestrator = JobOrchestrator(
        store=store,
        extractor=extractor,
        schema_client=schema_client,
        structurer=structurer,
        guard=guard,
        job_ttl=timedelta(seconds=settings.job_ttl_seconds),
        soft_timeout=settings.soft_timeout_seconds,
        hard_timeout=settings.hard_timeout_seconds,
    )
    sweeper = CleanupSweeper(store, interval=settings.sweep_interval_seconds)
    return Service(
        settings=settings,
        orchestrator=orchestrator,
        sweeper=sweeper,
        pool=pool,
        http_client=http_client,
        browser=browser if headless is not None else None,
    )
