"""End-to-end tests of the job pipeline over in-process fakes."""

import asyncio
from datetime import timedelta

import pytest

from pagestruct.errors import Internal, InvalidInput, NotFound
from pagestruct.jobs.models import STATUS_RANK, ExtractionMethod, Job, JobOptions, JobStatus, utcnow
from pagestruct.jobs.store import FileJobStore, MemoryJobStore

from conftest import (
    LONG_TEXT,
    PAGE_URL,
    SCHEMA_URL,
    SPA_URL,
    FakeBrowser,
    ScriptedProvider,
    connect_error,
    html_page,
    respond,
)


async def _wait_for_status(orchestrator, job_id, status, timeout=2.0):
    async def _poll():
        while (await orchestrator.get_status(job_id)).status != status:
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout)


class TestHappyPath:
    async def test_static_page_completes(self, make_orchestrator):
        orchestrator = make_orchestrator()
        job = await orchestrator.submit(
            PAGE_URL, SCHEMA_URL, client_id="acme", metadata={"order": 17}
        )
        assert job.status == JobStatus.QUEUED

        done = await orchestrator.wait(job.job_id)
        assert done.status == JobStatus.COMPLETED
        assert done.method == ExtractionMethod.DOM
        assert done.structured_data == {"name": "Widget", "price": 9.99, "tags": ["tools"]}
        assert done.raw_content == LONG_TEXT
        assert done.error is None
        assert done.completed_at is not None
        assert done.progress.step == "completed"
        assert done.metadata == {"order": 17}
        assert orchestrator.active_workers == 0

    async def test_client_rendered_page_uses_headless(self, make_orchestrator, fake_browser):
        orchestrator = make_orchestrator()
        job = await orchestrator.submit(SPA_URL, SCHEMA_URL)
        done = await orchestrator.wait(job.job_id)
        assert done.status == JobStatus.COMPLETED
        assert done.method == ExtractionMethod.HEADLESS
        assert fake_browser.rendered_urls == [SPA_URL]

    async def test_statuses_only_move_forward(self, make_orchestrator):
        gate = asyncio.Event()
        orchestrator = make_orchestrator(provider=ScriptedProvider(gate=gate))
        job = await orchestrator.submit(PAGE_URL, SCHEMA_URL)

        seen = []

        async def poll():
            while True:
                current = await orchestrator.get_status(job.job_id)
                seen.append(current.status)
                if current.is_terminal:
                    return
                await asyncio.sleep(0)

        poller = asyncio.create_task(poll())
        await _wait_for_status(orchestrator, job.job_id, JobStatus.PARSING)
        gate.set()
        await asyncio.wait_for(poller, 2)

        ranks = [STATUS_RANK[s] for s in seen]
        assert ranks == sorted(ranks)
        assert JobStatus.PARSING in seen
        assert seen[-1] == JobStatus.COMPLETED

    async def test_jobs_are_independent(self, make_orchestrator):
        orchestrator = make_orchestrator()
        jobs = [await orchestrator.submit(PAGE_URL, SCHEMA_URL) for _ in range(5)]
        assert len({j.job_id for j in jobs}) == 5
        results = await asyncio.gather(*(orchestrator.wait(j.job_id) for j in jobs))
        assert all(r.status == JobStatus.COMPLETED for r in results)

    async def test_estimated_completion_uses_soft_target(self, make_orchestrator):
        orchestrator = make_orchestrator(soft_timeout=30.0)
        job = await orchestrator.submit(PAGE_URL, SCHEMA_URL)
        assert orchestrator.estimated_completion(job) == job.created_at + timedelta(seconds=30)
        await orchestrator.wait(job.job_id)


class TestSubmitValidation:
    @pytest.mark.parametrize(
        "url,endpoint",
        [
            ("ftp://example.com/file", SCHEMA_URL),
            (PAGE_URL, "http://127.0.0.1/schema"),
            ("not a url", SCHEMA_URL),
        ],
    )
    async def test_invalid_input_creates_no_job(self, make_orchestrator, url, endpoint):
        store = MemoryJobStore()
        orchestrator = make_orchestrator(store=store)
        with pytest.raises(InvalidInput):
            await orchestrator.submit(url, endpoint)
        assert await store.count() == 0


class TestFailures:
    async def test_scrape_failure(self, make_orchestrator):
        routes = {PAGE_URL: respond(500, text="error")}
        orchestrator = make_orchestrator(routes=routes, browser=FakeBrowser())
        job = await orchestrator.submit(PAGE_URL, SCHEMA_URL)
        done = await orchestrator.wait(job.job_id)
        assert done.status == JobStatus.FAILED
        assert done.error.code == "SCRAPE_FAILED"
        assert done.error.details["http_status"] == 500
        assert done.structured_data is None

    async def test_unreachable_schema_endpoint(self, make_orchestrator):
        routes = {
            PAGE_URL: respond(text=html_page(LONG_TEXT)),
            SCHEMA_URL: connect_error,
        }
        orchestrator = make_orchestrator(routes=routes)
        job = await orchestrator.submit(PAGE_URL, SCHEMA_URL)
        done = await orchestrator.wait(job.job_id)
        assert done.status == JobStatus.FAILED
        assert done.error.code == "SCHEMA_FETCH_FAILED"
        # Extraction had already succeeded
        assert done.method == ExtractionMethod.DOM
        assert done.raw_content == LONG_TEXT

    async def test_model_never_matches_schema(self, make_orchestrator):
        provider = ScriptedProvider('{"title": "Widget"}')
        orchestrator = make_orchestrator(provider=provider)
        job = await orchestrator.submit(PAGE_URL, SCHEMA_URL)
        done = await orchestrator.wait(job.job_id)
        assert done.status == JobStatus.FAILED
        assert done.error.code == "SCHEMA_VALIDATION_FAILED"
        assert done.error.details["last_output"] == '{"title": "Widget"}'
        assert len(provider.calls) == 2

    async def test_hard_timeout(self, make_orchestrator):
        orchestrator = make_orchestrator(provider=ScriptedProvider(delay=5.0), hard_timeout=0.1)
        job = await orchestrator.submit(PAGE_URL, SCHEMA_URL)
        done = await asyncio.wait_for(orchestrator.wait(job.job_id), 2)
        assert done.status == JobStatus.FAILED
        assert done.error.code == "TIMEOUT"
        assert done.error.details["timeout_seconds"] == 0.1

    async def test_client_timeout_is_capped_by_hard_limit(self, make_orchestrator):
        orchestrator = make_orchestrator(provider=ScriptedProvider(delay=5.0), hard_timeout=60.0)
        job = await orchestrator.submit(PAGE_URL, SCHEMA_URL, options=JobOptions(timeout=0.1))
        done = await asyncio.wait_for(orchestrator.wait(job.job_id), 2)
        assert done.error.code == "TIMEOUT"
        assert done.error.details["timeout_seconds"] == 0.1

    async def test_unexpected_error_is_internal(self, make_orchestrator):
        orchestrator = make_orchestrator(provider=ScriptedProvider(ValueError("boom")))
        job = await orchestrator.submit(PAGE_URL, SCHEMA_URL)
        done = await orchestrator.wait(job.job_id)
        assert done.status == JobStatus.FAILED
        assert done.error.code == "INTERNAL"
        assert "boom" in done.error.message


class TestCancellation:
    async def test_cancel_before_start(self, make_orchestrator, fake_browser):
        provider = ScriptedProvider()
        orchestrator = make_orchestrator(provider=provider)
        job = await orchestrator.submit(PAGE_URL, SCHEMA_URL)
        canceled = await orchestrator.cancel(job.job_id)
        assert canceled.cancel_requested is True

        done = await orchestrator.wait(job.job_id)
        assert done.status == JobStatus.CANCELED
        assert done.error is None
        assert provider.calls == []

    async def test_cancel_during_scraping_stops_before_structuring(self, make_orchestrator):
        browser = FakeBrowser(pages={SPA_URL: html_page(LONG_TEXT)}, delay=0.2)
        provider = ScriptedProvider()
        orchestrator = make_orchestrator(provider=provider, browser=browser)
        job = await orchestrator.submit(SPA_URL, SCHEMA_URL)
        await _wait_for_status(orchestrator, job.job_id, JobStatus.SCRAPING)
        await orchestrator.cancel(job.job_id)

        done = await orchestrator.wait(job.job_id)
        assert done.status == JobStatus.CANCELED
        assert done.progress.message == "Canceled before structuring"
        assert provider.calls == []

    async def test_cancel_while_parsing_skips_model_call(self, make_orchestrator, default_routes):
        schema_gate = asyncio.Event()
        serve_schema = default_routes[SCHEMA_URL]

        async def held_schema(request):
            await schema_gate.wait()
            return serve_schema(request)

        provider = ScriptedProvider()
        orchestrator = make_orchestrator(
            provider=provider, routes={**default_routes, SCHEMA_URL: held_schema}
        )
        job = await orchestrator.submit(PAGE_URL, SCHEMA_URL)
        await _wait_for_status(orchestrator, job.job_id, JobStatus.PARSING)
        await orchestrator.cancel(job.job_id)
        schema_gate.set()

        done = await orchestrator.wait(job.job_id)
        assert done.status == JobStatus.CANCELED
        assert done.progress.message == "Canceled before model call"
        assert done.raw_content == LONG_TEXT
        assert done.structured_data is None
        assert provider.calls == []

    async def test_cancel_finished_job_is_noop(self, make_orchestrator):
        orchestrator = make_orchestrator()
        job = await orchestrator.submit(PAGE_URL, SCHEMA_URL)
        await orchestrator.wait(job.job_id)
        after = await orchestrator.cancel(job.job_id)
        assert after.status == JobStatus.COMPLETED
        assert after.cancel_requested is False

    async def test_cancel_unknown(self, make_orchestrator):
        with pytest.raises(NotFound):
            await make_orchestrator().cancel("0" * 32)


class TestWorkers:
    async def test_second_worker_is_refused(self, make_orchestrator):
        gate = asyncio.Event()
        orchestrator = make_orchestrator(provider=ScriptedProvider(gate=gate))
        job = await orchestrator.submit(PAGE_URL, SCHEMA_URL)
        with pytest.raises(Internal):
            orchestrator.start_worker(job.job_id)
        gate.set()
        assert (await orchestrator.wait(job.job_id)).status == JobStatus.COMPLETED

    async def test_job_removed_while_running(self, make_orchestrator):
        gate = asyncio.Event()
        store = MemoryJobStore()
        orchestrator = make_orchestrator(provider=ScriptedProvider(gate=gate), store=store)
        job = await orchestrator.submit(PAGE_URL, SCHEMA_URL)
        await _wait_for_status(orchestrator, job.job_id, JobStatus.PARSING)

        assert await store.delete(job.job_id)
        gate.set()
        with pytest.raises(NotFound):
            await orchestrator.wait(job.job_id)
        assert await store.count() == 0
        assert orchestrator.active_workers == 0

    async def test_shutdown_fails_running_jobs(self, make_orchestrator):
        gate = asyncio.Event()
        orchestrator = make_orchestrator(provider=ScriptedProvider(gate=gate))
        job = await orchestrator.submit(PAGE_URL, SCHEMA_URL)
        await _wait_for_status(orchestrator, job.job_id, JobStatus.PARSING)

        await orchestrator.shutdown()
        stored = await orchestrator.get_status(job.job_id)
        assert stored.status == JobStatus.FAILED
        assert stored.error.code == "INTERNAL"

    async def test_recover_interrupted_jobs(self, make_orchestrator, tmp_path):
        store = FileJobStore(tmp_path)
        stale = Job.new(job_id="a" * 32, url=PAGE_URL, schema_endpoint=SCHEMA_URL, ttl=timedelta(hours=24))
        await store.create(stale)
        await store.update(stale.job_id, status=JobStatus.SCRAPING)

        orchestrator = make_orchestrator(store=store)
        assert await orchestrator.recover_interrupted() == 1
        recovered = await store.get(stale.job_id)
        assert recovered.status == JobStatus.FAILED
        assert "restart" in recovered.error.message


class TestReads:
    async def test_expired_job_is_not_found(self, make_orchestrator):
        """A job created 25 hours ago reads as unknown."""
        store = MemoryJobStore()
        old = Job.new(
            job_id="b" * 32,
            url=PAGE_URL,
            schema_endpoint=SCHEMA_URL,
            ttl=timedelta(hours=24),
            now=utcnow() - timedelta(hours=25),
        )
        await store.create(old)
        orchestrator = make_orchestrator(store=store)
        with pytest.raises(NotFound) as exc_info:
            await orchestrator.get_status(old.job_id)
        assert exc_info.value.code == "NOT_FOUND"

    async def test_authorizer_hides_other_clients_jobs(self, make_orchestrator):
        orchestrator = make_orchestrator(
            authorize=lambda job, client_id: client_id is None or client_id == job.client_id
        )
        job = await orchestrator.submit(PAGE_URL, SCHEMA_URL, client_id="acme")
        await orchestrator.wait(job.job_id)

        assert (await orchestrator.get_status(job.job_id, client_id="acme")).job_id == job.job_id
        with pytest.raises(NotFound):
            await orchestrator.get_status(job.job_id, client_id="globex")
        with pytest.raises(NotFound):
            await orchestrator.cancel(job.job_id, client_id="globex")
