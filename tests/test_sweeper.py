"""Tests for the expired-job cleanup sweeper."""

import asyncio
from datetime import timedelta

from pagestruct.jobs.models import Job, utcnow
from pagestruct.jobs.store import MemoryJobStore, new_job_id
from pagestruct.sweeper import CleanupSweeper

from conftest import PAGE_URL, SCHEMA_URL


def _job(age: timedelta) -> Job:
    return Job.new(
        job_id=new_job_id(),
        url=PAGE_URL,
        schema_endpoint=SCHEMA_URL,
        ttl=timedelta(hours=24),
        now=utcnow() - age,
    )


async def test_sweep_once_deletes_only_expired():
    store = MemoryJobStore()
    old = await store.create(_job(timedelta(hours=25)))
    fresh = await store.create(_job(timedelta(hours=1)))

    removed = await CleanupSweeper(store).sweep_once()
    assert removed == 1
    assert await store.list_ids() == [fresh.job_id]
    assert old.job_id not in await store.list_ids()


async def test_sweep_once_with_nothing_to_do():
    store = MemoryJobStore()
    await store.create(_job(timedelta(0)))
    assert await CleanupSweeper(store).sweep_once() == 0
    assert await store.count() == 1


async def test_background_loop_runs_and_stops():
    store = MemoryJobStore()
    await store.create(_job(timedelta(hours=30)))
    sweeper = CleanupSweeper(store, interval=0.01)
    sweeper.start()
    assert sweeper.running
    for _ in range(100):
        if await store.count() == 0:
            break
        await asyncio.sleep(0.01)
    await sweeper.stop()
    assert await store.count() == 0
    assert not sweeper.running


async def test_loop_survives_a_failed_sweep():
    class FlakyStore(MemoryJobStore):
        def __init__(self):
            super().__init__()
            self.calls = 0

        async def list_expired(self, now=None):
            self.calls += 1
            if self.calls == 1:
                raise OSError("disk unavailable")
            return await super().list_expired(now)

    store = FlakyStore()
    await store.create(_job(timedelta(hours=30)))
    sweeper = CleanupSweeper(store, interval=0.01)
    sweeper.start()
    for _ in range(100):
        if store.calls >= 2 and await store.count() == 0:
            break
        await asyncio.sleep(0.01)
    await sweeper.stop()
    assert store.calls >= 2
    assert await store.count() == 0


async def test_stop_without_start():
    sweeper = CleanupSweeper(MemoryJobStore())
    await sweeper.stop()
    assert not sweeper.running
