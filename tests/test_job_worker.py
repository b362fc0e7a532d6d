import asyncio

import pytest

from uxaudit.services import job_store, job_worker
from uxaudit.services.resource_pool import ResourcePool

INPUT = {"inputs": [{"type": "url", "url": "https://shop.test"}], "auditMode": "standard"}


async def settle():
    for _ in range(5):
        await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_recover_stale_jobs_fails_processing_only():
    stuck = await job_store.create_job(INPUT)
    await job_store.update_status(stuck.id, "processing")
    waiting = await job_store.create_job(INPUT)

    assert await job_worker.recover_stale_jobs(stale_minutes=15) == 0
    assert await job_worker.recover_stale_jobs(stale_minutes=-1) == 1

    stored = await job_store.get_job(stuck.id)
    assert stored.status == "failed"
    assert "interrupted" in stored.error_message
    assert (await job_store.get_job(waiting.id)).status == "pending"


@pytest.mark.asyncio
async def test_dispatch_pending_is_bounded_by_pool(monkeypatch):
    for _ in range(3):
        await job_store.create_job(INPUT)
    started = []
    gate = asyncio.Event()

    async def fake_process(job_id, *, browser_endpoint=None, release_resource=None, deps=None):
        started.append(browser_endpoint)
        await gate.wait()

    monkeypatch.setattr(job_worker, "process_audit_job", fake_process)
    pool = ResourcePool(["ws://browser-a", "ws://browser-b"], record_usage=False)

    assert await job_worker.dispatch_pending(pool) == 2
    await settle()
    assert sorted(started) == ["ws://browser-a", "ws://browser-b"]
    assert await job_worker.dispatch_pending(pool) == 0

    gate.set()
    await asyncio.gather(*list(job_worker._running_tasks))
    assert pool.in_use == 0
    assert job_worker._dispatched == set()


@pytest.mark.asyncio
async def test_slot_released_when_processing_raises(monkeypatch):
    await job_store.create_job(INPUT)

    async def exploding_process(job_id, **kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr(job_worker, "process_audit_job", exploding_process)
    pool = ResourcePool(["ws://browser-a"], record_usage=False)

    assert await job_worker.dispatch_pending(pool) == 1
    await asyncio.gather(*list(job_worker._running_tasks), return_exceptions=True)

    assert pool.in_use == 0


@pytest.mark.asyncio
async def test_claimed_job_is_not_dispatched_again(monkeypatch):
    job = await job_store.create_job(INPUT)
    claimed = []

    async def claim_only(job_id, *, browser_endpoint=None, release_resource=None, deps=None):
        claimed.append(await job_store.update_status(job_id, "processing"))
        await release_resource()

    monkeypatch.setattr(job_worker, "process_audit_job", claim_only)
    pool = ResourcePool([], local_slots=1, record_usage=False)

    await job_worker.dispatch_pending(pool)
    await asyncio.gather(*list(job_worker._running_tasks))

    assert claimed == [True]
    assert (await job_store.get_job(job.id)).status == "processing"
    assert await job_worker.dispatch_pending(pool) == 0


def test_notify_new_job_sets_wakeup():
    event = job_worker._wakeup_event()
    event.clear()

    job_worker.notify_new_job()

    assert event.is_set()
    event.clear()


@pytest.mark.asyncio
async def test_periodic_sweep_skips_jobs_running_here(monkeypatch):
    running = await job_store.create_job(INPUT)
    await job_store.update_status(running.id, "processing")
    orphaned = await job_store.create_job(INPUT)
    await job_store.update_status(orphaned.id, "processing")
    monkeypatch.setattr(job_worker, "_dispatched", {running.id})

    assert await job_worker.recover_stale_jobs(stale_minutes=-1) == 1

    assert (await job_store.get_job(orphaned.id)).status == "failed"
    assert (await job_store.get_job(running.id)).status == "processing"
    merged = await job_store.append_progress(running.id, "✓ UX complete.", {"UX Audit expert": {}})
    assert merged["UX Audit expert"] == {}


@pytest.mark.asyncio
async def test_startup_fails_every_processing_job(monkeypatch):
    from uxaudit.main import app, lifespan

    just_started = await job_store.create_job(INPUT)
    await job_store.update_status(just_started.id, "processing")
    waiting = await job_store.create_job(INPUT)

    async def idle_worker():
        await asyncio.Event().wait()

    monkeypatch.setattr(job_worker, "worker_loop", idle_worker)

    async with lifespan(app):
        stored = await job_store.get_job(just_started.id)
        assert stored.status == "failed"
        assert "server restart" in stored.error_message
        assert (await job_store.get_job(waiting.id)).status == "pending"
    await settle()
