import asyncio
from datetime import timedelta

import pytest

from uxaudit.models.base import utcnow
from uxaudit.services import job_store
from uxaudit.services.job_store import InvalidTransitionError

INPUT = {"inputs": [{"type": "url", "url": "https://shop.test"}], "auditMode": "standard"}


@pytest.mark.asyncio
async def test_create_job_is_pending_with_queued_log():
    job = await job_store.create_job(INPUT)

    assert job.status == "pending"
    assert job.input_data == INPUT
    assert [e["message"] for e in job.report_data["logs"]] == ["Audit queued..."]
    assert job.error_message is None and job.result_url is None


@pytest.mark.asyncio
async def test_get_job_unknown_and_malformed_ids():
    assert await job_store.get_job("00000000-0000-0000-0000-000000000000") is None
    assert await job_store.get_job("not a uuid at all, definitely way too long to be one") is None
    assert await job_store.get_job("") is None


@pytest.mark.asyncio
async def test_forward_transitions_only():
    job = await job_store.create_job(INPUT)

    assert await job_store.update_status(job.id, "completed") is False
    assert await job_store.update_status(job.id, "processing") is True
    assert await job_store.update_status(job.id, "processing") is False
    assert await job_store.update_status(job.id, "completed", result_url=f"/report/{job.id}") is True
    # second terminal write is rejected
    assert await job_store.update_status(job.id, "failed", error_message="late") is False

    stored = await job_store.get_job(job.id)
    assert stored.status == "completed"
    assert stored.result_url == f"/report/{job.id}"
    assert stored.error_message is None


@pytest.mark.asyncio
async def test_failed_sets_error_message():
    job = await job_store.create_job(INPUT)
    await job_store.update_status(job.id, "processing")

    assert await job_store.update_status(job.id, "failed", error_message="Scraping failed: boom")

    stored = await job_store.get_job(job.id)
    assert stored.status == "failed"
    assert stored.error_message == "Scraping failed: boom"
    assert stored.result_url is None


@pytest.mark.asyncio
async def test_unknown_status_rejected():
    job = await job_store.create_job(INPUT)
    with pytest.raises(InvalidTransitionError):
        await job_store.update_status(job.id, "pending")


@pytest.mark.asyncio
async def test_update_status_missing_job():
    assert await job_store.update_status("missing-id", "processing") is False


@pytest.mark.asyncio
async def test_append_progress_merges_and_appends():
    job = await job_store.create_job(INPUT)

    await job_store.append_progress(job.id, "Running UX...")
    await job_store.append_progress(job.id, "✓ UX complete.", {"UX Audit expert": {"OverallScore": 70}})
    merged = await job_store.append_progress(
        job.id, "✓ UX complete (again).", {"UX Audit expert": {"OverallScore": 75}, "logs": ["ignored"]}
    )

    assert merged["UX Audit expert"] == {"OverallScore": 75}
    stored = await job_store.get_job(job.id)
    assert [e["message"] for e in stored.report_data["logs"]] == [
        "Audit queued...", "Running UX...", "✓ UX complete.", "✓ UX complete (again).",
    ]
    assert stored.report_data["UX Audit expert"] == {"OverallScore": 75}
    assert stored.updated_at >= job.updated_at


@pytest.mark.asyncio
async def test_concurrent_appends_lose_nothing():
    job = await job_store.create_job(INPUT)

    await asyncio.gather(*(
        job_store.append_progress(job.id, f"step {i}", {f"key{i}": i}) for i in range(10)
    ))

    stored = await job_store.get_job(job.id)
    assert len(stored.report_data["logs"]) == 11
    assert all(stored.report_data[f"key{i}"] == i for i in range(10))


@pytest.mark.asyncio
async def test_append_progress_missing_job():
    assert await job_store.append_progress("missing-id", "hello") is None


@pytest.mark.asyncio
async def test_get_logs():
    job = await job_store.create_job(INPUT)
    await job_store.append_progress(job.id, "Starting Standard Analysis...")

    logs = await job_store.get_logs(job.id)

    assert [e["message"] for e in logs] == ["Audit queued...", "Starting Standard Analysis..."]
    assert await job_store.get_logs("missing-id") is None


@pytest.mark.asyncio
async def test_list_stale_jobs_and_next_pending():
    old = await job_store.create_job(INPUT)
    await job_store.update_status(old.id, "processing")
    fresh_pending = await job_store.create_job(INPUT)

    assert await job_store.list_stale_jobs(utcnow() - timedelta(minutes=15)) == []
    stale = await job_store.list_stale_jobs(utcnow() + timedelta(minutes=1))
    assert [j.id for j in stale] == [old.id]

    pending = await job_store.next_pending_job()
    assert pending.id == fresh_pending.id
    assert await job_store.next_pending_job(exclude={fresh_pending.id}) is None


@pytest.mark.asyncio
@pytest.mark.parametrize("terminal", ["completed", "failed"])
async def test_append_progress_after_terminal_status_is_dropped(terminal):
    job = await job_store.create_job(INPUT)
    await job_store.update_status(job.id, "processing")
    await job_store.update_status(job.id, terminal, error_message="Job was interrupted")
    before = await job_store.get_job(job.id)

    result = await job_store.append_progress(
        job.id, "✓ Job complete. Report ready.", {"UX Audit expert": {"OverallScore": 70}}
    )

    assert result is None
    stored = await job_store.get_job(job.id)
    assert stored.status == terminal
    assert set(stored.report_data) == {"logs"}
    assert [e["message"] for e in stored.report_data["logs"]] == ["Audit queued..."]
    assert stored.updated_at == before.updated_at
    assert job.id not in job_store._job_locks
