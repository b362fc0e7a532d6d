"""Background job worker.

Picks pending audit jobs off the audit_jobs table and runs each one as its
own asyncio task, bounded by the browser pool. Runs as an asyncio task within
the FastAPI process. Submissions wake the loop through notify_new_job(); the
table is also polled every WORKER_POLL_INTERVAL seconds, and stale
'processing' jobs are failed every STALE_SWEEP_INTERVAL seconds.
"""
import asyncio
import logging
import time
from datetime import timedelta
from typing import Optional

from uxaudit.config import settings
from uxaudit.models.base import utcnow
from uxaudit.services import job_store
from uxaudit.services.job_processor import process_audit_job
from uxaudit.services.resource_pool import Lease, ResourcePool

logger = logging.getLogger(__name__)

_wakeup: Optional[asyncio.Event] = None
_running_tasks: set[asyncio.Task] = set()
_dispatched: set[str] = set()
_pool: Optional[ResourcePool] = None


def _wakeup_event() -> asyncio.Event:
    global _wakeup
    if _wakeup is None:
        _wakeup = asyncio.Event()
    return _wakeup


def get_pool() -> ResourcePool:
    global _pool
    if _pool is None:
        _pool = ResourcePool(settings.browser_endpoints, local_slots=settings.MAX_CONCURRENT_JOBS)
    return _pool


def notify_new_job() -> None:
    """Wake the worker loop right away (called after a job is created)."""
    _wakeup_event().set()


async def recover_stale_jobs(stale_minutes: int = 15) -> int:
    """Mark jobs stuck in 'processing' for longer than `stale_minutes` as failed.

    Called on startup with stale_minutes=0 (nothing survives a restart) and
    periodically from the worker loop. Jobs still running in this process
    (`_dispatched`) are skipped, however long ago they last logged.
    Returns the number of jobs recovered.
    """
    cutoff = utcnow() - timedelta(minutes=stale_minutes)
    stale_jobs = await job_store.list_stale_jobs(cutoff)
    if stale_minutes > 0:
        reason = f"Job was interrupted (no progress for >{stale_minutes} minutes). Please restart the audit."
    else:
        reason = "Job was interrupted by a server restart. Please restart the audit."
    recovered = 0
    for job in stale_jobs:
        if job.id in _dispatched:
            continue
        applied = await job_store.update_status(job.id, "failed", error_message=reason)
        if applied:
            recovered += 1
            logger.warning(f"Recovered stale job {job.id} (last update at {job.updated_at})")
    if recovered:
        logger.info(f"Recovered {recovered} stale job(s)")
    return recovered


async def run_job(job_id: str, lease: Lease) -> None:
    """Process one job on a held slot; the slot is released in all cases."""
    try:
        await process_audit_job(
            job_id, browser_endpoint=lease.endpoint, release_resource=lease.release
        )
    finally:
        await lease.release()
        _dispatched.discard(job_id)


def _spawn(job_id: str, lease: Lease) -> asyncio.Task:
    _dispatched.add(job_id)
    task = asyncio.create_task(run_job(job_id, lease))
    _running_tasks.add(task)
    task.add_done_callback(_running_tasks.discard)
    return task


async def dispatch_pending(pool: ResourcePool) -> int:
    """Start as many pending jobs as there are free slots. Returns the count started."""
    started = 0
    while pool.has_free_slot():
        # Dispatched jobs stay 'pending' until their task claims them
        job = await job_store.next_pending_job(exclude=_dispatched)
        if job is None:
            break
        lease = await pool.acquire(job.id)
        if lease is None:
            break
        _spawn(job.id, lease)
        started += 1
    return started


async def worker_loop():
    """Main worker loop. Dispatches pending jobs whenever a slot is free."""
    logger.info("Job worker started")
    pool = get_pool()
    wakeup = _wakeup_event()
    last_sweep = time.monotonic()
    while True:
        try:
            await dispatch_pending(pool)
            if time.monotonic() - last_sweep >= settings.STALE_SWEEP_INTERVAL:
                last_sweep = time.monotonic()
                await recover_stale_jobs(settings.STALE_JOB_MINUTES)
        except Exception as e:
            logger.error(f"Worker loop error: {e}")

        try:
            await asyncio.wait_for(wakeup.wait(), timeout=settings.WORKER_POLL_INTERVAL)
        except asyncio.TimeoutError:
            pass
        wakeup.clear()
