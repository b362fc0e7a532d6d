"""Durable job records: creation, guarded status transitions, progress appends.

Status writes are conditional UPDATEs (``WHERE status IN (...)``), so a job
can only move forward and a second terminal write is rejected. Progress
appends are read-merge-write cycles; within this process they are serialized
per job by an asyncio.Lock, and each job has a single writer (its orchestrator
task).
"""
import asyncio
import logging
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import select, update

from uxaudit.database import async_session
from uxaudit.models.base import utcnow
from uxaudit.models.job import AuditJob, TERMINAL_STATUSES

logger = logging.getLogger(__name__)

QUEUED_MESSAGE = "Audit queued..."

# target status -> statuses it may be reached from
ALLOWED_TRANSITIONS: dict[str, tuple[str, ...]] = {
    "processing": ("pending",),
    "completed": ("processing",),
    "failed": ("processing",),
}

_job_locks: dict[str, asyncio.Lock] = {}


class InvalidTransitionError(ValueError):
    """Raised for a status that has no allowed predecessors."""
    pass


def _lock_for(job_id: str) -> asyncio.Lock:
    lock = _job_locks.get(job_id)
    if lock is None:
        lock = _job_locks[job_id] = asyncio.Lock()
    return lock


def release_lock(job_id: str) -> None:
    """Drop the per-job lock once the job is terminal."""
    _job_locks.pop(job_id, None)


def log_entry(message: str) -> dict:
    return {"timestamp": utcnow().isoformat(), "message": message}


async def create_job(input_data: dict, api_key_id: Optional[str] = None) -> AuditJob:
    """Insert a pending job with its first log line."""
    async with async_session() as db:
        job = AuditJob(
            status="pending",
            input_data=input_data,
            report_data={"logs": [log_entry(QUEUED_MESSAGE)]},
            api_key_id=api_key_id,
        )
        db.add(job)
        await db.commit()
        await db.refresh(job)
        logger.info(f"Created audit job {job.id} (mode={input_data.get('auditMode', 'standard')})")
        return job


async def get_job(job_id: str) -> Optional[AuditJob]:
    """Fetch a job by id. Unknown or malformed ids give None."""
    if not job_id or len(job_id) > 36:
        return None
    async with async_session() as db:
        return await db.get(AuditJob, job_id)


async def get_logs(job_id: str) -> Optional[list[dict]]:
    job = await get_job(job_id)
    if job is None:
        return None
    return list((job.report_data or {}).get("logs") or [])


async def update_status(
    job_id: str,
    status: str,
    report_data: Optional[dict] = None,
    error_message: Optional[str] = None,
    result_url: Optional[str] = None,
) -> bool:
    """Move a job forward to ``status``.

    Returns False when the job does not exist or is not in an allowed
    predecessor status (e.g. it is already terminal).
    """
    predecessors = ALLOWED_TRANSITIONS.get(status)
    if predecessors is None:
        raise InvalidTransitionError(f"Cannot transition a job to '{status}'")

    values: dict = {"status": status, "updated_at": utcnow()}
    if report_data is not None:
        values["report_data"] = report_data
    if status == "failed":
        values["error_message"] = error_message or "Unknown error"
    if status == "completed" and result_url is not None:
        values["result_url"] = result_url

    async with async_session() as db:
        result = await db.execute(
            update(AuditJob)
            .where(AuditJob.id == job_id, AuditJob.status.in_(predecessors))
            .values(**values)
        )
        await db.commit()

    applied = result.rowcount == 1
    if not applied:
        logger.warning(f"Rejected status write {status!r} for job {job_id}")
    if applied and status in ("completed", "failed"):
        release_lock(job_id)
    return applied


async def append_progress(job_id: str, message: str, partial: Optional[dict] = None) -> Optional[dict]:
    """Append one log line and shallow-merge ``partial`` into report_data.

    Returns the merged report, or None when the job does not exist or is
    already terminal (the terminal write is always the last mutation). Keys
    in ``partial`` replace existing keys wholesale; ``logs`` is never replaced.
    """
    async with _lock_for(job_id):
        async with async_session() as db:
            job = await db.get(AuditJob, job_id)
            if job is None:
                logger.warning(f"append_progress: job {job_id} not found")
                release_lock(job_id)
                return None
            if job.status in TERMINAL_STATUSES:
                logger.warning(f"append_progress: job {job_id} is {job.status}, dropping {message!r}")
                release_lock(job_id)
                return None
            current = dict(job.report_data or {})
            logs = list(current.get("logs") or [])
            logs.append(log_entry(message))
            merged = {**current, **{k: v for k, v in (partial or {}).items() if k != "logs"}}
            merged["logs"] = logs
            # New dict object so SQLAlchemy flags the JSON column dirty
            job.report_data = merged
            job.updated_at = utcnow()
            await db.commit()
            return merged


async def list_stale_jobs(older_than: datetime) -> list[AuditJob]:
    """Jobs still processing whose last mutation is older than ``older_than``."""
    async with async_session() as db:
        result = await db.execute(
            select(AuditJob).where(
                AuditJob.status == "processing",
                AuditJob.updated_at < older_than,
            )
        )
        return list(result.scalars().all())


async def next_pending_job(exclude: Iterable[str] = ()) -> Optional[AuditJob]:
    """Oldest pending job not in ``exclude``, or None."""
    query = select(AuditJob).where(AuditJob.status == "pending")
    exclude = list(exclude)
    if exclude:
        query = query.where(AuditJob.id.notin_(exclude))
    async with async_session() as db:
        result = await db.execute(query.order_by(AuditJob.created_at).limit(1))
        return result.scalar_one_or_none()
