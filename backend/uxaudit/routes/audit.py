"""Audit jobs API - submit, poll status, read logs, stream progress."""
import asyncio
import json
import logging

from fastapi import APIRouter, HTTPException
from fastapi.responses import StreamingResponse

from uxaudit.models.job import AuditJob, TERMINAL_STATUSES
from uxaudit.progress import ReportDiffer, logs_to_progress
from uxaudit.schemas.audit import (
    AuditJobResponse,
    AuditRequest,
    AuditSubmitResponse,
    JobLogsResponse,
)
from uxaudit.services import job_store
from uxaudit.services.job_worker import notify_new_job

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/audit", tags=["audit"])

STREAM_POLL_INTERVAL = 1.0


def job_snapshot(job: AuditJob) -> AuditJobResponse:
    """Job record plus the progress derived from its logs."""
    report = job.report_data or {"logs": []}
    return AuditJobResponse(
        id=job.id,
        status=job.status,
        report_data=report,
        error_message=job.error_message,
        result_url=job.result_url,
        progress=100 if job.status == "completed" else logs_to_progress(report.get("logs") or []),
        created_at=job.created_at,
        updated_at=job.updated_at,
    )


@router.post("", response_model=AuditSubmitResponse, status_code=202)
async def submit_audit(body: AuditRequest):
    """Create a pending audit job; the background worker picks it up."""
    job = await job_store.create_job(body.to_input_data())
    notify_new_job()
    return AuditSubmitResponse(
        job_id=job.id, status=job.status, status_url=f"/api/v1/audit/{job.id}"
    )


@router.get("/{job_id}", response_model=AuditJobResponse)
async def get_audit(job_id: str):
    """Get job status, accumulated report data and progress."""
    job = await job_store.get_job(job_id)
    if not job:
        raise HTTPException(404, "Job not found")
    return job_snapshot(job)


@router.get("/{job_id}/logs", response_model=JobLogsResponse)
async def get_audit_logs(job_id: str):
    job = await job_store.get_job(job_id)
    if not job:
        raise HTTPException(404, "Job not found")
    return JobLogsResponse(
        job_id=job.id, status=job.status, logs=(job.report_data or {}).get("logs") or []
    )


async def stream_job_events(job_id: str, poll_interval: float = STREAM_POLL_INTERVAL):
    """NDJSON events for one job until it reaches a terminal status."""
    differ = ReportDiffer()
    while True:
        job = await job_store.get_job(job_id)
        if job is None:
            yield json.dumps({"type": "error", "message": "Job not found"}) + "\n"
            return
        for event in differ.diff(job.report_data or {}):
            yield json.dumps(event, default=str) + "\n"
        if job.status in TERMINAL_STATUSES:
            if job.status == "completed":
                yield json.dumps({"type": "complete", "jobId": job.id, "resultUrl": job.result_url}) + "\n"
            else:
                yield json.dumps({"type": "error", "message": job.error_message or "Audit failed"}) + "\n"
            return
        await asyncio.sleep(poll_interval)


@router.get("/{job_id}/stream")
async def stream_audit(job_id: str):
    """Progress as newline-delimited JSON (status, data, complete, error events)."""
    job = await job_store.get_job(job_id)
    if not job:
        raise HTTPException(404, "Job not found")
    return StreamingResponse(stream_job_events(job_id), media_type="application/x-ndjson")
