"""Public (shareable) report access."""
from fastapi import APIRouter, HTTPException

from uxaudit.services import job_store

router = APIRouter(prefix="/api/public", tags=["public"])


@router.get("/jobs/{job_id}")
async def get_public_job(job_id: str):
    """Completed report for sharing. Unfinished jobs are not exposed."""
    job = await job_store.get_job(job_id)
    if not job:
        raise HTTPException(404, "Job not found")
    if job.status != "completed":
        raise HTTPException(403, {"error": "Report not available", "status": job.status})
    return {
        "id": job.id,
        "status": job.status,
        "reportData": job.report_data,
        "resultUrl": job.result_url,
        "createdAt": job.created_at,
    }
