"""Embeddable widget API - audits submitted with a Bearer API key."""
import logging
from typing import Optional

from fastapi import APIRouter, Header, HTTPException

from uxaudit.config import settings
from uxaudit.schemas.audit import AuditRequest, AuditSubmitResponse
from uxaudit.services import job_store
from uxaudit.services.api_keys import validate_key
from uxaudit.services.job_worker import notify_new_job

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/external", tags=["external"])


@router.post("/audit", response_model=AuditSubmitResponse, status_code=202)
async def submit_external_audit(
    body: AuditRequest,
    authorization: Optional[str] = Header(None),
    origin: Optional[str] = Header(None),
):
    api_key = await validate_key(authorization, origin)
    if api_key is None:
        raise HTTPException(401, "Invalid API key or origin not allowed")

    job = await job_store.create_job(body.to_input_data(), api_key_id=api_key.id)
    notify_new_job()
    logger.info(f"External audit {job.id} submitted with key {api_key.id}")
    return AuditSubmitResponse(
        job_id=job.id,
        status=job.status,
        status_url=f"/api/v1/audit/{job.id}",
        redirect_url=f"{settings.FRONTEND_BASE_URL.rstrip('/')}/analysis/{job.id}",
    )
