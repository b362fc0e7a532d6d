"""Audit job request/response schemas."""
from datetime import datetime
from typing import Literal, Optional
from pydantic import Field, model_validator
from uxaudit.schemas.base import CamelModel, CamelORMModel

MAX_INPUTS = 5


def pick_competitor_pair(inputs: list[dict]) -> tuple[Optional[dict], Optional[dict]]:
    """Resolve (primary, competitor) URL inputs from camelCase input dicts.

    Explicit roles win; otherwise the first two distinct URL inputs are used.
    Either side is None when no URL input can fill it.
    """
    url_inputs = [i for i in inputs if i.get("type") == "url" and i.get("url")]
    primary = next((i for i in url_inputs if i.get("role") == "primary"), None)
    competitor = next((i for i in url_inputs if i.get("role") == "competitor"), None)
    if primary is None:
        primary = next((i for i in url_inputs if i is not competitor), None)
    if competitor is None:
        competitor = next((i for i in url_inputs if i is not primary), None)
    return primary, competitor


class AuditInput(CamelModel):
    type: Literal["url", "upload"]
    url: Optional[str] = None
    files_data: Optional[list[str]] = None
    file_data: Optional[str] = None
    file_urls: Optional[list[str]] = None
    role: Optional[Literal["primary", "competitor"]] = None

    @model_validator(mode="after")
    def check_payload(self):
        if self.type == "url" and not self.url:
            raise ValueError("URL inputs require a 'url'")
        if self.type == "upload" and not (self.files_data or self.file_data or self.file_urls):
            raise ValueError("Upload inputs require 'filesData', 'fileData' or 'fileUrls'")
        return self


class AuditRequest(CamelModel):
    inputs: list[AuditInput] = Field(..., min_length=1, max_length=MAX_INPUTS)
    audit_mode: Literal["standard", "competitor"] = "standard"

    @model_validator(mode="after")
    def check_competitor_pair(self):
        if self.audit_mode != "competitor":
            return self
        primary, competitor = pick_competitor_pair(
            [i.model_dump(by_alias=True) for i in self.inputs]
        )
        if not primary or not competitor:
            raise ValueError("Competitor audit requires two URLs (primary and competitor)")
        return self

    def to_input_data(self) -> dict:
        """Immutable snapshot stored on the job (camelCase, like the wire format)."""
        return {
            "inputs": [i.model_dump(by_alias=True, exclude_none=True) for i in self.inputs],
            "auditMode": self.audit_mode,
        }


class AuditSubmitResponse(CamelModel):
    job_id: str
    status: str = "pending"
    status_url: Optional[str] = None
    redirect_url: Optional[str] = None


class AuditJobResponse(CamelORMModel):
    id: str
    status: str
    report_data: dict = {}
    error_message: Optional[str] = None
    result_url: Optional[str] = None
    progress: float = 0
    created_at: datetime
    updated_at: datetime


class LogEntry(CamelModel):
    timestamp: str
    message: str


class JobLogsResponse(CamelModel):
    job_id: str
    status: str
    logs: list[LogEntry] = []
