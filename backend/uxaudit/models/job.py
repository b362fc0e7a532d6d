"""Audit job model - one end-to-end audit request and its accumulating report."""
import uuid
from sqlalchemy import String, Text, JSON, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column
from uxaudit.models.base import Base, TimestampMixin

JOB_STATUSES = ("pending", "processing", "completed", "failed")
TERMINAL_STATUSES = ("completed", "failed")


class AuditJob(Base, TimestampMixin):
    __tablename__ = "audit_jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    status: Mapped[str] = mapped_column(String(20), default="pending", index=True)
    input_data: Mapped[dict] = mapped_column(JSON, default=dict)
    report_data: Mapped[dict] = mapped_column(JSON, default=lambda: {"logs": []})
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    result_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    api_key_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("api_keys.id"), nullable=True, index=True
    )
