"""Import all models so SQLAlchemy metadata knows about them."""
from uxaudit.models.base import Base
from uxaudit.models.api_key import ApiKey, ResourceUsageLog
from uxaudit.models.job import AuditJob

__all__ = ["Base", "ApiKey", "ResourceUsageLog", "AuditJob"]
