"""File storage for screenshots and report artifacts. Local filesystem, served at /uploads."""
import base64
import json
import logging
import uuid
from pathlib import Path
from typing import Optional

import aiofiles

from uxaudit.config import settings

logger = logging.getLogger(__name__)

UPLOADS_URL_PREFIX = "/uploads"

_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
}


class FileStorageService:
    """Writes artifacts under FILE_STORAGE_PATH and returns their public URL."""

    def __init__(self, base_path: Optional[str] = None, public_base_url: Optional[str] = None):
        self.base_path = Path(base_path or settings.FILE_STORAGE_PATH)
        self.public_base_url = (
            settings.PUBLIC_BASE_URL if public_base_url is None else public_base_url
        ).rstrip("/")

    def public_url(self, relative: str) -> str:
        return f"{self.public_base_url}{UPLOADS_URL_PREFIX}/{relative}"

    async def save(self, file_bytes: bytes, relative: str) -> str:
        """Write bytes at base_path/relative. Returns the public URL."""
        file_path = self.base_path / relative
        file_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(file_path, "wb") as f:
            await f.write(file_bytes)
        return self.public_url(relative)

    async def save_screenshot(self, job_id: str, data_b64: str, mime_type: str, label: str) -> str:
        """Decode a base64 screenshot and store it. Returns the public URL."""
        if data_b64.startswith("data:"):
            data_b64 = data_b64.split(",", 1)[-1]
        ext = _EXTENSIONS.get(mime_type, ".bin")
        relative = f"screenshots/{job_id}/{label}-{uuid.uuid4().hex[:8]}{ext}"
        return await self.save(base64.b64decode(data_b64), relative)

    async def save_report_artifact(self, job_id: str, report: dict) -> str:
        """Persist the final report JSON (overwrites on retry)."""
        relative = f"reports/{job_id}.json"
        payload = json.dumps(report, ensure_ascii=False, default=str).encode("utf-8")
        return await self.save(payload, relative)

    async def read(self, relative: str) -> bytes:
        async with aiofiles.open(self.base_path / relative, "rb") as f:
            return await f.read()


file_storage = FileStorageService()
