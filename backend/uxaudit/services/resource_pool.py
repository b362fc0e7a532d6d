"""Pool of browser slots shared by all running jobs.

Each slot is a remote browser endpoint (BROWSER_WS_ENDPOINTS) or, when none
are configured, an anonymous local-Chromium slot. A slot serves at most one
job at a time. Every acquire/release is logged and recorded in
resource_usage_logs.
"""
import asyncio
import logging
from typing import Optional

from uxaudit.database import async_session
from uxaudit.models.api_key import ResourceUsageLog

logger = logging.getLogger(__name__)


async def _record_usage(resource_key: int, job_id: str, action: str) -> None:
    try:
        async with async_session() as db:
            db.add(ResourceUsageLog(resource_key=resource_key, job_id=job_id, action=action))
            await db.commit()
    except Exception as e:
        logger.warning(f"[POOL] Could not record {action} of slot {resource_key} for job {job_id}: {e}")


class Lease:
    """One job's hold on a slot. release() is idempotent."""

    def __init__(self, pool: "ResourcePool", index: int, job_id: str):
        self._pool = pool
        self.index = index
        self.job_id = job_id
        self.released = False

    @property
    def endpoint(self) -> Optional[str]:
        return self._pool.endpoint_for(self.index)

    async def release(self) -> None:
        if self.released:
            return
        self.released = True
        await self._pool._release(self)


class ResourcePool:
    def __init__(self, endpoints: list[str], local_slots: int = 1, record_usage: bool = True):
        self._endpoints = list(endpoints)
        size = len(self._endpoints) or max(1, local_slots)
        self._holders: list[Optional[str]] = [None] * size
        self._lock = asyncio.Lock()
        self._record_usage = record_usage

    @property
    def size(self) -> int:
        return len(self._holders)

    @property
    def in_use(self) -> int:
        return sum(1 for holder in self._holders if holder is not None)

    def has_free_slot(self) -> bool:
        return self.in_use < self.size

    def endpoint_for(self, index: int) -> Optional[str]:
        return self._endpoints[index] if self._endpoints else None

    async def acquire(self, job_id: str) -> Optional[Lease]:
        """Claim a free slot for ``job_id``; None when all slots are busy."""
        async with self._lock:
            for index, holder in enumerate(self._holders):
                if holder is None:
                    self._holders[index] = job_id
                    break
            else:
                return None
        logger.info(f"[POOL] Slot {index} acquired by job {job_id}")
        if self._record_usage:
            await _record_usage(index, job_id, "acquired")
        return Lease(self, index, job_id)

    async def _release(self, lease: Lease) -> None:
        async with self._lock:
            if self._holders[lease.index] == lease.job_id:
                self._holders[lease.index] = None
        logger.info(f"[POOL] Slot {lease.index} released by job {lease.job_id}")
        if self._record_usage:
            await _record_usage(lease.index, lease.job_id, "released")
