"""Job watchers: follow one audit job over HTTP and emit new-only updates.

Two transports share one interface: PollingJobWatcher reads the job snapshot
every few seconds, StreamingJobWatcher reads the NDJSON stream endpoint.
Either way each log line is reported once as a ``status`` update and each
report key once as a ``data`` update.
"""
import asyncio
import inspect
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

import aiohttp

from uxaudit.progress import ReportDiffer

logger = logging.getLogger(__name__)

POLL_INTERVAL = 3.0
MAX_CONSECUTIVE_POLL_ERRORS = 5


@dataclass
class JobUpdate:
    kind: str  # "status" | "data"
    message: Optional[str] = None
    key: Optional[str] = None
    data: Any = None


@dataclass
class EntryDecision:
    action: str  # "report" | "failed" | "poll" | "missing"
    job_id: Optional[str] = None
    result_url: Optional[str] = None
    error: Optional[str] = None


def resolve_entry(snapshot: Optional[dict]) -> EntryDecision:
    """What to do when a page opens on an existing job."""
    if not snapshot:
        return EntryDecision("missing")
    job_id = snapshot.get("id")
    status = snapshot.get("status")
    if status == "completed":
        return EntryDecision("report", job_id, snapshot.get("resultUrl") or f"/report/{job_id}")
    if status == "failed":
        return EntryDecision("failed", job_id, error=snapshot.get("errorMessage") or "Audit failed")
    return EntryDecision("poll", job_id)


def update_from_event(event: dict) -> Optional[JobUpdate]:
    if event.get("type") == "status":
        return JobUpdate("status", message=event.get("message"))
    if event.get("type") == "data":
        return JobUpdate("data", key=event.get("key"), data=event.get("data"))
    return None


async def _call(callback: Optional[Callable], *args) -> None:
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class JobWatcher(ABC):
    """Follows one job until it completes or fails."""

    def subscribe(
        self,
        job_id: str,
        on_update: Callable[[JobUpdate], Any],
        on_complete: Callable[[dict], Any],
        on_error: Callable[[str], Any],
    ) -> Callable[[], None]:
        """Start watching in a background task. Returns the unsubscribe function."""
        task = asyncio.create_task(self.watch(job_id, on_update, on_complete, on_error))

        def unsubscribe() -> None:
            if not task.done():
                task.cancel()

        return unsubscribe

    @abstractmethod
    async def watch(
        self,
        job_id: str,
        on_update: Callable[[JobUpdate], Any],
        on_complete: Callable[[dict], Any],
        on_error: Callable[[str], Any],
    ) -> None:
        """Run until a terminal callback has fired."""


class PollingJobWatcher(JobWatcher):
    def __init__(
        self,
        base_url: str = "",
        interval: float = POLL_INTERVAL,
        fetch: Optional[Callable[[str], Awaitable[Optional[dict]]]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.base_url = base_url.rstrip("/")
        self.interval = interval
        self._fetch = fetch or self._fetch_snapshot
        self._sleep = sleep

    async def _fetch_snapshot(self, job_id: str) -> Optional[dict]:
        async with aiohttp.ClientSession() as session:
            async with session.get(f"{self.base_url}/api/v1/audit/{job_id}") as resp:
                if resp.status == 404:
                    return None
                resp.raise_for_status()
                return await resp.json()

    async def watch(self, job_id, on_update, on_complete, on_error) -> None:
        differ = ReportDiffer()
        errors = 0
        while True:
            try:
                snapshot = await self._fetch(job_id)
                errors = 0
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                errors += 1
                logger.warning(f"Polling job {job_id} failed ({errors}/{MAX_CONSECUTIVE_POLL_ERRORS}): {e}")
                if errors >= MAX_CONSECUTIVE_POLL_ERRORS:
                    await _call(on_error, f"Failed to fetch job status: {e}")
                    return
                await self._sleep(self.interval)
                continue

            if snapshot is None:
                await _call(on_error, "Job not found")
                return

            for event in differ.diff(snapshot.get("reportData") or {}):
                update = update_from_event(event)
                if update is not None:
                    await _call(on_update, update)

            status = snapshot.get("status")
            if status == "completed":
                await _call(on_complete, snapshot)
                return
            if status == "failed":
                await _call(on_error, snapshot.get("errorMessage") or "Audit failed")
                return
            await self._sleep(self.interval)


class StreamingJobWatcher(JobWatcher):
    def __init__(
        self,
        base_url: str = "",
        open_stream: Optional[Callable[[str], AsyncIterator[str]]] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._open_stream = open_stream or self._stream_lines

    async def _stream_lines(self, job_id: str) -> AsyncIterator[str]:
        timeout = aiohttp.ClientTimeout(total=None, sock_read=300)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(f"{self.base_url}/api/v1/audit/{job_id}/stream") as resp:
                resp.raise_for_status()
                async for raw in resp.content:
                    yield raw.decode("utf-8")

    async def watch(self, job_id, on_update, on_complete, on_error) -> None:
        try:
            async for line in self._open_stream(job_id):
                line = line.strip()
                if not line:
                    continue
                try:
                    event = json.loads(line)
                except json.JSONDecodeError:
                    logger.warning(f"Skipping malformed stream line for job {job_id}: {line[:100]}")
                    continue
                if event.get("type") == "complete":
                    await _call(on_complete, event)
                    return
                if event.get("type") == "error":
                    await _call(on_error, event.get("message") or "Audit failed")
                    return
                update = update_from_event(event)
                if update is not None:
                    await _call(on_update, update)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            await _call(on_error, f"Failed to fetch job stream: {e}")
            return
        await _call(on_error, "Stream ended before the audit finished")
