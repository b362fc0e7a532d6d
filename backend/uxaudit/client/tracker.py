"""Global in-flight audit tracker.

Keeps the one audit the user is waiting on alive across page navigations:
the state is persisted to a small JSON file on every change, restored by
hydrate() at start-up, and cleared from disk as soon as the job reaches a
terminal status. The in-memory state stays until the user dismisses it, so the
banner can still show the finished result.
"""
import json
import logging
from pathlib import Path
from typing import Optional

import aiofiles
import aiofiles.os

from uxaudit.client.display import ConfidenceBuilder
from uxaudit.client.watcher import JobUpdate, JobWatcher
from uxaudit.progress import message_to_progress

logger = logging.getLogger(__name__)

_HIDDEN_PREFIXES = ("/analysis/", "/report/")


class AuditTracker:
    def __init__(self, state_path: str, watcher: JobWatcher):
        self.state_path = Path(state_path)
        self.watcher = watcher
        self._unsubscribe = None
        self._reset()

    def _reset(self) -> None:
        self.job_id: Optional[str] = None
        self.status: Optional[str] = None
        self.progress: float = 0
        self.message: str = ""
        self.error: Optional[str] = None
        self.result_url: Optional[str] = None
        self.confidence = ConfidenceBuilder()

    @property
    def is_active(self) -> bool:
        return self.job_id is not None and self.status not in ("completed", "failed")

    # ── persistence ──

    async def _persist(self) -> None:
        if self.job_id is None:
            return
        state = {"active_audit_id": self.job_id, "progress": self.progress, "status": self.status}
        self.state_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(self.state_path, "w") as f:
            await f.write(json.dumps(state))

    async def _clear_persisted(self) -> None:
        if await aiofiles.os.path.exists(self.state_path):
            await aiofiles.os.remove(self.state_path)

    async def hydrate(self) -> bool:
        """Restore a persisted in-flight audit and resume watching it."""
        if not await aiofiles.os.path.exists(self.state_path):
            return False
        try:
            async with aiofiles.open(self.state_path) as f:
                state = json.loads(await f.read())
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Discarding unreadable tracker state {self.state_path}: {e}")
            await self._clear_persisted()
            return False

        job_id = state.get("active_audit_id")
        if not job_id or state.get("status") in ("completed", "failed"):
            await self._clear_persisted()
            return False
        self.job_id = job_id
        self.status = state.get("status") or "processing"
        self.progress = float(state.get("progress") or 0)
        self._subscribe()
        return True

    # ── lifecycle ──

    def _subscribe(self) -> None:
        self._unsubscribe = self.watcher.subscribe(
            self.job_id, self.handle_update, self.handle_complete, self.handle_error
        )

    async def start(self, job_id: str) -> None:
        """Begin tracking a freshly submitted job (replaces any previous one)."""
        self.stop_watching()
        self._reset()
        self.job_id = job_id
        self.status = "processing"
        self.progress = message_to_progress("Audit queued...", 0)
        await self._persist()
        self._subscribe()

    def stop_watching(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    async def dismiss(self) -> None:
        self.stop_watching()
        self._reset()
        await self._clear_persisted()

    # ── watcher callbacks ──

    async def handle_update(self, update: JobUpdate) -> None:
        if update.kind != "status" or not update.message:
            return
        self.confidence.stop()
        self.message = update.message
        self.progress = message_to_progress(update.message, self.progress)
        await self._persist()

    async def handle_complete(self, snapshot: dict) -> None:
        self.status = "completed"
        self.progress = 100
        self.result_url = snapshot.get("resultUrl") or f"/report/{self.job_id}"
        self._unsubscribe = None
        await self._clear_persisted()

    async def handle_error(self, message: str) -> None:
        self.status = "failed"
        self.error = message
        self._unsubscribe = None
        await self._clear_persisted()

    async def nudge(self) -> float:
        """One confidence-builder step (call every ConfidenceBuilder.INTERVAL seconds)."""
        if self.is_active:
            new_progress = self.confidence.step(self.progress)
            if new_progress != self.progress:
                self.progress = new_progress
                await self._persist()
        return self.progress

    # ── UI queries ──

    def banner(self, path: str) -> Optional[dict]:
        """Global progress banner for ``path``, or None when it should be hidden."""
        if self.job_id is None:
            return None
        if path == "/" or path.startswith(_HIDDEN_PREFIXES):
            return None
        return {
            "jobId": self.job_id,
            "status": self.status,
            "progress": self.progress,
            "message": self.message,
            "resultUrl": self.result_url,
            "error": self.error,
        }

    def redirect_for(self, path: str) -> Optional[str]:
        """Report URL when the user is watching this job's analysis page and it finished."""
        if self.status != "completed" or self.job_id is None:
            return None
        if path.rstrip("/") != f"/analysis/{self.job_id}":
            return None
        return self.result_url or f"/report/{self.job_id}"
