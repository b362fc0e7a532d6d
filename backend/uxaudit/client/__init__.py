"""Client-side job following: watchers, progress display and the global tracker."""
from uxaudit.client.display import ConfidenceBuilder, ProgressInterpolator
from uxaudit.client.errors import ErrorInfo, classify_error
from uxaudit.client.tracker import AuditTracker
from uxaudit.client.watcher import (
    EntryDecision,
    JobUpdate,
    JobWatcher,
    PollingJobWatcher,
    StreamingJobWatcher,
    resolve_entry,
)

__all__ = [
    "AuditTracker",
    "ConfidenceBuilder",
    "EntryDecision",
    "ErrorInfo",
    "JobUpdate",
    "JobWatcher",
    "PollingJobWatcher",
    "ProgressInterpolator",
    "StreamingJobWatcher",
    "classify_error",
    "resolve_entry",
]
