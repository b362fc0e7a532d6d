"""User-facing classification of audit failures."""
from dataclasses import dataclass, field

CONNECTIVITY = "connectivity"
RATE_LIMIT = "rate_limit"
SERVER = "server"
OTHER = "other"

_CONNECTIVITY_MARKERS = (
    "failed to fetch",
    "cannot connect",
    "connection refused",
    "connection reset",
    "network",
    "clientconnectorerror",
)


@dataclass
class ErrorInfo:
    category: str
    title: str
    guidance: list[str] = field(default_factory=list)
    detail: str = ""


def classify_error(message: str) -> ErrorInfo:
    """Map a raw error string to a category with guidance.

    Only the ``other`` category carries the raw message as ``detail``.
    """
    text = message or ""
    lowered = text.lower()
    if any(marker in lowered for marker in _CONNECTIVITY_MARKERS):
        return ErrorInfo(
            CONNECTIVITY,
            "Network Connection Error",
            [
                "Check your internet connection.",
                "Disable ad-blockers for this page temporarily.",
                "Wait 30 seconds and try again (this often wakes up the server).",
            ],
        )
    if "429" in text:
        return ErrorInfo(
            RATE_LIMIT,
            "Server Busy",
            ["We are experiencing high traffic. Please wait a minute and try again."],
        )
    if "500" in text or "server error" in lowered:
        return ErrorInfo(
            SERVER,
            "Server Error",
            ["Something went wrong on our end. Please try again later."],
        )
    return ErrorInfo(
        OTHER,
        "Analysis Failed",
        ["The analysis failed due to an unexpected technical issue."],
        detail=text,
    )
