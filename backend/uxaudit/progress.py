"""Log message -> percent-complete projection.

One ordered table shared by the API (job snapshots carry a derived
``progress``) and the client sync layer. Rules are lowercase substring
predicates; every matching rule contributes its target and the result never
moves backwards.
"""
from typing import Callable, Iterable, Optional

Predicate = Callable[[str], bool]


def _contains(*fragments: str) -> Predicate:
    return lambda msg: all(f in msg for f in fragments)


PROGRESS_RULES: tuple[tuple[Predicate, float], ...] = (
    (_contains("queued"), 5),
    (_contains("starting"), 8),
    (_contains("scraping"), 12),
    (_contains("scraping mobile"), 20),
    (_contains("scraping competitor"), 22),
    (_contains("scrape complete"), 30),
    (_contains("content acquired"), 30),
    (_contains("performance"), 35),
    (_contains("running ux"), 40),
    (_contains("running product"), 42),
    (_contains("ux complete"), 50),
    (_contains("product complete"), 55),
    (_contains("running visual"), 60),
    (_contains("running strategy"), 62),
    (_contains("visual complete"), 70),
    (_contains("strategy complete"), 75),
    (_contains("running competitor"), 60),
    (_contains("running accessibility"), 80),
    (_contains("competitor analysis complete"), 85),
    (_contains("accessibility complete"), 85),
    (_contains("contextual"), 90),
    (_contains("contextual analysis complete"), 95),
    (_contains("finalizing"), 98),
    (_contains("job", "complete"), 100),
)


def message_to_progress(message: Optional[str], current: float = 0) -> float:
    """Progress after seeing ``message``, given the progress shown so far."""
    if not message:
        return current
    msg = message.lower()
    result = current
    for predicate, target in PROGRESS_RULES:
        if target > result and predicate(msg):
            result = target
    return result


def logs_to_progress(logs: Iterable[dict], current: float = 0) -> float:
    progress = current
    for entry in logs or ():
        progress = message_to_progress((entry or {}).get("message"), progress)
    return progress


class ReportDiffer:
    """Turns successive report snapshots into new-only events.

    Each log line becomes one ``status`` event and each report key one
    ``data`` event, the first time it is seen. ``logs`` itself is never sent
    as data.
    """

    def __init__(self):
        self.sent_keys: set[str] = set()
        self.seen_logs = 0

    def diff(self, report: dict) -> list[dict]:
        events = []
        logs = report.get("logs") or []
        for entry in logs[self.seen_logs:]:
            events.append({
                "type": "status",
                "message": entry.get("message", ""),
                "timestamp": entry.get("timestamp"),
            })
        self.seen_logs = max(self.seen_logs, len(logs))

        for key, value in report.items():
            if key == "logs" or key in self.sent_keys:
                continue
            self.sent_keys.add(key)
            events.append({"type": "data", "key": key, "data": value})
        return events
