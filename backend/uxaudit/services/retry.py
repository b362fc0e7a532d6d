"""Retry wrapper with exponential backoff, jitter and server retry hints.

Used around every Gemini call (and the remote-browser connect). Stateless:
each call keeps its own attempt counter, so concurrent experts never share
backoff state.
"""
import asyncio
import logging
import random
import re
from typing import Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 10
DEFAULT_MAX_DELAY = 60.0

# Lowercase fragments that mark an error as transient
RETRIABLE_MARKERS = (
    "503",
    "429",
    "overloaded",
    "quota",
    "resource_exhausted",
    "unavailable",
    "timeout",
    "timed out",
    "internal error",
    "socket hang up",
    "econnreset",
    "connection reset",
)

RETRIABLE_EXCEPTIONS: tuple[type[BaseException], ...] = (TimeoutError, ConnectionError)

_HINT_PATTERNS = (
    re.compile(r"retry in (\d+(?:\.\d+)?)s", re.IGNORECASE),
    re.compile(r"retry-after.*?(\d+(?:\.\d+)?)", re.IGNORECASE),
)


async def _sleep(seconds: float) -> None:
    await asyncio.sleep(seconds)


def error_text(error: BaseException) -> str:
    msg = str(error).strip()
    return msg or type(error).__name__


def is_retriable(error: BaseException) -> bool:
    if isinstance(error, RETRIABLE_EXCEPTIONS):
        return True
    text = error_text(error).lower()
    return any(marker in text for marker in RETRIABLE_MARKERS)


def server_retry_hint(error: BaseException) -> float | None:
    """Seconds the server asked us to wait, if the error text says so."""
    text = error_text(error)
    for pattern in _HINT_PATTERNS:
        match = pattern.search(text)
        if match:
            return float(match.group(1))
    return None


def compute_delay(
    attempt: int,
    base_delay: float,
    max_delay: float = DEFAULT_MAX_DELAY,
    error: BaseException | None = None,
) -> float:
    """Full-jitter exponential backoff with a floor near base_delay."""
    cap = min(max_delay, base_delay * (2 ** (attempt - 1)))
    delay = random.uniform(0, cap)
    if delay < base_delay:
        delay = base_delay + random.uniform(0, 1)
    if error is not None:
        hint = server_retry_hint(error)
        if hint is not None:
            delay = hint + 1
    return delay


async def retry_with_backoff(
    operation: Callable[[int], Awaitable[T]],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    base_delay: float = 1.0,
    label: str = "Operation",
    max_delay: float = DEFAULT_MAX_DELAY,
) -> T:
    """Call ``operation(attempt)`` until it succeeds or attempts run out.

    Args:
        operation: async callable receiving the 1-based attempt number.
        max_attempts: total attempts before the last error is re-raised.
        base_delay: seconds; first backoff slot and the delay floor.
        label: name used in log lines.
        max_delay: ceiling for the computed (non-hinted) delay.

    Non-retriable errors are re-raised immediately.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation(attempt)
        except Exception as e:
            msg = error_text(e)
            if attempt >= max_attempts or not is_retriable(e):
                logger.error(
                    "%s failed permanently on attempt %d/%d: %s",
                    label, attempt, max_attempts, msg[:150],
                )
                raise

            delay = compute_delay(attempt, base_delay, max_delay, e)
            if server_retry_hint(e) is not None:
                logger.warning("%s hit a rate limit. Server requested wait of %.1fs.", label, delay - 1)
            logger.warning(
                "%s failed (attempt %d/%d), retrying in %.1fs: %s",
                label, attempt, max_attempts, delay, msg[:150],
            )
            await _sleep(delay)
