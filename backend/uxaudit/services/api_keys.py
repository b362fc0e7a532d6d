"""Widget API keys: issue, validate and meter usage."""
import logging
import secrets
from typing import Optional
from urllib.parse import urlsplit

from sqlalchemy import select

from uxaudit.database import async_session
from uxaudit.models.api_key import ApiKey
from uxaudit.models.base import utcnow

logger = logging.getLogger(__name__)

KEY_PREFIX = "uxa_"
DEFAULT_PORTS = {"http": 80, "https": 443}


def _strip_bearer(raw: Optional[str]) -> str:
    raw = (raw or "").strip()
    if raw.lower().startswith("bearer "):
        raw = raw[7:].strip()
    return raw


def _origin_key(value: str) -> Optional[tuple[str, str, Optional[int]]]:
    """(scheme, host, port) of an origin or URL; None when it cannot be parsed."""
    try:
        parts = urlsplit(value.strip().lower())
        port = parts.port
    except ValueError:
        return None
    if not parts.scheme or not parts.hostname:
        return None
    return parts.scheme, parts.hostname, port or DEFAULT_PORTS.get(parts.scheme)


def origin_allowed(allowed_origins: list[str], origin: Optional[str]) -> bool:
    """Empty allow-list accepts any caller; otherwise the origin must equal one entry.

    Entries match on scheme, host and port only, so a trailing path or slash
    on an entry is ignored and lookalike hosts are rejected. "*" allows all.
    """
    if not allowed_origins:
        return True
    if "*" in allowed_origins:
        return True
    caller = _origin_key(origin or "")
    if caller is None:
        return False
    return any(_origin_key(entry) == caller for entry in allowed_origins)


async def validate_key(authorization: Optional[str], origin: Optional[str] = None) -> Optional[ApiKey]:
    """Return the active key matching the header and origin, recording the use.

    None when the key is missing, unknown, inactive or used from a
    disallowed origin.
    """
    key_value = _strip_bearer(authorization)
    if not key_value:
        return None

    async with async_session() as db:
        result = await db.execute(
            select(ApiKey).where(ApiKey.key == key_value, ApiKey.is_active.is_(True))
        )
        api_key = result.scalar_one_or_none()
        if api_key is None:
            logger.warning("Rejected unknown or inactive API key")
            return None
        if not origin_allowed(api_key.allowed_origins or [], origin):
            logger.warning(f"API key {api_key.id} used from disallowed origin {origin!r}")
            return None

        api_key.usage_count = (api_key.usage_count or 0) + 1
        api_key.last_used_at = utcnow()
        await db.commit()
        await db.refresh(api_key)
        return api_key


async def create_api_key(owner_name: str, allowed_origins: Optional[list[str]] = None) -> ApiKey:
    async with async_session() as db:
        api_key = ApiKey(
            key=KEY_PREFIX + secrets.token_urlsafe(32),
            owner_name=owner_name,
            allowed_origins=list(allowed_origins or []),
        )
        db.add(api_key)
        await db.commit()
        await db.refresh(api_key)
        logger.info(f"Created API key {api_key.id} for {owner_name}")
        return api_key
