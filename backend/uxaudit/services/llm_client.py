"""Gemini structured-output calls with key failover and payload shrinking.

The google-genai SDK call is sync, so it runs in a worker thread via
asyncio.to_thread. Each attempt decides which credential and which payload to
send from its attempt number alone:

- attempts 1..KEY_FAILOVER_AFTER_ATTEMPTS use credentials[0], later attempts
  use credentials[1] when a backup exists;
- attempts 1..IMAGE_DROP_AFTER_ATTEMPTS send the screenshots inline, later
  attempts send text only.
"""
import asyncio
import base64
import logging
from typing import Any, Callable, Optional, Sequence

from uxaudit.config import settings
from uxaudit.services.response_parser import parse_model_json
from uxaudit.services.retry import retry_with_backoff

logger = logging.getLogger(__name__)

# Independent thresholds; they only coincide by default.
KEY_FAILOVER_AFTER_ATTEMPTS = settings.KEY_FAILOVER_AFTER_ATTEMPTS
IMAGE_DROP_AFTER_ATTEMPTS = settings.IMAGE_DROP_AFTER_ATTEMPTS


class MissingCredentialsError(RuntimeError):
    """Raised when no Gemini API key is configured."""
    pass


def select_credential(credentials: Sequence[str], attempt: int) -> str:
    """Primary for the first attempts, backup afterwards (if there is one)."""
    if attempt > KEY_FAILOVER_AFTER_ATTEMPTS and len(credentials) > 1:
        return credentials[1]
    return credentials[0]


def include_images(attempt: int) -> bool:
    return attempt <= IMAGE_DROP_AFTER_ATTEMPTS


def _default_client_factory(api_key: str):
    from google import genai
    return genai.Client(api_key=api_key)


def _build_contents(content: str, images: Sequence[str], mime_type: str, with_images: bool):
    """Inline image parts followed by the text part, or plain text."""
    if not with_images or not images:
        return content
    from google.genai import types
    parts = [
        types.Part.from_bytes(data=base64.b64decode(img), mime_type=mime_type)
        for img in images
    ]
    parts.append(types.Part.from_text(text=content))
    return [types.Content(role="user", parts=parts)]


def _build_config(system_instruction: str, schema: Optional[dict]):
    from google.genai import types

    permissive = [
        types.SafetySetting(category=category, threshold=types.HarmBlockThreshold.BLOCK_NONE)
        for category in (
            types.HarmCategory.HARM_CATEGORY_HATE_SPEECH,
            types.HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT,
            types.HarmCategory.HARM_CATEGORY_HARASSMENT,
            types.HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT,
        )
    ]
    config_dict = {
        "system_instruction": system_instruction,
        "response_mime_type": "application/json",
        "max_output_tokens": settings.GEMINI_MAX_OUTPUT_TOKENS,
        "safety_settings": permissive,
    }
    if schema:
        config_dict["response_json_schema"] = schema
    return types.GenerateContentConfig(**config_dict)


def _response_text(response) -> str:
    text = getattr(response, "text", None)
    if callable(text):
        text = text()
    return text or ""


async def call_api(
    credentials: Sequence[str],
    system_instruction: str,
    content: str,
    schema: Optional[dict],
    images: Optional[Sequence[str]] = None,
    mime_type: str = "image/png",
    *,
    model_name: Optional[str] = None,
    client_factory: Optional[Callable[[str], Any]] = None,
    max_attempts: Optional[int] = None,
    base_delay: Optional[float] = None,
) -> Any:
    """Run one structured-output request and return the parsed JSON.

    Args:
        credentials: ordered API keys, [primary, backup].
        system_instruction: expert role prompt.
        content: user text (site context, scraped text, ...).
        schema: JSON schema for the response, or None.
        images: base64 screenshots sent inline on early attempts.
        mime_type: mime type of the images.
        client_factory: api_key -> genai.Client; overridden in tests.

    Raises:
        MissingCredentialsError: no credentials.
        AIResponseParseError: the model output is not recoverable JSON.
        Exception: the last transport error once retries are exhausted.
    """
    creds = [c for c in credentials if c]
    if not creds:
        raise MissingCredentialsError("Missing GEMINI_API_KEY in settings")

    images = [img for img in (images or []) if img]
    model = model_name or settings.GEMINI_MODEL
    factory = client_factory or _default_client_factory
    config = _build_config(system_instruction, schema)

    async def attempt_call(attempt: int):
        api_key = select_credential(creds, attempt)
        if attempt > KEY_FAILOVER_AFTER_ATTEMPTS and len(creds) > 1:
            logger.warning("[AI] Switching to backup key (attempt %d)", attempt)
        with_images = include_images(attempt)
        if images and not with_images:
            logger.warning("[AI] Dropping images, text-only request (attempt %d)", attempt)
        contents = _build_contents(content, images, mime_type, with_images)
        client = factory(api_key)
        return await asyncio.to_thread(
            client.models.generate_content, model=model, contents=contents, config=config,
        )

    response = await retry_with_backoff(
        attempt_call,
        max_attempts=max_attempts or settings.AI_MAX_ATTEMPTS,
        base_delay=base_delay if base_delay is not None else settings.AI_BASE_DELAY,
        label="Generate Content",
    )
    return parse_model_json(_response_text(response))
