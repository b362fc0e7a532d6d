"""Parsing of structured model output.

Gemini is asked for JSON, but long answers come back fenced, truncated at the
token limit, or wrapped in chatter. ``parse_model_json`` runs four strategies
in order and raises ``AIResponseParseError`` when none of them works.
"""
import json
import logging
import re

logger = logging.getLogger(__name__)

RAW_OUTPUT_LIMIT = 5000

_FENCE_OPEN = re.compile(r"^```(?:json|JSON)?\s*")
_FENCE_CLOSE = re.compile(r"\s*```$")
_TRAILING_COMMA = re.compile(r",(\s*[}\]])")


class AIResponseParseError(ValueError):
    """Raised when model output cannot be turned into JSON by any strategy."""

    def __init__(self, reason: str, raw_output: str):
        self.reason = reason
        self.raw_output = raw_output
        super().__init__(
            "The AI model returned a response that could not be parsed as JSON "
            f"({reason}). Raw output: \n---\n{raw_output[:RAW_OUTPUT_LIMIT]}\n---"
        )


def strip_code_fences(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        text = _FENCE_OPEN.sub("", text)
        text = _FENCE_CLOSE.sub("", text)
    return text.strip()


def repair_json(text: str) -> str:
    """Repair truncated or slightly malformed JSON.

    Closes an unterminated string, drops a dangling comma or key separator,
    closes open arrays/objects in nesting order and removes trailing commas.
    """
    repaired = text.strip()

    stack: list[str] = []
    in_string = False
    escape_next = False

    for char in repaired:
        if escape_next:
            escape_next = False
            continue
        if char == "\\" and in_string:
            escape_next = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if char == "{":
            stack.append("}")
        elif char == "[":
            stack.append("]")
        elif char in "}]" and stack and stack[-1] == char:
            stack.pop()

    if in_string:
        if escape_next:
            repaired = repaired[:-1]
        repaired += '"'

    if stack:
        repaired = repaired.rstrip()
        while repaired and repaired[-1] in ",:":
            if repaired[-1] == ":":
                repaired += " null"
                break
            repaired = repaired[:-1].rstrip()
        repaired += "".join(reversed(stack))

    return _TRAILING_COMMA.sub(r"\1", repaired)


def extract_braced(text: str) -> str | None:
    """Substring from the first '{' to the last '}', or None."""
    first = text.find("{")
    last = text.rfind("}")
    if first == -1 or last == -1 or last <= first:
        return None
    return text[first:last + 1]


def parse_model_json(raw: str | None):
    """Parse model output into a dict/list.

    Strategies, first success wins:
      1. strip Markdown fences and parse
      2. repair and parse
      3. parse the outermost braced substring
      4. repair the braced substring and parse
    """
    if raw is None or not raw.strip():
        raise AIResponseParseError("Response text is empty", raw or "")

    text = strip_code_fences(raw)
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        initial_error = e

    try:
        result = json.loads(repair_json(text))
        logger.warning("Repaired malformed JSON response")
        return result
    except json.JSONDecodeError:
        pass

    extracted = extract_braced(text)
    if extracted is not None:
        try:
            return json.loads(extracted)
        except json.JSONDecodeError:
            pass
        try:
            result = json.loads(repair_json(extracted))
            logger.warning("Repaired JSON extracted from noisy response")
            return result
        except json.JSONDecodeError:
            pass

    logger.error("Failed to parse JSON response: %s", raw[:500])
    raise AIResponseParseError(str(initial_error), raw.strip())
