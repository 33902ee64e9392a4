"""Model response parsing.

Models do not always honour "no markdown" instructions, so a surrounding
code fence is stripped. Beyond that no repair is attempted: malformed
output raises ResponseParseError carrying the raw text.
"""

import json
import logging
import re
from typing import Any

from errors import ResponseParseError

logger = logging.getLogger(__name__)

_FENCE_OPEN = re.compile(r"^```(?:json)?[ \t]*\n?", re.IGNORECASE)
_FENCE_CLOSE = re.compile(r"\n?```$")


def strip_code_fence(raw: str) -> str:
    """Remove a leading ```json / ``` marker and a trailing ``` marker."""
    cleaned = raw.strip()
    cleaned = _FENCE_OPEN.sub("", cleaned, count=1)
    cleaned = _FENCE_CLOSE.sub("", cleaned, count=1)
    return cleaned.strip()


def parse_json_payload(raw: str) -> Any:
    """Parse model output as JSON after fence stripping."""
    if not raw or not raw.strip():
        raise ResponseParseError(raw or "", "Model returned an empty response")

    try:
        return json.loads(strip_code_fence(raw))
    except json.JSONDecodeError as e:
        logger.warning("Could not parse JSON from model response: %s", raw[:200])
        raise ResponseParseError(raw, f"Model response is not valid JSON ({e.msg})") from e


def parse_response(raw: str) -> dict[str, Any]:
    """Parse an extraction or classification response into a JSON object."""
    payload = parse_json_payload(raw)
    if not isinstance(payload, dict):
        raise ResponseParseError(raw, f"Expected a JSON object, got {type(payload).__name__}")
    return payload


def parse_array_response(raw: str) -> list[Any]:
    """Parse a discovery response into a JSON array."""
    payload = parse_json_payload(raw)
    if not isinstance(payload, list):
        raise ResponseParseError(raw, f"Expected a JSON array, got {type(payload).__name__}")
    return payload


def coerce_value(value: Any) -> str:
    """Render one untrusted JSON value as the string stored for a field."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return json.dumps(value, ensure_ascii=False)


def coerce_field_values(payload: dict[str, Any], keys: tuple[str, ...] | list[str]) -> dict[str, str]:
    """Keep only the expected keys, as strings; missing keys become ""."""
    unexpected = set(payload) - set(keys)
    if unexpected:
        logger.debug("Dropping %d unexpected keys from model response", len(unexpected))
    return {key: coerce_value(payload.get(key)) for key in keys}
