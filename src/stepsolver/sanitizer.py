"""Recovery of JSON objects from loosely formatted model output.

Chat models reliably emit JSON but not reliably *only* JSON: markdown fences,
leading or trailing prose and trailing commas are common. Each stage below
handles one of those failure modes and is applied unconditionally, so valid
input only pays for a few string scans.

Limitation: the envelope stage slices from the first ``{`` to the last ``}``.
It is a heuristic, not a tokenizer. Braces inside string values are fine as
long as the true outermost pair is the first/last brace in the text.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from .errors import ParseError

logger = logging.getLogger(__name__)

FENCE_RE = re.compile(r"^```(?:json)?\s*\n?(.*?)\n?\s*```$", flags=re.IGNORECASE | re.DOTALL)
TRAILING_COMMA_RE = re.compile(r'("(?:\\.|[^"\\])*")|,\s*([}\]])')


def strip_code_fence(text: str) -> str:
    """Return the interior of a fenced block when the whole text is one."""

    match = FENCE_RE.match(text)
    if match and match.group(1):
        return match.group(1).strip()
    return text


def slice_json_envelope(text: str) -> str:
    """Slice to the span between the first ``{`` and the last ``}``."""

    first = text.find("{")
    last = text.rfind("}")
    if first != -1 and last > first:
        return text[first : last + 1]
    return text


def remove_trailing_commas(text: str) -> str:
    """Drop commas that directly precede a closing brace or bracket.

    String literals are matched first and kept verbatim, so text such as
    ``"{1, 2, }"`` inside a value is not rewritten.
    """

    return TRAILING_COMMA_RE.sub(lambda m: m.group(1) or m.group(2), text)


def clean_json_text(raw: str) -> str:
    """Run every repair stage and return the text that will be parsed."""

    cleaned = raw.strip()
    cleaned = strip_code_fence(cleaned)
    cleaned = slice_json_envelope(cleaned)
    return remove_trailing_commas(cleaned)


def sanitize_and_parse(raw: str) -> dict[str, Any]:
    """Parse a JSON object out of model output or raise ``ParseError``."""

    if raw is None:
        raise ParseError("", "empty model response")

    cleaned = clean_json_text(raw)
    try:
        payload = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        logger.warning(
            "Could not parse JSON response: %s\nProcessed response: %s\nOriginal response: %s",
            exc,
            cleaned[:2000],
            raw[:2000],
        )
        raise ParseError(raw, str(exc)) from exc

    if not isinstance(payload, dict):
        raise ParseError(raw, f"expected a JSON object, got {type(payload).__name__}")

    return payload


def coerce_str(value: Any) -> str:
    """Normalize a payload field into text."""

    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return str(value)


def coerce_str_list(value: Any) -> list[str]:
    """Normalize a payload field into a list of strings."""

    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value.strip() else []
    if isinstance(value, (list, tuple)):
        return [coerce_str(item) for item in value if item is not None]
    return [coerce_str(value)]


def coerce_bool(value: Any) -> bool:
    """Interpret booleans that some models emit as strings."""

    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"true", "yes", "1"}
    if isinstance(value, (int, float)):
        return bool(value)
    return False
