"""Extract a JSON object from free-form model output.

Models wrap JSON in Markdown fences, prepend chatter, or append trailing
commentary.  :func:`decode_json_object` strips one outer fenced block, then
slices from the first ``{`` to the last ``}`` and parses the result.
"""

from __future__ import annotations

import json
import re
from typing import Any

from .errors import DecodeError

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)\s*```", re.IGNORECASE | re.DOTALL)


def strip_fences(text: str) -> str:
    """Return the body of the first fenced block, or *text* unchanged."""
    match = _FENCE_RE.search(text)
    if match:
        return match.group(1)
    return text


def decode_json_object(text: str | None) -> dict[str, Any]:
    """Decode the JSON object embedded in *text*.

    Raises:
        DecodeError: On empty input, when no ``{...}`` span exists, when the
            span does not parse, or when the top level is not an object.
    """
    if not text or not text.strip():
        raise DecodeError("Empty response from model")

    body = strip_fences(text.strip())
    start = body.find("{")
    end = body.rfind("}")
    if start == -1 or end <= start:
        raise DecodeError(f"No JSON object found in response: {text[:200]!r}")

    try:
        data = json.loads(body[start:end + 1])
    except json.JSONDecodeError as exc:
        raise DecodeError(f"Invalid JSON in response: {exc}") from exc

    if not isinstance(data, dict):
        raise DecodeError("Response JSON is not an object")
    return data
