from __future__ import annotations

import json
import re
from typing import Any

from src.services.errors import MalformedOutputError

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*(.*?)\s*```", re.DOTALL)


def strip_markdown_fences(text: str) -> str:
    match = _FENCE_RE.search(text)
    if match:
        return match.group(1).strip()
    return text.strip()


def _slice_outer_object(text: str) -> str | None:
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    return text[start:end + 1]


def _first_object(parsed: Any) -> dict[str, Any] | None:
    if isinstance(parsed, dict):
        return parsed
    if isinstance(parsed, list) and parsed and isinstance(parsed[0], dict):
        return parsed[0]
    return None


def recover_json_object(text: str | None) -> dict[str, Any]:
    """
    Parse model output that should be a single JSON object.

    Tolerates markdown fences, prose around the object and a top-level
    array (the first element is used). Raises MalformedOutputError when no
    object can be recovered.
    """
    if not text or not text.strip():
        raise MalformedOutputError("Model output is empty")

    cleaned = strip_markdown_fences(text)
    try:
        obj = _first_object(json.loads(cleaned))
        if obj is not None:
            return obj
    except json.JSONDecodeError:
        pass

    sliced = _slice_outer_object(cleaned)
    if sliced is None:
        raise MalformedOutputError("Model output does not contain a JSON object")
    try:
        obj = _first_object(json.loads(sliced))
    except json.JSONDecodeError as error:
        raise MalformedOutputError(f"Model output is not valid JSON: {error.msg}") from error
    if obj is None:
        raise MalformedOutputError("Model output is not a JSON object")
    return obj
