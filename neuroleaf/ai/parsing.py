"""Helpers for pulling JSON out of free-form model output."""
import re
import json
from typing import Any, Optional

_FENCE_RE = re.compile(r'```(?:json)?\s*|\s*```', re.IGNORECASE)
_OBJECT_RE = re.compile(r'\{[\s\S]*\}')


def strip_code_fences(text: str) -> str:
    return _FENCE_RE.sub('', text or '').strip()


def extract_json_object(text: str) -> Optional[Any]:
    """Return the outermost {...} block parsed as JSON, or None."""
    cleaned = strip_code_fences(text)
    match = _OBJECT_RE.search(cleaned)
    if not match:
        return None
    try:
        return json.loads(match.group(0))
    except ValueError:
        return None


def has_json_object(text: str) -> bool:
    return bool(_OBJECT_RE.search(strip_code_fences(text)))
