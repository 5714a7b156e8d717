# clearmind/core/json_recovery.py

import json
import re
from typing import Any, Dict, Iterable, Optional, Tuple

from clearmind.core.syslog2 import *

# models love wrapping json in markdown fences
_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)
_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)
_ARRAY_RE = re.compile(r"\[.*\]", re.DOTALL)


def _try_loads(text: str) -> Tuple[Any, bool]:
    try:
        return json.loads(text), True
    except (ValueError, RecursionError):
        # RecursionError: nesting deeper than the decoder can follow
        return None, False


def safe_parse_json(text: Any) -> Any:
    """
    Best-effort json extraction from model output.

    Tries, in order: the whole string, the first fenced code block, the
    greedy {...} span, the greedy [...] span. Returns None when nothing
    parses; never raises.
    """
    if not isinstance(text, str):
        return None

    value, ok = _try_loads(text)
    if ok:
        return value

    fence = _FENCE_RE.search(text)
    if fence:
        value, ok = _try_loads(fence.group(1).strip())
        if ok:
            return value

    for pattern in (_OBJECT_RE, _ARRAY_RE):
        match = pattern.search(text)
        if match:
            value, ok = _try_loads(match.group(0))
            if ok:
                return value

    syslog2(LOG_DEBUG, "json recovery failed", length=len(text), preview=text[:80])
    return None


def parse_json_object(text: Any, required_keys: Iterable[str] = ()) -> Optional[Dict[str, Any]]:
    """safe_parse_json restricted to dicts that carry every required key"""
    value = safe_parse_json(text)
    if not isinstance(value, dict):
        return None
    missing = [key for key in required_keys if key not in value]
    if missing:
        syslog2(LOG_DEBUG, "json object missing keys", missing=missing)
        return None
    return value
