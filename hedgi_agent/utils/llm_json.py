from __future__ import annotations

import json
import re
from typing import Any, Optional

_FENCE_OPEN_RE = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_FENCE_CLOSE_RE = re.compile(r"```$")


def strip_code_fences(text: str) -> str:
    cleaned = _FENCE_OPEN_RE.sub("", (text or "").strip())
    return _FENCE_CLOSE_RE.sub("", cleaned).strip()


def escape_newlines_in_strings(text: str) -> str:
    out: list[str] = []
    in_string = False
    escaped = False
    i = 0
    while i < len(text):
        char = text[i]
        if in_string:
            if escaped:
                escaped = False
                out.append(char)
            elif char == "\\":
                escaped = True
                out.append(char)
            elif char == '"':
                in_string = False
                out.append(char)
            elif char == "\n":
                out.append("\\n")
            elif char == "\r":
                if i + 1 < len(text) and text[i + 1] == "\n":
                    i += 1
                out.append("\\n")
            else:
                out.append(char)
        else:
            if char == '"':
                in_string = True
            out.append(char)
        i += 1
    return "".join(out)


def _try_parse(text: str) -> Any:
    try:
        return json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return None


def _widest_span(text: str) -> Optional[str]:
    starts = [idx for idx in (text.find("{"), text.find("[")) if idx != -1]
    if not starts:
        return None
    start = min(starts)
    end = max(text.rfind("}"), text.rfind("]"))
    if end <= start:
        return None
    return text[start : end + 1]


def parse_llm_json(text: str) -> Any:
    """Best-effort JSON recovery for model output.

    Returns the parsed value (dict, list, or scalar) or None when nothing
    usable could be recovered.
    """
    if not text or not text.strip():
        return None

    normalized = escape_newlines_in_strings(strip_code_fences(text))
    parsed = _try_parse(normalized)
    if parsed is None:
        span = _widest_span(normalized)
        if span:
            parsed = _try_parse(span)

    # Double-encoded payloads arrive as a JSON string holding JSON.
    depth = 0
    while isinstance(parsed, str) and depth < 3:
        inner = _try_parse(escape_newlines_in_strings(strip_code_fences(parsed)))
        if inner is None:
            break
        parsed = inner
        depth += 1

    return parsed


def parse_llm_object(text: str) -> Optional[dict]:
    parsed = parse_llm_json(text)
    return parsed if isinstance(parsed, dict) else None
