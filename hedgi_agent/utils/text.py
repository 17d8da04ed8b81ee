from __future__ import annotations

import re
from typing import Iterable, List

from hedgi_agent.knowledge.lexicon import STOPWORDS

_PROFILE_STRIP_RE = re.compile(r"[^a-z0-9\s-]")
_TITLE_STRIP_RE = re.compile(r"[^a-z0-9\s]")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")
_WHITESPACE_RE = re.compile(r"\s+")


def tokenize(text: str) -> List[str]:
    """Lowercase, keep letters/digits/hyphens, drop short tokens and stop-words."""
    cleaned = _PROFILE_STRIP_RE.sub(" ", (text or "").lower())
    return [tok for tok in (t.strip() for t in cleaned.split()) if len(tok) > 2 and tok not in STOPWORDS]


def unique_in_order(items: Iterable[str], limit: int | None = None) -> List[str]:
    out: List[str] = []
    seen: set[str] = set()
    for item in items:
        if item in seen:
            continue
        seen.add(item)
        out.append(item)
        if limit is not None and len(out) >= limit:
            break
    return out


def normalize_title(title: str) -> str:
    lowered = _TITLE_STRIP_RE.sub("", (title or "").lower())
    return _WHITESPACE_RE.sub(" ", lowered).strip()


def search_tokens(value: object) -> List[str]:
    cleaned = _NON_ALNUM_RE.sub(" ", str(value or "").lower()).strip()
    return cleaned.split() if cleaned else []


def stem_token(token: str) -> str:
    if len(token) <= 3:
        return token
    if token.endswith("ies"):
        return f"{token[:-3]}y"
    if token.endswith("ing") and len(token) > 4:
        return token[:-3]
    if token.endswith("ed"):
        return token[:-2]
    if token.endswith("es"):
        return token[:-2]
    if token.endswith("s"):
        return token[:-1]
    return token
