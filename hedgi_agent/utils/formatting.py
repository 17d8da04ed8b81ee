from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Optional

_DAY_SECONDS = 24 * 60 * 60


def ensure_utc(value: Optional[datetime] = None) -> datetime:
    """The given instant as an aware datetime (naive means UTC); the current time when None."""
    if value is None:
        return datetime.now(timezone.utc)
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def parse_timestamp(raw: object) -> Optional[datetime]:
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        return ensure_utc(raw)
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        seconds = raw / 1000.0 if raw > 1e12 else float(raw)
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(raw, str):
        try:
            parsed = datetime.fromisoformat(raw.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def to_iso(raw: object) -> Optional[str]:
    parsed = parse_timestamp(raw)
    if parsed is None:
        return None
    return parsed.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def days_until(raw: object, now: Optional[datetime] = None) -> int:
    target = parse_timestamp(raw)
    if target is None:
        return 0
    now = ensure_utc(now)
    return math.ceil((target - now).total_seconds() / _DAY_SECONDS)


def format_currency(value: float, symbol: str = "$") -> str:
    sign = "-" if value < 0 else ""
    return f"{sign}{symbol}{abs(value):,.0f}"


def format_percent(value: float, digits: int = 0) -> str:
    normalized = value * 100 if value <= 1 else value
    return f"{normalized:.{digits}f}%"
