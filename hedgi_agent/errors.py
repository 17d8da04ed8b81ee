from __future__ import annotations

from typing import Optional


class HedgiError(Exception):
    """Error carrying a stable machine-readable code for the caller boundary."""

    def __init__(self, code: str, details: str = ""):
        self.code = code
        self.details = details
        super().__init__(f"{code}: {details}" if details else code)


class HedgeQuoteError(HedgiError, ValueError):
    pass


class LLMOutputError(HedgiError):
    pass


class VenueError(HedgiError):
    def __init__(self, code: str, details: str = "", status: Optional[int] = None):
        super().__init__(code, details)
        self.status = status


class RateLimitedError(VenueError):
    def __init__(self, retry_after_sec: Optional[int] = None, details: str = ""):
        super().__init__("rate_limited", details, status=429)
        self.retry_after_sec = retry_after_sec
