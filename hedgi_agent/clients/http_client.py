from __future__ import annotations

import logging
import math
import threading
import time
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Callable, Dict, Optional

import requests
from tenacity import RetryCallState, Retrying, retry_if_exception, stop_after_attempt, stop_any, stop_when_event_set

from hedgi_agent.clients.rate_limiter import SlotScheduler
from hedgi_agent.errors import RateLimitedError, VenueError
from hedgi_agent.utils.formatting import ensure_utc

logger = logging.getLogger(__name__)


class HttpClient:
    def __init__(
        self,
        timeout: int = 15,
        scheduler: Optional[SlotScheduler] = None,
        max_retries: int = 3,
        backoff_seconds: float = 1.0,
        backoff_cap_seconds: float = 15.0,
        error_prefix: str = "http",
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._session = session or requests.Session()
        self._timeout = timeout
        self._scheduler = scheduler
        self._max_retries = max(0, max_retries)
        self._backoff_seconds = backoff_seconds
        self._backoff_cap_seconds = backoff_cap_seconds
        self._error_prefix = error_prefix
        self._sleep = sleep

    def get_json(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> Any:
        """GET with rate-limit slots and retry on 429/network failures.

        Raises ``RateLimitedError`` once retries are exhausted on 429 and
        ``VenueError`` for other failures. Once ``cancel_event`` is set no
        further attempt is made and backoff waits end early; the call fails
        with ``<prefix>_cancelled``.
        """
        stop = stop_after_attempt(self._max_retries + 1)
        if cancel_event is not None:
            stop = stop_any(stop, stop_when_event_set(cancel_event))

        def sleep(seconds: float) -> None:
            if cancel_event is not None:
                cancel_event.wait(seconds)
            else:
                self._sleep(seconds)

        retryer = Retrying(
            retry=retry_if_exception(_is_retryable),
            stop=stop,
            wait=self._wait_seconds,
            sleep=sleep,
            before_sleep=_log_retry,
            reraise=True,
        )
        return retryer(self._get_once, url, params, headers, cancel_event)

    def _get_once(
        self,
        url: str,
        params: Optional[Dict[str, Any]],
        headers: Optional[Dict[str, str]],
        cancel_event: Optional[threading.Event] = None,
    ) -> Any:
        self._raise_if_cancelled(url, cancel_event)
        if self._scheduler is not None:
            self._scheduler.acquire()
            self._raise_if_cancelled(url, cancel_event)
        try:
            response = self._session.get(url, params=params, headers=headers, timeout=self._timeout)
        except requests.RequestException as exc:
            raise VenueError(f"{self._error_prefix}_fetch_failed", str(exc)) from exc

        if response.status_code == 429:
            raise RateLimitedError(parse_retry_after(response.headers.get("Retry-After")), url)
        if response.status_code >= 400:
            body = response.text[:600] if response.text else ""
            raise VenueError(f"{self._error_prefix}_http_{response.status_code}", body, status=response.status_code)
        try:
            return response.json()
        except ValueError as exc:
            raise VenueError(f"{self._error_prefix}_fetch_failed", f"invalid JSON body: {exc}", status=response.status_code) from exc

    def _raise_if_cancelled(self, url: str, cancel_event: Optional[threading.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise VenueError(f"{self._error_prefix}_cancelled", url)

    def _wait_seconds(self, retry_state: RetryCallState) -> float:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(exc, RateLimitedError) and exc.retry_after_sec is not None:
            return float(exc.retry_after_sec)
        attempt = max(1, retry_state.attempt_number)
        return min(self._backoff_seconds * (2 ** (attempt - 1)), self._backoff_cap_seconds)


def parse_retry_after(value: Optional[str], now: Optional[datetime] = None) -> Optional[int]:
    """Retry-After as whole seconds; accepts delta-seconds or an HTTP-date.

    Zero, negative and past values count as absent so the default backoff applies.
    """
    if not value:
        return None
    value = value.strip()
    try:
        seconds = float(value)
    except ValueError:
        seconds = None
    if seconds is None:
        try:
            when = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return None
        if when is None:
            return None
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        now = ensure_utc(now)
        seconds = (when - now).total_seconds()
    if not math.isfinite(seconds) or seconds <= 0:
        return None
    return math.ceil(seconds)


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, RateLimitedError):
        return True
    # status is None only for transport failures.
    return isinstance(exc, VenueError) and exc.status is None and exc.code.endswith("_fetch_failed")


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "Venue request failed, retrying",
        extra={
            "attempt": retry_state.attempt_number,
            "error": str(exc),
            "wait_seconds": getattr(retry_state.next_action, "sleep", None),
        },
    )
