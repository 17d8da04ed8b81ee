from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple
from urllib.parse import quote

from hedgi_agent.clients.http_client import HttpClient
from hedgi_agent.connectors.base import VenueAdapter
from hedgi_agent.errors import RateLimitedError, VenueError
from hedgi_agent.knowledge.kalshi_plans import KALSHI_CATEGORY_PLANS, KalshiDiscoveryPlan
from hedgi_agent.models import Market, MarketOutcome, VenueFetchMeta, VenueFetchResult
from hedgi_agent.utils.cache import TTLCache
from hedgi_agent.utils.formatting import ensure_utc, to_iso

logger = logging.getLogger(__name__)

PAGE_LIMIT = 100
MAX_PAGES = 50
DEFAULT_CATEGORY = "finance"
DEFAULT_CLOSE_DAYS = 30

_SERIES_KEYS = ("series", "items", "results", "data")
_MARKET_KEYS = ("markets", "items", "results", "data")
_EVENT_KEYS = ("events", "data", "items", "results")


@dataclass
class KalshiCaches:
    """TTL maps owned by one process and shared by every Kalshi client built from it."""

    series: TTLCache
    series_by_tags: TTLCache
    markets: TTLCache
    open_check: TTLCache

    @classmethod
    def create(
        cls,
        series_ttl_seconds: float = 30 * 60,
        markets_ttl_seconds: float = 60,
        open_check_ttl_seconds: float = 30,
        clock: Callable[[], float] = time.monotonic,
    ) -> "KalshiCaches":
        return cls(
            series=TTLCache(series_ttl_seconds, clock=clock),
            series_by_tags=TTLCache(series_ttl_seconds, clock=clock),
            markets=TTLCache(markets_ttl_seconds, clock=clock),
            open_check=TTLCache(open_check_ttl_seconds, clock=clock),
        )


@dataclass
class SeriesFetch:
    series: List[Dict[str, Any]]
    cache_hit: bool = False


@dataclass
class SeriesMarketsFetch:
    markets: List[Dict[str, Any]]
    cache_hit: bool = False
    rate_limited: bool = False
    retry_after_sec: Optional[int] = None


@dataclass
class OpenCheck:
    has_open: bool
    cache_hit: bool = False
    rate_limited: bool = False
    retry_after_sec: Optional[int] = None


@dataclass
class SeriesCandidate:
    ticker: str
    score: int
    reasons: List[str] = field(default_factory=list)
    title: str = ""


@dataclass
class SeriesSelection:
    selected: List[SeriesCandidate]
    category_map: Dict[str, str]
    capped: bool = False

    @property
    def tickers(self) -> List[str]:
        return [c.ticker for c in self.selected]


class KalshiClient:
    def __init__(self, base_url: str, http: HttpClient, caches: Optional[KalshiCaches] = None):
        self.base_url = base_url.rstrip("/")
        self.http = http
        self.caches = caches or KalshiCaches.create()

    def series_list(self, cancel_event: Optional[threading.Event] = None) -> SeriesFetch:
        key = "kalshi:series:all"
        cached = self.caches.series.get(key)
        if cached:
            logger.debug("Kalshi series cache hit", extra={"count": len(cached)})
            return SeriesFetch(series=cached, cache_hit=True)

        series: List[Dict[str, Any]] = []
        self._paginate(self._url("/trade-api/v2/series"), {}, _SERIES_KEYS, series, cancel_event)
        if series:
            self.caches.series.set(key, series)
        logger.info("Kalshi series fetched", extra={"count": len(series)})
        return SeriesFetch(series=series)

    def series_by_tags(self, tags: Sequence[str], cancel_event: Optional[threading.Event] = None) -> SeriesFetch:
        normalized = _normalize_tags(tags)
        key = f"kalshi:series:tags={'|'.join(sorted(normalized))}"
        cached = self.caches.series_by_tags.get(key)
        if cached is not None:
            return SeriesFetch(series=cached, cache_hit=True)

        url = self._url("/trade-api/v2/series")
        if normalized:
            # Commas stay literal; each tag is encoded on its own.
            url = f"{url}?tags={','.join(quote(tag, safe='') for tag in normalized)}"
        series: List[Dict[str, Any]] = []
        self._paginate(url, {}, _SERIES_KEYS, series, cancel_event)
        self.caches.series_by_tags.set(key, series)
        return SeriesFetch(series=series)

    def markets_for_series(
        self,
        series_ticker: str,
        status: str = "open",
        close_min: Optional[str] = None,
        close_max: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> SeriesMarketsFetch:
        if not series_ticker:
            return SeriesMarketsFetch(markets=[])

        key = "|".join([series_ticker, status or "open", close_min or "", close_max or ""])
        cached = self.caches.markets.get(key)
        if cached is not None:
            return SeriesMarketsFetch(markets=cached, cache_hit=True)

        params: Dict[str, Any] = {"series_ticker": series_ticker, "status": status or "open"}
        if close_min:
            params["close_min"] = close_min
        if close_max:
            params["close_max"] = close_max

        markets: List[Dict[str, Any]] = []
        try:
            self._paginate(self._url("/trade-api/v2/markets"), params, _MARKET_KEYS, markets, cancel_event)
        except RateLimitedError as exc:
            logger.warning("Kalshi rate limited", extra={"series": series_ticker, "retry_after_sec": exc.retry_after_sec})
            return SeriesMarketsFetch(markets=markets, rate_limited=True, retry_after_sec=exc.retry_after_sec)

        self.caches.markets.set(key, markets)
        return SeriesMarketsFetch(markets=markets)

    def has_open_market(self, series_ticker: str) -> OpenCheck:
        if not series_ticker:
            return OpenCheck(has_open=False)

        cached = self.caches.open_check.get(series_ticker)
        if cached is not None:
            return OpenCheck(has_open=cached, cache_hit=True)

        try:
            payload = self.http.get_json(
                self._url("/trade-api/v2/markets"),
                params={"series_ticker": series_ticker, "status": "open", "limit": 1},
            )
        except RateLimitedError as exc:
            return OpenCheck(has_open=False, rate_limited=True, retry_after_sec=exc.retry_after_sec)

        has_open = bool(_extract_array(payload, _MARKET_KEYS))
        self.caches.open_check.set(series_ticker, has_open)
        return OpenCheck(has_open=has_open)

    def events_page(self, category: str, cursor: Optional[str] = None, limit: int = 200) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        params: Dict[str, Any] = {"category": category, "with_nested_markets": "true", "limit": limit}
        if cursor:
            params["cursor"] = cursor
        payload = self.http.get_json(self._url("/trade-api/v2/events"), params=params)
        return _extract_array(payload, _EVENT_KEYS), _extract_cursor(payload)

    def cache_snapshot(self) -> Dict[str, List[Dict[str, object]]]:
        return {
            "series": self.caches.series.snapshot(),
            "series_by_tags": self.caches.series_by_tags.snapshot(),
            "markets": self.caches.markets.snapshot(),
        }

    def _paginate(
        self,
        url: str,
        params: Dict[str, Any],
        keys: Sequence[str],
        out: List[Dict[str, Any]],
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        # Appends into ``out`` so callers keep what arrived before a failure.
        cursor: Optional[str] = None
        pages = 0
        while True:
            page_params = dict(params, limit=PAGE_LIMIT)
            if cursor:
                page_params["cursor"] = cursor
            payload = self.http.get_json(url, params=page_params, cancel_event=cancel_event)
            batch = _extract_array(payload, keys)
            out.extend(batch)
            cursor = _extract_cursor(payload)
            pages += 1
            if len(batch) < PAGE_LIMIT or not cursor or pages >= MAX_PAGES:
                return

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"


class KalshiAdapter(VenueAdapter):
    source_name = "kalshi"

    def __init__(
        self,
        client: KalshiClient,
        max_series_per_category: int = 5,
        max_series: int = 10,
        series_delay_seconds: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client = client
        self.max_series_per_category = max_series_per_category
        self.max_series = max_series
        self.series_delay_seconds = series_delay_seconds
        self._sleep = sleep

    def fetch_markets(
        self,
        categories: Sequence[str],
        cancel_event: Optional[threading.Event] = None,
    ) -> VenueFetchResult:
        categories = list(categories) or list(KALSHI_CATEGORY_PLANS)
        meta = VenueFetchMeta(provider="kalshi")
        tags, tags_by_category = tags_for_categories(categories)

        try:
            listing = (
                self.client.series_by_tags(tags, cancel_event=cancel_event)
                if tags
                else self.client.series_list(cancel_event=cancel_event)
            )
        except RateLimitedError as exc:
            meta.rate_limited = True
            meta.retry_after_sec = exc.retry_after_sec
            meta.partial = True
            return VenueFetchResult(markets=[], meta=meta)
        except VenueError as exc:
            logger.warning("Kalshi series listing failed: %s", str(exc))
            meta.error = exc.code
            meta.partial = True
            return VenueFetchResult(markets=[], meta=meta)

        selection = select_series_for_categories(
            categories,
            listing.series,
            tags_by_category,
            max_per_category=self.max_series_per_category,
            max_total=self.max_series,
        )
        meta.series_selected = len(selection.selected)

        markets: List[Market] = []
        for ticker in selection.tickers:
            if cancel_event is not None and cancel_event.is_set():
                meta.partial = True
                break
            try:
                result = self.client.markets_for_series(ticker, status="open", cancel_event=cancel_event)
            except VenueError as exc:
                logger.warning("Kalshi markets fetch failed: %s", str(exc), extra={"series": ticker})
                meta.error = exc.code
                meta.partial = True
                break

            category_id = selection.category_map.get(ticker, DEFAULT_CATEGORY)
            markets.extend(normalize_market(raw, category_id) for raw in result.markets if isinstance(raw, dict))

            if result.rate_limited:
                meta.rate_limited = True
                meta.retry_after_sec = result.retry_after_sec
                meta.partial = True
                meta.series_fetched += 1
                meta.cache_misses += 1
                break
            if result.cache_hit:
                meta.cache_hits += 1
                continue

            meta.cache_misses += 1
            meta.series_fetched += 1
            if self.series_delay_seconds > 0:
                self._pause(self.series_delay_seconds, cancel_event)

        meta.markets_fetched = len(markets)
        return VenueFetchResult(markets=markets, meta=meta)

    def open_series_for_tags(self, tags: Sequence[str]) -> List[SeriesCandidate]:
        """Tag-matched series that list at least one open market, best overlap first."""
        listing = self.client.series_by_tags(tags)
        out: List[SeriesCandidate] = []
        for candidate in select_series_by_tags(listing.series, tags, max_series=0):
            if len(out) >= self.max_series:
                break
            check = self.client.has_open_market(candidate.ticker)
            if check.rate_limited:
                logger.warning("Kalshi open-market check rate limited", extra={"series": candidate.ticker})
                break
            if check.has_open:
                out.append(candidate)
        return out

    def _pause(self, seconds: float, cancel_event: Optional[threading.Event]) -> None:
        if cancel_event is not None:
            cancel_event.wait(seconds)
        else:
            self._sleep(seconds)


def tags_for_categories(categories: Sequence[str]) -> Tuple[List[str], Dict[str, List[str]]]:
    tags: List[str] = []
    by_category: Dict[str, List[str]] = {}
    for category in categories:
        plan = KALSHI_CATEGORY_PLANS.get(category)
        plan_tags = [t for t in (plan.tags if plan else ()) if t]
        if not plan_tags:
            continue
        by_category[category] = plan_tags
        for tag in plan_tags:
            if tag not in tags:
                tags.append(tag)
    return tags, by_category


def select_series_for_categories(
    categories: Sequence[str],
    series_list: Sequence[Dict[str, Any]],
    tags_by_category: Optional[Dict[str, List[str]]] = None,
    max_per_category: int = 5,
    max_total: int = 10,
) -> SeriesSelection:
    tags_by_category = tags_by_category or {}
    selected: List[SeriesCandidate] = []
    category_map: Dict[str, str] = {}
    capped = False

    for category in categories:
        plan = KALSHI_CATEGORY_PLANS.get(category)
        if plan is None:
            continue
        candidates = [
            c for c in (_score_series(series, plan, tags_by_category.get(category)) for series in series_list) if c
        ]
        candidates.sort(key=lambda c: (-c.score, c.ticker))
        limited = candidates[: max(0, max_per_category)]
        capped = capped or len(candidates) > len(limited)

        for candidate in limited:
            if any(existing.ticker == candidate.ticker for existing in selected):
                continue
            selected.append(candidate)
            # First category to claim a series labels its markets.
            category_map.setdefault(candidate.ticker, category)

    selected.sort(key=lambda c: (-c.score, c.ticker))
    if len(selected) > max_total:
        selected = selected[:max_total]
        capped = True
    return SeriesSelection(selected=selected, category_map=category_map, capped=capped)


def select_series_by_tags(
    series_list: Sequence[Dict[str, Any]],
    tags: Sequence[str],
    max_series: int = 10,
) -> List[SeriesCandidate]:
    wanted = [t.lower() for t in _normalize_tags(tags)]
    candidates: List[SeriesCandidate] = []
    for series in series_list:
        ticker, title, _ = _series_fields(series)
        if not ticker:
            continue
        series_tags = {t.lower() for t in _series_tags(series)}
        overlap = sum(1 for t in wanted if t in series_tags)
        candidates.append(SeriesCandidate(ticker=ticker, score=overlap, title=title))

    candidates.sort(key=lambda c: (-c.score, c.title, c.ticker))
    if max_series <= 0:
        return candidates
    return candidates[:max_series]


def normalize_market(raw: Dict[str, Any], category_id: str, now: Optional[datetime] = None) -> Market:
    ticker = str(raw.get("ticker") or raw.get("market_ticker") or raw.get("id") or "").strip()
    title = str(raw.get("title") or raw.get("market_name") or raw.get("name") or "Kalshi market").strip()
    now = ensure_utc(now)
    close_time = to_iso(
        raw.get("close_time") or raw.get("closeTime") or raw.get("close_ts") or raw.get("closeTimestamp")
    ) or to_iso(now + timedelta(days=DEFAULT_CLOSE_DAYS))

    return Market(
        id=ticker or f"{category_id}-{title}",
        source="kalshi",
        title=title,
        description=str(raw.get("description") or raw.get("subtitle") or ""),
        category_id=category_id,
        close_time=close_time,
        outcomes=_normalize_outcomes(raw),
        liquidity=_optional_float(raw.get("liquidity"), raw.get("open_interest")),
        volume=_optional_float(raw.get("volume"), raw.get("volume_24h")),
        url=f"https://kalshi.com/markets/{ticker.lower()}" if ticker else "",
    )


def _score_series(
    series: Dict[str, Any],
    plan: KalshiDiscoveryPlan,
    category_tags: Optional[List[str]],
) -> Optional[SeriesCandidate]:
    ticker, title, series_category = _series_fields(series)
    if not ticker:
        return None
    if plan.series_category and _norm(series_category) != _norm(plan.series_category):
        return None

    score = 0
    reasons: List[str] = []
    plan_tags = category_tags or list(plan.tags)
    if plan_tags:
        score += 3
        reasons.extend(f"tag:{tag}" for tag in plan_tags)
    lowered_title = _norm(title)
    keyword = next((k for k in plan.title_keywords if lowered_title and _norm(k) in lowered_title), None)
    if keyword:
        score += 2
        reasons.append(f"keyword:{keyword}")

    if score == 0:
        return None
    return SeriesCandidate(ticker=ticker, score=score, reasons=reasons, title=title)


def _normalize_outcomes(raw: Dict[str, Any]) -> List[MarketOutcome]:
    listed = raw.get("outcomes")
    if isinstance(listed, list) and listed:
        outcomes: List[MarketOutcome] = []
        for index, item in enumerate(listed):
            item = item if isinstance(item, dict) else {}
            label = str(item.get("name") or item.get("label") or f"Outcome {index + 1}")
            outcomes.append(
                MarketOutcome(
                    id=str(item.get("id") or item.get("name") or item.get("label") or f"outcome-{index}"),
                    label=label,
                    price=_to_prob(item.get("price")),
                )
            )
        return outcomes

    outcomes = []
    yes_price = _to_prob(raw.get("yes_price"))
    no_price = _to_prob(raw.get("no_price"))
    if yes_price is None and no_price is None and _has_quote(raw):
        yes_price, no_price = _extract_yes_no_prices(raw)
    if yes_price is not None:
        outcomes.append(MarketOutcome(id="yes", label="Yes", price=yes_price))
    if no_price is not None:
        outcomes.append(MarketOutcome(id="no", label="No", price=no_price))
    if not outcomes:
        outcomes = [MarketOutcome(id="yes", label="Yes"), MarketOutcome(id="no", label="No")]
    return outcomes


def _has_quote(market: Dict[str, Any]) -> bool:
    return any(
        _to_prob(market.get(key)) is not None
        for key in ("yes_ask_dollars", "yes_ask", "last_price_dollars", "last_price", "yes_bid_dollars", "yes_bid")
    )


def _extract_yes_no_prices(market: Dict[str, Any]) -> Tuple[Optional[float], Optional[float]]:
    # Match Kalshi UI-style "Buy Yes / Buy No":
    # yes side prefers ask, no side prefers explicit no_ask or complement of yes_bid.
    yes = None
    for key in ("yes_ask_dollars", "yes_ask", "last_price_dollars", "last_price", "yes_bid_dollars", "yes_bid"):
        yes = _to_prob(market.get(key))
        if yes is not None:
            break

    no = _to_prob(market.get("no_ask_dollars"))
    if no is None:
        no = _to_prob(market.get("no_ask"))
    if no is None:
        yes_bid = _to_prob(market.get("yes_bid_dollars"))
        if yes_bid is None:
            yes_bid = _to_prob(market.get("yes_bid"))
        if yes_bid is not None:
            no = max(0.0, min(1.0, 1.0 - yes_bid))
    if no is None and yes is not None:
        no = max(0.0, min(1.0, 1.0 - yes))
    return yes, no


def _series_fields(series: Dict[str, Any]) -> Tuple[str, str, str]:
    ticker = str(series.get("ticker") or series.get("series_ticker") or series.get("id") or "").strip()
    title = str(series.get("title") or series.get("name") or "").strip()
    category = str(series.get("category") or series.get("category_name") or "").strip()
    return ticker, title, category


def _series_tags(series: Dict[str, Any]) -> List[str]:
    for key in ("tags", "tag_names", "tagNames", "tag_list", "tagList"):
        raw = series.get(key)
        if isinstance(raw, list):
            return [t.strip() for t in raw if isinstance(t, str) and t.strip()]
    return []


def _normalize_tags(tags: Sequence[str]) -> List[str]:
    return [t.strip() for t in tags if isinstance(t, str) and t.strip()]


def _extract_array(payload: Any, keys: Sequence[str]) -> List[Dict[str, Any]]:
    if not isinstance(payload, dict):
        return []
    for key in keys:
        rows = payload.get(key)
        if isinstance(rows, list):
            return [x for x in rows if isinstance(x, dict)]
    return []


def _extract_cursor(payload: Any) -> Optional[str]:
    if not isinstance(payload, dict):
        return None
    for key in ("cursor", "next_cursor", "next", "nextCursor"):
        value = payload.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def _optional_float(*values: Any) -> Optional[float]:
    for value in values:
        if value is None or isinstance(value, bool):
            continue
        try:
            return float(value)
        except (TypeError, ValueError):
            continue
    return None


def _to_prob(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        v = float(value)
    except (TypeError, ValueError):
        return None
    if v <= 0:
        return None
    if v <= 1:
        return v
    if v <= 100:
        return v / 100.0
    return None


def _norm(value: str) -> str:
    return (value or "").strip().lower()
