from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence

from hedgi_agent.connectors.kalshi import KalshiClient
from hedgi_agent.errors import VenueError
from hedgi_agent.models import StoredMarket, SyncReport
from hedgi_agent.storage.mongo import MarketStore
from hedgi_agent.utils.formatting import ensure_utc, parse_timestamp

logger = logging.getLogger(__name__)

SYNC_CATEGORIES = ("Climate and Weather", "Economics", "Financials")
ALLOWED_CATEGORIES = frozenset(c.lower() for c in SYNC_CATEGORIES) | {"climates and weather"}
EXCLUDED_TAGS = frozenset({"daily temperature", "high temp", "recurring", "foreign elections"})
MIN_TIME_TO_CLOSE = timedelta(days=2)
MAX_TIME_TO_OPEN = timedelta(days=365)
MAX_EVENT_PAGES = 200


def normalize_status(value: Any) -> str:
    status = str(value or "").strip().lower()
    if status == "initialized":
        return "unopened"
    if status == "active":
        return "open"
    return status


def should_keep_market(
    market: Dict[str, Any],
    category: str = "",
    tags: Optional[Iterable[str]] = None,
    status: str = "",
    now: Optional[datetime] = None,
) -> bool:
    """Eligibility rules for the persisted market cache; event-level values fill gaps in the market row."""
    now = ensure_utc(now)
    resolved_status = normalize_status(market.get("status") or market.get("market_status") or market.get("state") or status)
    if resolved_status not in ("open", "unopened"):
        return False

    resolved_category = " ".join(
        str(market.get("category") or market.get("category_name") or market.get("categoryName") or category or "")
        .lower()
        .split()
    )
    if not resolved_category or resolved_category not in ALLOWED_CATEGORIES:
        return False

    market_tags = _tags(market) or [str(t).strip().lower() for t in (tags or []) if str(t).strip()]
    if any(tag in EXCLUDED_TAGS for tag in market_tags):
        return False

    close_time = parse_timestamp(
        market.get("close_time") or market.get("closeTime") or market.get("close_ts") or market.get("closeTimestamp")
    )
    if resolved_status == "open" and close_time is not None and close_time - now < MIN_TIME_TO_CLOSE:
        return False

    if resolved_status == "unopened":
        open_time = parse_timestamp(
            market.get("open_time") or market.get("openTime") or market.get("open_ts") or market.get("openTimestamp")
        )
        if open_time is None:
            return False
        delta = open_time - now
        if delta < timedelta(0) or delta > MAX_TIME_TO_OPEN:
            return False
    return True


def sync_kalshi_markets(
    client: KalshiClient,
    store: MarketStore,
    categories: Sequence[str] = SYNC_CATEGORIES,
    page_limit: int = 200,
    now: Optional[datetime] = None,
) -> SyncReport:
    """One pass over the events endpoint, upserting the first eligible market of each event."""
    report = SyncReport()
    for category in categories:
        try:
            fetched, stored, filtered = _sync_category(client, store, category, page_limit, now)
        except VenueError as exc:
            logger.error("Kalshi sync failed for category %s: %s", category, str(exc))
            continue
        report.fetched += fetched
        report.stored += stored
        report.filtered += filtered
        report.by_category[category] = stored
    logger.info(
        "Kalshi sync finished",
        extra={"fetched": report.fetched, "stored": report.stored, "filtered": report.filtered},
    )
    return report


def _sync_category(
    client: KalshiClient,
    store: MarketStore,
    category: str,
    page_limit: int,
    now: Optional[datetime],
) -> tuple[int, int, int]:
    fetched = stored = filtered = 0
    cursor: Optional[str] = None
    pages = 0
    seen_events: set[str] = set()

    while True:
        logger.info("Kalshi sync page", extra={"category": category, "page": pages + 1, "cursor": cursor or "start"})
        events, cursor = client.events_page(category, cursor=cursor, limit=page_limit)

        rows: List[StoredMarket] = []
        for event in events:
            markets = _event_markets(event)
            event_ticker = str(event.get("event_ticker") or event.get("ticker") or event.get("id") or event.get("eventTicker") or "")
            title = str(event.get("title") or event.get("name") or "")
            if not event_ticker or not title or event_ticker in seen_events:
                filtered += len(markets) or 1
                continue
            seen_events.add(event_ticker)

            event_category = str(event.get("category") or event.get("category_name") or category)
            event_tags = _tags(event)
            for market in markets:
                merged_tags = list(dict.fromkeys(event_tags + _tags(market)))
                status = normalize_status(market.get("status") or market.get("market_status") or market.get("state"))
                if not should_keep_market(market, category=event_category, tags=merged_tags, status=status, now=now):
                    filtered += 1
                    continue
                rows.append(
                    StoredMarket(
                        ticker=event_ticker,
                        title=title,
                        market_ticker=str(market.get("ticker") or market.get("market_ticker") or market.get("id") or "") or None,
                        price_yes=_yes_price(market),
                    )
                )
                break

        if rows:
            stored += store.upsert_markets(rows)
        fetched += sum(len(_event_markets(e)) for e in events)
        pages += 1
        if not cursor or len(events) < page_limit or pages >= MAX_EVENT_PAGES:
            return fetched, stored, filtered


def _event_markets(event: Dict[str, Any]) -> List[Dict[str, Any]]:
    for key in ("markets", "nested_markets", "market_list"):
        rows = event.get(key)
        if isinstance(rows, list):
            return [m for m in rows if isinstance(m, dict)]
    return []


def _tags(entity: Dict[str, Any]) -> List[str]:
    for key in ("tags", "tag_names", "tagNames", "tag_list", "tagList", "tags_list"):
        raw = entity.get(key)
        if isinstance(raw, list):
            return [t.strip().lower() for t in raw if isinstance(t, str) and t.strip()]
    return []


def _yes_price(market: Dict[str, Any]) -> Optional[float]:
    for key in ("yes_price", "yesPrice", "best_yes", "best_yes_price", "yes_bid", "yesBid"):
        value = market.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
    return None
