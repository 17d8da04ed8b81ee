from __future__ import annotations

import asyncio
import logging
import threading
from datetime import datetime
from typing import Iterable, List, Optional, Sequence

from hedgi_agent.connectors.base import VenueAdapter
from hedgi_agent.models import AggregationResult, Market, VenueFetchMeta, VenueFetchResult
from hedgi_agent.utils.formatting import ensure_utc, parse_timestamp
from hedgi_agent.utils.text import normalize_title

logger = logging.getLogger(__name__)

DEFAULT_MIN_LIQUIDITY = 20000.0


def hygiene_filter(
    markets: Iterable[Market],
    min_liquidity: float = DEFAULT_MIN_LIQUIDITY,
    now: Optional[datetime] = None,
) -> List[Market]:
    """Drop expired, illiquid, and duplicate-titled markets; the first title wins."""
    now = ensure_utc(now)
    seen: set[str] = set()
    out: List[Market] = []
    for market in markets:
        close_time = parse_timestamp(market.close_time)
        if close_time is None or close_time <= now:
            continue
        if market.liquidity is not None and market.liquidity < min_liquidity:
            continue
        title_key = normalize_title(market.title)
        if title_key in seen:
            continue
        seen.add(title_key)
        out.append(market)
    return out


class MarketAggregator:
    def __init__(self, adapters: Sequence[VenueAdapter], min_liquidity: float = DEFAULT_MIN_LIQUIDITY):
        # Adapter order decides which duplicate survives the hygiene filter.
        self.adapters = list(adapters)
        self.min_liquidity = min_liquidity

    async def aggregate(self, categories: Sequence[str], now: Optional[datetime] = None) -> AggregationResult:
        cancel_event = threading.Event()
        try:
            results = await asyncio.gather(
                *(self._fetch(adapter, list(categories), cancel_event) for adapter in self.adapters)
            )
        except asyncio.CancelledError:
            cancel_event.set()
            raise

        combined: List[Market] = []
        venues: List[VenueFetchMeta] = []
        for result in results:
            combined.extend(result.markets)
            venues.append(result.meta)

        retry_after = [m.retry_after_sec for m in venues if m.retry_after_sec is not None]
        markets = hygiene_filter(combined, self.min_liquidity, now)
        logger.info(
            "Aggregated markets",
            extra={"fetched": len(combined), "kept": len(markets), "categories": list(categories)},
        )
        return AggregationResult(
            markets=markets,
            partial=any(m.partial for m in venues),
            rate_limited=any(m.rate_limited for m in venues),
            retry_after_sec=max(retry_after) if retry_after else None,
            venues=venues,
        )

    async def _fetch(
        self,
        adapter: VenueAdapter,
        categories: List[str],
        cancel_event: threading.Event,
    ) -> VenueFetchResult:
        try:
            return await asyncio.to_thread(adapter.fetch_markets, categories, cancel_event)
        except asyncio.CancelledError:
            cancel_event.set()
            raise
        except Exception as exc:
            logger.warning("Venue fetch failed: %s", str(exc), extra={"venue": adapter.source_name})
            return VenueFetchResult(
                markets=[],
                meta=VenueFetchMeta(provider=adapter.source_name, partial=True, error="venue_fetch_failed"),
            )
