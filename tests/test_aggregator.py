from __future__ import annotations

import asyncio
import threading
import unittest
from datetime import datetime, timezone
from types import SimpleNamespace

from hedgi_agent.clients.http_client import HttpClient
from hedgi_agent.connectors.base import VenueAdapter
from hedgi_agent.connectors.fixtures import MockVenueAdapter
from hedgi_agent.connectors.kalshi import KalshiAdapter, KalshiCaches, KalshiClient
from hedgi_agent.engine.aggregator import MarketAggregator, hygiene_filter
from hedgi_agent.models import Market, VenueFetchMeta, VenueFetchResult

NOW = datetime(2027, 1, 1, tzinfo=timezone.utc)


def _market(market_id: str, title: str, close_time: str = "2027-06-01T00:00:00Z", liquidity=50000.0,
            source: str = "kalshi") -> Market:
    return Market(
        id=market_id,
        source=source,
        title=title,
        category_id="weather",
        close_time=close_time,
        liquidity=liquidity,
    )


class FakeAdapter(VenueAdapter):
    def __init__(self, source_name: str, markets=None, meta=None, error: Exception | None = None) -> None:
        self.source_name = source_name
        self.markets = markets or []
        self.meta = meta
        self.error = error
        self.calls = []

    def fetch_markets(self, categories, cancel_event=None) -> VenueFetchResult:
        self.calls.append(list(categories))
        if self.error is not None:
            raise self.error
        return VenueFetchResult(
            markets=list(self.markets),
            meta=self.meta or VenueFetchMeta(provider=self.source_name, markets_fetched=len(self.markets)),
        )


class BlockingAdapter(VenueAdapter):
    source_name = "kalshi"

    def __init__(self) -> None:
        self.started = threading.Event()
        self.cancelled = threading.Event()

    def fetch_markets(self, categories, cancel_event=None) -> VenueFetchResult:
        self.started.set()
        if cancel_event is not None and cancel_event.wait(5):
            self.cancelled.set()
        return VenueFetchResult(meta=VenueFetchMeta(provider="kalshi"))


class RateLimitedSession:
    """requests.Session stand-in that answers every call with HTTP 429."""

    def __init__(self) -> None:
        self.calls = 0
        self.first_call = threading.Event()

    def get(self, url, params=None, headers=None, timeout=None):
        self.calls += 1
        self.first_call.set()
        return SimpleNamespace(status_code=429, headers={}, text="")


class HygieneFilterTests(unittest.TestCase):
    def test_drops_expired_unparsable_and_illiquid(self) -> None:
        markets = [
            _market("expired", "Old storm", close_time="2026-12-31T00:00:00Z"),
            _market("now", "Closing right now", close_time="2027-01-01T00:00:00Z"),
            _market("bad-date", "Broken date", close_time="soon"),
            _market("thin", "Thin market", liquidity=19999.0),
            _market("unknown-liq", "No liquidity reported", liquidity=None),
            _market("ok", "Healthy market"),
        ]

        kept = hygiene_filter(markets, now=NOW)

        self.assertEqual([m.id for m in kept], ["unknown-liq", "ok"])

    def test_dedupes_on_normalized_title_keeping_first(self) -> None:
        markets = [
            _market("k1", "Rain in June?"),
            _market("p1", "rain  in   JUNE", source="polymarket"),
        ]

        kept = hygiene_filter(markets, now=NOW)

        self.assertEqual([m.id for m in kept], ["k1"])

    def test_filter_is_idempotent(self) -> None:
        markets = [
            _market("a", "Hurricane landfall"),
            _market("b", "Hurricane landfall!"),
            _market("c", "Expired", close_time="2020-01-01T00:00:00Z"),
            _market("d", "Snowfall", liquidity=100.0),
            _market("e", "Heat wave"),
        ]

        once = hygiene_filter(markets, now=NOW)
        twice = hygiene_filter(once, now=NOW)

        self.assertEqual(once, twice)

    def test_naive_now_is_treated_as_utc(self) -> None:
        markets = [
            _market("expired", "Old storm", close_time="2026-12-31T00:00:00Z"),
            _market("ok", "Healthy market"),
        ]

        kept = hygiene_filter(markets, now=datetime(2027, 1, 1))

        self.assertEqual([m.id for m in kept], ["ok"])


class MarketAggregatorTests(unittest.TestCase):
    def test_concatenates_in_adapter_order(self) -> None:
        aggregator = MarketAggregator([MockVenueAdapter.kalshi(), MockVenueAdapter.polymarket()])

        result = asyncio.run(aggregator.aggregate(["weather"], now=NOW))

        self.assertEqual(
            [m.id for m in result.markets],
            [
                "kalshi-weather-atlantic-2027",
                "kalshi-weather-co-snow-2027",
                "poly-weather-gulf-landfall-2027",
            ],
        )
        self.assertFalse(result.partial)
        self.assertEqual([v.provider for v in result.venues], ["kalshi", "polymarket"])

    def test_empty_category_list_returns_everything_liquid(self) -> None:
        aggregator = MarketAggregator([MockVenueAdapter.polymarket()])

        result = asyncio.run(aggregator.aggregate([], now=NOW))

        self.assertEqual(len(result.markets), 8)
        self.assertTrue(all(m.liquidity >= 20000 for m in result.markets))

    def test_first_adapter_wins_duplicates(self) -> None:
        first = FakeAdapter("kalshi", [_market("k1", "Hurricane landfall in 2027?")])
        second = FakeAdapter("polymarket", [_market("p1", "hurricane landfall in 2027", source="polymarket")])

        result = asyncio.run(MarketAggregator([first, second]).aggregate(["weather"], now=NOW))

        self.assertEqual([m.id for m in result.markets], ["k1"])
        self.assertEqual(first.calls, [["weather"]])
        self.assertEqual(second.calls, [["weather"]])

    def test_failing_adapter_degrades_to_partial(self) -> None:
        broken = FakeAdapter("kalshi", error=RuntimeError("boom"))
        healthy = FakeAdapter("polymarket", [_market("p1", "Heat wave", source="polymarket")])

        result = asyncio.run(MarketAggregator([broken, healthy]).aggregate(["weather"], now=NOW))

        self.assertEqual([m.id for m in result.markets], ["p1"])
        self.assertTrue(result.partial)
        self.assertFalse(result.rate_limited)
        self.assertEqual(result.venues[0].error, "venue_fetch_failed")

    def test_rate_limit_flags_propagate(self) -> None:
        limited = FakeAdapter(
            "kalshi",
            [_market("k1", "Snow day")],
            meta=VenueFetchMeta(provider="kalshi", rate_limited=True, partial=True, retry_after_sec=7),
        )
        other = FakeAdapter(
            "polymarket",
            meta=VenueFetchMeta(provider="polymarket", rate_limited=True, partial=True, retry_after_sec=3),
        )

        result = asyncio.run(MarketAggregator([limited, other]).aggregate(["weather"], now=NOW))

        self.assertTrue(result.partial)
        self.assertTrue(result.rate_limited)
        self.assertEqual(result.retry_after_sec, 7)
        self.assertEqual([m.id for m in result.markets], ["k1"])

    def test_cancellation_signals_adapters(self) -> None:
        adapter = BlockingAdapter()
        aggregator = MarketAggregator([adapter])

        async def run() -> None:
            task = asyncio.create_task(aggregator.aggregate(["weather"], now=NOW))
            await asyncio.to_thread(adapter.started.wait, 5)
            task.cancel()
            with self.assertRaises(asyncio.CancelledError):
                await task

        asyncio.run(run())

        self.assertTrue(adapter.cancelled.wait(5))

    def test_cancellation_stops_http_retries(self) -> None:
        session = RateLimitedSession()
        http = HttpClient(
            session=session,
            max_retries=3,
            backoff_seconds=1.0,
            backoff_cap_seconds=1.0,
            error_prefix="kalshi",
        )
        adapter = KalshiAdapter(KalshiClient("https://kalshi.test", http, KalshiCaches.create()), series_delay_seconds=0)
        aggregator = MarketAggregator([adapter])

        async def run() -> None:
            task = asyncio.create_task(aggregator.aggregate(["weather"], now=NOW))
            await asyncio.to_thread(session.first_call.wait, 5)
            task.cancel()
            with self.assertRaises(asyncio.CancelledError):
                await task

        asyncio.run(run())

        # asyncio.run joins the worker thread, so no request can still be pending.
        self.assertEqual(session.calls, 1)


if __name__ == "__main__":
    unittest.main()
