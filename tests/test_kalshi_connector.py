from __future__ import annotations

import threading
import unittest
from datetime import datetime, timezone

from hedgi_agent.connectors.kalshi import (
    KalshiAdapter,
    KalshiCaches,
    KalshiClient,
    normalize_market,
    select_series_by_tags,
    select_series_for_categories,
    tags_for_categories,
)
from hedgi_agent.errors import RateLimitedError, VenueError

BASE_URL = "https://api.test"
NOW = datetime(2027, 1, 1, tzinfo=timezone.utc)

SERIES = [
    {"ticker": "KXSNOW", "title": "NYC snow", "category": "Climate and Weather", "tags": ["Snow and rain"]},
    {"ticker": "KXHURR", "title": "Atlantic hurricanes", "category": "Climate and Weather", "tags": ["Hurricanes"]},
    {"ticker": "KXMOON", "title": "Moon phases", "category": "Climate and Weather"},
    {"ticker": "KXCPI", "title": "CPI", "category": "Economics", "tags": ["Inflation"]},
]

MARKETS = {
    "KXHURR": [
        {
            "ticker": "KXHURR-27A",
            "title": "More than 10 Atlantic hurricanes in 2027?",
            "close_time": "2027-11-30T00:00:00Z",
            "yes_ask": 30,
            "yes_bid": 28,
            "liquidity": 50000,
        }
    ],
    "KXSNOW": [{"ticker": "KXSNOW-27", "title": "NYC snowfall over 20 inches?", "close_time": "2027-03-01T00:00:00Z"}],
}


class FakeHttp:
    def __init__(self, handler) -> None:
        self.handler = handler
        self.calls = []
        self.cancel_events = []

    def get_json(self, url: str, params=None, headers=None, cancel_event=None):
        params = dict(params or {})
        self.calls.append((url, params))
        self.cancel_events.append(cancel_event)
        return self.handler(url, params)


def _venue(url: str, params: dict, fail: dict | None = None):
    fail = fail or {}
    if "/series" in url:
        if "series" in fail:
            raise fail["series"]
        return {"series": SERIES}
    ticker = params.get("series_ticker")
    if ticker in fail:
        raise fail[ticker]
    return {"markets": MARKETS.get(ticker, [])}


def _adapter(fail: dict | None = None, **kwargs):
    http = FakeHttp(lambda url, params: _venue(url, params, fail))
    client = KalshiClient(BASE_URL, http, KalshiCaches.create())
    sleeps = []
    adapter = KalshiAdapter(client, sleep=sleeps.append, **kwargs)
    return adapter, http, sleeps


class SeriesSelectionTests(unittest.TestCase):
    def test_tags_are_unioned_in_category_order(self) -> None:
        tags, by_category = tags_for_categories(["weather", "agriculture", "health", "energy"])

        self.assertEqual(tags, ["Hurricanes", "Natural disasters", "Snow and rain", "Climate change", "Oil and energy"])
        self.assertEqual(sorted(by_category), ["agriculture", "energy", "weather"])

    def test_per_category_cap_and_ticker_tie_break(self) -> None:
        tags = {"weather": ["Hurricanes"]}

        selection = select_series_for_categories(["weather"], SERIES, tags, max_per_category=2)

        # Tag presence +3, title keyword +2; the venue category must match the plan.
        self.assertEqual(selection.tickers, ["KXHURR", "KXSNOW"])
        self.assertEqual([c.score for c in selection.selected], [5, 5])
        self.assertTrue(selection.capped)
        self.assertEqual(selection.category_map, {"KXHURR": "weather", "KXSNOW": "weather"})

    def test_global_cap_across_categories(self) -> None:
        _, tags = tags_for_categories(["weather", "finance"])

        selection = select_series_for_categories(["weather", "finance"], SERIES, tags, max_total=3)

        self.assertEqual(selection.tickers, ["KXCPI", "KXHURR", "KXSNOW"])
        self.assertEqual(selection.category_map["KXCPI"], "finance")
        self.assertTrue(selection.capped)

    def test_first_category_claims_shared_series(self) -> None:
        _, tags = tags_for_categories(["agriculture", "weather"])

        selection = select_series_for_categories(["agriculture", "weather"], SERIES, tags)

        self.assertEqual(selection.category_map["KXHURR"], "agriculture")
        self.assertEqual(len(selection.tickers), len(set(selection.tickers)))

    def test_unknown_category_selects_nothing(self) -> None:
        self.assertEqual(select_series_for_categories(["sports"], SERIES).selected, [])

    def test_select_by_tag_overlap(self) -> None:
        ranked = select_series_by_tags(SERIES, ["hurricanes", "Snow and rain", " "], max_series=3)

        self.assertEqual([c.ticker for c in ranked], ["KXHURR", "KXSNOW", "KXCPI"])
        self.assertEqual([c.score for c in ranked], [1, 1, 0])


class NormalizeMarketTests(unittest.TestCase):
    def test_prices_from_quotes(self) -> None:
        market = normalize_market(dict(MARKETS["KXHURR"][0], volume_24h=900), "weather", now=NOW)

        self.assertEqual(market.id, "KXHURR-27A")
        self.assertEqual(market.source, "kalshi")
        self.assertEqual(market.category_id, "weather")
        self.assertEqual(market.close_time, "2027-11-30T00:00:00Z")
        self.assertEqual(market.url, "https://kalshi.com/markets/kxhurr-27a")
        self.assertEqual(market.liquidity, 50000.0)
        self.assertEqual(market.volume, 900.0)
        self.assertEqual([o.id for o in market.outcomes], ["yes", "no"])
        self.assertAlmostEqual(market.outcomes[0].price, 0.30)
        self.assertAlmostEqual(market.outcomes[1].price, 0.72)

    def test_defaults_when_fields_missing(self) -> None:
        market = normalize_market({"title": "Bare market", "open_interest": 1200}, "energy", now=NOW)

        self.assertEqual(market.id, "energy-Bare market")
        self.assertEqual(market.close_time, "2027-01-31T00:00:00Z")
        self.assertEqual(market.liquidity, 1200.0)
        self.assertIsNone(market.volume)
        self.assertEqual(market.url, "")
        self.assertEqual([(o.label, o.price) for o in market.outcomes], [("Yes", None), ("No", None)])

    def test_explicit_outcomes_and_cent_prices(self) -> None:
        listed = normalize_market(
            {"ticker": "T1", "outcomes": [{"name": "Above", "price": 64}, {"label": "Below", "price": 0.36}]},
            "finance",
            now=NOW,
        )
        priced = normalize_market({"ticker": "T2", "yes_price": 55, "no_price": 45}, "finance", now=NOW)

        self.assertEqual([(o.label, o.price) for o in listed.outcomes], [("Above", 0.64), ("Below", 0.36)])
        self.assertEqual([(o.id, o.price) for o in priced.outcomes], [("yes", 0.55), ("no", 0.45)])


class KalshiClientTests(unittest.TestCase):
    def test_tag_filtered_url_and_cache(self) -> None:
        http = FakeHttp(lambda url, params: {"series": SERIES[:1]})
        client = KalshiClient(BASE_URL + "/", http)

        first = client.series_by_tags(["Snow and rain", "Hurricanes", ""])
        second = client.series_by_tags(["Hurricanes", "Snow and rain"])

        self.assertEqual(http.calls[0][0], "https://api.test/trade-api/v2/series?tags=Snow%20and%20rain,Hurricanes")
        self.assertEqual(http.calls[0][1], {"limit": 100})
        self.assertFalse(first.cache_hit)
        self.assertTrue(second.cache_hit)
        self.assertEqual(len(http.calls), 1)

    def test_series_list_follows_cursor_until_short_page(self) -> None:
        full = [{"ticker": f"S{i}"} for i in range(100)]
        pages = {None: {"series": full, "cursor": "c2"}, "c2": {"series": [{"ticker": "LAST"}], "cursor": "c3"}}
        http = FakeHttp(lambda url, params: pages[params.get("cursor")])

        fetched = KalshiClient(BASE_URL, http).series_list()

        self.assertEqual(len(fetched.series), 101)
        self.assertEqual(len(http.calls), 2)
        self.assertEqual(http.calls[1][1], {"limit": 100, "cursor": "c2"})

    def test_empty_series_list_is_not_cached(self) -> None:
        http = FakeHttp(lambda url, params: {"series": []})
        client = KalshiClient(BASE_URL, http)

        client.series_list()
        client.series_list()

        self.assertEqual(len(http.calls), 2)

    def test_rate_limit_mid_pagination_keeps_partial_markets(self) -> None:
        def handler(url, params):
            if params.get("cursor"):
                raise RateLimitedError(retry_after_sec=5)
            return {"markets": [{"ticker": f"M{i}"} for i in range(100)], "cursor": "next"}

        http = FakeHttp(handler)
        client = KalshiClient(BASE_URL, http)

        fetched = client.markets_for_series("KXHURR", close_min="100")
        again = client.markets_for_series("KXHURR", close_min="100")

        self.assertTrue(fetched.rate_limited)
        self.assertEqual(fetched.retry_after_sec, 5)
        self.assertEqual(len(fetched.markets), 100)
        self.assertEqual(http.calls[0][1]["close_min"], "100")
        self.assertFalse(again.cache_hit)

    def test_open_market_check_is_cached(self) -> None:
        http = FakeHttp(lambda url, params: {"markets": [{"ticker": "X"}]})
        client = KalshiClient(BASE_URL, http)

        self.assertTrue(client.has_open_market("KXHURR").has_open)
        self.assertTrue(client.has_open_market("KXHURR").cache_hit)
        self.assertEqual(http.calls[0][1], {"series_ticker": "KXHURR", "status": "open", "limit": 1})
        self.assertFalse(client.has_open_market("").has_open)

    def test_events_page(self) -> None:
        http = FakeHttp(lambda url, params: {"events": [{"event_ticker": "E1"}], "cursor": "abc"})

        events, cursor = KalshiClient(BASE_URL, http).events_page("Economics", cursor="xyz", limit=50)

        self.assertEqual(events, [{"event_ticker": "E1"}])
        self.assertEqual(cursor, "abc")
        self.assertEqual(http.calls[0][0], "https://api.test/trade-api/v2/events")
        self.assertEqual(
            http.calls[0][1],
            {"category": "Economics", "with_nested_markets": "true", "limit": 50, "cursor": "xyz"},
        )


class KalshiAdapterTests(unittest.TestCase):
    def test_fetches_selected_series_and_reports_meta(self) -> None:
        adapter, http, sleeps = _adapter()

        result = adapter.fetch_markets(["weather"])

        self.assertEqual([m.id for m in result.markets], ["KXHURR-27A", "KXSNOW-27"])
        self.assertTrue(all(m.category_id == "weather" for m in result.markets))
        self.assertEqual(result.meta.provider, "kalshi")
        self.assertEqual(result.meta.series_selected, 3)
        self.assertEqual(result.meta.series_fetched, 3)
        self.assertEqual(result.meta.markets_fetched, 2)
        self.assertEqual(result.meta.cache_misses, 3)
        self.assertFalse(result.meta.partial)
        self.assertEqual(sleeps, [0.5, 0.5, 0.5])
        self.assertIn("?tags=", http.calls[0][0])

    def test_second_fetch_is_served_from_cache(self) -> None:
        adapter, http, sleeps = _adapter()
        adapter.fetch_markets(["weather"])
        calls = len(http.calls)

        result = adapter.fetch_markets(["weather"])

        self.assertEqual(result.meta.cache_hits, 3)
        self.assertEqual(result.meta.series_fetched, 0)
        self.assertEqual(len(http.calls), calls)
        self.assertEqual(len(sleeps), 3)

    def test_rate_limit_returns_partial_results(self) -> None:
        adapter, _, _ = _adapter(fail={"KXSNOW": RateLimitedError(retry_after_sec=4)})

        result = adapter.fetch_markets(["weather"])

        self.assertEqual([m.id for m in result.markets], ["KXHURR-27A"])
        self.assertTrue(result.meta.partial)
        self.assertTrue(result.meta.rate_limited)
        self.assertEqual(result.meta.retry_after_sec, 4)

    def test_series_listing_failure(self) -> None:
        adapter, _, _ = _adapter(fail={"series": VenueError("kalshi_http_503", status=503)})

        result = adapter.fetch_markets(["weather"])

        self.assertEqual(result.markets, [])
        self.assertTrue(result.meta.partial)
        self.assertEqual(result.meta.error, "kalshi_http_503")

    def test_series_listing_rate_limited(self) -> None:
        adapter, _, _ = _adapter(fail={"series": RateLimitedError(retry_after_sec=9)})

        result = adapter.fetch_markets(["weather"])

        self.assertTrue(result.meta.rate_limited)
        self.assertEqual(result.meta.retry_after_sec, 9)

    def test_series_error_stops_the_loop(self) -> None:
        adapter, _, _ = _adapter(fail={"KXHURR": VenueError("kalshi_http_500", status=500)})

        result = adapter.fetch_markets(["weather"])

        self.assertEqual(result.markets, [])
        self.assertEqual(result.meta.error, "kalshi_http_500")
        self.assertTrue(result.meta.partial)

    def test_cancelled_before_fetch(self) -> None:
        adapter, http, _ = _adapter()
        cancel = threading.Event()
        cancel.set()

        result = adapter.fetch_markets(["weather"], cancel)

        self.assertEqual(result.markets, [])
        self.assertTrue(result.meta.partial)
        self.assertEqual(len(http.calls), 1)
        self.assertIs(http.cancel_events[0], cancel)

    def test_cancel_event_reaches_series_fetches(self) -> None:
        adapter, http, _ = _adapter()
        cancel = threading.Event()

        adapter.fetch_markets(["weather"], cancel)

        self.assertEqual(len(http.cancel_events), 4)
        self.assertTrue(all(event is cancel for event in http.cancel_events))

    def test_open_series_for_tags(self) -> None:
        adapter, http, _ = _adapter()

        found = adapter.open_series_for_tags(["Hurricanes"])

        self.assertEqual([c.ticker for c in found], ["KXHURR", "KXSNOW"])
        snapshot = adapter.client.cache_snapshot()
        self.assertEqual(snapshot["series_by_tags"][0]["count"], len(SERIES))


if __name__ == "__main__":
    unittest.main()
