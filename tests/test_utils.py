from __future__ import annotations

import unittest
from datetime import datetime, timezone

from hedgi_agent.utils.cache import TTLCache
from hedgi_agent.utils.formatting import days_until, ensure_utc, format_currency, format_percent, parse_timestamp, to_iso
from hedgi_agent.utils.text import normalize_title, search_tokens, stem_token, tokenize, unique_in_order

NOW = datetime(2027, 1, 1, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


class TTLCacheTests(unittest.TestCase):
    def test_entries_expire_after_ttl(self) -> None:
        clock = FakeClock()
        cache = TTLCache(30, clock=clock)
        cache.set("KXHURR", ["m1", "m2"])

        clock.now = 129.9
        self.assertEqual(cache.get("KXHURR"), ["m1", "m2"])
        clock.now = 130.0
        self.assertIsNone(cache.get("KXHURR"))
        self.assertIsNone(cache.get("missing"))

    def test_snapshot_reports_age_and_size(self) -> None:
        clock = FakeClock()
        cache = TTLCache(60, clock=clock)
        cache.set("series", ["a", "b", "c"])
        cache.set("open:KXHURR", True)
        clock.now = 112.5

        self.assertEqual(
            cache.snapshot(),
            [
                {"key": "series", "age_seconds": 12.5, "count": 3},
                {"key": "open:KXHURR", "age_seconds": 12.5, "count": 1},
            ],
        )

    def test_negative_ttl_is_zero(self) -> None:
        cache = TTLCache(-5, clock=FakeClock())
        cache.set("k", 1)

        self.assertEqual(cache.ttl_seconds, 0.0)
        self.assertIsNone(cache.get("k"))


class TextTests(unittest.TestCase):
    def test_tokenize_drops_stopwords_and_short_tokens(self) -> None:
        self.assertEqual(tokenize("We run a Ski-rental shop, in Denver!"), ["run", "ski-rental", "shop", "denver"])
        self.assertEqual(tokenize(None), [])

    def test_unique_in_order(self) -> None:
        self.assertEqual(unique_in_order(["b", "a", "b", "c"]), ["b", "a", "c"])
        self.assertEqual(unique_in_order(["b", "a", "b", "c"], limit=2), ["b", "a"])

    def test_normalize_title(self) -> None:
        self.assertEqual(normalize_title("  Will the Fed CUT rates?  "), "will the fed cut rates")
        self.assertEqual(normalize_title("Hurricane-season  2027"), "hurricaneseason 2027")

    def test_search_tokens_and_stemming(self) -> None:
        self.assertEqual(search_tokens("Denver's snow-fall"), ["denver", "s", "snow", "fall"])
        self.assertEqual(search_tokens(None), [])
        self.assertEqual(
            [stem_token(t) for t in ("cities", "raining", "flooded", "boxes", "storms", "gas", "sing")],
            ["city", "rain", "flood", "box", "storm", "gas", "sing"],
        )


class FormattingTests(unittest.TestCase):
    def test_parse_timestamp_variants(self) -> None:
        self.assertEqual(parse_timestamp("2027-01-02T00:00:00Z"), datetime(2027, 1, 2, tzinfo=timezone.utc))
        self.assertEqual(parse_timestamp(1798761600), datetime(2027, 1, 1, tzinfo=timezone.utc))
        self.assertEqual(parse_timestamp(1798761600000), datetime(2027, 1, 1, tzinfo=timezone.utc))
        self.assertEqual(parse_timestamp(datetime(2027, 1, 1)), NOW)
        self.assertIsNone(parse_timestamp("not a date"))
        self.assertIsNone(parse_timestamp(""))
        self.assertIsNone(parse_timestamp(True))

    def test_to_iso(self) -> None:
        self.assertEqual(to_iso("2027-01-01T05:00:00+05:00"), "2027-01-01T00:00:00Z")
        self.assertIsNone(to_iso(None))

    def test_days_until_rounds_up(self) -> None:
        self.assertEqual(days_until("2027-01-01T01:00:00Z", NOW), 1)
        self.assertEqual(days_until("2027-01-31T00:00:00Z", NOW), 30)
        self.assertEqual(days_until("2026-12-31T00:00:00Z", NOW), -1)
        self.assertEqual(days_until("garbage", NOW), 0)

    def test_naive_now_is_treated_as_utc(self) -> None:
        naive = datetime(2027, 1, 1)
        self.assertEqual(days_until("2027-01-01T01:00:00Z", naive), 1)
        self.assertEqual(ensure_utc(naive), NOW)
        self.assertIs(ensure_utc(NOW), NOW)

    def test_currency_and_percent(self) -> None:
        self.assertEqual(format_currency(1234.6), "$1,235")
        self.assertEqual(format_currency(-50), "-$50")
        self.assertEqual(format_percent(0.25), "25%")
        self.assertEqual(format_percent(42.5, digits=1), "42.5%")


if __name__ == "__main__":
    unittest.main()
