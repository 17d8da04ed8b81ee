from __future__ import annotations

import argparse
import asyncio
import json
import logging
from dataclasses import asdict
from datetime import datetime
from typing import List, Optional, Sequence

from hedgi_agent.clients.http_client import HttpClient
from hedgi_agent.clients.llm_briefer import RiskBriefer, render_brief
from hedgi_agent.clients.llm_client import LLMClient
from hedgi_agent.clients.llm_market_ranker import LLMMarketRanker
from hedgi_agent.clients.rate_limiter import SlotScheduler
from hedgi_agent.config import Settings, get_settings
from hedgi_agent.connectors.base import VenueAdapter
from hedgi_agent.connectors.fixtures import MockVenueAdapter
from hedgi_agent.connectors.kalshi import KalshiAdapter, KalshiCaches, KalshiClient
from hedgi_agent.connectors.kalshi_sync import sync_kalshi_markets
from hedgi_agent.engine.aggregator import MarketAggregator
from hedgi_agent.engine.category_matcher import CategoryMatcher, CategoryMatcherConfig, top_category_ids
from hedgi_agent.engine.hedge_calculator import compute_hedge_quote, compute_hedge_quote_percent
from hedgi_agent.engine.keyword_search import KeywordScoringService
from hedgi_agent.engine.profile_extractor import LLMProfileExtractor, RuleBasedProfileExtractor
from hedgi_agent.engine.ranking import RankingWeights, rank_signals
from hedgi_agent.errors import HedgiError
from hedgi_agent.models import (
    AnalysisResult,
    BusinessProfile,
    HedgeQuoteInput,
    HedgeQuoteOutput,
    HedgeQuotePercentInput,
)
from hedgi_agent.storage.mongo import MarketStore
from hedgi_agent.utils.formatting import days_until, format_currency, format_percent
from hedgi_agent.utils.logging import configure_logging

logger = logging.getLogger(__name__)


class HedgeSignalAgent:
    """Business description in, ranked hedge-proxy markets out."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        llm: Optional[LLMClient] = None,
        adapters: Optional[Sequence[VenueAdapter]] = None,
    ):
        self.settings = settings or get_settings()
        self.llm = llm or LLMClient(
            api_key=self.settings.openai_api_key,
            model=self.settings.openai_model,
            timeout_seconds=self.settings.openai_timeout_seconds,
        )
        self.rule_extractor = RuleBasedProfileExtractor()
        self.llm_extractor = LLMProfileExtractor(self.llm, fallback=self.rule_extractor)
        self.matcher = CategoryMatcher(
            CategoryMatcherConfig(
                base_confidence=self.settings.category_base_confidence,
                coverage_weight=self.settings.category_coverage_weight,
                region_boost=self.settings.category_region_boost,
            )
        )
        self.aggregator = MarketAggregator(
            adapters if adapters is not None else build_adapters(self.settings),
            min_liquidity=self.settings.min_market_liquidity,
        )
        self.ranker = LLMMarketRanker(self.llm)
        self.weights = RankingWeights(
            relevance=self.settings.relevance_weight,
            liquidity=self.settings.liquidity_weight,
            time=self.settings.time_weight,
            top_category_boost=self.settings.top_category_boost,
            strong_threshold=self.settings.strong_proxy_threshold,
            partial_threshold=self.settings.partial_proxy_threshold,
        )

    async def analyze(self, text: str, now: Optional[datetime] = None) -> AnalysisResult:
        text = (text or "").strip()
        if not text:
            raise HedgiError("missing_business")

        degraded: List[str] = []
        profile = await self._extract_profile(text, degraded)
        matches = self.matcher.match(profile)
        top = top_category_ids(matches, self.settings.top_categories)
        aggregation = await self.aggregator.aggregate(top, now=now)

        partials = None
        if self.ranker.enabled() and aggregation.markets:
            ranked = await asyncio.to_thread(self.ranker.rank, profile, aggregation.markets)
            if ranked.ok:
                partials = ranked.value
            else:
                degraded.append(f"ranking:{ranked.error}")

        signals = rank_signals(profile, matches, aggregation.markets, partials, now=now, weights=self.weights)
        logger.info(
            "Analysis complete",
            extra={"categories": top, "markets": len(aggregation.markets), "signals": len(signals)},
        )
        return AnalysisResult(
            profile=profile,
            categories=matches,
            signals=signals,
            partial=aggregation.partial,
            rate_limited=aggregation.rate_limited,
            retry_after_sec=aggregation.retry_after_sec,
            venues=aggregation.venues,
            degraded=degraded,
        )

    async def _extract_profile(self, text: str, degraded: List[str]) -> BusinessProfile:
        if not self.llm.enabled():
            return self.rule_extractor.extract(text)
        profile, error = await asyncio.to_thread(self.llm_extractor.extract_with_status, text)
        if error:
            degraded.append(f"profile:{error}")
        return profile

    @staticmethod
    def quote(quote: HedgeQuoteInput) -> HedgeQuoteOutput:
        return compute_hedge_quote(quote)

    @staticmethod
    def quote_percent(quote: HedgeQuotePercentInput) -> HedgeQuoteOutput:
        return compute_hedge_quote_percent(quote)


def build_adapters(settings: Settings) -> List[VenueAdapter]:
    # Fixed order: Kalshi first, so its copy wins title dedupe.
    adapters: List[VenueAdapter] = []
    live = settings.venue_mode.strip().lower() == "live"
    if settings.kalshi_enabled:
        adapters.append(
            KalshiAdapter(
                build_kalshi_client(settings),
                max_series_per_category=settings.kalshi_max_series_per_category,
                max_series=settings.kalshi_max_series,
                series_delay_seconds=settings.kalshi_series_delay_seconds,
            )
            if live
            else MockVenueAdapter.kalshi()
        )
    if settings.polymarket_enabled:
        if live:
            logger.warning("Polymarket has no live adapter; skipping it in live mode")
        else:
            adapters.append(MockVenueAdapter.polymarket())
    return adapters


def build_kalshi_client(settings: Settings) -> KalshiClient:
    http = HttpClient(
        timeout=settings.kalshi_timeout_seconds,
        scheduler=SlotScheduler(settings.kalshi_requests_per_second),
        max_retries=settings.kalshi_max_retries,
        backoff_seconds=settings.kalshi_backoff_seconds,
        backoff_cap_seconds=settings.kalshi_backoff_cap_seconds,
        error_prefix="kalshi",
    )
    caches = KalshiCaches.create(
        series_ttl_seconds=settings.kalshi_series_ttl_seconds,
        markets_ttl_seconds=settings.kalshi_markets_ttl_seconds,
        open_check_ttl_seconds=settings.kalshi_open_check_ttl_seconds,
    )
    return KalshiClient(settings.kalshi_base_url, http, caches)


def format_analysis(result: AnalysisResult, limit: int = 10) -> str:
    profile = result.profile
    lines = [
        f"Industry: {profile.industry or 'unknown'} | Region: {profile.region or 'unknown'}",
        f"Exposures: {', '.join(profile.exposures) or 'none detected'}",
        "Categories: " + ", ".join(f"{m.id} ({m.confidence:.2f})" for m in result.categories[:3]),
        "",
    ]
    if not result.signals:
        lines.append("No eligible markets found.")
    for idx, signal in enumerate(result.signals[:limit], start=1):
        market = signal.market
        lines.append(
            f"{idx}. [{market.source}] {market.title} | score={signal.signal_score:.3f} | "
            f"relevance={format_percent(signal.relevance_score)} | {signal.proxy_strength} proxy for {signal.mapped_risk} | "
            f"closes in {days_until(market.close_time)}d"
        )
    if result.partial:
        note = "Partial results"
        if result.rate_limited:
            note += " (venue rate limited"
            note += f", retry after {result.retry_after_sec}s)" if result.retry_after_sec is not None else ")"
        lines.append(note)
    if result.degraded:
        lines.append(f"Fallbacks used: {', '.join(result.degraded)}")
    return "\n".join(lines)


def format_quote(quote: HedgeQuoteOutput) -> str:
    return "\n".join(
        [
            f"Market: {quote.market_id} @ {quote.price_yes:.2f}",
            f"Contracts: buy {quote.contracts_to_buy} of {quote.contracts_needed} needed",
            f"Cost: {format_currency(quote.total_cost)} | Payout if event: {format_currency(quote.actual_payout)}",
            f"Profit if event: {format_currency(quote.profit_if_event)} | if no event: {format_currency(quote.profit_if_no_event)}",
            f"Coverage achieved: {format_percent(quote.coverage_achieved)} | Expected value: {format_currency(quote.expected_value)}",
        ]
    )


def main() -> None:
    parser = argparse.ArgumentParser(description="Hedge-proxy market finder for small businesses")
    parser.add_argument("--json", action="store_true", help="Print raw JSON instead of text")
    sub = parser.add_subparsers(dest="command", required=True)

    analyze = sub.add_parser("analyze", help="Rank prediction markets for a business description")
    analyze.add_argument("text")

    quote = sub.add_parser("quote", help="Size a hedge from an absolute loss")
    quote.add_argument("--market-id", required=True)
    quote.add_argument("--price-yes", type=float, required=True)
    quote.add_argument("--expected-profit", type=float, required=True)
    quote.add_argument("--loss-if-event", type=float, required=True)
    quote.add_argument("--coverage", type=float)
    quote.add_argument("--max-cost", type=float)

    quote_pct = sub.add_parser("quote-percent", help="Size a hedge from a loss percent of a baseline")
    quote_pct.add_argument("--market-id", required=True)
    quote_pct.add_argument("--price-yes", type=float, required=True)
    quote_pct.add_argument("--loss-percent", type=float, required=True)
    quote_pct.add_argument("--coverage", type=float)
    quote_pct.add_argument("--max-cost", type=float)
    quote_pct.add_argument("--baseline", type=float)

    score = sub.add_parser("score", help="Keyword search and LLM scoring against stored markets")
    score.add_argument("text")

    sub.add_parser("sync", help="Refresh the stored Kalshi market cache once")

    series = sub.add_parser("series", help="Kalshi series matching tags that have open markets")
    series.add_argument("tags", nargs="+")

    brief = sub.add_parser("brief", help="LLM risk brief for a business description")
    brief.add_argument("text")

    args = parser.parse_args()

    settings = get_settings()
    configure_logging(settings.log_level)

    try:
        output = _run_command(args, settings)
    except HedgiError as exc:
        logger.error("Command failed", extra={"code": exc.code, "details": exc.details})
        raise SystemExit(f"error: {exc}") from exc
    print(output)


def _run_command(args: argparse.Namespace, settings: Settings) -> str:
    if args.command == "analyze":
        result = asyncio.run(HedgeSignalAgent(settings).analyze(args.text))
        return result.model_dump_json(indent=2) if args.json else format_analysis(result)

    if args.command == "quote":
        output = compute_hedge_quote(
            HedgeQuoteInput(
                market_id=args.market_id,
                price_yes=args.price_yes,
                expected_profit=args.expected_profit,
                loss_if_event=args.loss_if_event,
                hedge_coverage=args.coverage,
                max_hedge_cost=args.max_cost,
            )
        )
        return output.model_dump_json(indent=2) if args.json else format_quote(output)

    if args.command == "quote-percent":
        output = compute_hedge_quote_percent(
            HedgeQuotePercentInput(
                market_id=args.market_id,
                price_yes=args.price_yes,
                loss_if_event_percent=args.loss_percent,
                hedge_coverage=args.coverage,
                max_hedge_cost=args.max_cost,
                baseline_loss=args.baseline,
            )
        )
        return output.model_dump_json(indent=2) if args.json else format_quote(output)

    if args.command == "series":
        client = build_kalshi_client(settings)
        adapter = KalshiAdapter(client, max_series=settings.kalshi_max_series)
        found = adapter.open_series_for_tags(args.tags)
        return json.dumps(
            {"series": [asdict(c) for c in found], "cache": client.cache_snapshot()},
            indent=2,
        )

    llm = LLMClient(settings.openai_api_key, settings.openai_model, settings.openai_timeout_seconds)
    if args.command == "brief":
        brief = RiskBriefer(llm).analyze(args.text)
        return json.dumps(brief, indent=2) if args.json else render_brief(brief)

    store = MarketStore(settings.mongodb_uri, settings.mongodb_db)
    if args.command == "sync":
        report = sync_kalshi_markets(
            build_kalshi_client(settings),
            store,
            page_limit=settings.kalshi_events_page_limit,
        )
        logger.info("Market cache size", extra={"by_platform": store.count_by_platform()})
        return report.model_dump_json(indent=2)

    service = KeywordScoringService(
        store,
        llm,
        max_keywords=settings.max_keywords,
        search_limit=settings.keyword_search_limit,
    )
    return service.score_markets(args.text).model_dump_json(indent=2)


if __name__ == "__main__":
    main()
