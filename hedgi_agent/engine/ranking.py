from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Set

from hedgi_agent.knowledge.categories import CATEGORY_DEFINITIONS, category_label
from hedgi_agent.models import BusinessProfile, CategoryMatch, Market, RankedSignal, RankedSignalPartial
from hedgi_agent.utils.formatting import days_until, ensure_utc
from hedgi_agent.utils.text import tokenize


@dataclass(frozen=True)
class RankingWeights:
    relevance: float = 0.60
    liquidity: float = 0.25
    time: float = 0.15
    top_category_boost: float = 0.15
    strong_threshold: float = 0.70
    partial_threshold: float = 0.45


def rank_signals(
    profile: BusinessProfile,
    matches: Sequence[CategoryMatch],
    markets: Iterable[Market],
    llm_partials: Optional[Iterable[RankedSignalPartial]] = None,
    now: Optional[datetime] = None,
    weights: Optional[RankingWeights] = None,
) -> List[RankedSignal]:
    """Score every market against the profile; highest combined signal first, ties by market id."""
    weights = weights or RankingWeights()
    now = ensure_utc(now)
    keyword_set = _keyword_set(profile, matches)
    top_category = matches[0].id if matches else None
    overrides: Dict[str, RankedSignalPartial] = {p.market_id: p for p in (llm_partials or [])}

    ranked: List[RankedSignal] = []
    for market in markets:
        relevance = relevance_score(market, keyword_set, top_category, weights.top_category_boost)
        proxy = proxy_strength(relevance, weights)
        liquidity = liquidity_score(market.liquidity)
        timing = time_score(market.close_time, now)
        rationale = f"Relevance {relevance:.2f} | Liquidity {liquidity:.2f} | Time {timing:.2f}"

        override = overrides.get(market.id)
        if override is not None:
            relevance = _clamp(override.relevance_score / 100.0)
            proxy = override.proxy_strength
            rationale = override.rationale or rationale

        signal = weights.relevance * relevance + weights.liquidity * liquidity + weights.time * timing
        ranked.append(
            RankedSignal(
                market=market,
                relevance_score=round(relevance, 3),
                proxy_strength=proxy,
                signal_score=round(signal, 3),
                mapped_risk=mapped_risk(profile, market.category_id),
                rationale=rationale,
            )
        )

    ranked.sort(key=lambda s: (-s.signal_score, s.market.id))
    return ranked


def relevance_score(market: Market, keyword_set: Set[str], top_category: Optional[str], boost: float = 0.15) -> float:
    title_tokens = set(tokenize(market.title))
    overlap = sum(1 for token in title_tokens if token in keyword_set)
    base = overlap / max(4, len(title_tokens))
    category_boost = boost if top_category and market.category_id == top_category else 0.0
    return _clamp(base + category_boost)


def liquidity_score(liquidity: Optional[float]) -> float:
    if liquidity is None:
        return 0.5
    return _clamp(math.log10(max(1.0, liquidity)) / 6.0)


def time_score(close_time: str, now: Optional[datetime] = None) -> float:
    remaining = days_until(close_time, now)
    if remaining <= 0:
        return 0.0
    if remaining <= 30:
        return 1.0
    if remaining <= 90:
        return 0.7
    if remaining <= 180:
        return 0.5
    return 0.3


def proxy_strength(relevance: float, weights: Optional[RankingWeights] = None) -> str:
    weights = weights or RankingWeights()
    if relevance >= weights.strong_threshold:
        return "strong"
    if relevance >= weights.partial_threshold:
        return "partial"
    return "weak"


def mapped_risk(profile: BusinessProfile, category_id: str) -> str:
    if profile.exposures:
        return profile.exposures[0]
    return category_label(category_id)


def _keyword_set(profile: BusinessProfile, matches: Sequence[CategoryMatch]) -> Set[str]:
    matched_ids = {m.id for m in matches}
    keywords: Set[str] = set()
    for category in CATEGORY_DEFINITIONS:
        if category.id in matched_ids:
            keywords.update(category.keywords)
    keywords.update(profile.keywords)
    keywords.update(profile.exposures)
    return keywords


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))
