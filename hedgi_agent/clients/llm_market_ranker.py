from __future__ import annotations

import json
import logging
import math
from typing import Any, List, Sequence

from hedgi_agent.clients.llm_client import LLMClient, LLMResult
from hedgi_agent.models import BusinessProfile, Market, RankedSignalPartial

logger = logging.getLogger(__name__)

MAX_RATIONALE_CHARS = 140
_PROXY_STRENGTHS = {"strong", "partial", "weak"}


class LLMMarketRanker:
    """Asks the LLM for semantic relevance per market; objective scoring stays local."""

    def __init__(self, llm: LLMClient):
        self.llm = llm

    def enabled(self) -> bool:
        return self.llm.enabled()

    def rank(self, profile: BusinessProfile, markets: Sequence[Market]) -> LLMResult:
        if not markets:
            return LLMResult(value=[])

        system = (
            "You are a business risk analyst matching prediction markets to a company's risks. "
            "For each market, judge how well it works as a hedge proxy for the business. "
            "Return strict JSON only: an array of "
            "{\"id\":\"market id\",\"relevanceScore\":0-100,\"proxyStrength\":\"strong|partial|weak\","
            "\"mappedRisk\":\"...\",\"rationale\":\"at most 140 characters\"}. "
            "Use only the market ids provided."
        )
        user = json.dumps(
            {
                "profile": {
                    "industry": profile.industry,
                    "location": profile.location,
                    "region": profile.region,
                    "exposures": profile.exposures,
                    "keywords": profile.keywords,
                    "raw_input": profile.raw_input[:2000],
                },
                "markets": [
                    {"id": m.id, "title": m.title, "description": m.description, "category": m.category_id}
                    for m in markets
                ],
            },
            ensure_ascii=True,
            separators=(",", ":"),
        )

        result = self.llm.complete_json(system, user)
        if not result.ok:
            return result
        partials = parse_ranked_partials(result.value, {m.id for m in markets})
        if not partials:
            logger.warning("LLM ranking had no usable rows")
            return LLMResult(error="invalid_json", raw=result.raw)
        return LLMResult(value=partials, raw=result.raw)


def parse_ranked_partials(payload: Any, allowed_ids: set[str]) -> List[RankedSignalPartial]:
    rows = payload
    if isinstance(payload, dict):
        rows = payload.get("markets") or payload.get("signals") or payload.get("results") or []
    if not isinstance(rows, list):
        return []

    out: List[RankedSignalPartial] = []
    seen: set[str] = set()
    for row in rows:
        if not isinstance(row, dict):
            continue
        market_id = str(row.get("id") or row.get("marketId") or row.get("market_id") or "").strip()
        if not market_id or market_id not in allowed_ids or market_id in seen:
            continue

        proxy = str(row.get("proxyStrength") or row.get("proxy_strength") or "").lower().strip()
        if proxy not in _PROXY_STRENGTHS:
            continue

        seen.add(market_id)
        out.append(
            RankedSignalPartial(
                market_id=market_id,
                relevance_score=_clamp(_to_float(row.get("relevanceScore", row.get("relevance_score"))), 0.0, 100.0),
                proxy_strength=proxy,
                mapped_risk=str(row.get("mappedRisk") or row.get("mapped_risk") or "").strip(),
                rationale=str(row.get("rationale") or "").strip()[:MAX_RATIONALE_CHARS],
            )
        )
    return out


def _to_float(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))
