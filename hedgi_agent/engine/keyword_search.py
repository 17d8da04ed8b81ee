from __future__ import annotations

import json
import logging
import math
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

from hedgi_agent.clients.llm_client import LLMClient, as_string_list
from hedgi_agent.errors import HedgiError, LLMOutputError
from hedgi_agent.knowledge.lexicon import STOPWORDS, SYNONYMS
from hedgi_agent.models import HedgeInputs, KeywordMatchMarket, ScoredMarket, SnapshotResult, StoredMarket
from hedgi_agent.storage.mongo import MarketStore
from hedgi_agent.utils.llm_json import parse_llm_json
from hedgi_agent.utils.text import search_tokens, stem_token, unique_in_order

logger = logging.getLogger(__name__)

OVERALL_TOLERANCE = 0.01

_AMOUNT = r"\$?\s*([\d,]+(?:\.\d+)?(?:\s*[kKmMbB](?![a-zA-Z]))?)"
_PROFIT_RE = re.compile(rf"(?:profit|revenue|sales)\D{{0,20}}{_AMOUNT}", re.IGNORECASE)
_LOSS_RE = re.compile(rf"(?:loss|lose|lost|damage|cost|hit|drop|decline)\D{{0,20}}{_AMOUNT}", re.IGNORECASE)
_BUDGET_RE = re.compile(rf"(?:budget|max|cap)\D{{0,20}}{_AMOUNT}", re.IGNORECASE)
_NUMBER_RE = re.compile(r"-?\d+(?:[\d,]*\d)?(?:\.\d+)?(?:\s*[kKmMbB](?![a-zA-Z]))?")
_PERCENT_RE = re.compile(r"(\d+(?:\.\d+)?)\s*%")
_COVERAGE_CONTEXT_RE = re.compile(r"hedge|cover", re.IGNORECASE)
_SUFFIX_MULTIPLIERS = {"k": 1e3, "m": 1e6, "b": 1e9}


@dataclass
class KeywordDictionary:
    """Stemmed title vocabulary, most frequent first."""

    terms: List[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self._terms = set(self.terms)

    def __contains__(self, stem: str) -> bool:
        return stem in self._terms

    def __len__(self) -> int:
        return len(self.terms)


def build_keyword_dictionary(titles: Iterable[str]) -> KeywordDictionary:
    counts: Counter[str] = Counter()
    for title in titles:
        for token in search_tokens(title):
            if token in STOPWORDS:
                continue
            stem = stem_token(token)
            if len(stem) >= 2:
                counts[stem] += 1
    ordered = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return KeywordDictionary(terms=[term for term, _ in ordered])


def extract_keywords(description: str, dictionary: KeywordDictionary, max_keywords: int = 15) -> List[str]:
    matches: List[str] = []
    for token in search_tokens(description):
        if token in STOPWORDS:
            continue
        stem = stem_token(token)
        if stem in dictionary:
            matches.append(stem)
        for synonym in SYNONYMS.get(stem) or SYNONYMS.get(token) or []:
            synonym_stem = stem_token(synonym)
            if synonym_stem in dictionary:
                matches.append(synonym_stem)
    return unique_in_order(matches, limit=max(1, max_keywords))


def normalize_llm_keywords(keywords: Iterable[str], dictionary: KeywordDictionary, limit: int = 10) -> List[str]:
    normalized: List[str] = []
    for keyword in keywords:
        tokens = search_tokens(keyword)
        if not tokens:
            continue
        stem = stem_token(tokens[0])
        if stem in dictionary:
            normalized.append(stem)
    return unique_in_order(normalized, limit=limit)


def keyword_stems(keywords: Iterable[str]) -> List[List[str]]:
    stems = [[stem_token(t) for t in search_tokens(keyword)] for keyword in keywords]
    return [s for s in stems if s]


def score_title(title: str, stems: Sequence[Sequence[str]]) -> int:
    title_stems = {stem_token(t) for t in search_tokens(title)}
    return sum(1 for tokens in stems if all(t in title_stems for t in tokens))


def search_markets(markets: Iterable[StoredMarket], keywords: Iterable[str], limit: int = 10) -> List[KeywordMatchMarket]:
    """A market matches a keyword when every stemmed token of the keyword is in its title."""
    stems = keyword_stems(keywords)
    if not stems:
        return []

    scored = []
    for market in markets:
        score = score_title(market.title, stems)
        if score > 0:
            scored.append((score, market))
    scored.sort(key=lambda item: (-item[0], item[1].ticker))
    return [
        KeywordMatchMarket(
            platform=m.platform,
            ticker=m.ticker,
            title=m.title,
            market_ticker=m.market_ticker,
            price_yes=m.price_yes,
        )
        for _, m in scored[: max(1, limit)]
    ]


def parse_number_with_suffix(value: Any) -> Optional[float]:
    if value is None:
        return None
    match = _NUMBER_RE.search(str(value))
    if not match:
        return None
    raw = match.group(0).replace(",", "").strip()
    multiplier = _SUFFIX_MULTIPLIERS.get(raw[-1].lower(), 1.0)
    if multiplier != 1.0:
        raw = raw[:-1].strip()
    try:
        number = float(raw)
    except ValueError:
        return None
    return number * multiplier if math.isfinite(number) else None


def parse_inputs_from_description(description: str) -> Optional[HedgeInputs]:
    text = description or ""
    inputs = HedgeInputs(
        expected_profit=_amount_near(text, _PROFIT_RE),
        loss_if_event=_amount_near(text, _LOSS_RE),
        max_hedge_cost=_amount_near(text, _BUDGET_RE),
    )

    match = _PERCENT_RE.search(text)
    if match:
        value = float(match.group(1))
        fraction = value / 100.0 if value > 1 else value
        context = text[max(0, match.start() - 20) : match.start() + 20]
        if _COVERAGE_CONTEXT_RE.search(context):
            inputs.hedge_coverage = fraction
        else:
            inputs.loss_if_event_percent = fraction

    return inputs if inputs.has_any() else None


def extract_inputs(parsed: Any) -> Optional[HedgeInputs]:
    """Hedge inputs from an LLM payload, accepting snake_case, camelCase and short aliases."""
    if not isinstance(parsed, dict):
        return None
    raw = parsed.get("inputs") if isinstance(parsed.get("inputs"), dict) else parsed

    inputs = HedgeInputs(
        expected_profit=_optional_number(_first(raw, "expected_profit", "expectedProfit", "profit")),
        loss_if_event=_optional_number(_first(raw, "loss_if_event", "lossIfEvent", "loss")),
        loss_if_event_percent=_optional_ratio(
            _first(raw, "loss_if_event_percent", "lossIfEventPercent", "loss_percent", "lossPercent", "loss_pct")
        ),
        hedge_coverage=_optional_ratio(_first(raw, "hedge_coverage", "hedgeCoverage", "coverage")),
        max_hedge_cost=_optional_number(_first(raw, "max_hedge_cost", "maxHedgeCost", "max_budget", "budget")),
    )
    return inputs if inputs.has_any() else None


def merge_inputs(primary: Optional[HedgeInputs], secondary: Optional[HedgeInputs]) -> Optional[HedgeInputs]:
    if primary is None:
        return secondary
    if secondary is None:
        return primary
    merged = {
        key: value if value is not None else getattr(secondary, key)
        for key, value in primary.model_dump().items()
    }
    return HedgeInputs(**merged)


def sanitize_scores(
    raw: Any,
    allowed_tickers: Iterable[str],
    allowed_market_tickers: Iterable[str] = (),
) -> List[ScoredMarket]:
    if not isinstance(raw, dict):
        return []
    items = raw.get("scored_markets")
    if not isinstance(items, list):
        return []
    allowed = set(allowed_tickers) | {t for t in allowed_market_tickers if t}

    out: List[ScoredMarket] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        ticker = item.get("ticker") if isinstance(item.get("ticker"), str) else item.get("market_ticker")
        if not isinstance(ticker, str) or ticker not in allowed:
            continue

        relevance = _clamp_score(item.get("relevance_score"))
        hedging = _clamp_score(item.get("hedging_utility_score"))
        timing = _clamp_score(item.get("timing_score"))
        mean = (relevance + hedging + timing) / 3.0
        overall = item.get("overall_score")
        if isinstance(overall, bool) or not isinstance(overall, (int, float)) or abs(_clamp_score(overall) - mean) > OVERALL_TOLERANCE:
            overall = mean

        out.append(
            ScoredMarket(
                ticker=ticker,
                title=item.get("title") if isinstance(item.get("title"), str) else "",
                platform=item.get("platform") if isinstance(item.get("platform"), str) else "kalshi",
                relevance_score=relevance,
                hedging_utility_score=hedging,
                timing_score=timing,
                overall_score=_clamp_score(overall),
                reasoning=item.get("reasoning") if isinstance(item.get("reasoning"), str) else "",
            )
        )
    return out


def enrich_scored(scored: Iterable[ScoredMarket], matches: Sequence[KeywordMatchMarket]) -> List[ScoredMarket]:
    """Sort by score, resolve market tickers to their event and keep one row per event."""
    by_ticker: Dict[str, KeywordMatchMarket] = {m.market_ticker: m for m in matches if m.market_ticker}
    by_ticker.update({m.ticker: m for m in matches})
    out: List[ScoredMarket] = []
    seen = set()
    for market in sorted(scored, key=lambda s: (-s.overall_score, s.ticker)):
        match = by_ticker.get(market.ticker)
        if match is not None:
            market = market.model_copy(
                update={
                    "ticker": match.ticker,
                    "title": market.title or match.title,
                    "market_ticker": match.market_ticker or market.market_ticker,
                    "price_yes": match.price_yes if match.price_yes is not None else market.price_yes,
                }
            )
        if market.ticker in seen:
            continue
        seen.add(market.ticker)
        out.append(market)
    return out


class KeywordScoringService:
    """Keyword search over the persisted market cache followed by LLM hedge scoring."""

    def __init__(self, store: MarketStore, llm: LLMClient, max_keywords: int = 10, search_limit: int = 10):
        self.store = store
        self.llm = llm
        self.max_keywords = max_keywords
        self.search_limit = search_limit

    def score_markets(self, description: str) -> SnapshotResult:
        description = (description or "").strip()
        if not description:
            raise HedgiError("missing_business_description")
        if not self.llm.enabled():
            raise HedgiError("missing_api_key")

        stored = self.store.list_markets(platform="kalshi")
        dictionary = build_keyword_dictionary(m.title for m in stored)
        logger.info("Keyword dictionary built", extra={"terms": len(dictionary)})
        warnings: List[str] = []

        keyword_result = self.llm.complete(_KEYWORD_SYSTEM, build_keyword_prompt(description, dictionary.terms))
        if keyword_result.error == "empty_response":
            raise LLMOutputError("empty_keyword_response")
        if not keyword_result.ok:
            raise HedgiError("analysis_failed", keyword_result.error)

        parsed = parse_llm_json(keyword_result.raw)
        if parsed is None:
            logger.warning("Keyword output invalid, falling back to dictionary match")
            warnings.append("invalid_json")
        raw_keywords = parsed.get("keywords") if isinstance(parsed, dict) else parsed
        llm_keywords = normalize_llm_keywords(as_string_list(raw_keywords), dictionary, limit=self.max_keywords)

        fallback = extract_keywords(description, dictionary, max_keywords=15)
        keywords = unique_in_order(llm_keywords + fallback, limit=self.max_keywords)
        inputs = merge_inputs(parse_inputs_from_description(description), extract_inputs(parsed))
        logger.info("Matched keywords: %s", ", ".join(keywords))

        if not keywords:
            return SnapshotResult(business_description=description, inputs=inputs, warnings=warnings)

        matches = search_markets(stored, keywords, limit=self.search_limit)
        if not matches:
            return SnapshotResult(business_description=description, keywords=keywords, inputs=inputs, warnings=warnings)

        score_result = self.llm.complete(_SCORING_SYSTEM, build_scoring_prompt(description, matches))
        if score_result.error == "empty_response":
            raise LLMOutputError("empty_score_response")
        if not score_result.ok:
            raise HedgiError("analysis_failed", score_result.error)
        score_payload = parse_llm_json(score_result.raw)
        if score_payload is None:
            raise LLMOutputError("invalid_json", "scoring output could not be recovered")

        scored = sanitize_scores(
            score_payload,
            [m.ticker for m in matches],
            [m.market_ticker for m in matches if m.market_ticker],
        )
        return SnapshotResult(
            business_description=description,
            keywords=keywords,
            matches=matches,
            scored_markets=enrich_scored(scored, matches),
            inputs=inputs,
            warnings=warnings,
        )


_KEYWORD_SYSTEM = "You are a Business Risk & Derivatives Analyst. Return ONLY valid JSON."
_SCORING_SYSTEM = "You are a financial risk analyst. Return ONLY valid JSON."


def build_keyword_prompt(description: str, dictionary_terms: Sequence[str]) -> str:
    return f"""You help small businesses identify prediction markets (e.g., Kalshi) for hedging.

### TASK:
1. Analyze the business description to identify the **Primary Exposure**.
2. Determine the "Long" (what benefits them) and "Short" (what hurts them) positions of the business.
3. Extract search keywords that match relevant contract titles on prediction markets.

### OUTPUT RULES:
- **Return ONLY valid JSON.**
- **Keywords:** Select EXACTLY 10 single-word tokens ONLY.
- **IMPORTANT:** You MUST choose the 10 best-matching words from the AVAILABLE KEYWORDS list below.
- **No phrases.** Split multi-word concepts (e.g., "Fed Funds" becomes "Fed", "Funds").
- **Geo/Time:** Prefer 2-4 regional terms and 2-4 seasonal months. DO NOT output off-season months.
- **Measurements:** Prefer 2-5 measurement terms (e.g., "inches", "degrees", "knots") if relevant.
- **Strictness:** Avoid vague words like "risk" or "uncertainty." Focus on external, measurable variables.

### INPUT:
{json.dumps(description)}

### AVAILABLE KEYWORDS (use ONLY these; single tokens):
{json.dumps(list(dictionary_terms))}

### OUTPUT FORMAT:
{{
  "analysis": {{"primary_risk_factor": "string", "is_long": "string", "is_short": "string"}},
  "keywords": ["word1", "word2", "word3"],
  "inputs": {{
    "expected_profit": number | null,
    "loss_if_event": number | null,
    "loss_if_event_percent": number | null,
    "hedge_coverage": number | null,
    "max_hedge_cost": number | null
  }}
}}"""


def build_scoring_prompt(description: str, matches: Sequence[KeywordMatchMarket]) -> str:
    markets = [m.model_dump() for m in matches]
    return f"""You are evaluating prediction markets for business hedging purposes.

Business Description: {json.dumps(description)}

Markets to Score:
{json.dumps(markets)}

SCORING CRITERIA (0-10 each):
1. RELEVANCE (0-10)
2. HEDGING UTILITY (0-10)
3. TIMING ALIGNMENT (0-10)

HARD FILTER RULES (MANDATORY):
- If a market resolves clearly outside the business risk window, set ALL THREE SCORES to 0 and explain why.
- If geography is clearly mismatched for a local weather risk, set scores <= 3 unless the title explicitly frames it as a broad proxy.
- Prefer direct measures (snowfall/snowpack/precipitation) over generic "temperature increase" unless season and location align.

OUTPUT FORMAT:
{{"scored_markets": [{{"ticker": "market_ticker", "title": "market_title", "platform": "kalshi",
"relevance_score": 0-10, "hedging_utility_score": 0-10, "timing_score": 0-10,
"overall_score": 0-10, "reasoning": "2-3 sentence explanation"}}]}}

IMPORTANT:
- overall_score MUST equal the average of the three scores.
- Use the EXACT "ticker" values from the Markets to Score list. Do NOT invent or substitute tickers.
"""


def _amount_near(text: str, pattern: re.Pattern[str]) -> Optional[float]:
    match = pattern.search(text)
    if not match:
        return None
    return parse_number_with_suffix(match.group(1))


def _first(raw: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if raw.get(key) is not None:
            return raw[key]
    return None


def _optional_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if isinstance(value, str):
        cleaned = re.sub(r"[^0-9.-]", "", value)
        try:
            number = float(cleaned)
        except ValueError:
            return None
        return number if math.isfinite(number) else None
    return None


def _optional_ratio(value: Any) -> Optional[float]:
    number = _optional_number(value)
    if number is None:
        return None
    fraction = number / 100.0 if number > 1 else number
    return max(0.0, min(1.0, fraction))


def _clamp_score(value: Any) -> float:
    if isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(number):
        return 0.0
    return max(0.0, min(10.0, number))
