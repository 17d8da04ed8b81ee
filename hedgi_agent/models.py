from __future__ import annotations

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

CategoryId = Literal[
    "agriculture",
    "weather",
    "energy",
    "logistics",
    "tourism",
    "sports",
    "finance",
    "health",
    "technology",
    "real-estate",
]
MarketSource = Literal["kalshi", "polymarket"]
ProxyStrength = Literal["strong", "partial", "weak"]


class Assumption(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: str
    value: str
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    basis: str = ""


class RevenueSeason(BaseModel):
    model_config = ConfigDict(frozen=True)

    start_month: Optional[int] = Field(default=None, ge=1, le=12)
    end_month: Optional[int] = Field(default=None, ge=1, le=12)
    notes: str = ""


class BusinessProfile(BaseModel):
    model_config = ConfigDict(frozen=True)

    raw_input: str
    industry: Optional[str] = None
    location: Optional[str] = None
    region: Optional[str] = None
    seasonality: Optional[str] = None
    revenue_season: Optional[RevenueSeason] = None
    revenue_drivers: List[str] = Field(default_factory=list)
    key_costs: List[str] = Field(default_factory=list)
    exposures: List[str] = Field(default_factory=list)
    keywords: List[str] = Field(default_factory=list, max_length=20)
    assumptions: List[Assumption] = Field(default_factory=list)


class CategoryMatch(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: CategoryId
    confidence: float = Field(ge=0.0, le=1.0)
    rationale: str = ""


class MarketOutcome(BaseModel):
    id: str
    label: str
    price: Optional[float] = Field(default=None, ge=0.0, le=1.0)


class Market(BaseModel):
    id: str
    source: MarketSource
    title: str
    description: str = ""
    category_id: CategoryId
    close_time: str
    outcomes: List[MarketOutcome] = Field(default_factory=list)
    liquidity: Optional[float] = None
    volume: Optional[float] = None
    url: str = ""


class RankedSignal(BaseModel):
    model_config = ConfigDict(frozen=True)

    market: Market
    relevance_score: float = Field(ge=0.0, le=1.0)
    proxy_strength: ProxyStrength
    signal_score: float
    mapped_risk: str
    rationale: str = ""


class RankedSignalPartial(BaseModel):
    market_id: str
    relevance_score: float = Field(ge=0.0, le=100.0)
    proxy_strength: ProxyStrength
    mapped_risk: str = ""
    rationale: str = ""


class VenueFetchMeta(BaseModel):
    provider: MarketSource
    series_selected: int = 0
    series_fetched: int = 0
    markets_fetched: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    rate_limited: bool = False
    retry_after_sec: Optional[int] = None
    partial: bool = False
    error: str = ""


class VenueFetchResult(BaseModel):
    markets: List[Market] = Field(default_factory=list)
    meta: VenueFetchMeta


class AggregationResult(BaseModel):
    markets: List[Market] = Field(default_factory=list)
    partial: bool = False
    rate_limited: bool = False
    retry_after_sec: Optional[int] = None
    venues: List[VenueFetchMeta] = Field(default_factory=list)


class AnalysisResult(BaseModel):
    profile: BusinessProfile
    categories: List[CategoryMatch] = Field(default_factory=list)
    signals: List[RankedSignal] = Field(default_factory=list)
    partial: bool = False
    rate_limited: bool = False
    retry_after_sec: Optional[int] = None
    venues: List[VenueFetchMeta] = Field(default_factory=list)
    degraded: List[str] = Field(default_factory=list)


class HedgeQuoteInput(BaseModel):
    market_id: str
    price_yes: float
    expected_profit: float
    loss_if_event: float
    hedge_coverage: Optional[float] = None
    max_hedge_cost: Optional[float] = None


class HedgeQuotePercentInput(BaseModel):
    market_id: str
    price_yes: float
    loss_if_event_percent: float
    hedge_coverage: Optional[float] = None
    max_hedge_cost: Optional[float] = None
    baseline_loss: Optional[float] = None


class HedgeQuoteOutput(BaseModel):
    market_id: str
    contracts_needed: int
    contracts_to_buy: int
    price_yes: float
    target_payout: float
    actual_payout: float
    total_cost: float
    profit_if_event: float
    profit_if_no_event: float
    coverage_achieved: float
    expected_value: float


class KeywordMatchMarket(BaseModel):
    platform: str = "kalshi"
    ticker: str
    title: str
    market_ticker: Optional[str] = None
    price_yes: Optional[float] = None


class ScoredMarket(BaseModel):
    platform: str = "kalshi"
    ticker: str
    title: str = ""
    relevance_score: float = Field(default=0.0, ge=0.0, le=10.0)
    hedging_utility_score: float = Field(default=0.0, ge=0.0, le=10.0)
    timing_score: float = Field(default=0.0, ge=0.0, le=10.0)
    overall_score: float = Field(default=0.0, ge=0.0, le=10.0)
    reasoning: str = ""
    market_ticker: Optional[str] = None
    price_yes: Optional[float] = None


class HedgeInputs(BaseModel):
    expected_profit: Optional[float] = None
    loss_if_event: Optional[float] = None
    loss_if_event_percent: Optional[float] = None
    hedge_coverage: Optional[float] = None
    max_hedge_cost: Optional[float] = None

    def has_any(self) -> bool:
        return any(v is not None for v in self.model_dump().values())


class SnapshotResult(BaseModel):
    business_description: str
    keywords: List[str] = Field(default_factory=list)
    matches: List[KeywordMatchMarket] = Field(default_factory=list)
    scored_markets: List[ScoredMarket] = Field(default_factory=list)
    inputs: Optional[HedgeInputs] = None
    warnings: List[str] = Field(default_factory=list)


class StoredMarket(BaseModel):
    ticker: str
    title: str
    platform: str = "kalshi"
    market_ticker: Optional[str] = None
    price_yes: Optional[float] = None


class SyncReport(BaseModel):
    fetched: int = 0
    stored: int = 0
    filtered: int = 0
    by_category: Dict[str, int] = Field(default_factory=dict)
