from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple


@dataclass(frozen=True)
class KalshiDiscoveryPlan:
    # Must match the Kalshi series "category" string exactly (case-insensitive).
    series_category: Optional[str] = None
    tags: Tuple[str, ...] = field(default_factory=tuple)
    # Last resort when tags are not available for a category.
    title_keywords: Tuple[str, ...] = field(default_factory=tuple)


_WEATHER_TAGS = ("Hurricanes", "Natural disasters", "Snow and rain", "Climate change")

KALSHI_CATEGORY_PLANS: Dict[str, KalshiDiscoveryPlan] = {
    # Kalshi has no agriculture category; crop risk is proxied through weather series.
    "agriculture": KalshiDiscoveryPlan(
        series_category="Climate and Weather",
        tags=_WEATHER_TAGS,
        title_keywords=("crop", "yield", "harvest", "citrus", "orange", "dairy", "farm", "agriculture"),
    ),
    "weather": KalshiDiscoveryPlan(
        series_category="Climate and Weather",
        tags=_WEATHER_TAGS,
        title_keywords=("hurricane", "storm", "rain", "snow", "temperature", "drought", "flood", "heat", "cold"),
    ),
    "energy": KalshiDiscoveryPlan(
        series_category="Economics",
        tags=("Oil and energy",),
        title_keywords=("oil", "gas", "energy", "power", "electric", "fuel", "wti", "brent"),
    ),
    "logistics": KalshiDiscoveryPlan(
        series_category="Economics",
        tags=("Growth",),
        title_keywords=("shipping", "freight", "logistics", "port", "supply chain", "delivery", "trucking"),
    ),
    "tourism": KalshiDiscoveryPlan(
        series_category="Companies",
        tags=("KPIs",),
        title_keywords=("travel", "hotel", "tourism", "airline", "passenger", "vacation", "resort"),
    ),
    "finance": KalshiDiscoveryPlan(
        series_category="Economics",
        tags=("Fed", "Inflation", "Employment", "Growth", "Housing", "Mortgages"),
        title_keywords=("inflation", "rates", "cpi", "gdp", "recession", "unemployment", "fed", "mortgage", "housing"),
    ),
    "health": KalshiDiscoveryPlan(
        series_category=None,
        tags=(),
        title_keywords=("health", "flu", "hospital", "outbreak", "disease", "pandemic"),
    ),
    "technology": KalshiDiscoveryPlan(
        series_category="Science and Technology",
        tags=("AI", "Space", "Energy"),
        title_keywords=("technology", "software", "ai", "semiconductor", "cloud", "space"),
    ),
    "real-estate": KalshiDiscoveryPlan(
        series_category="Economics",
        tags=("Housing", "Mortgages"),
        title_keywords=("housing", "mortgage", "rent", "property", "construction", "real estate", "home prices"),
    ),
}
