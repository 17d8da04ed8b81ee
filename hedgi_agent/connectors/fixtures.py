from __future__ import annotations

import threading
from typing import Dict, List, Optional, Sequence

from hedgi_agent.connectors.base import VenueAdapter
from hedgi_agent.models import Market, VenueFetchMeta, VenueFetchResult


def _market(source: str, market_id: str, title: str, description: str, category_id: str, close_time: str,
            yes_label: str, no_label: str, liquidity: float, volume: float) -> Dict[str, object]:
    return {
        "id": market_id,
        "source": source,
        "title": title,
        "description": description,
        "category_id": category_id,
        "close_time": close_time,
        "outcomes": [{"id": "yes", "label": yes_label}, {"id": "no", "label": no_label}],
        "liquidity": liquidity,
        "volume": volume,
    }


KALSHI_FIXTURES: List[Dict[str, object]] = [
    _market("kalshi", "kalshi-weather-atlantic-2027", "Will the 2027 Atlantic hurricane season be above average?",
            "Seasonal hurricane activity vs long-term average.", "weather", "2027-11-30T21:00:00Z",
            "Yes", "No", 220000, 480000),
    _market("kalshi", "kalshi-agri-florida-citrus-2027", "Will Florida orange yield fall below 60M boxes in 2027?",
            "USDA reported Florida orange production.", "agriculture", "2028-01-15T18:00:00Z",
            "Below 60M", "60M or more", 85000, 140000),
    _market("kalshi", "kalshi-energy-wti-q3-2027", "Will WTI crude average above $85 in Q3 2027?",
            "Quarterly average of front-month WTI.", "energy", "2027-10-01T00:00:00Z",
            "Above $85", "At or below $85", 190000, 320000),
    _market("kalshi", "kalshi-finance-cpi-dec-2027", "Will US CPI YoY exceed 3.0% in Dec 2027?",
            "BLS CPI YoY for December 2027.", "finance", "2028-01-20T13:30:00Z",
            "Above 3.0%", "3.0% or below", 130000, 210000),
    _market("kalshi", "kalshi-weather-co-snow-2027", "Will Colorado snowfall be above average for 2027-28?",
            "Seasonal snowfall vs 10-year average.", "weather", "2028-04-15T19:00:00Z",
            "Above average", "Average or below", 64000, 98000),
    _market("kalshi", "kalshi-tourism-airline-2027", "Will US airline passenger volume exceed 2019 levels in 2027?",
            "Total annual US airline passengers.", "tourism", "2028-02-15T20:00:00Z",
            "Exceed 2019", "Not exceed", 52000, 76000),
    _market("kalshi", "kalshi-realestate-housing-2027", "Will US housing starts exceed 1.5M in 2027?",
            "Annualized housing starts.", "real-estate", "2028-01-25T15:00:00Z",
            "Above 1.5M", "1.5M or below", 78000, 120000),
    _market("kalshi", "kalshi-agri-soy-2027", "Will soybean prices exceed $14/bushel by Sep 2027?",
            "Front-month soybean futures settlement.", "agriculture", "2027-09-30T19:00:00Z",
            "Above $14", "At or below $14", 94000, 155000),
]

POLYMARKET_FIXTURES: List[Dict[str, object]] = [
    _market("polymarket", "poly-weather-gulf-landfall-2027", "Will a major hurricane make Gulf Coast landfall in 2027?",
            "Category 3+ hurricane landfall on US Gulf Coast.", "weather", "2027-11-15T21:00:00Z",
            "Yes", "No", 180000, 260000),
    _market("polymarket", "poly-agri-corn-yield-2027", "Will US corn yield fall below 170 bu/acre in 2027?",
            "USDA final corn yield estimate.", "agriculture", "2028-01-12T18:00:00Z",
            "Below 170", "170 or above", 72000, 110000),
    _market("polymarket", "poly-energy-henryhub-winter-2027", "Will Henry Hub gas average above $4.00 in winter 2027-28?",
            "Winter average natural gas price.", "energy", "2028-03-31T20:00:00Z",
            "Above $4.00", "$4.00 or below", 65000, 97000),
    _market("polymarket", "poly-logistics-bdi-2027", "Will the Baltic Dry Index exceed 2,000 in 2027?",
            "Shipping rate benchmark.", "logistics", "2027-12-29T20:00:00Z",
            "Above 2,000", "2,000 or below", 41000, 62000),
    _market("polymarket", "poly-tourism-hotel-occupancy-2027", "Will US hotel occupancy exceed 66% in summer 2027?",
            "Industry occupancy rate, Jun-Aug 2027.", "tourism", "2027-09-10T20:00:00Z",
            "Above 66%", "66% or below", 36000, 54000),
    _market("polymarket", "poly-finance-unemployment-2027", "Will US unemployment exceed 5.0% by Dec 2027?",
            "Seasonally adjusted unemployment rate.", "finance", "2028-01-08T13:30:00Z",
            "Above 5.0%", "5.0% or below", 98000, 150000),
    _market("polymarket", "poly-health-flu-2027", "Will US flu hospitalizations exceed 2026 levels in 2027-28?",
            "Seasonal flu hospitalization totals.", "health", "2028-05-01T18:00:00Z",
            "Exceed 2026", "Not exceed", 28000, 43000),
    _market("polymarket", "poly-tech-semiconductor-2027", "Will global semiconductor sales grow over 10% in 2027?",
            "YoY growth in semiconductor industry sales.", "technology", "2028-02-01T18:00:00Z",
            "Over 10%", "10% or below", 53000, 82000),
]


class MockVenueAdapter(VenueAdapter):
    """Serves a fixed in-memory market table filtered by category."""

    def __init__(self, source_name: str, rows: Sequence[Dict[str, object]]):
        self.source_name = source_name
        self._markets = [Market(**row) for row in rows]

    @classmethod
    def kalshi(cls) -> "MockVenueAdapter":
        return cls("kalshi", KALSHI_FIXTURES)

    @classmethod
    def polymarket(cls) -> "MockVenueAdapter":
        return cls("polymarket", POLYMARKET_FIXTURES)

    def fetch_markets(
        self,
        categories: Sequence[str],
        cancel_event: Optional[threading.Event] = None,
    ) -> VenueFetchResult:
        wanted = set(categories)
        markets = [m.model_copy(deep=True) for m in self._markets if not wanted or m.category_id in wanted]
        return VenueFetchResult(
            markets=markets,
            meta=VenueFetchMeta(provider=self.source_name, markets_fetched=len(markets)),
        )

