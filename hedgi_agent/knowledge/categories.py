from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Tuple


@dataclass(frozen=True)
class CategoryDefinition:
    id: str
    label: str
    keywords: Tuple[str, ...]
    notes: str
    default_region_behavior: str


CATEGORY_DEFINITIONS: Tuple[CategoryDefinition, ...] = (
    CategoryDefinition(
        id="agriculture",
        label="Agriculture & Crops",
        keywords=("farm", "crop", "harvest", "citrus", "orchard", "livestock", "grain", "corn", "soy", "dairy"),
        notes="Seasonality, yields, and input costs are often dominant factors.",
        default_region_behavior="regional-seasonal",
    ),
    CategoryDefinition(
        id="weather",
        label="Weather & Climate",
        keywords=("hurricane", "drought", "flood", "rain", "rainfall", "snow", "temperature", "storm", "heat", "frost"),
        notes="Severe weather drives abrupt operational and revenue changes.",
        default_region_behavior="coastal-sensitive",
    ),
    CategoryDefinition(
        id="energy",
        label="Energy & Fuel",
        keywords=("oil", "gas", "fuel", "diesel", "electricity", "power", "solar", "wind", "utility"),
        notes="Input costs and demand often track energy prices.",
        default_region_behavior="national",
    ),
    CategoryDefinition(
        id="logistics",
        label="Logistics & Supply Chain",
        keywords=("shipping", "freight", "trucking", "port", "supply", "warehouse", "inventory", "delivery"),
        notes="Bottlenecks or delays can compress margins quickly.",
        default_region_behavior="hub-sensitive",
    ),
    CategoryDefinition(
        id="tourism",
        label="Tourism & Leisure",
        keywords=("hotel", "resort", "travel", "vacation", "tourism", "airline", "cruise", "rental", "visitor"),
        notes="Demand is highly discretionary and weather-sensitive.",
        default_region_behavior="seasonal",
    ),
    CategoryDefinition(
        id="sports",
        label="Sports & Events",
        keywords=("stadium", "tickets", "league", "season", "playoffs", "team", "event", "attendance"),
        notes="Attendance and broadcast factors drive revenue shifts.",
        default_region_behavior="seasonal",
    ),
    CategoryDefinition(
        id="finance",
        label="Rates & Macro",
        keywords=("interest", "inflation", "cpi", "rates", "recession", "credit", "fed", "yield"),
        notes="Rates and inflation often shape demand and financing costs.",
        default_region_behavior="national",
    ),
    CategoryDefinition(
        id="health",
        label="Health & Insurance",
        keywords=("hospital", "clinic", "insurance", "flu", "outbreak", "pharma", "healthcare"),
        notes="Utilization and regulatory shifts can swing revenue.",
        default_region_behavior="regional",
    ),
    CategoryDefinition(
        id="technology",
        label="Technology & SaaS",
        keywords=("software", "saas", "cloud", "semiconductor", "ai", "data", "hardware"),
        notes="Demand depends on enterprise spending and product cycles.",
        default_region_behavior="national",
    ),
    CategoryDefinition(
        id="real-estate",
        label="Real Estate & Construction",
        keywords=("mortgage", "housing", "rent", "commercial", "construction", "property", "development"),
        notes="Rates, permits, and demand cycles are key drivers.",
        default_region_behavior="regional",
    ),
)

_BY_ID: Dict[str, CategoryDefinition] = {c.id: c for c in CATEGORY_DEFINITIONS}


def category_label(category_id: str, default: str = "market risk") -> str:
    category = _BY_ID.get(category_id)
    return category.label if category else default
