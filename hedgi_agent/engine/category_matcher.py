from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Sequence

from hedgi_agent.knowledge.categories import CATEGORY_DEFINITIONS, CategoryDefinition
from hedgi_agent.models import BusinessProfile, CategoryMatch


@dataclass(frozen=True)
class CategoryMatcherConfig:
    base_confidence: float = 0.15
    coverage_weight: float = 0.75
    region_boost: float = 0.05
    min_denominator: int = 4
    max_denominator: int = 8


class CategoryMatcher:
    def __init__(
        self,
        config: CategoryMatcherConfig | None = None,
        categories: Sequence[CategoryDefinition] = CATEGORY_DEFINITIONS,
    ):
        self.config = config or CategoryMatcherConfig()
        self.categories = categories

    def match(self, profile: BusinessProfile) -> List[CategoryMatch]:
        candidates = _candidate_keywords(profile)
        industry = _normalize(profile.industry or "")
        cfg = self.config

        matches: List[CategoryMatch] = []
        for category in self.categories:
            matched: List[str] = []
            industry_match = False
            for keyword in category.keywords:
                if any(_contains_either(candidate, keyword) for candidate in candidates):
                    matched.append(keyword)
                    if industry and _contains_either(industry, keyword):
                        industry_match = True

            hit_count = len(matched) + (1 if industry_match else 0)
            if hit_count == 0:
                continue

            denominator = max(cfg.min_denominator, min(cfg.max_denominator, len(category.keywords)))
            boost = cfg.region_boost if profile.region and category.default_region_behavior != "national" else 0.0
            confidence = min(1.0, cfg.base_confidence + (hit_count / denominator) * cfg.coverage_weight + boost)

            parts = []
            if matched:
                parts.append(f"Matched keywords: {', '.join(matched)}")
            if industry_match:
                parts.append("Industry alignment")
            if profile.region:
                parts.append(f"Region: {profile.region}")
            matches.append(CategoryMatch(id=category.id, confidence=confidence, rationale=" | ".join(parts)))

        # Category id breaks confidence ties so the order never depends on catalog layout.
        matches.sort(key=lambda m: (-m.confidence, m.id))
        return matches


def top_category_ids(matches: Iterable[CategoryMatch], limit: int = 3) -> List[str]:
    return [m.id for m in list(matches)[: max(0, limit)]]


def _candidate_keywords(profile: BusinessProfile) -> List[str]:
    raw: List[str] = []
    if profile.industry:
        raw.append(profile.industry)
    if profile.location:
        raw.append(profile.location)
    raw.extend(profile.keywords)
    raw.extend(profile.exposures)

    out: List[str] = []
    for value in raw:
        normalized = _normalize(value)
        if normalized and normalized not in out:
            out.append(normalized)
    return out


def _normalize(value: str) -> str:
    return value.strip().lower()


def _contains_either(left: str, right: str) -> bool:
    return right in left or left in right
