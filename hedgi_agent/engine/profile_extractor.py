from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from hedgi_agent.clients.llm_client import LLMClient, as_string_list, as_text
from hedgi_agent.knowledge.lexicon import EXPOSURE_TERMS, INDUSTRY_HINTS, MONTHS, STATE_REGIONS
from hedgi_agent.models import Assumption, BusinessProfile, RevenueSeason
from hedgi_agent.utils.text import tokenize, unique_in_order

logger = logging.getLogger(__name__)

MAX_PROFILE_KEYWORDS = 20

_MONTH_ALT = "jan|feb|mar|apr|may|jun|jul|aug|sep|sept|oct|nov|dec"
_MONTH_RANGE_RE = re.compile(rf"({_MONTH_ALT})[a-z]*\s*(?:-|to|through)\s*({_MONTH_ALT})[a-z]*")


class RuleBasedProfileExtractor:
    """Deterministic keyword/lookup extraction. Never fails; every field has an empty fallback."""

    def extract(self, raw_text: str) -> BusinessProfile:
        text = raw_text or ""
        location, region = detect_location(text)
        return BusinessProfile(
            raw_input=text,
            industry=detect_industry(text),
            location=location,
            region=region,
            revenue_season=detect_revenue_season(text),
            exposures=detect_exposures(text),
            keywords=unique_in_order(tokenize(text), limit=MAX_PROFILE_KEYWORDS),
        )


class LLMProfileExtractor:
    def __init__(self, llm: LLMClient, fallback: Optional[RuleBasedProfileExtractor] = None):
        self.llm = llm
        self.fallback = fallback or RuleBasedProfileExtractor()

    def extract(self, raw_text: str) -> BusinessProfile:
        profile, _ = self.extract_with_status(raw_text)
        return profile

    def extract_with_status(self, raw_text: str) -> Tuple[BusinessProfile, str]:
        """Return the profile plus the LLM error code ("" when the LLM output was used)."""
        base = self.fallback.extract(raw_text)
        result = self.llm.complete_json(_PROFILE_SYSTEM_PROMPT, f"Business description:\n{raw_text}")
        if not result.ok:
            logger.info("Profile LLM unavailable, using rule-based profile", extra={"error": result.error})
            return base, result.error
        if not isinstance(result.value, dict):
            logger.warning("Profile LLM returned a non-object payload")
            return base, "invalid_json"
        return merge_profile(base, sanitize_profile_payload(result.value)), ""


_PROFILE_SYSTEM_PROMPT = (
    "You extract a structured business risk profile from a short description. "
    "Return strict JSON only with schema: "
    "{\"industry\":\"...\",\"location\":\"...\",\"seasonality\":\"...\","
    "\"revenueDrivers\":[\"...\"],\"keyCosts\":[\"...\"],"
    "\"assumptions\":[{\"field\":\"...\",\"value\":\"...\",\"confidence\":0.0-1.0,\"basis\":\"...\"}]}. "
    "Use null for unknown strings and [] for unknown lists. No code fences."
)


def sanitize_profile_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    assumptions: List[Assumption] = []
    raw_assumptions = payload.get("assumptions")
    for item in raw_assumptions if isinstance(raw_assumptions, list) else []:
        if not isinstance(item, dict):
            continue
        field = as_text(item.get("field"))
        value = as_text(item.get("value"))
        if not field or value is None:
            continue
        confidence = item.get("confidence")
        if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
            confidence = 0.5
        assumptions.append(
            Assumption(
                field=field,
                value=value,
                confidence=max(0.0, min(1.0, float(confidence))),
                basis=as_text(item.get("basis"), "") or "",
            )
        )

    return {
        "industry": as_text(payload.get("industry")),
        "location": as_text(payload.get("location")),
        "seasonality": as_text(payload.get("seasonality")),
        "revenue_drivers": as_string_list(payload.get("revenueDrivers")),
        "key_costs": as_string_list(payload.get("keyCosts")),
        "assumptions": assumptions,
    }


def merge_profile(base: BusinessProfile, fields: Dict[str, Any]) -> BusinessProfile:
    location = fields["location"] or base.location
    region = base.region
    if fields["location"]:
        _, derived_region = detect_location(fields["location"])
        region = derived_region or region
    return base.model_copy(
        update={
            "industry": fields["industry"] or base.industry,
            "location": location,
            "region": region,
            "seasonality": fields["seasonality"] or base.seasonality,
            "revenue_drivers": fields["revenue_drivers"] or base.revenue_drivers,
            "key_costs": fields["key_costs"] or base.key_costs,
            "assumptions": fields["assumptions"] or base.assumptions,
        }
    )


def detect_exposures(text: str) -> List[str]:
    lower = text.lower()
    return [term for term in EXPOSURE_TERMS if term in lower]


def detect_industry(text: str) -> Optional[str]:
    lower = text.lower()
    for keyword, industry in INDUSTRY_HINTS:
        if keyword in lower:
            return industry
    return None


def detect_location(text: str) -> Tuple[Optional[str], Optional[str]]:
    lower = text.lower()
    for state, region in STATE_REGIONS.items():
        if state in lower:
            return state, region
    return None, None


def detect_revenue_season(text: str) -> Optional[RevenueSeason]:
    lower = text.lower()
    match = _MONTH_RANGE_RE.search(lower)
    if match:
        return RevenueSeason(
            start_month=MONTHS.get(match.group(1)),
            end_month=MONTHS.get(match.group(2)),
            notes=match.group(0),
        )

    found = [name for name in MONTHS if name in lower]
    if len(found) >= 2:
        return RevenueSeason(start_month=MONTHS[found[0]], end_month=MONTHS[found[-1]], notes=", ".join(found))
    return None
