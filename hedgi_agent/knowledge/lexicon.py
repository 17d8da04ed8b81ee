from __future__ import annotations

from typing import Dict, List, Tuple

STOPWORDS = frozenset(
    {
        "a", "about", "above", "after", "all", "also", "an", "and", "any", "are",
        "as", "at", "be", "before", "below", "between", "but", "by", "can", "could",
        "down", "during", "for", "from", "had", "has", "have", "i", "if", "in",
        "into", "is", "it", "its", "least", "less", "may", "might", "more", "most",
        "my", "of", "on", "or", "our", "out", "over", "should", "so", "than",
        "that", "the", "their", "them", "then", "they", "this", "to", "under", "up",
        "us", "very", "was", "we", "were", "will", "with", "would", "you", "your",
    }
)

# Scan order matters: the "two month names anywhere" fallback takes the first
# and last keys found in this order, not the positional order in the text.
MONTHS: Dict[str, int] = {
    "jan": 1,
    "january": 1,
    "feb": 2,
    "february": 2,
    "mar": 3,
    "march": 3,
    "apr": 4,
    "april": 4,
    "may": 5,
    "jun": 6,
    "june": 6,
    "jul": 7,
    "july": 7,
    "aug": 8,
    "august": 8,
    "sep": 9,
    "sept": 9,
    "september": 9,
    "oct": 10,
    "october": 10,
    "nov": 11,
    "november": 11,
    "dec": 12,
    "december": 12,
}

STATE_REGIONS: Dict[str, str] = {
    "florida": "US-SE",
    "texas": "US-South",
    "california": "US-West",
    "colorado": "US-Mountain",
    "iowa": "US-Midwest",
    "kansas": "US-Midwest",
    "new york": "US-Northeast",
    "georgia": "US-SE",
    "louisiana": "US-Gulf",
    "massachusetts": "US-Northeast",
}

INDUSTRY_HINTS: Tuple[Tuple[str, str], ...] = (
    ("farm", "agriculture"),
    ("crop", "agriculture"),
    ("orchard", "agriculture"),
    ("resort", "tourism"),
    ("hotel", "tourism"),
    ("rental", "tourism"),
    ("logistics", "logistics"),
    ("warehouse", "logistics"),
    ("construction", "real estate"),
    ("software", "technology"),
)

EXPOSURE_TERMS: Tuple[str, ...] = (
    "hurricane",
    "drought",
    "flood",
    "rain",
    "storm",
    "heat",
    "snow",
    "interest rate",
    "inflation",
    "supply chain",
    "fuel",
    "energy",
    "pest",
    "disease",
)

SYNONYMS: Dict[str, List[str]] = {
    "twister": ["tornado"],
    "twisters": ["tornado"],
    "cyclone": ["hurricane"],
    "cyclones": ["hurricane"],
    "typhoon": ["hurricane"],
    "typhoons": ["hurricane"],
    "flooding": ["flood"],
    "floods": ["flood"],
    "droughts": ["drought"],
    "wildfires": ["wildfire"],
    "blizzard": ["snow", "snowfall"],
    "blizzards": ["snow", "snowfall"],
}
