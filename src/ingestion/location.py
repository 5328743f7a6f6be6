"""
Best-effort location extraction from free-text posts. Strategies are tried from
most to least precise and the first hit wins.
"""

from __future__ import annotations

import re
from typing import Dict, List, Optional

from src.ingestion.fuzzy import fuzzy_match_city, get_default_state, lookup_alias, lookup_city, normalize_city
from src.ingestion.models import ExtractedLocation

STATE_ABBREVIATIONS: Dict[str, str] = {
    "AL": "Alabama",
    "AK": "Alaska",
    "AZ": "Arizona",
    "AR": "Arkansas",
    "CA": "California",
    "CO": "Colorado",
    "CT": "Connecticut",
    "DE": "Delaware",
    "FL": "Florida",
    "GA": "Georgia",
    "HI": "Hawaii",
    "ID": "Idaho",
    "IL": "Illinois",
    "IN": "Indiana",
    "IA": "Iowa",
    "KS": "Kansas",
    "KY": "Kentucky",
    "LA": "Louisiana",
    "ME": "Maine",
    "MD": "Maryland",
    "MA": "Massachusetts",
    "MI": "Michigan",
    "MN": "Minnesota",
    "MS": "Mississippi",
    "MO": "Missouri",
    "MT": "Montana",
    "NE": "Nebraska",
    "NV": "Nevada",
    "NH": "New Hampshire",
    "NJ": "New Jersey",
    "NM": "New Mexico",
    "NY": "New York",
    "NC": "North Carolina",
    "ND": "North Dakota",
    "OH": "Ohio",
    "OK": "Oklahoma",
    "OR": "Oregon",
    "PA": "Pennsylvania",
    "RI": "Rhode Island",
    "SC": "South Carolina",
    "SD": "South Dakota",
    "TN": "Tennessee",
    "TX": "Texas",
    "UT": "Utah",
    "VT": "Vermont",
    "VA": "Virginia",
    "WA": "Washington",
    "WV": "West Virginia",
    "WI": "Wisconsin",
    "WY": "Wyoming",
    "DC": "District of Columbia",
    "PR": "Puerto Rico",
}

STATE_NAMES: List[str] = list(STATE_ABBREVIATIONS.values())
_ABBREVIATION_BY_NAME = {name.lower(): abbr for abbr, name in STATE_ABBREVIATIONS.items()}

# Longest names first so "West Virginia" wins over "Virginia".
STATE_NAMES_PATTERN = "|".join(re.escape(name) for name in sorted(STATE_NAMES, key=len, reverse=True))
STATE_ABBREVIATION_PATTERN = "|".join(STATE_ABBREVIATIONS.keys())

CITY_STATE_PATTERN = re.compile(
    rf"\b([A-Z][\w.'-]*(?:\s+[A-Z][\w.'-]*){{0,2}})\s*,\s*"
    rf"(?:(?P<state_full>(?i:{STATE_NAMES_PATTERN}))|(?P<state_abbr>{STATE_ABBREVIATION_PATTERN}))\b"
)
PREPOSITION_PATTERN = re.compile(
    r"\b(?:in|at|near|around)\s+([A-Z][a-zA-Z\s.'-]+?)"
    r"(?:\s*,|\s+(?:area|region|today|yesterday|this|last)|\.|$)",
    re.IGNORECASE,
)
STATE_ONLY_PATTERN = re.compile(rf"\b({STATE_NAMES_PATTERN})\b", re.IGNORECASE)

# Major metros plus the border towns that dominate enforcement reports.
MAJOR_CITIES: List[str] = [
    "Los Angeles", "New York", "Chicago", "Houston", "Phoenix", "Philadelphia",
    "San Antonio", "San Diego", "Dallas", "San Jose", "Austin", "Jacksonville",
    "Fort Worth", "Columbus", "Charlotte", "San Francisco", "Indianapolis",
    "Seattle", "Denver", "Washington", "Boston", "El Paso", "Nashville",
    "Detroit", "Oklahoma City", "Portland", "Las Vegas", "Memphis", "Louisville",
    "Baltimore", "Milwaukee", "Albuquerque", "Tucson", "Fresno", "Mesa",
    "Sacramento", "Atlanta", "Kansas City", "Colorado Springs", "Miami",
    "Raleigh", "Omaha", "Long Beach", "Virginia Beach", "Oakland", "Minneapolis",
    "Tulsa", "Tampa", "Arlington", "New Orleans", "Bakersfield", "Wichita",
    "Cleveland", "Aurora", "Anaheim", "Honolulu", "Santa Ana", "Riverside",
    "Corpus Christi", "Lexington", "Henderson", "Stockton", "Saint Paul",
    "Cincinnati", "St. Louis", "Pittsburgh", "Greensboro", "Lincoln", "Anchorage",
    "Plano", "Orlando", "Irvine", "Newark", "Durham", "Chula Vista", "Toledo",
    "Fort Wayne", "St. Petersburg", "Laredo", "Jersey City", "Chandler",
    "Madison", "Lubbock", "Scottsdale", "Reno", "Buffalo", "Gilbert", "Glendale",
    "North Las Vegas", "Winston-Salem", "Chesapeake", "Norfolk", "Fremont",
    "Garland", "Irving", "Hialeah", "Richmond", "Boise", "Spokane", "Baton Rouge",
    "San Ysidro", "El Centro", "McAllen", "Brownsville", "Calexico", "Nogales",
    "Yuma", "Douglas", "Del Rio", "Eagle Pass", "Roma", "Hidalgo", "Pharr",
    "Harlingen", "Edinburg", "Mission", "Weslaco", "Rio Grande City", "Presidio",
    "Fabens", "San Luis", "Lukeville", "Sasabe", "Naco",
]
_MAJOR_CITY_PATTERNS = [
    (city, re.compile(rf"\b{re.escape(city)}\b", re.IGNORECASE)) for city in MAJOR_CITIES
]

COMMON_WORDS = frozenset(
    {
        "ice", "the", "area", "region", "place", "location", "site", "spot",
        "downtown", "uptown", "north", "south", "east", "west", "central",
        "morning", "afternoon", "evening", "night", "today", "yesterday",
        "border", "checkpoint", "raid", "agents", "officers", "police",
    }
)
_LEADING_FILLER = frozenset({"in", "at", "near", "around", "the", "from", "outside"})
_WINDOW_PUNCTUATION = re.compile(r"[,.:;!?]")


def normalize_state(value: str) -> str:
    """Return the two-letter code for a state name or abbreviation."""
    cleaned = value.strip()
    upper = cleaned.upper()
    if upper in STATE_ABBREVIATIONS:
        return upper
    return _ABBREVIATION_BY_NAME.get(cleaned.lower(), cleaned)


def _resolve_city_phrase(phrase: str) -> str:
    words = phrase.split()
    while len(words) > 1 and words[0].lower() in _LEADING_FILLER:
        words = words[1:]
    full = " ".join(words)
    if lookup_city(full) or lookup_alias(full):
        return normalize_city(full)
    for start in range(1, len(words)):
        tail = " ".join(words[start:])
        if lookup_city(tail):
            return normalize_city(tail)
    return full


def _match_city_state(text: str) -> Optional[ExtractedLocation]:
    match = CITY_STATE_PATTERN.search(text)
    if not match:
        return None
    raw_state = match.group("state_full") or match.group("state_abbr")
    return ExtractedLocation(
        city=_resolve_city_phrase(match.group(1)),
        state=normalize_state(raw_state),
        confidence="high",
        raw_match=match.group(0),
    )


def _match_known_city(text: str) -> Optional[ExtractedLocation]:
    for city, pattern in _MAJOR_CITY_PATTERNS:
        if pattern.search(text):
            default_state = get_default_state(city)
            return ExtractedLocation(
                city=normalize_city(city),
                state=default_state,
                confidence="high" if default_state else "medium",
                raw_match=city,
            )
    return None


def _match_fuzzy_window(text: str) -> Optional[ExtractedLocation]:
    words = text.split(" ")
    for index in range(len(words)):
        for size, threshold in ((1, 0.9), (2, 0.85), (3, 0.85)):
            if index + size > len(words):
                break
            window = _WINDOW_PUNCTUATION.sub("", " ".join(words[index:index + size]))
            if not window.strip():
                continue
            result = fuzzy_match_city(window)
            if result and result.score >= threshold:
                return ExtractedLocation(
                    city=result.city,
                    state=result.state,
                    confidence="high" if result.score >= 0.95 else "medium",
                    raw_match=window,
                )
    return None


def _match_preposition(text: str) -> Optional[ExtractedLocation]:
    match = PREPOSITION_PATTERN.search(text)
    if not match:
        return None
    candidate = match.group(1).strip()
    if candidate.lower() in COMMON_WORDS or len(candidate) <= 2:
        return None
    return ExtractedLocation(city=candidate, state=None, confidence="low", raw_match=match.group(0))


def _match_state_only(text: str) -> Optional[ExtractedLocation]:
    match = STATE_ONLY_PATTERN.search(text)
    if not match:
        return None
    return ExtractedLocation(
        city=None,
        state=normalize_state(match.group(1)),
        confidence="low",
        raw_match=match.group(0),
    )


STRATEGIES = (
    _match_city_state,
    _match_known_city,
    _match_fuzzy_window,
    _match_preposition,
    _match_state_only,
)


def extract_location(text: str) -> Optional[ExtractedLocation]:
    """Return the most precise location mention in ``text`` or None."""
    if not text:
        return None
    normalized = re.sub(r"\s+", " ", text).strip()
    for strategy in STRATEGIES:
        location = strategy(normalized)
        if location:
            return location
    return None
