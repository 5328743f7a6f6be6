"""
City name tables plus edit-distance matching for misspellings, abbreviations and
Spanish variants of the cities that show up in enforcement reports.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, Optional

FUZZY_THRESHOLD = 0.8

CITY_ALIASES: Dict[str, str] = {
    # Misspellings and shorthand
    "los angelas": "Los Angeles",
    "los angles": "Los Angeles",
    "la": "Los Angeles",
    "nyc": "New York",
    "new york city": "New York",
    "san fran": "San Francisco",
    "sf": "San Francisco",
    "frisco": "San Francisco",
    "philly": "Philadelphia",
    "vegas": "Las Vegas",
    "nola": "New Orleans",
    "atl": "Atlanta",
    "chi": "Chicago",
    "chi-town": "Chicago",
    "dc": "Washington",
    "washington dc": "Washington",
    "washington d.c.": "Washington",
    "houston tx": "Houston",
    "dallas tx": "Dallas",
    "miami fl": "Miami",
    "phx": "Phoenix",
    "san antone": "San Antonio",
    "san jo": "San Jose",
    "sj": "San Jose",
    "sd": "San Diego",
    "ft worth": "Fort Worth",
    "ft. worth": "Fort Worth",
    "ft wayne": "Fort Wayne",
    "ft. wayne": "Fort Wayne",
    "st louis": "St. Louis",
    "st. louis": "St. Louis",
    "saint louis": "St. Louis",
    "st paul": "St. Paul",
    "st. paul": "St. Paul",
    "saint paul": "St. Paul",
    "st pete": "St. Petersburg",
    "st. pete": "St. Petersburg",
    "saint petersburg": "St. Petersburg",
    "n las vegas": "North Las Vegas",
    "n. las vegas": "North Las Vegas",
    # Spanish
    "nueva york": "New York",
    "los ángeles": "Los Angeles",
    "san josé": "San Jose",
    # Border cities written with their state
    "el paso tx": "El Paso",
    "mcallen tx": "McAllen",
    "brownsville tx": "Brownsville",
    "laredo tx": "Laredo",
    "san ysidro ca": "San Ysidro",
    "calexico ca": "Calexico",
    "nogales az": "Nogales",
    "yuma az": "Yuma",
    "douglas az": "Douglas",
    "del rio tx": "Del Rio",
    "eagle pass tx": "Eagle Pass",
    "roma tx": "Roma",
    "hidalgo tx": "Hidalgo",
    "pharr tx": "Pharr",
    "harlingen tx": "Harlingen",
    "edinburg tx": "Edinburg",
    "mission tx": "Mission",
    "weslaco tx": "Weslaco",
}

# Default state for cities we can disambiguate without further context.
CITY_STATE_MAP: Dict[str, str] = {
    "Los Angeles": "CA",
    "New York": "NY",
    "Chicago": "IL",
    "Houston": "TX",
    "Phoenix": "AZ",
    "Philadelphia": "PA",
    "San Antonio": "TX",
    "San Diego": "CA",
    "Dallas": "TX",
    "San Jose": "CA",
    "Austin": "TX",
    "Jacksonville": "FL",
    "Fort Worth": "TX",
    "Columbus": "OH",
    "San Francisco": "CA",
    "Charlotte": "NC",
    "Indianapolis": "IN",
    "Seattle": "WA",
    "Denver": "CO",
    "Washington": "DC",
    "Boston": "MA",
    "El Paso": "TX",
    "Nashville": "TN",
    "Detroit": "MI",
    "Oklahoma City": "OK",
    "Portland": "OR",
    "Las Vegas": "NV",
    "Memphis": "TN",
    "Louisville": "KY",
    "Baltimore": "MD",
    "Milwaukee": "WI",
    "Albuquerque": "NM",
    "Tucson": "AZ",
    "Fresno": "CA",
    "Sacramento": "CA",
    "Atlanta": "GA",
    "Kansas City": "MO",
    "Miami": "FL",
    "Raleigh": "NC",
    "Oakland": "CA",
    "Minneapolis": "MN",
    "Tampa": "FL",
    "New Orleans": "LA",
    "Cleveland": "OH",
    "Orlando": "FL",
    "St. Louis": "MO",
    "St. Paul": "MN",
    "St. Petersburg": "FL",
    "Fort Wayne": "IN",
    "North Las Vegas": "NV",
    "Pittsburgh": "PA",
    "Anchorage": "AK",
    "Honolulu": "HI",
    # Border cities
    "McAllen": "TX",
    "Brownsville": "TX",
    "Laredo": "TX",
    "San Ysidro": "CA",
    "El Centro": "CA",
    "Calexico": "CA",
    "Nogales": "AZ",
    "Yuma": "AZ",
    "Douglas": "AZ",
    "Del Rio": "TX",
    "Eagle Pass": "TX",
    "Roma": "TX",
    "Hidalgo": "TX",
    "Pharr": "TX",
    "Harlingen": "TX",
    "Edinburg": "TX",
    "Mission": "TX",
    "Weslaco": "TX",
}

_CITY_BY_LOWER = {city.lower(): city for city in CITY_STATE_MAP}

_NOISE_WORDS = re.compile(r"\b(area|region|near|around|downtown|neighborhood)\b", re.IGNORECASE)
_EDGE_PUNCTUATION = re.compile(r"^[,.\s]+|[,.\s]+$")


@dataclass
class CityMatch:
    city: str
    state: Optional[str]
    score: float


def levenshtein_distance(a: str, b: str) -> int:
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)
    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current.append(
                min(
                    previous[j] + 1,
                    current[j - 1] + 1,
                    previous[j - 1] + cost,
                )
            )
        previous = current
    return previous[-1]


def similarity(a: str, b: str) -> float:
    """Return 1 - distance / longest length, compared case-insensitively."""
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - levenshtein_distance(a.lower(), b.lower()) / longest


def lookup_alias(value: str) -> Optional[str]:
    return CITY_ALIASES.get(value.strip().lower())


def lookup_city(value: str) -> Optional[str]:
    return _CITY_BY_LOWER.get(value.strip().lower())


def fuzzy_match_city(value: str) -> Optional[CityMatch]:
    """Resolve aliases and near-miss spellings to a canonical city name."""
    normalized = value.strip().lower()
    if not normalized:
        return None

    alias = CITY_ALIASES.get(normalized)
    if alias:
        return CityMatch(city=alias, state=CITY_STATE_MAP.get(alias), score=1.0)

    exact = _CITY_BY_LOWER.get(normalized)
    if exact:
        return CityMatch(city=exact, state=CITY_STATE_MAP[exact], score=1.0)

    best: Optional[CityMatch] = None
    for city, state in CITY_STATE_MAP.items():
        score = similarity(normalized, city.lower())
        if score >= FUZZY_THRESHOLD and (best is None or score > best.score):
            best = CityMatch(city=city, state=state, score=score)
    for alias_key, city in CITY_ALIASES.items():
        score = similarity(normalized, alias_key)
        if score >= FUZZY_THRESHOLD and (best is None or score > best.score):
            best = CityMatch(city=city, state=CITY_STATE_MAP.get(city), score=score)
    return best


def normalize_city(value: str) -> str:
    """Canonical spelling for known cities, title case for everything else."""
    alias = lookup_alias(value)
    if alias:
        return alias
    known = lookup_city(value)
    if known:
        return known
    return " ".join(word[:1].upper() + word[1:].lower() for word in value.strip().split(" ") if word)


def get_default_state(city: str) -> Optional[str]:
    return CITY_STATE_MAP.get(normalize_city(city))


def clean_location_string(value: str) -> str:
    cleaned = _NOISE_WORDS.sub("", value)
    cleaned = re.sub(r"\s+", " ", cleaned)
    cleaned = _EDGE_PUNCTUATION.sub("", cleaned)
    return cleaned.strip()
