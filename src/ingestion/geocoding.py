"""
Nominatim geocoding with a SQLite cache, a built-in table of frequently reported
cities, and a rate gate that keeps us under the public one-request-per-second
policy.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Dict, Optional, Tuple

import requests

from src.ingestion.fuzzy import clean_location_string, fuzzy_match_city, get_default_state, normalize_city
from src.ingestion.models import GeocodingResult

LOGGER = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "ice-sighting-ingestor/0.1 (https://example.com/contact)"

# (city, state) -> (lat, lon) for the metros and border towns that dominate reports.
KNOWN_CITY_COORDS: Dict[Tuple[str, str], Tuple[float, float]] = {
    ("Los Angeles", "CA"): (34.0522, -118.2437),
    ("New York", "NY"): (40.7128, -74.0060),
    ("Chicago", "IL"): (41.8781, -87.6298),
    ("Houston", "TX"): (29.7604, -95.3698),
    ("Phoenix", "AZ"): (33.4484, -112.0740),
    ("San Antonio", "TX"): (29.4241, -98.4936),
    ("San Diego", "CA"): (32.7157, -117.1611),
    ("Dallas", "TX"): (32.7767, -96.7970),
    ("San Francisco", "CA"): (37.7749, -122.4194),
    ("Austin", "TX"): (30.2672, -97.7431),
    ("Miami", "FL"): (25.7617, -80.1918),
    ("Atlanta", "GA"): (33.7490, -84.3880),
    ("Denver", "CO"): (39.7392, -104.9903),
    ("Seattle", "WA"): (47.6062, -122.3321),
    ("El Paso", "TX"): (31.7619, -106.4850),
    ("McAllen", "TX"): (26.2034, -98.2300),
    ("Brownsville", "TX"): (25.9017, -97.4975),
    ("Laredo", "TX"): (27.5036, -99.5075),
    ("San Ysidro", "CA"): (32.5561, -117.0431),
    ("El Centro", "CA"): (32.7920, -115.5631),
    ("Calexico", "CA"): (32.6789, -115.4989),
    ("Nogales", "AZ"): (31.3404, -110.9343),
    ("Yuma", "AZ"): (32.6927, -114.6277),
    ("Douglas", "AZ"): (31.3445, -109.5453),
    ("Del Rio", "TX"): (29.3627, -100.8968),
    ("Eagle Pass", "TX"): (28.7091, -100.4995),
    ("Hidalgo", "TX"): (26.1004, -98.2631),
    ("Pharr", "TX"): (26.1948, -98.1836),
    ("Harlingen", "TX"): (26.1906, -97.6961),
    ("Edinburg", "TX"): (26.3017, -98.1633),
    ("Mission", "TX"): (26.2159, -98.3253),
    ("Weslaco", "TX"): (26.1593, -97.9908),
    ("Roma", "TX"): (26.4052, -99.0157),
    ("Rio Grande City", "TX"): (26.3798, -98.8203),
    ("Presidio", "TX"): (29.5607, -104.3722),
    ("Fabens", "TX"): (31.5068, -106.1581),
    ("San Luis", "AZ"): (32.4869, -114.7817),
    ("Lukeville", "AZ"): (31.8776, -112.8182),
    ("Sasabe", "AZ"): (31.4862, -111.5423),
    ("Naco", "AZ"): (31.3349, -109.9481),
}

# (min_lat, max_lat, min_lon, max_lon)
US_BOUNDS: Dict[str, Tuple[float, float, float, float]] = {
    "continental": (24.396308, 49.384358, -125.0, -66.93457),
    "alaska": (51.0, 71.5, -180.0, -129.0),
    "hawaii": (18.5, 22.5, -161.0, -154.0),
    "puerto_rico": (17.5, 18.6, -68.0, -65.0),
}


def is_us_coordinate(lat: float | str | None, lon: float | str | None) -> bool:
    try:
        lat_f = float(lat)  # type: ignore[arg-type]
        lon_f = float(lon)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return False
    return any(
        min_lat <= lat_f <= max_lat and min_lon <= lon_f <= max_lon
        for min_lat, max_lat, min_lon, max_lon in US_BOUNDS.values()
    )


def normalize_address(address: dict) -> Tuple[Optional[str], Optional[str]]:
    """Pick city and state from a Nominatim address block."""
    city = None
    for key in ("city", "town", "village", "municipality"):
        if address.get(key):
            city = address[key]
            break
    state_code = address.get("state_code")
    state = state_code.upper() if state_code else address.get("state")
    return city, state


class SQLiteCache:
    """Query -> result cache. Rows with NULL coordinates record a miss."""

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = db_path
        if str(db_path) != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS geocache (
                query TEXT PRIMARY KEY,
                latitude REAL,
                longitude REAL,
                city TEXT,
                state TEXT,
                display_name TEXT,
                fetched_at TEXT
            )
            """
        )
        self.conn.commit()
        self.lock = threading.Lock()

    def get(self, query: str) -> Optional[tuple]:
        with self.lock:
            cursor = self.conn.execute(
                """
                SELECT latitude, longitude, city, state, display_name, fetched_at
                FROM geocache WHERE query = ?
                """,
                (query,),
            )
            return cursor.fetchone()

    def set(self, query: str, result: Optional[GeocodingResult]) -> None:
        values = (
            (result.latitude, result.longitude, result.city, result.state, result.display_name)
            if result
            else (None, None, None, None, None)
        )
        with self.lock:
            self.conn.execute(
                """
                INSERT OR REPLACE INTO geocache
                    (query, latitude, longitude, city, state, display_name, fetched_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (query, *values, datetime.now(timezone.utc).isoformat()),
            )
            self.conn.commit()


class NominatimGeocoder:
    """Fetch coordinates from the public Nominatim endpoint and cache locally."""

    endpoint = "https://nominatim.openstreetmap.org/search"

    def __init__(
        self,
        cache_path: Path | str,
        min_interval: float = 1.1,
        user_agent: str = DEFAULT_USER_AGENT,
        failure_ttl_days: int = 7,
        timeout: float = 25,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.cache = SQLiteCache(cache_path)
        self.min_interval = min_interval
        self.user_agent = user_agent
        self.failure_ttl_days = failure_ttl_days
        self.timeout = timeout
        self._clock = clock
        self._sleep = sleep
        self._last_request: Optional[float] = None
        self._rate_lock = threading.Lock()
        self.stats: dict[str, int] = {
            "cache_hits": 0,
            "known_city_hits": 0,
            "nominatim_hits": 0,
            "fuzzy_hits": 0,
            "failures": 0,
        }

    def geocode(self, query: str) -> Optional[GeocodingResult]:
        key = query.strip().lower()
        if not key:
            return None

        cached = self.cache.get(key)
        if cached:
            lat, lon, city, state, display_name, fetched_at = cached
            if lat is not None and lon is not None:
                self.stats["cache_hits"] += 1
                return GeocodingResult(
                    latitude=lat,
                    longitude=lon,
                    city=city,
                    state=state,
                    display_name=display_name or "",
                    source="cache",
                )
            if self._is_fresh_failure(fetched_at):
                LOGGER.debug("Skipping geocode for '%s' due to recent failure cache.", key)
                return None

        try:
            payload = self._fetch(query.strip())
            fallback = None if payload else self._fuzzy_fallback(query.strip())
        except (requests.RequestException, ValueError):
            LOGGER.exception("Geocoding request failed for query '%s'", query)
            self.stats["failures"] += 1
            return None

        if not payload:
            self.cache.set(key, fallback)
            if fallback is None:
                self.stats["failures"] += 1
                return None
            self.stats["fuzzy_hits"] += 1
            return fallback

        city, state = normalize_address(payload.get("address") or {})
        result = GeocodingResult(
            latitude=float(payload["lat"]),
            longitude=float(payload["lon"]),
            city=city,
            state=state,
            display_name=str(payload.get("display_name") or ""),
            source="nominatim",
        )
        self.cache.set(key, result)
        self.stats["nominatim_hits"] += 1
        return result

    def geocode_city_state(self, city: str, state: str) -> Optional[GeocodingResult]:
        known = KNOWN_CITY_COORDS.get((normalize_city(city), state.strip().upper()))
        if known:
            self.stats["known_city_hits"] += 1
            return GeocodingResult(
                latitude=known[0],
                longitude=known[1],
                city=normalize_city(city),
                state=state.strip().upper(),
                display_name=f"{normalize_city(city)}, {state.strip().upper()}, USA",
                source="known_city",
            )
        return self.geocode(f"{city}, {state}, USA")

    def geocode_city(self, city: str) -> Optional[GeocodingResult]:
        cleaned = clean_location_string(city)
        if not cleaned:
            return None
        default_state = get_default_state(cleaned)
        if default_state:
            return self.geocode_city_state(cleaned, default_state)
        return self.geocode(f"{cleaned}, USA")

    def _fuzzy_fallback(self, query: str) -> Optional[GeocodingResult]:
        """Retry a misspelled city under its closest known spelling."""
        city_part = clean_location_string(query.split(",", 1)[0])
        match = fuzzy_match_city(city_part) if city_part else None
        if match is None or match.city.lower() == city_part.lower():
            return None
        LOGGER.debug("Retrying '%s' as '%s' (similarity %.2f)", query, match.city, match.score)
        refined = f"{match.city}, {match.state}, USA" if match.state else f"{match.city}, USA"
        payload = self._fetch(refined)
        if payload:
            city, state = normalize_address(payload.get("address") or {})
            return GeocodingResult(
                latitude=float(payload["lat"]),
                longitude=float(payload["lon"]),
                city=city or match.city,
                state=state or match.state,
                display_name=str(payload.get("display_name") or ""),
                source="fuzzy",
            )
        known = KNOWN_CITY_COORDS.get((match.city, match.state or ""))
        if known is None:
            return None
        return GeocodingResult(
            latitude=known[0],
            longitude=known[1],
            city=match.city,
            state=match.state,
            display_name=f"{match.city}, {match.state}, USA",
            source="fuzzy",
        )

    def _is_fresh_failure(self, fetched_at: Optional[str]) -> bool:
        if not fetched_at:
            return True
        try:
            ts = datetime.fromisoformat(fetched_at)
        except ValueError:
            return False
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        return datetime.now(timezone.utc) - ts < timedelta(days=self.failure_ttl_days)

    def _wait_for_slot(self) -> None:
        # Caller holds _rate_lock.
        if self._last_request is None:
            return
        elapsed = self._clock() - self._last_request
        if elapsed < self.min_interval:
            self._sleep(self.min_interval - elapsed)

    def _fetch(self, query: str) -> Optional[dict]:
        """Return the first US candidate, None when Nominatim has nothing usable."""
        params = {
            "q": query,
            "format": "json",
            "limit": 1,
            "addressdetails": 1,
            "countrycodes": "us",
        }
        headers = {
            "User-Agent": self.user_agent,
        }
        with self._rate_lock:
            self._wait_for_slot()
            try:
                response = requests.get(self.endpoint, params=params, headers=headers, timeout=self.timeout)
            finally:
                self._last_request = self._clock()
        if not response.ok:
            LOGGER.warning("Nominatim returned HTTP %s for query '%s'", response.status_code, query)
            return None
        results = response.json()
        if not results:
            return None
        candidate = results[0]
        if not self._is_us_payload(candidate):
            LOGGER.debug("Discarding non-US geocode candidate for query '%s': %s", query, candidate)
            return None
        return candidate

    @staticmethod
    def _is_us_payload(payload: dict) -> bool:
        address = payload.get("address") if isinstance(payload, dict) else None
        country_code = address.get("country_code") if isinstance(address, dict) else None
        if country_code and country_code.lower() != "us":
            return False
        return is_us_coordinate(payload.get("lat"), payload.get("lon"))
