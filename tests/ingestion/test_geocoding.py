from pathlib import Path
from typing import Any, List

import pytest
import requests

from src.ingestion.geocoding import NominatimGeocoder, is_us_coordinate, normalize_address

DALLAS_PAYLOAD = {
    "lat": "32.7767",
    "lon": "-96.7970",
    "display_name": "Dallas, Dallas County, Texas, United States",
    "address": {"city": "Dallas", "state": "Texas", "country_code": "us"},
}


class FakeResponse:
    def __init__(self, payload: Any, status_code: int = 200) -> None:
        self._payload = payload
        self.status_code = status_code

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def json(self) -> Any:
        return self._payload


class FakeNominatim:
    def __init__(self, *responses: Any) -> None:
        self.responses = list(responses)
        self.queries: List[str] = []

    def __call__(self, url, params=None, headers=None, timeout=None):
        self.queries.append(params["q"])
        assert params["countrycodes"] == "us"
        assert params["limit"] == 1
        assert headers["User-Agent"]
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def make_geocoder(tmp_path: Path, **kwargs: Any) -> NominatimGeocoder:
    kwargs.setdefault("min_interval", 0)
    return NominatimGeocoder(cache_path=tmp_path / "geocache.sqlite", **kwargs)


def test_repeated_query_hits_cache(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    fake = FakeNominatim(FakeResponse([DALLAS_PAYLOAD]))
    monkeypatch.setattr("src.ingestion.geocoding.requests.get", fake)
    geocoder = make_geocoder(tmp_path)

    first = geocoder.geocode("Dallas, TX, USA")
    second = geocoder.geocode("  dallas, tx, usa ")

    assert len(fake.queries) == 1
    assert first is not None and second is not None
    assert first.source == "nominatim"
    assert second.source == "cache"
    assert (second.latitude, second.longitude) == pytest.approx((32.7767, -96.797))
    assert second.city == "Dallas"
    assert geocoder.stats["cache_hits"] == 1
    assert geocoder.stats["nominatim_hits"] == 1


def test_not_found_is_cached(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    fake = FakeNominatim(FakeResponse([]))
    monkeypatch.setattr("src.ingestion.geocoding.requests.get", fake)
    geocoder = make_geocoder(tmp_path)

    assert geocoder.geocode("Nowhereville, USA") is None
    assert geocoder.geocode("Nowhereville, USA") is None
    assert len(fake.queries) == 1


def test_http_error_is_cached_as_not_found(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    fake = FakeNominatim(FakeResponse({}, status_code=503))
    monkeypatch.setattr("src.ingestion.geocoding.requests.get", fake)
    geocoder = make_geocoder(tmp_path)

    assert geocoder.geocode("Houston, TX, USA") is None
    assert geocoder.geocode("Houston, TX, USA") is None
    assert len(fake.queries) == 1


def test_network_failure_is_not_cached(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    fake = FakeNominatim(requests.ConnectionError("boom"), FakeResponse([DALLAS_PAYLOAD]))
    monkeypatch.setattr("src.ingestion.geocoding.requests.get", fake)
    geocoder = make_geocoder(tmp_path)

    assert geocoder.geocode("Dallas, USA") is None
    result = geocoder.geocode("Dallas, USA")

    assert result is not None
    assert len(fake.queries) == 2
    assert geocoder.stats["failures"] == 1


def test_non_us_candidate_is_rejected(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    london = {"lat": "51.5072", "lon": "-0.1276", "address": {"city": "London", "country_code": "gb"}}
    fake = FakeNominatim(FakeResponse([london]))
    monkeypatch.setattr("src.ingestion.geocoding.requests.get", fake)
    geocoder = make_geocoder(tmp_path)

    assert geocoder.geocode("London") is None
    assert geocoder.geocode("London") is None
    assert len(fake.queries) == 1


def test_rate_gate_spaces_outbound_requests(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    fake = FakeNominatim(FakeResponse([DALLAS_PAYLOAD]), FakeResponse([]))
    monkeypatch.setattr("src.ingestion.geocoding.requests.get", fake)
    now = [100.0]
    sleeps: List[float] = []

    def sleep(seconds: float) -> None:
        sleeps.append(seconds)
        now[0] += seconds

    geocoder = make_geocoder(tmp_path, min_interval=1.1, clock=lambda: now[0], sleep=sleep)

    geocoder.geocode("Dallas, TX, USA")
    now[0] += 0.4
    geocoder.geocode("Somewhere else, USA")

    assert sleeps == [pytest.approx(0.7)]


def test_known_city_skips_network(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    fake = FakeNominatim()
    monkeypatch.setattr("src.ingestion.geocoding.requests.get", fake)
    geocoder = make_geocoder(tmp_path)

    result = geocoder.geocode_city_state("Dallas", "tx")

    assert result is not None
    assert result.source == "known_city"
    assert (result.city, result.state) == ("Dallas", "TX")
    assert (result.latitude, result.longitude) == (32.7767, -96.7970)
    assert fake.queries == []
    assert geocoder.stats["known_city_hits"] == 1


def test_city_state_falls_back_to_query(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    fake = FakeNominatim(FakeResponse([DALLAS_PAYLOAD]))
    monkeypatch.setattr("src.ingestion.geocoding.requests.get", fake)
    geocoder = make_geocoder(tmp_path)

    geocoder.geocode_city_state("Garland", "TX")

    assert fake.queries == ["Garland, TX, USA"]


def test_geocode_city_uses_default_state_or_country(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    fake = FakeNominatim(FakeResponse([]))
    monkeypatch.setattr("src.ingestion.geocoding.requests.get", fake)
    geocoder = make_geocoder(tmp_path)

    known = geocoder.geocode_city("nyc")
    geocoder.geocode_city("Springfield area")

    assert known is not None and known.state == "NY"
    assert fake.queries == ["Springfield, USA"]


def test_normalize_address_preferences() -> None:
    assert normalize_address({"town": "Pharr", "village": "X", "state": "Texas"}) == ("Pharr", "Texas")
    assert normalize_address({"village": "Naco", "state_code": "az", "state": "Arizona"}) == ("Naco", "AZ")
    assert normalize_address({}) == (None, None)


def test_us_coordinate_boxes() -> None:
    assert is_us_coordinate(32.7767, -96.797)
    assert is_us_coordinate(61.2181, -149.9003)
    assert is_us_coordinate(21.3069, -157.8583)
    assert is_us_coordinate(18.4655, -66.1057)
    assert not is_us_coordinate(51.5072, -0.1276)
    assert not is_us_coordinate("north", None)


def test_misspelled_city_is_retried_under_closest_spelling(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    phoenix = {
        "lat": "33.4484",
        "lon": "-112.0740",
        "display_name": "Phoenix, Maricopa County, Arizona, United States",
        "address": {"city": "Phoenix", "state": "Arizona", "country_code": "us"},
    }
    fake = FakeNominatim(FakeResponse([]), FakeResponse([phoenix]))
    monkeypatch.setattr("src.ingestion.geocoding.requests.get", fake)
    geocoder = make_geocoder(tmp_path)

    result = geocoder.geocode("Phoenixx, USA")
    again = geocoder.geocode("Phoenixx, USA")

    assert fake.queries == ["Phoenixx, USA", "Phoenix, AZ, USA"]
    assert result is not None and again is not None
    assert result.source == "fuzzy"
    assert result.city == "Phoenix"
    assert again.source == "cache"
    assert geocoder.stats["fuzzy_hits"] == 1


def test_misspelled_city_falls_back_to_known_coordinates(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    fake = FakeNominatim(FakeResponse([]), FakeResponse([]))
    monkeypatch.setattr("src.ingestion.geocoding.requests.get", fake)
    geocoder = make_geocoder(tmp_path)

    result = geocoder.geocode("Houstn, USA")

    assert fake.queries == ["Houstn, USA", "Houston, TX, USA"]
    assert result is not None
    assert (result.city, result.state, result.source) == ("Houston", "TX", "fuzzy")
    assert (result.latitude, result.longitude) == (29.7604, -95.3698)
