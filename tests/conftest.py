"""Shared fixtures: fake sleep, mock upstream transport, sample provider payloads."""

import copy

import httpx
import pytest


class FakeSleep:
    """Async stand-in for asyncio.sleep that records requested delays."""

    def __init__(self):
        self.calls = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def fake_sleep():
    return FakeSleep()


@pytest.fixture
def make_client():
    """Factory for an AsyncClient whose requests are answered by ``handler``."""
    def factory(handler):
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return factory


PARIS_REVERSE = {
    "place_id": 123456,
    "lat": "48.8606",
    "lon": "2.3376",
    "osm_type": "way",
    "osm_id": 4242,
    "place_rank": 26,
    "category": "highway",
    "type": "residential",
    "importance": 0.1,
    "display_name": "Rue de Rivoli, Quartier Saint-Germain-l'Auxerrois, Paris, Île-de-France, France",
    "address": {
        "road": "Rue de Rivoli",
        "suburb": "Quartier Saint-Germain-l'Auxerrois",
        "city": "Paris",
        "state": "Île-de-France",
        "postcode": "75001",
        "country": "France",
        "country_code": "fr",
    },
    "boundingbox": ["48.8600", "48.8610", "2.3370", "2.3380"],
}

FRANCE_SEARCH = [
    {
        "display_name": "France",
        "boundingbox": ["41.3", "51.1", "-5.2", "9.6"],
        "address": {"country": "France", "country_code": "fr"},
    }
]

COUNTRIES = [
    {"name": {"common": "France", "official": "French Republic"}, "region": "Europe",
     "subregion": "Western Europe", "latlng": [46.0, 2.0], "cca2": "FR"},
    {"name": {"common": "Germany", "official": "Federal Republic of Germany"}, "region": "Europe",
     "subregion": "Western Europe", "latlng": [51.0, 9.0], "cca2": "DE"},
    {"name": {"common": "Japan", "official": "Japan"}, "region": "Asia",
     "subregion": "Eastern Asia", "latlng": [36.0, 138.0], "cca2": "JP"},
    {"name": {"common": "Kenya", "official": "Republic of Kenya"}, "region": "Africa",
     "subregion": "Eastern Africa", "latlng": [1.0, 38.0], "cca2": "KE"},
]


@pytest.fixture
def paris_reverse():
    return copy.deepcopy(PARIS_REVERSE)


@pytest.fixture
def france_search():
    return copy.deepcopy(FRANCE_SEARCH)


@pytest.fixture
def countries_payload():
    return copy.deepcopy(COUNTRIES)
