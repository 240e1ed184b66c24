import asyncio

import httpx
import pytest

from app.core.errors import ProviderUnavailable
from app.models.dto import Photo
from app.services.wikimedia import DEFAULT_RADII, WikimediaProvider, select_candidate


def _page(page_id, title, url="https://upload.wikimedia.org/x.jpg", coords=True):
    page = {
        "pageid": page_id,
        "ns": 6,
        "title": title,
        "imageinfo": [{
            "url": url,
            "width": 4000,
            "height": 3000,
            "size": 123456,
            "timestamp": "2020-05-01T10:00:00Z",
            "extmetadata": {
                "ImageDescription": {"value": "A street"},
                "Artist": {"value": "Jane Doe"},
                "LicenseShortName": {"value": "CC BY-SA 4.0"},
            },
        }],
    }
    if coords:
        page["coordinates"] = [{"lat": 48.86, "lon": 2.34, "primary": "", "globe": "earth"}]
    return page


def _answer(*pages):
    return {"batchcomplete": "", "query": {"pages": {str(p["pageid"]): p for p in pages}}}


def _provider(make_client, fake_sleep, handler):
    return WikimediaProvider(
        make_client(handler),
        base_url="https://commons.test/w/api.php",
        user_agent="GuessTheSpotTests (tests@example.com)",
        referer="https://tests.example.com",
        sleep=fake_sleep,
    )


class TestSelectCandidate:
    def test_empty_pages(self):
        assert select_candidate({}, 1.0, 2.0) is None
        assert select_candidate(None, 1.0, 2.0) is None

    def test_geotagged_page_wins_over_earlier_untagged(self):
        pages = {"1": _page(1, "File:NoCoords.jpg", coords=False), "2": _page(2, "File:Tagged.jpg")}
        photo = select_candidate(pages, 48.0, 2.0)
        assert photo.title == "File:Tagged.jpg"
        assert (photo.lat, photo.lng) == (48.86, 2.34)
        assert photo.coordinates.primary is True
        assert photo.provider == "wikimedia"
        assert photo.author == "Jane Doe"
        assert photo.license == "CC BY-SA 4.0"
        assert photo.description == "A street"

    def test_untagged_page_gets_search_center(self):
        photo = select_candidate({"1": _page(1, "File:NoCoords.jpg", coords=False)}, 48.0, 2.0)
        assert (photo.lat, photo.lng) == (48.0, 2.0)
        assert photo.coordinates.primary is False
        assert photo.coordinates.globe == "earth"

    def test_pages_without_url_are_skipped(self):
        pages = {"1": _page(1, "File:Broken.jpg", url=""), "2": _page(2, "File:Good.jpg", coords=False)}
        assert select_candidate(pages, 0.0, 0.0).title == "File:Good.jpg"

    def test_missing_page_entry_is_last_resort(self):
        missing = _page(7, "File:Missing.jpg")
        assert select_candidate({"-1": missing}, 0.0, 0.0).title == "File:Missing.jpg"

    def test_permissive_mode_takes_first_usable(self):
        pages = {"1": _page(1, "File:NoCoords.jpg", coords=False), "2": _page(2, "File:Tagged.jpg")}
        photo = select_candidate(pages, 48.0, 2.0, prefer_geotagged=False)
        assert photo.title == "File:NoCoords.jpg"


def test_search_near_stops_at_first_radius_with_photo(make_client, fake_sleep):
    radii_seen = []

    def handler(request):
        radius = int(request.url.params["ggsradius"])
        radii_seen.append(radius)
        assert request.url.params["ggsnamespace"] == "6"
        assert request.url.params["ggscoord"] == "48.86|2.34"
        if radius < 2000:
            return httpx.Response(200, json={"batchcomplete": ""})
        return httpx.Response(200, json=_answer(_page(11, "File:Rivoli.jpg")))

    photo = asyncio.run(_provider(make_client, fake_sleep, handler).search_near(48.86, 2.34))

    assert photo.title == "File:Rivoli.jpg"
    assert radii_seen == [500, 1000, 2000]
    assert fake_sleep.calls == [1.0, 1.0]


def test_fallback_runs_after_each_empty_radius(make_client, fake_sleep):
    fallback_radii = []

    async def fallback(lat, lon, radius):
        fallback_radii.append(radius)
        if radius == 1000:
            return Photo(id=5, lat=lat, lng=lon, fileurl="https://openverse.test/5.jpg", provider="openverse")
        return None

    provider = _provider(make_client, fake_sleep, lambda r: httpx.Response(200, json={}))
    photo = asyncio.run(provider.search_near(48.86, 2.34, fallback=fallback))

    assert photo.provider == "openverse"
    assert fallback_radii == [500, 1000]


def test_failing_fallback_does_not_abort_search(make_client, fake_sleep):
    async def fallback(lat, lon, radius):
        raise ProviderUnavailable("openverse down")

    def handler(request):
        if request.url.params["ggsradius"] == "5000":
            return httpx.Response(200, json=_answer(_page(3, "File:Found.jpg")))
        return httpx.Response(200, json={})

    photo = asyncio.run(_provider(make_client, fake_sleep, handler).search_near(48.86, 2.34, fallback=fallback))
    assert photo.title == "File:Found.jpg"


def test_fallback_tiers_after_radii_exhausted(make_client, fake_sleep):
    requests = []

    def handler(request):
        radius = int(request.url.params["ggsradius"])
        requests.append((radius, int(request.url.params["ggslimit"])))
        if radius == 10_000_000:
            return httpx.Response(200, json=_answer(_page(9, "File:Far.jpg", coords=False)))
        return httpx.Response(200, json={})

    photo = asyncio.run(_provider(make_client, fake_sleep, handler).search_near(48.86, 2.34))

    assert photo.title == "File:Far.jpg"
    assert [r for r, _ in requests[: len(DEFAULT_RADII)]] == list(DEFAULT_RADII)
    assert requests[len(DEFAULT_RADII):] == [(500_000, 50), (2_000_000, 30), (10_000_000, 50)]


def test_nothing_anywhere_returns_none(make_client, fake_sleep):
    provider = _provider(make_client, fake_sleep, lambda r: httpx.Response(200, json={}))
    assert asyncio.run(provider.search_near(0.0, -30.0, radii=(500, 1000))) is None


def test_all_requests_failing_raises(make_client, fake_sleep):
    provider = _provider(make_client, fake_sleep, lambda r: httpx.Response(503))
    with pytest.raises(ProviderUnavailable):
        asyncio.run(provider.search_near(48.86, 2.34, radii=(500,)))


def test_partial_failures_are_an_empty_result(make_client, fake_sleep):
    def handler(request):
        if request.url.params["ggsradius"] == "500":
            return httpx.Response(503)
        return httpx.Response(200, json={})

    provider = _provider(make_client, fake_sleep, handler)
    assert asyncio.run(provider.search_near(48.86, 2.34, radii=(500, 1000))) is None


def test_fallback_tiers_ignore_missing_page_entry(make_client, fake_sleep):
    def handler(request):
        if int(request.url.params["ggsradius"]) >= 500_000 and request.url.params["ggslimit"] != "5":
            return httpx.Response(200, json={"query": {"pages": {"-1": _page(7, "File:Missing.jpg")}}})
        return httpx.Response(200, json={})

    provider = _provider(make_client, fake_sleep, handler)
    assert asyncio.run(provider.search_near(48.86, 2.34, radii=(500,))) is None


def test_radius_search_still_uses_missing_page_entry(make_client, fake_sleep):
    payload = {"query": {"pages": {"-1": _page(7, "File:Missing.jpg")}}}
    provider = _provider(make_client, fake_sleep, lambda r: httpx.Response(200, json=payload))
    photo = asyncio.run(provider.search_near(48.86, 2.34, radii=(500,)))
    assert photo.title == "File:Missing.jpg"


def test_select_candidate_without_missing_entry():
    assert select_candidate({"-1": _page(7, "File:Missing.jpg")}, 0.0, 0.0, allow_missing=False) is None
