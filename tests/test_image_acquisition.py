import asyncio

import httpx

from app.core.errors import ProviderUnavailable
from app.models.dto import Location, Photo
from app.services.image_acquisition import (
    AcquisitionState,
    BackoffPolicy,
    ImageAcquisitionOrchestrator,
)

PARIS = Location(lat=48.86, lon=2.34, country="France", city="Paris", display_name="Paris, France")


def _photo(provider):
    return Photo(id=1, lat=48.86, lng=2.34, fileurl=f"https://{provider}.test/1.jpg", provider=provider)


class FakeWikimedia:
    def __init__(self, outcomes=None):
        self.outcomes = list(outcomes or [])
        self.calls = []

    async def search_near(self, lat, lon, fallback=None):
        self.calls.append(fallback)
        outcome = self.outcomes.pop(0) if self.outcomes else None
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeOpenverse:
    def __init__(self, outcomes=None):
        self.outcomes = list(outcomes or [])
        self.calls = []

    async def search_near_location(self, lat, lon, radius=5000, location=None):
        self.calls.append((lat, lon, radius, location))
        outcome = self.outcomes.pop(0) if self.outcomes else None
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def test_wikimedia_hit_on_first_attempt(fake_sleep):
    wikimedia = FakeWikimedia([_photo("wikimedia")])
    openverse = FakeOpenverse()
    orchestrator = ImageAcquisitionOrchestrator(wikimedia, openverse, sleep=fake_sleep)

    photo = asyncio.run(orchestrator.acquire(48.86, 2.34, 5000, PARIS))

    assert photo.provider == "wikimedia"
    assert openverse.calls == []
    assert fake_sleep.calls == []


def test_providers_alternate_until_found(fake_sleep):
    wikimedia = FakeWikimedia([None, None])
    openverse = FakeOpenverse([None, _photo("openverse")])
    orchestrator = ImageAcquisitionOrchestrator(wikimedia, openverse, sleep=fake_sleep)

    photo = asyncio.run(orchestrator.acquire(48.86, 2.34, 2500, PARIS))

    assert photo.provider == "openverse"
    assert len(wikimedia.calls) == 2
    assert openverse.calls == [(48.86, 2.34, 2500, PARIS)] * 2
    # 2 + min(f, 10) after each empty attempt
    assert fake_sleep.calls == [3.0, 4.0, 5.0]


def test_errors_back_off_harder(fake_sleep):
    wikimedia = FakeWikimedia([ProviderUnavailable("down"), None])
    openverse = FakeOpenverse([httpx.ConnectError("refused"), _photo("openverse")])
    orchestrator = ImageAcquisitionOrchestrator(wikimedia, openverse, sleep=fake_sleep)

    photo = asyncio.run(orchestrator.acquire(48.86, 2.34, 5000, PARIS))

    assert photo is not None
    # error, error, empty
    assert fake_sleep.calls == [7.0, 9.0, 5.0]


def test_exhausts_after_fifty_consecutive_failures(fake_sleep):
    wikimedia = FakeWikimedia()
    openverse = FakeOpenverse()
    orchestrator = ImageAcquisitionOrchestrator(wikimedia, openverse, sleep=fake_sleep)

    assert asyncio.run(orchestrator.acquire(0.0, -30.0, 5000, None)) is None
    assert len(wikimedia.calls) == 25
    assert len(openverse.calls) == 25
    # no pause after the attempt that hits the cap
    assert len(fake_sleep.calls) == 49
    assert max(fake_sleep.calls) == 12.0


def test_wikimedia_gets_openverse_radius_fallback(fake_sleep):
    wikimedia = FakeWikimedia([None])
    openverse = FakeOpenverse()
    orchestrator = ImageAcquisitionOrchestrator(wikimedia, openverse, sleep=fake_sleep, max_consecutive_failures=1)

    assert asyncio.run(orchestrator.acquire(48.86, 2.34, 5000, PARIS)) is None

    fallback = wikimedia.calls[0]
    photo = asyncio.run(fallback(48.86, 2.34, 1000))
    assert photo is None
    assert openverse.calls[-1] == (48.86, 2.34, 1000, PARIS)


def test_backoff_policy_caps():
    policy = BackoffPolicy()
    assert policy.after_empty(1) == 3.0
    assert policy.after_empty(40) == 12.0
    assert policy.after_error(1) == 7.0
    assert policy.after_error(40) == 30.0


def test_state_alternation():
    assert AcquisitionState(attempt=0).uses_wikimedia
    assert not AcquisitionState(attempt=1).uses_wikimedia
    assert AcquisitionState(attempt=2).uses_wikimedia
