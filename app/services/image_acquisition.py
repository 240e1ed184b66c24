"""
Image acquisition: alternates Wikimedia and Openverse until one returns a photo.

    Searching(attempt, failures) --photo--> Found(photo)
    Searching(attempt, failures) --empty/error--> Searching(attempt + 1, failures + 1)
    Searching(_, failures >= cap) --> Exhausted (returns None)

Even attempts use Wikimedia (which itself gives Openverse a turn at every
radius), odd attempts use Openverse directly. There is no overall deadline:
a rare location may take up to ``max_consecutive_failures`` rounds.
"""
import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import httpx
import structlog

from app.core.config import settings
from app.core.errors import PipelineError
from app.models.dto import Location, Photo
from app.services.openverse import OpenverseProvider
from app.services.wikimedia import WikimediaProvider
from app.utils.http import Sleep

logger = structlog.get_logger(__name__)


class AcquisitionStatus(str, Enum):
    SEARCHING = "SEARCHING"
    FOUND = "FOUND"
    EXHAUSTED = "EXHAUSTED"


@dataclass
class AcquisitionState:
    attempt: int = 0
    consecutive_failures: int = 0
    status: AcquisitionStatus = AcquisitionStatus.SEARCHING
    photo: Optional[Photo] = None

    @property
    def uses_wikimedia(self) -> bool:
        return self.attempt % 2 == 0


@dataclass(frozen=True)
class BackoffPolicy:
    base_delay: float = settings.ACQUISITION_BASE_DELAY
    failure_increment: float = settings.ACQUISITION_FAILURE_INCREMENT
    max_progressive_delay: float = settings.ACQUISITION_MAX_PROGRESSIVE_DELAY
    error_base_delay: float = settings.ACQUISITION_ERROR_BASE_DELAY
    error_increment: float = settings.ACQUISITION_ERROR_INCREMENT
    max_error_progressive_delay: float = settings.ACQUISITION_MAX_ERROR_PROGRESSIVE_DELAY

    def after_empty(self, consecutive_failures: int) -> float:
        return self.base_delay + min(consecutive_failures * self.failure_increment, self.max_progressive_delay)

    def after_error(self, consecutive_failures: int) -> float:
        # Errors usually mean the upstream is throttling us; back off harder.
        return self.error_base_delay + min(
            consecutive_failures * self.error_increment, self.max_error_progressive_delay
        )


class ImageAcquisitionOrchestrator:
    def __init__(
        self,
        wikimedia: WikimediaProvider,
        openverse: OpenverseProvider,
        sleep: Sleep = asyncio.sleep,
        backoff: Optional[BackoffPolicy] = None,
        max_consecutive_failures: int = settings.ACQUISITION_MAX_CONSECUTIVE_FAILURES,
    ):
        self.wikimedia = wikimedia
        self.openverse = openverse
        self._sleep = sleep
        self.backoff = backoff or BackoffPolicy()
        self.max_consecutive_failures = max_consecutive_failures

    async def acquire(
        self,
        lat: float,
        lon: float,
        radius: int = settings.DEFAULT_RADIUS,
        location: Optional[Location] = None,
    ) -> Optional[Photo]:
        """Returns a photo near (lat, lon), or None once the failure cap is reached."""
        state = AcquisitionState()
        log = logger.bind(lat=lat, lon=lon, radius=radius)
        log.info("image_acquisition_started", country=location.country if location else None)

        while state.status is AcquisitionStatus.SEARCHING:
            state = await self._step(state, lat, lon, radius, location, log)

        if state.status is AcquisitionStatus.FOUND:
            return state.photo

        log.warning(
            "image_acquisition_exhausted",
            attempts=state.attempt,
            consecutive_failures=state.consecutive_failures,
        )
        return None

    async def _step(
        self,
        state: AcquisitionState,
        lat: float,
        lon: float,
        radius: int,
        location: Optional[Location],
        log,
    ) -> AcquisitionState:
        if state.consecutive_failures >= self.max_consecutive_failures:
            return AcquisitionState(state.attempt, state.consecutive_failures, AcquisitionStatus.EXHAUSTED)

        provider = "wikimedia" if state.uses_wikimedia else "openverse"
        errored = False
        try:
            if state.uses_wikimedia:
                photo = await self.wikimedia.search_near(
                    lat, lon, fallback=self._radius_fallback(location)
                )
            else:
                photo = await self.openverse.search_near_location(lat, lon, radius, location)
        except (PipelineError, httpx.HTTPError) as e:
            errored = True
            photo = None
            log.warning("image_attempt_failed", attempt=state.attempt + 1, provider=provider, error=str(e))

        if photo is not None:
            log.info(
                "image_found",
                attempt=state.attempt + 1,
                provider=photo.provider,
                title=photo.title,
                fileurl=photo.fileurl,
            )
            return AcquisitionState(state.attempt + 1, 0, AcquisitionStatus.FOUND, photo)

        failures = state.consecutive_failures + 1
        next_state = AcquisitionState(state.attempt + 1, failures)
        if failures >= self.max_consecutive_failures:
            return AcquisitionState(next_state.attempt, failures, AcquisitionStatus.EXHAUSTED)

        delay = self.backoff.after_error(failures) if errored else self.backoff.after_empty(failures)
        log.debug("image_attempt_empty", attempt=next_state.attempt, provider=provider, delay=delay)
        await self._sleep(delay)
        return next_state

    def _radius_fallback(self, location: Optional[Location]):
        """Openverse turn given to Wikimedia between radii."""
        async def fallback(lat: float, lon: float, radius: int) -> Optional[Photo]:
            return await self.openverse.search_near_location(lat, lon, radius, location)

        return fallback
