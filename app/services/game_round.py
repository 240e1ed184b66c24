import asyncio
from dataclasses import dataclass
from typing import Optional

import structlog

from app.core.config import settings
from app.core.errors import ProviderUnavailable, SamplingExhausted
from app.models.dto import Location, LocationRequest, Photo
from app.services.image_acquisition import ImageAcquisitionOrchestrator
from app.services.location_sampler import LocationSampler
from app.utils.http import Sleep

logger = structlog.get_logger(__name__)


@dataclass
class GameRound:
    location: Location
    image: Optional[Photo]
    retries: int


class GameRoundService:
    """
    One game round: a sampled location plus, optionally, a photo near it.

    Sampling failures that may be transient are retried as a whole with
    exponential backoff. A missing photo never fails the round.
    """

    def __init__(
        self,
        sampler: LocationSampler,
        orchestrator: ImageAcquisitionOrchestrator,
        sleep: Sleep = asyncio.sleep,
        retry_base_delay: float = settings.ROUND_RETRY_BASE_DELAY,
    ):
        self.sampler = sampler
        self.orchestrator = orchestrator
        self._sleep = sleep
        self.retry_base_delay = retry_base_delay

    async def play(self, request: LocationRequest) -> GameRound:
        """
        Raises:
            NotFound: Unknown country or empty continent; not retried.
            SamplingExhausted, ProviderUnavailable: After ``request.max_retries`` attempts.
        """
        max_retries = max(1, request.max_retries)

        for attempt in range(max_retries):
            log = logger.bind(attempt=attempt + 1, max_retries=max_retries)
            try:
                log.info("round_sampling_location", continent=request.continent, country=request.country)
                location = await self.sampler.sample(continent=request.continent, country=request.country)
            except (SamplingExhausted, ProviderUnavailable) as e:
                log.warning("round_attempt_failed", error=str(e), error_type=type(e).__name__)
                if attempt + 1 >= max_retries:
                    raise
                await self._sleep(self.retry_base_delay * (2 ** attempt))
                continue

            image = await self._find_image(location, request) if request.include_image else None
            return GameRound(location=location, image=image, retries=attempt)

        # max_retries >= 1, so the loop always returns or raises
        raise SamplingExhausted("Retry loop completed without a location")

    async def _find_image(self, location: Location, request: LocationRequest) -> Optional[Photo]:
        try:
            image = await self.orchestrator.acquire(location.lat, location.lon, request.image_radius, location)
        except Exception:
            # The round is still playable without a picture.
            logger.exception("round_image_failed", lat=location.lat, lon=location.lon)
            return None

        if image is None:
            logger.info("round_without_image", lat=location.lat, lon=location.lon)
        return image
