import asyncio
import random
from typing import Optional

import structlog

from app.core.config import settings
from app.core.errors import NotFound, ProviderUnavailable, SamplingExhausted
from app.models.dto import BoundingBox, Country, Location
from app.services.country_catalog import CountryCatalog
from app.services.geocoding import GeocodingClient
from app.utils.http import Sleep

logger = structlog.get_logger(__name__)


class LocationSampler:
    """
    Picks a random populated point inside a country.

    The country is chosen by exact name, at random within a continent, or at
    random over the whole catalog. Points are drawn uniformly in the country's
    bounding box and reverse-geocoded until one has a populated address inside
    that country or the attempt budget runs out.
    """

    def __init__(
        self,
        catalog: CountryCatalog,
        geocoder: GeocodingClient,
        rng: Optional[random.Random] = None,
        sleep: Sleep = asyncio.sleep,
        max_attempts: int = settings.SAMPLING_MAX_ATTEMPTS,
        politeness_delay: float = settings.NOMINATIM_POLITENESS_DELAY,
        error_cooldown: float = settings.SAMPLING_ERROR_COOLDOWN,
        empty_delay: float = settings.SAMPLING_EMPTY_DELAY,
    ):
        self.catalog = catalog
        self.geocoder = geocoder
        self.rng = rng or random.Random()
        self._sleep = sleep
        self.max_attempts = max_attempts
        self.politeness_delay = politeness_delay
        self.error_cooldown = error_cooldown
        self.empty_delay = empty_delay

    async def select_country(self, continent: Optional[str] = None, country: Optional[str] = None) -> Country:
        countries = await self.catalog.fetch_all()

        if country:
            found = self.catalog.find_by_name(countries, country)
            if found is None:
                raise NotFound(f"Country not found: {country}")
            return found

        if continent:
            candidates = self.catalog.filter_by_region(countries, continent)
            if not candidates:
                raise NotFound(f"No countries found in continent: {continent}")
            return self.rng.choice(candidates)

        if not countries:
            raise NotFound("No countries available")
        return self.rng.choice(countries)

    async def sample(self, continent: Optional[str] = None, country: Optional[str] = None) -> Location:
        """
        Returns a populated Location.

        Raises:
            NotFound: Unknown country or empty continent, or no bounding box for the country.
            SamplingExhausted: No populated point after ``max_attempts`` draws.
            ProviderUnavailable: The catalog or the forward search kept failing.
        """
        selected = await self.select_country(continent=continent, country=country)
        log = logger.bind(country=selected.name)

        bbox = await self.geocoder.forward_search(selected.name)

        # Nominatim allows one request per second
        await self._sleep(self.politeness_delay)

        for attempt in range(1, self.max_attempts + 1):
            lat = self.rng.uniform(bbox.min_lat, bbox.max_lat)
            lon = self.rng.uniform(bbox.min_lon, bbox.max_lon)
            last_attempt = attempt == self.max_attempts

            try:
                location = await self.geocoder.reverse_lookup(lat, lon)
            except (ProviderUnavailable, NotFound) as e:
                log.warning("reverse_lookup_failed", attempt=attempt, lat=lat, lon=lon, error=str(e))
                if not last_attempt:
                    await self._sleep(self.error_cooldown)
                continue

            if location.is_populated() and self._in_country(location, selected):
                log.info("location_sampled", attempt=attempt, display_name=location.display_name)
                return self._pin_to_bbox(location, bbox, lat, lon)

            log.info(
                "location_rejected",
                attempt=attempt,
                lat=lat,
                lon=lon,
                country_code=location.address.country_code,
            )
            if not last_attempt:
                await self._sleep(self.empty_delay)

        raise SamplingExhausted(
            f"Could not find a valid populated location in {selected.name} after {self.max_attempts} attempts"
        )

    @staticmethod
    def _in_country(location: Location, country: Country) -> bool:
        # Bounding boxes spill into neighbours (France's covers northern Spain).
        code = location.address.country_code
        if code:
            return code.lower() == country.cca2.lower()
        return (location.country or "").lower() == country.name.lower()

    @staticmethod
    def _pin_to_bbox(location: Location, bbox: BoundingBox, lat: float, lon: float) -> Location:
        # Nominatim snaps to the nearest feature, which can sit just across the border.
        if bbox.contains(location.lat, location.lon):
            return location
        return location.model_copy(update={"lat": lat, "lon": lon})
