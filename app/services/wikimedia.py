"""
Wikimedia Commons geosearch: photographs near a coordinate.

The search widens through ``DEFAULT_RADII``; between radii an optional
fallback (normally the Openverse keyword search) gets a turn. When the whole
sequence comes back empty, three large fallback tiers are tried.
"""
import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

import httpx
import structlog

from app.core.config import settings
from app.core.errors import PipelineError, ProviderUnavailable
from app.models.dto import Photo, PhotoCoordinates
from app.utils.http import Sleep, build_headers, get_json

logger = structlog.get_logger(__name__)

DEFAULT_RADII: Sequence[int] = (
    500, 1_000, 2_000, 5_000, 10_000, 25_000, 50_000, 100_000, 250_000, 500_000, 1_000_000,
)
RADIUS_RESULT_LIMIT = 5

# Called with (lat, lon, radius) when a radius yields nothing.
RadiusFallback = Callable[[float, float, int], Awaitable[Optional[Photo]]]


@dataclass(frozen=True)
class FallbackTier:
    name: str
    radius: int
    limit: int
    prefer_geotagged: bool = True


FALLBACK_TIERS: Sequence[FallbackTier] = (
    FallbackTier("nearby_cities", 500_000, 50),
    FallbackTier("country", 2_000_000, 30),
    FallbackTier("global", 10_000_000, 50, prefer_geotagged=False),
)


def _meta_value(extmetadata: Dict[str, Any], *keys: str) -> Optional[str]:
    for key in keys:
        value = (extmetadata.get(key) or {}).get("value")
        if value:
            return str(value)
    return None


def photo_from_wikimedia_page(
    page_id: str,
    page: Dict[str, Any],
    coords: Dict[str, Any],
    image_info: Dict[str, Any],
) -> Photo:
    """Normalizes a geosearch page (with its imageinfo and coordinates) into a Photo."""
    extmetadata = image_info.get("extmetadata") or {}
    lat = float(coords["lat"])
    lon = float(coords["lon"])
    numeric_id = int(page.get("pageid") or page_id)

    primary = coords.get("primary")
    if isinstance(primary, str):
        # formatversion=1 flags a primary coordinate with an empty string
        primary = True

    return Photo(
        id=numeric_id,
        lat=lat,
        lng=lon,
        fileurl=image_info["url"],
        title=page.get("title"),
        description=_meta_value(extmetadata, "ImageDescription", "ObjectName"),
        author=_meta_value(extmetadata, "Artist", "Credit"),
        license=_meta_value(extmetadata, "LicenseShortName", "License"),
        width=image_info.get("width"),
        height=image_info.get("height"),
        size=image_info.get("size"),
        timestamp=image_info.get("timestamp"),
        page_id=numeric_id,
        namespace=page.get("ns"),
        coordinates=PhotoCoordinates(
            lat=lat,
            lon=lon,
            primary=primary,
            globe=coords.get("globe"),
        ),
        provider="wikimedia",
    )


def _ordered_pages(pages: Dict[str, Any], allow_missing: bool = True) -> List[tuple]:
    """Real pages first; the "-1" missing-page entry only if allowed and nothing else came back."""
    real = [(key, page) for key, page in pages.items() if key != "-1"]
    if allow_missing and not real and "-1" in pages:
        real = [("-1", pages["-1"])]
    return real


def select_candidate(
    pages: Optional[Dict[str, Any]],
    lat: float,
    lon: float,
    prefer_geotagged: bool = True,
    allow_missing: bool = True,
) -> Optional[Photo]:
    """
    Picks the best page from a geosearch answer.

    With ``prefer_geotagged`` a page with coordinates and a file URL beats any
    page that only has a file URL. Otherwise the first page with a file URL
    wins. Pages without coordinates get the search center, flagged non-primary.
    The fallback tiers pass ``allow_missing=False`` to ignore the "-1" entry.
    """
    if not pages:
        return None

    usable = []
    for page_id, page in _ordered_pages(pages, allow_missing):
        image_info = (page.get("imageinfo") or [None])[0]
        if not image_info or not image_info.get("url"):
            continue
        coords = (page.get("coordinates") or [None])[0]
        usable.append((page_id, page, coords, image_info))

    if prefer_geotagged:
        for page_id, page, coords, image_info in usable:
            if coords:
                return photo_from_wikimedia_page(page_id, page, coords, image_info)

    for page_id, page, coords, image_info in usable:
        fallback_coords = coords or {"lat": lat, "lon": lon, "primary": False, "globe": "earth"}
        return photo_from_wikimedia_page(page_id, page, fallback_coords, image_info)

    return None


class WikimediaProvider:
    """Geographic proximity search over Wikimedia Commons files."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str = settings.WIKIMEDIA_BASE_URL,
        user_agent: str = settings.WIKIMEDIA_USER_AGENT,
        referer: str = settings.WIKIMEDIA_REFERER,
        sleep: Sleep = asyncio.sleep,
        radius_delay: float = settings.WIKIMEDIA_RADIUS_DELAY,
    ):
        self.client = client
        self.base_url = base_url
        self.headers = build_headers(user_agent, referer)
        self._sleep = sleep
        self.radius_delay = radius_delay

    async def geosearch(self, lat: float, lon: float, radius: int, limit: int) -> Dict[str, Any]:
        """Raw ``query.pages`` of a file-namespace geosearch; empty when nothing matched."""
        params = {
            "action": "query",
            "generator": "geosearch",
            "ggscoord": f"{lat}|{lon}",
            "ggsradius": str(radius),
            "ggsnamespace": "6",
            "ggslimit": str(limit),
            "prop": "imageinfo|coordinates",
            "iiprop": "url|extmetadata|size|timestamp",
            "format": "json",
            "origin": "*",
        }
        data = await get_json(self.client, self.base_url, params=params, headers=self.headers, sleep=self._sleep)
        if not isinstance(data, dict):
            return {}
        if data.get("warnings"):
            logger.warning("wikimedia_warnings", warnings=data["warnings"])
        return (data.get("query") or {}).get("pages") or {}

    async def search_near(
        self,
        lat: float,
        lon: float,
        radii: Sequence[int] = DEFAULT_RADII,
        fallback: Optional[RadiusFallback] = None,
    ) -> Optional[Photo]:
        """
        Returns the first acceptable photo around (lat, lon), or None.

        Raises:
            ProviderUnavailable: Every geosearch request of this call failed
                and no fallback produced a photo.
        """
        requests_made = 0
        requests_failed = 0

        for index, radius in enumerate(radii):
            requests_made += 1
            try:
                pages = await self.geosearch(lat, lon, radius, RADIUS_RESULT_LIMIT)
                photo = select_candidate(pages, lat, lon)
                if photo:
                    logger.info("wikimedia_photo_found", radius=radius, title=photo.title)
                    return photo
                logger.debug("wikimedia_radius_empty", radius=radius)
            except ProviderUnavailable as e:
                requests_failed += 1
                logger.warning("wikimedia_radius_failed", radius=radius, error=str(e))

            if fallback is not None:
                photo = await self._run_fallback(fallback, lat, lon, radius)
                if photo:
                    return photo

            if index < len(radii) - 1:
                await self._sleep(self.radius_delay)

        logger.info("wikimedia_radii_exhausted", lat=lat, lon=lon)

        for tier in FALLBACK_TIERS:
            requests_made += 1
            try:
                pages = await self.geosearch(lat, lon, tier.radius, tier.limit)
            except ProviderUnavailable as e:
                requests_failed += 1
                logger.warning("wikimedia_tier_failed", tier=tier.name, error=str(e))
                continue
            photo = select_candidate(
                pages, lat, lon, prefer_geotagged=tier.prefer_geotagged, allow_missing=False
            )
            if photo:
                logger.info("wikimedia_tier_photo_found", tier=tier.name, title=photo.title)
                return photo

        if requests_made and requests_failed == requests_made:
            raise ProviderUnavailable("Wikimedia geosearch failed for every radius and fallback tier")

        logger.info("wikimedia_no_photo", lat=lat, lon=lon)
        return None

    @staticmethod
    async def _run_fallback(fallback: RadiusFallback, lat: float, lon: float, radius: int) -> Optional[Photo]:
        try:
            photo = await fallback(lat, lon, radius)
        except (PipelineError, httpx.HTTPError) as e:
            logger.warning("radius_fallback_failed", radius=radius, error=str(e))
            return None
        if photo:
            logger.info("radius_fallback_photo_found", radius=radius, provider=photo.provider)
        return photo
