import asyncio
import logging
from typing import Any, Dict, Optional

import httpx

from app.core.config import settings
from app.core.errors import NotFound
from app.models.dto import Address, BoundingBox, Location
from app.utils.http import Sleep, build_headers, get_json

logger = logging.getLogger(__name__)


def _parse_float(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def build_location(data: Dict[str, Any]) -> Location:
    """
    Turns a Nominatim reverse-geocoding result into a Location.

    ``city`` falls back from city to town to village and is None when none is
    present. ``local_name`` is the road, else the house number, else the first
    comma-separated part of the display name.
    """
    address = Address.model_validate(data.get("address") or {})
    display_name = data.get("display_name") or ""

    city = address.city or address.town or address.village or None
    local_name = address.road or address.house_number or display_name.split(",")[0].strip() or None

    bounding_box = None
    raw_bbox = data.get("boundingbox")
    if raw_bbox and len(raw_bbox) == 4:
        parsed = [_parse_float(v) for v in raw_bbox]
        if all(v is not None for v in parsed):
            bounding_box = parsed

    return Location(
        lat=float(data["lat"]),
        lon=float(data["lon"]),
        country=address.country,
        state=address.state,
        city=city,
        local_name=local_name,
        display_name=display_name,
        place_id=data.get("place_id"),
        osm_type=data.get("osm_type"),
        osm_id=data.get("osm_id"),
        place_rank=data.get("place_rank"),
        category=data.get("category"),
        type=data.get("type"),
        importance=data.get("importance"),
        address=address,
        bounding_box=bounding_box,
    )


class GeocodingClient:
    """Forward and reverse geocoding against Nominatim.

    Every request carries the configured User-Agent and Referer; Nominatim
    rejects anonymous clients under its usage policy.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str = settings.NOMINATIM_BASE_URL,
        user_agent: str = settings.NOMINATIM_USER_AGENT,
        referer: str = settings.NOMINATIM_REFERER,
        retries: int = settings.HTTP_MAX_RETRIES,
        backoff_seconds: float = settings.NOMINATIM_BACKOFF_SECONDS,
        sleep: Sleep = asyncio.sleep,
    ):
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.headers = build_headers(user_agent, referer)
        self.retries = retries
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep

    async def _get(self, path: str, params: Dict[str, Any]) -> Any:
        return await get_json(
            self.client,
            f"{self.base_url}{path}",
            params=params,
            headers=self.headers,
            retries=self.retries,
            backoff_seconds=self.backoff_seconds,
            sleep=self._sleep,
        )

    async def forward_search(self, query: str) -> BoundingBox:
        """
        Returns the bounding box of the best match for a place name.

        Raises:
            NotFound: If there are no results or the best one has no bounding box.
            ProviderUnavailable: If Nominatim keeps failing.
        """
        data = await self._get(
            "/search",
            {"q": query, "format": "jsonv2", "limit": 1, "addressdetails": 1},
        )
        if not isinstance(data, list) or not data:
            raise NotFound(f"No search results found for: {query}")

        raw_bbox = data[0].get("boundingbox") if isinstance(data[0], dict) else None
        if not raw_bbox or len(raw_bbox) != 4:
            raise NotFound(f"Could not find bounding box for: {query}")

        south, north, west, east = (_parse_float(v) for v in raw_bbox)
        if None in (south, north, west, east):
            raise NotFound(f"Could not find bounding box for: {query}")

        logger.info(f"Bounding box for {query}: lat {south}..{north}, lon {west}..{east}")
        return BoundingBox(min_lon=west, min_lat=south, max_lon=east, max_lat=north)

    async def reverse_lookup(self, lat: float, lon: float) -> Location:
        """
        Resolves a coordinate to a Location.

        Raises:
            NotFound: If Nominatim answers without an address block (e.g. open ocean).
            ProviderUnavailable: If Nominatim keeps failing.
        """
        data = await self._get(
            "/reverse",
            {"format": "jsonv2", "lat": lat, "lon": lon, "addressdetails": 1},
        )
        if not isinstance(data, dict):
            raise NotFound("Invalid response from reverse geocoding API")
        if not data.get("address"):
            raise NotFound("No address found for the coordinates")

        # Nominatim omits lat/lon only on error payloads; keep the query point then.
        data.setdefault("lat", lat)
        data.setdefault("lon", lon)
        return build_location(data)
