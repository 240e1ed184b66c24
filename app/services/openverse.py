"""
Openverse keyword search: photographs matching text derived from a location.

Queries run from most to least specific. For each query the results are
filtered (no mature content, at least 400x300), title matches are moved to the
front, and one of the top five is picked at random so repeated rounds at the
same place do not keep showing the same image.
"""
import asyncio
import random
import zlib
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx
import structlog

from app.core.config import settings
from app.core.errors import ProviderUnavailable
from app.models.dto import Location, Photo, PhotoCoordinates, SearchQuery
from app.utils.http import Sleep, build_headers, get_json

logger = structlog.get_logger(__name__)

PAGE_SIZE = 20
LICENSES = "cc0,by,by-sa,by-nc,by-nc-sa,by-nd,by-nc-nd"
SOURCES = "flickr,wikimedia"
MIN_WIDTH = 400
MIN_HEIGHT = 300
CANDIDATE_POOL = 15
TOP_CHOICES = 5
MAX_DISPLAY_NAME_LENGTH = 100

GENERIC_QUERIES: Tuple[SearchQuery, ...] = (
    SearchQuery(text="landscape photography"),
    SearchQuery(text="nature photography"),
    SearchQuery(text="travel photography"),
)

COUNTRY_TOPICS = ("architecture", "nature", "travel", "tourism")

# Keyed by substrings of the lowercased country name.
REGION_BUNDLES: Tuple[Tuple[Tuple[str, ...], Tuple[str, ...]], ...] = (
    (("europe", "france", "germany", "italy", "spain"), ("european architecture", "european landscape")),
    (("asia", "china", "japan", "india", "thailand"), ("asian architecture", "asian landscape")),
    (("america", "usa", "canada", "mexico"), ("american landscape", "north american")),
    (("africa", "egypt", "kenya"), ("african landscape", "african wildlife")),
    (("australia", "new zealand"), ("australian landscape", "oceania")),
)


def build_search_queries(location: Optional[Location]) -> List[SearchQuery]:
    """Ordered keyword queries for a location, most specific first."""
    if location is None:
        return list(GENERIC_QUERIES)

    queries: List[SearchQuery] = []
    country = location.country

    if location.display_name and len(location.display_name) < MAX_DISPLAY_NAME_LENGTH:
        queries.append(SearchQuery(text=location.display_name, exact_match=True))
    if location.city and country:
        queries.append(SearchQuery(text=f"{location.city} {country}", exact_match=True))
    if location.state and country:
        queries.append(SearchQuery(text=f"{location.state} {country}", exact_match=True))
    if location.local_name and country:
        queries.append(SearchQuery(text=f"{location.local_name} {country}", exact_match=True))

    if country:
        queries.append(SearchQuery(text=f"{country} landscape"))
        if location.city:
            queries.append(SearchQuery(text=f"{country} {location.city}"))
        for topic in COUNTRY_TOPICS:
            queries.append(SearchQuery(text=f"{country} {topic}"))

        country_lower = country.lower()
        for keys, bundle in REGION_BUNDLES:
            if any(key in country_lower for key in keys):
                queries.extend(SearchQuery(text=text) for text in bundle)

    queries.extend(GENERIC_QUERIES)
    return queries


def _openverse_numeric_id(raw_id: str) -> int:
    hex_digits = raw_id.replace("-", "")[:8]
    try:
        return int(hex_digits, 16)
    except ValueError:
        return zlib.crc32(raw_id.encode("utf-8"))


def photo_from_openverse_result(result: Dict[str, Any], lat: float, lon: float) -> Photo:
    """
    Normalizes an Openverse result into a Photo.

    Openverse has no geolocation, so the search target stands in for the
    photo's position and is flagged non-primary.
    """
    numeric_id = _openverse_numeric_id(str(result.get("id", "")))
    tags = [tag.get("name") for tag in result.get("tags") or [] if tag.get("name")]
    license_code = result.get("license")

    return Photo(
        id=numeric_id,
        lat=lat,
        lng=lon,
        fileurl=result["url"],
        title=result.get("title"),
        description=", ".join(tags) or None,
        author=result.get("creator"),
        license=license_code.upper() if license_code else None,
        width=result.get("width"),
        height=result.get("height"),
        size=result.get("filesize"),
        timestamp=result.get("indexed_on"),
        page_id=numeric_id,
        namespace=0,
        coordinates=PhotoCoordinates(lat=lat, lon=lon, primary=False, globe="earth"),
        provider="openverse",
    )


def filter_and_rank(results: Sequence[Dict[str, Any]], query_text: str) -> List[Dict[str, Any]]:
    """Drops unusable results and moves title matches to the front, keeping order otherwise."""
    usable = [
        r for r in results
        if not r.get("mature")
        and r.get("url")
        and r.get("width") and r.get("height")
        and r["width"] >= MIN_WIDTH and r["height"] >= MIN_HEIGHT
    ][:CANDIDATE_POOL]

    needle = query_text.lower()
    # sorted() is stable, so non-matching results keep their relevance order
    return sorted(usable, key=lambda r: needle not in (r.get("title") or "").lower())


class OpenverseProvider:
    """Keyword image search over Openverse."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str = settings.OPENVERSE_BASE_URL,
        user_agent: str = settings.WIKIMEDIA_USER_AGENT,
        referer: str = settings.WIKIMEDIA_REFERER,
        rng: Optional[random.Random] = None,
        sleep: Sleep = asyncio.sleep,
        query_delay: float = settings.OPENVERSE_QUERY_DELAY,
    ):
        self.client = client
        self.base_url = base_url.rstrip("/") + "/"
        self.headers = build_headers(user_agent, referer)
        self.rng = rng or random.Random()
        self._sleep = sleep
        self.query_delay = query_delay

    async def search_query(self, query: SearchQuery, lat: float, lon: float) -> Optional[Photo]:
        """One query; returns a randomly chosen top candidate, or None when nothing passes the filters."""
        params = {
            "q": query.formatted(),
            "page_size": str(PAGE_SIZE),
            "page": "1",
            "license": LICENSES,
            "source": SOURCES,
            "mature": "false",
        }
        data = await get_json(self.client, self.base_url, params=params, headers=self.headers, sleep=self._sleep)
        results = data.get("results") if isinstance(data, dict) else None
        if not results:
            logger.debug("openverse_no_results", query=query.formatted())
            return None

        ranked = filter_and_rank(results, query.text)
        if not ranked:
            logger.debug("openverse_all_filtered", query=query.formatted(), results=len(results))
            return None

        top = ranked[:TOP_CHOICES]
        selected = self.rng.choice(top)
        logger.info(
            "openverse_photo_selected",
            query=query.formatted(),
            title=selected.get("title"),
            pool=len(top),
        )
        return photo_from_openverse_result(selected, lat, lon)

    async def search_by_queries(self, queries: Sequence[SearchQuery], lat: float, lon: float) -> Optional[Photo]:
        """
        Tries each query in order and returns the first photo found.

        Raises:
            ProviderUnavailable: Every query failed at the HTTP level.
        """
        failures = 0
        for index, query in enumerate(queries):
            try:
                photo = await self.search_query(query, lat, lon)
            except ProviderUnavailable as e:
                failures += 1
                logger.warning("openverse_query_failed", query=query.formatted(), error=str(e))
                photo = None

            if photo:
                return photo
            if index < len(queries) - 1:
                await self._sleep(self.query_delay)

        if queries and failures == len(queries):
            raise ProviderUnavailable(f"Openverse failed for all {len(queries)} queries")
        return None

    async def search_near_location(
        self,
        lat: float,
        lon: float,
        radius: int = settings.DEFAULT_RADIUS,
        location: Optional[Location] = None,
    ) -> Optional[Photo]:
        """Keyword search for a target point, with queries built from ``location`` when known."""
        queries = build_search_queries(location)
        logger.debug("openverse_search", lat=lat, lon=lon, radius=radius, queries=len(queries))
        return await self.search_by_queries(queries, lat, lon)
