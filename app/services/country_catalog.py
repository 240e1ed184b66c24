import asyncio
from typing import Any, Dict, List, Optional, Sequence

import httpx
import structlog

from app.core.config import settings
from app.core.errors import ProviderUnavailable
from app.models.dto import Country
from app.utils.http import Sleep, build_headers, get_json

logger = structlog.get_logger(__name__)

COUNTRY_FIELDS = "name,region,subregion,latlng,cca2"


def parse_country(raw: Dict[str, Any]) -> Optional[Country]:
    name = raw.get("name") or {}
    common = name.get("common") if isinstance(name, dict) else None
    region = raw.get("region")
    cca2 = raw.get("cca2")
    if not common or not region or not cca2:
        return None

    center = None
    latlng = raw.get("latlng") or []
    if isinstance(latlng, list) and len(latlng) >= 2:
        try:
            center = (float(latlng[0]), float(latlng[1]))
        except (TypeError, ValueError):
            center = None
    return Country(
        name=common,
        official_name=name.get("official"),
        region=region,
        subregion=raw.get("subregion") or None,
        center=center,
        cca2=cca2,
    )


class CountryCatalog:
    """Country list from REST Countries, fetched fresh on every call."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        url: str = settings.REST_COUNTRIES_API_URL,
        user_agent: str = settings.NOMINATIM_USER_AGENT,
        sleep: Sleep = asyncio.sleep,
    ):
        self.client = client
        self.url = url
        self.headers = build_headers(user_agent)
        self._sleep = sleep

    async def fetch_all(self) -> List[Country]:
        data = await get_json(
            self.client,
            self.url,
            params={"fields": COUNTRY_FIELDS},
            headers=self.headers,
            sleep=self._sleep,
        )
        if not isinstance(data, list):
            raise ProviderUnavailable("Country list has an unexpected shape")

        countries: List[Country] = []
        for raw in data:
            country = parse_country(raw) if isinstance(raw, dict) else None
            if country is None:
                logger.warning("country_entry_skipped", raw=str(raw)[:200])
                continue
            countries.append(country)

        logger.debug("countries_fetched", count=len(countries))
        return countries

    @staticmethod
    def filter_by_region(countries: Sequence[Country], region: str) -> List[Country]:
        """Countries whose region matches case-insensitively; may be empty."""
        wanted = region.lower()
        return [c for c in countries if c.region.lower() == wanted]

    @staticmethod
    def find_by_name(countries: Sequence[Country], name: str) -> Optional[Country]:
        """Exact case-insensitive match on the common name."""
        wanted = name.lower()
        return next((c for c in countries if c.name.lower() == wanted), None)
