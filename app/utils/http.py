"""Shared GET-JSON helper with the retry policy used by every upstream client.

Each call makes up to ``retries`` attempts with linear backoff
(``backoff_seconds * attempt``) and a fixed per-request timeout. When the last
attempt fails the error surfaces as :class:`ProviderUnavailable`.
"""
import asyncio
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

import httpx
import structlog

from app.core.config import settings
from app.core.errors import ProviderUnavailable

logger = structlog.get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]

DEFAULT_HEADERS = {
    "Accept": "application/json",
    "Accept-Language": "en-US,en;q=0.9",
}


def build_headers(user_agent: str, referer: Optional[str] = None) -> Dict[str, str]:
    headers = dict(DEFAULT_HEADERS)
    headers["User-Agent"] = user_agent
    if referer:
        headers["Referer"] = referer
    return headers


async def get_json(
    client: httpx.AsyncClient,
    url: str,
    *,
    params: Optional[Mapping[str, Any]] = None,
    headers: Optional[Mapping[str, str]] = None,
    retries: int = settings.HTTP_MAX_RETRIES,
    backoff_seconds: float = settings.HTTP_BACKOFF_SECONDS,
    timeout: float = settings.HTTP_TIMEOUT_SECONDS,
    sleep: Sleep = asyncio.sleep,
) -> Any:
    last_error: Optional[Exception] = None

    for attempt in range(1, retries + 1):
        try:
            response = await client.get(url, params=params, headers=headers, timeout=timeout)
            response.raise_for_status()  # Raises HTTPStatusError for 4xx/5xx responses
            return response.json()
        except (httpx.HTTPError, ValueError) as e:
            last_error = e
            logger.warning(
                "upstream_request_failed",
                url=url,
                attempt=attempt,
                retries=retries,
                error=str(e),
            )

        if attempt < retries:
            await sleep(backoff_seconds * attempt)

    raise ProviderUnavailable(f"Failed to fetch data after {retries} attempts: {last_error}")
