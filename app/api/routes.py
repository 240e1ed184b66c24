# app/api/routes.py
# GET /api/location-image: a random location with a nearby photo, or a reverse lookup
# POST /api/guess: score a guess against the true location

from fastapi import APIRouter, Request, status, Depends
from fastapi.responses import JSONResponse
from datetime import datetime, timezone
import logging
import math
import time
from typing import Mapping, Optional

# Local imports
from app.core.config import settings
from app.core.errors import NotFound, PipelineError, ProviderUnavailable, RateLimitUnavailable
from app.models.dto import (
    ErrorResponse,
    GuessRequest,
    GuessResult,
    LocationImageData,
    LocationImageResponse,
    LocationRequest,
    ResponseMetadata,
    ReverseLookupData,
    ReverseLookupResponse,
)
from app.services.game_round import GameRoundService
from app.services.geocoding import GeocodingClient
from app.services.rate_limiter import RateLimiter
from app.services.scoring import score_guess
from app.utils.security import get_client_ip

router = APIRouter()
logger = logging.getLogger(__name__)


class InvalidRequest(ValueError):
    """A query parameter failed validation; the message is shown to the client."""


# ----------------------------------------------------------------------
# Dependencies (services live on app.state, created in the lifespan)
# ----------------------------------------------------------------------
def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


def get_game_round_service(request: Request) -> GameRoundService:
    return request.app.state.game_round_service


def get_geocoder(request: Request) -> GeocodingClient:
    return request.app.state.geocoder


# ----------------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------------
def _metadata(start_time: float, retries: Optional[int] = None) -> ResponseMetadata:
    return ResponseMetadata(
        timestamp=datetime.now(timezone.utc).isoformat(),
        processing_time_ms=int(round((time.perf_counter() - start_time) * 1000)),
        version=settings.VERSION,
        retries=retries,
    )


def error_response(
    status_code: int,
    message: str,
    start_time: float,
    headers: Optional[Mapping[str, str]] = None,
    **extra,
) -> JSONResponse:
    body = ErrorResponse(error=message, metadata=_metadata(start_time), **extra)
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(by_alias=True, mode="json", exclude_none=True),
        headers=dict(headers) if headers else None,
    )


def _parse_bounded_int(raw: Optional[str], default: int, low: int, high: int, message: str) -> int:
    if raw is None or raw == "":
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        raise InvalidRequest(message)
    if value < low or value > high:
        raise InvalidRequest(message)
    return value


def parse_location_request(params: Mapping[str, str]) -> LocationRequest:
    """Validates the query string of /location-image."""
    continent = params.get("continent") or None
    country = params.get("country") or None
    include_image = params.get("includeImage")

    if continent and continent not in settings.VALID_CONTINENTS:
        raise InvalidRequest(f"Invalid continent. Must be one of: {', '.join(settings.VALID_CONTINENTS)}")

    if country and len(country) < 2:
        raise InvalidRequest("Country name must be at least 2 characters long")

    # Images are included unless explicitly disabled
    should_include_image = include_image is None or include_image.lower() in ("true", "1")

    radius = _parse_bounded_int(
        params.get("imageRadius"),
        settings.DEFAULT_RADIUS,
        settings.MIN_RADIUS,
        settings.MAX_RADIUS,
        f"Image radius must be between {settings.MIN_RADIUS} and {settings.MAX_RADIUS} meters",
    )
    retries = _parse_bounded_int(
        params.get("maxRetries"),
        settings.DEFAULT_MAX_RETRIES,
        settings.MIN_MAX_RETRIES,
        settings.MAX_MAX_RETRIES,
        f"Max retries must be between {settings.MIN_MAX_RETRIES} and {settings.MAX_MAX_RETRIES}",
    )

    return LocationRequest(
        continent=continent,
        country=country,
        include_image=should_include_image,
        image_radius=radius,
        max_retries=retries,
    )


def _parse_coordinate(raw: str) -> Optional[float]:
    try:
        value = float(raw)
    except ValueError:
        return None
    return value if math.isfinite(value) else None


async def _reverse_lookup(params: Mapping[str, str], geocoder: GeocodingClient, start_time: float) -> JSONResponse:
    lat = _parse_coordinate(params["lat"])
    lon = _parse_coordinate(params["lon"])
    if lat is None or lon is None:
        return error_response(status.HTTP_400_BAD_REQUEST, "Invalid latitude or longitude values", start_time)

    try:
        location = await geocoder.reverse_lookup(lat, lon)
    except PipelineError as e:
        logger.warning(f"Reverse geocoding failed for {lat},{lon}: {e}")
        return error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR, f"Reverse geocoding failed: {e}", start_time
        )

    body = ReverseLookupResponse(data=ReverseLookupData(location=location), metadata=_metadata(start_time))
    return JSONResponse(content=body.model_dump(by_alias=True, mode="json"))


# ----------------------------------------------------------------------
# Location + Image Endpoint
# ----------------------------------------------------------------------
@router.get(
    "/location-image",
    response_model=LocationImageResponse,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)
async def location_image(
    request: Request,
    rate_limiter: RateLimiter = Depends(get_rate_limiter),
    game_rounds: GameRoundService = Depends(get_game_round_service),
    geocoder: GeocodingClient = Depends(get_geocoder),
):
    """A random populated location and, unless disabled, a photograph taken near it."""
    start_time = time.perf_counter()
    client_ip = get_client_ip(request)

    # 1. Rate limit per client
    try:
        decision = await rate_limiter.check(client_ip)
    except RateLimitUnavailable:
        return error_response(
            status.HTTP_503_SERVICE_UNAVAILABLE, "Rate limiting is temporarily unavailable.", start_time
        )
    if not decision.allowed:
        return error_response(
            status.HTTP_429_TOO_MANY_REQUESTS,
            "Rate limit exceeded. Please try again later.",
            start_time,
            headers={"Retry-After": str(decision.reset_in_seconds)},
            retry_after_seconds=decision.reset_in_seconds,
        )

    # 2. Reverse lookup mode bypasses the game entirely
    params = request.query_params
    if "lat" in params and "lon" in params:
        return await _reverse_lookup(params, geocoder, start_time)

    # 3. Validate
    try:
        location_request = parse_location_request(params)
    except InvalidRequest as e:
        return error_response(status.HTTP_400_BAD_REQUEST, str(e), start_time)

    # 4. Location (+ image)
    try:
        game_round = await game_rounds.play(location_request)
    except NotFound as e:
        return error_response(status.HTTP_404_NOT_FOUND, str(e), start_time)
    except ProviderUnavailable as e:
        logger.error(f"Upstream provider unavailable: {e}")
        return error_response(status.HTTP_503_SERVICE_UNAVAILABLE, str(e), start_time)
    except PipelineError as e:
        logger.error(f"Game round failed: {e}")
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, str(e), start_time)

    body = LocationImageResponse(
        data=LocationImageData(location=game_round.location, image=game_round.image),
        metadata=_metadata(start_time, retries=game_round.retries),
    )
    return JSONResponse(content=body.model_dump(by_alias=True, mode="json"))


@router.api_route(
    "/location-image",
    methods=["POST", "PUT", "PATCH", "DELETE"],
    include_in_schema=False,
)
async def location_image_method_not_allowed():
    return error_response(
        status.HTTP_405_METHOD_NOT_ALLOWED,
        "Method not allowed. Use GET request.",
        time.perf_counter(),
        headers={"Allow": "GET"},
    )


# ----------------------------------------------------------------------
# Guess Scoring Endpoint
# ----------------------------------------------------------------------
@router.post("/guess", response_model=GuessResult)
async def guess(data: GuessRequest) -> GuessResult:
    """Distance, score and percentage of a guess against the true location."""
    return score_guess(data.guess_lat, data.guess_lon, data.actual_lat, data.actual_lon)
