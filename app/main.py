from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import logging
import time
import uuid

import httpx
from redis.asyncio import Redis

# Local imports
from app.core.config import settings
from app.api.routes import router as api_router, error_response
from app.logging import configure_logging
from app.middleware.logging import LoggingMiddleware
from app.services.country_catalog import CountryCatalog
from app.services.game_round import GameRoundService
from app.services.geocoding import GeocodingClient
from app.services.image_acquisition import ImageAcquisitionOrchestrator
from app.services.location_sampler import LocationSampler
from app.services.openverse import OpenverseProvider
from app.services.rate_limiter import InMemoryRateLimitStore, RateLimiter, RedisRateLimitStore
from app.services.wikimedia import WikimediaProvider

configure_logging()
logger = logging.getLogger(__name__)


def build_rate_limiter() -> tuple:
    """Redis store when enabled and configured, otherwise the in-process one."""
    if settings.ENABLE_REDIS and settings.REDIS_URL:
        redis_client = Redis.from_url(settings.REDIS_URL)
        return RateLimiter(RedisRateLimitStore(redis_client)), redis_client
    if settings.ENABLE_REDIS:
        logger.warning("ENABLE_REDIS is set but REDIS_URL is missing; using in-memory rate limiting.")
    return RateLimiter(InMemoryRateLimitStore()), None


def wire_services(app: FastAPI, http_client: httpx.AsyncClient) -> None:
    """Builds the pipeline on top of one shared HTTP client."""
    geocoder = GeocodingClient(http_client)
    sampler = LocationSampler(CountryCatalog(http_client), geocoder)
    orchestrator = ImageAcquisitionOrchestrator(WikimediaProvider(http_client), OpenverseProvider(http_client))

    app.state.http_client = http_client
    app.state.geocoder = geocoder
    app.state.game_round_service = GameRoundService(sampler, orchestrator)


# --- Application Lifecycle Management ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Application startup: v{settings.VERSION} ({settings.ENV})")

    http_client = httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS)
    wire_services(app, http_client)
    app.state.rate_limiter, redis_client = build_rate_limiter()
    app.state.rate_limit_backend = "redis" if redis_client is not None else "memory"
    logger.info(f"Rate limiting: {settings.API_RATE_LIMIT} requests per {settings.RATE_LIMIT_WINDOW_SECONDS}s "
                f"({app.state.rate_limit_backend} store)")

    yield

    # Application shutdown
    logger.info("Application shutdown: Cleaning up resources.")
    await http_client.aclose()
    if redis_client is not None:
        await redis_client.aclose()


# --- FastAPI Application Initialization ---
app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    description=settings.BRIEF_DESCRIPTION,
    lifespan=lifespan,
)

app.add_middleware(LoggingMiddleware)

# --- API Routes ---
app.include_router(api_router, prefix="/api")


# --- Health Check Endpoint ---
@app.get("/health", status_code=status.HTTP_200_OK)
async def health_check(request: Request):
    return {
        "status": "ok",
        "rateLimitStore": getattr(request.app.state, "rate_limit_backend", "memory"),
    }


# --- Global Exception Handler (for unhandled errors) ---
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    error_id = str(uuid.uuid4())
    logger.error(f"Unhandled exception (ID: {error_id}): {exc}", exc_info=True)
    return error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "An unexpected error occurred. Please report this error ID.",
        time.perf_counter(),
        error_id=error_id,
    )
