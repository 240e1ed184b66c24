from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from typing import List, Optional
import re

# "AppName (someone@example.com)" or "AppName (https://example.com/contact)"
_CONTACT_PATTERN = re.compile(r"\(([^()\s]+@[^()\s]+|https?://[^()\s]+)\)")


class Settings(BaseSettings):
    PROJECT_NAME: str = "GuessTheSpot"
    VERSION: str = "1.0.0"
    BRIEF_DESCRIPTION: str = "Random real-world locations with a nearby photograph, for a geography guessing game."

    ENV: str = Field("development", description="Application environment (e.g., production, development)")
    LOG_LEVEL: str = Field("INFO", description="Root log level")

    # --- Upstream providers ---
    NOMINATIM_BASE_URL: str = Field("https://nominatim.openstreetmap.org", description="Nominatim geocoding base URL")
    NOMINATIM_USER_AGENT: str = Field(
        "GuessTheSpot (contact@example.com)",
        description="Identifying User-Agent with a contact address, required by the Nominatim usage policy",
    )
    NOMINATIM_REFERER: str = Field("https://guessthespot.app", description="Referer sent to Nominatim")
    REST_COUNTRIES_API_URL: str = Field("https://restcountries.com/v3.1/all", description="REST Countries list endpoint")
    WIKIMEDIA_BASE_URL: str = Field("https://commons.wikimedia.org/w/api.php", description="Wikimedia Commons API endpoint")
    WIKIMEDIA_USER_AGENT: str = Field("GuessTheSpot (contact@example.com)", description="User-Agent for Wikimedia and Openverse")
    WIKIMEDIA_REFERER: str = Field("https://guessthespot.app", description="Referer for Wikimedia and Openverse")
    OPENVERSE_BASE_URL: str = Field("https://api.openverse.org/v1/images", description="Openverse image search endpoint")

    # --- Shared HTTP retry policy ---
    HTTP_TIMEOUT_SECONDS: float = 10.0
    HTTP_MAX_RETRIES: int = 3
    HTTP_BACKOFF_SECONDS: float = 1.0
    NOMINATIM_BACKOFF_SECONDS: float = 2.0

    # --- Location sampling ---
    NOMINATIM_POLITENESS_DELAY: float = 1.5
    SAMPLING_MAX_ATTEMPTS: int = 5
    SAMPLING_ERROR_COOLDOWN: float = 2.0
    SAMPLING_EMPTY_DELAY: float = 1.0

    # --- Image acquisition ---
    WIKIMEDIA_RADIUS_DELAY: float = 1.0
    OPENVERSE_QUERY_DELAY: float = 0.5
    ACQUISITION_MAX_CONSECUTIVE_FAILURES: int = 50
    ACQUISITION_BASE_DELAY: float = 2.0
    ACQUISITION_FAILURE_INCREMENT: float = 1.0
    ACQUISITION_MAX_PROGRESSIVE_DELAY: float = 10.0
    ACQUISITION_ERROR_BASE_DELAY: float = 5.0
    ACQUISITION_ERROR_INCREMENT: float = 2.0
    ACQUISITION_MAX_ERROR_PROGRESSIVE_DELAY: float = 25.0

    # --- Request handling ---
    DEFAULT_RADIUS: int = Field(5000, description="Default image search radius in meters")
    MIN_RADIUS: int = 100
    MAX_RADIUS: int = 50000
    DEFAULT_MAX_RETRIES: int = 3
    MIN_MAX_RETRIES: int = 1
    MAX_MAX_RETRIES: int = 10
    ROUND_RETRY_BASE_DELAY: float = 1.0
    VALID_CONTINENTS: List[str] = ["Africa", "Americas", "Asia", "Europe", "Oceania", "Antarctica"]

    # --- Rate limiting ---
    API_RATE_LIMIT: int = Field(100, description="Requests allowed per client per window")
    RATE_LIMIT_WINDOW_SECONDS: int = Field(3600, description="Rate limit window (1 hour)")
    ENABLE_REDIS: bool = Field(False, description="Feature flag for the Redis rate-limit store")
    REDIS_URL: Optional[str] = Field(None, description="Redis URL for shared rate-limit counters")

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore"
    )

    @field_validator("NOMINATIM_USER_AGENT")
    @classmethod
    def _require_contact(cls, value: str) -> str:
        """Nominatim blocks clients that do not identify themselves with a contact."""
        if not _CONTACT_PATTERN.search(value):
            raise ValueError(
                "NOMINATIM_USER_AGENT must name the application and a contact, e.g. 'MyApp (me@example.com)'"
            )
        return value


settings = Settings()
