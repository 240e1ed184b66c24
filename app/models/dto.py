from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import ClassVar, List, Optional, Tuple


class CamelModel(BaseModel):
    """Base model serialized with camelCase keys, accepting snake_case on input."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Geography ---

class Country(CamelModel):
    """A country entry from the REST Countries catalog."""
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Common name.")
    official_name: Optional[str] = Field(None, description="Official name.")
    region: str = Field(..., description="Region (continent), e.g. 'Europe'.")
    subregion: Optional[str] = Field(None, description="Subregion, e.g. 'Western Europe'.")
    center: Optional[Tuple[float, float]] = Field(None, description="Approximate center (lat, lon).")
    cca2: str = Field(..., description="ISO 3166-1 alpha-2 code.")


class BoundingBox(BaseModel):
    """Rectangular envelope of a region, in degrees."""
    min_lon: float
    min_lat: float
    max_lon: float
    max_lat: float

    def contains(self, lat: float, lon: float) -> bool:
        return self.min_lat <= lat <= self.max_lat and self.min_lon <= lon <= self.max_lon


class Address(CamelModel):
    """Structured address block as returned by Nominatim. Unknown keys are kept."""
    model_config = ConfigDict(extra="allow")

    house_number: Optional[str] = None
    road: Optional[str] = None
    suburb: Optional[str] = None
    city: Optional[str] = None
    town: Optional[str] = None
    village: Optional[str] = None
    county: Optional[str] = None
    state: Optional[str] = None
    postcode: Optional[str] = None
    country: Optional[str] = None
    country_code: Optional[str] = None

    # Any one of these makes a coordinate count as populated.
    POPULATED_FIELDS: ClassVar[Tuple[str, ...]] = ("city", "town", "village", "suburb", "road", "country")

    def is_populated(self) -> bool:
        return any(getattr(self, name) for name in self.POPULATED_FIELDS)


class Location(CamelModel):
    """A resolved real-world point with its reverse-geocoded details."""
    lat: float
    lon: float
    country: Optional[str] = None
    state: Optional[str] = None
    city: Optional[str] = Field(None, description="City, town or village; null when none applies.")
    local_name: Optional[str] = Field(None, description="Road, house number or first display segment.")
    display_name: str
    place_id: Optional[int] = None
    osm_type: Optional[str] = None
    osm_id: Optional[int] = None
    place_rank: Optional[int] = None
    category: Optional[str] = None
    type: Optional[str] = None
    importance: Optional[float] = None
    address: Address = Field(default_factory=Address)
    bounding_box: Optional[List[float]] = Field(None, description="[minLat, maxLat, minLon, maxLon]")

    def is_populated(self) -> bool:
        return self.address.is_populated()


# --- Images ---

class PhotoCoordinates(CamelModel):
    lat: float
    lon: float
    primary: Optional[bool] = None
    globe: Optional[str] = None


class Photo(CamelModel):
    """A usable photograph near a location, normalized from either image provider."""
    id: int
    lat: float
    lng: float
    fileurl: str = Field(..., min_length=1)
    title: Optional[str] = None
    description: Optional[str] = None
    author: Optional[str] = None
    license: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    size: Optional[int] = None
    timestamp: Optional[str] = None
    page_id: Optional[int] = None
    namespace: Optional[int] = None
    coordinates: Optional[PhotoCoordinates] = None
    provider: str = Field(..., description="'wikimedia' or 'openverse'.")


class SearchQuery(BaseModel):
    """One keyword-search attempt; exact queries are sent as a quoted phrase."""
    model_config = ConfigDict(frozen=True)

    text: str
    exact_match: bool = False

    def formatted(self) -> str:
        return f'"{self.text}"' if self.exact_match else self.text


# --- Scoring ---

class GuessRequest(CamelModel):
    """Request body for the /api/guess endpoint."""
    guess_lat: float = Field(..., ge=-90, le=90)
    guess_lon: float = Field(..., ge=-180, le=180)
    actual_lat: float = Field(..., ge=-90, le=90)
    actual_lon: float = Field(..., ge=-180, le=180)


class GuessResult(CamelModel):
    distance: float = Field(..., description="Distance between guess and truth in kilometers.")
    score: float = Field(..., description="Score from 1 to 10.")
    percentage: float = Field(..., description="Score from 0 to 100.")
    correct_location: Tuple[float, float]
    player_guess: Tuple[float, float]


# --- API Request / Response Models ---

class LocationRequest(BaseModel):
    """Validated query parameters of /api/location-image."""
    continent: Optional[str] = None
    country: Optional[str] = None
    include_image: bool = True
    image_radius: int = 5000
    max_retries: int = 3


class ResponseMetadata(CamelModel):
    timestamp: str
    processing_time_ms: int
    version: str
    retries: Optional[int] = None


class LocationImageData(CamelModel):
    location: Location
    image: Optional[Photo] = None


class LocationImageResponse(CamelModel):
    success: bool = True
    data: LocationImageData
    metadata: ResponseMetadata


class ReverseLookupData(CamelModel):
    location: Location


class ReverseLookupResponse(CamelModel):
    success: bool = True
    data: ReverseLookupData
    metadata: ResponseMetadata


class ErrorResponse(CamelModel):
    """Standardized error envelope."""
    success: bool = False
    error: str = Field(..., description="A human-readable explanation.")
    metadata: ResponseMetadata
    error_id: Optional[str] = Field(None, description="Identifier of an unexpected failure in the logs.")
    retry_after_seconds: Optional[int] = Field(None, description="Time until retry is allowed (for rate-limiting).")
