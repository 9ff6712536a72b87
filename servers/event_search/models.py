"""
Pydantic models for event search data structures.

These models define the core data types shared by adapters, the
aggregator and the cache:
- CanonicalEvent: normalized event record every adapter produces
- SearchParams: validated input to a search
- SearchResult: response envelope with provenance metadata
- FetchStats: per-provider outcome of a single fetch
- DedupeResult: result of fuzzy deduplication with audit trail
"""

import json
from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel


MAX_PAGE_SIZE = 100
MAX_RADIUS_MILES = 100.0
DEFAULT_PAGE_SIZE = 20

SortOrder = Literal["date", "distance", "popularity", "price", "alphabetical", "relevance"]
FetchStatus = Literal["success", "error", "skipped"]


class ApiModel(BaseModel):
    """Base model serialized with camelCase keys for API consumers."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_api(self) -> dict[str, Any]:
        """Dump using the camelCase wire names."""
        return self.model_dump(mode="json", by_alias=True)


class Coordinates(ApiModel):
    """Latitude/longitude pair in decimal degrees."""

    lat: float
    lng: float

    @classmethod
    def parse(cls, value: str) -> Optional["Coordinates"]:
        """Parse a "lat,lng" string, returning None when it isn't one."""
        parts = [p.strip() for p in value.split(",")]
        if len(parts) != 2:
            return None
        try:
            lat, lng = float(parts[0]), float(parts[1])
        except ValueError:
            return None
        if not (-90 <= lat <= 90 and -180 <= lng <= 180):
            return None
        return cls(lat=lat, lng=lng)


class Organizer(ApiModel):
    name: str = "Event Organizer"
    avatar: str = "/avatar-1.png"


class TicketLink(ApiModel):
    source: str
    link: str


class CanonicalEvent(ApiModel):
    """Normalized, provider-agnostic event record."""

    model_config = ConfigDict(frozen=True)

    id: int
    title: str
    description: str = "No description available."
    category: str = "Event"
    date: str = "Date TBA"  # "July 1, 2024"
    time: str = "Time TBA"  # "7:00 PM"
    location: str = "Venue TBA"
    address: str = "Address TBA"
    price: str = "Price TBA"  # "Free", "$25", "$25 - $50"
    image: str = "/community-event.png"
    organizer: Organizer = Field(default_factory=Organizer)
    attendees: int = 0
    attendees_estimated: bool = False  # True when attendees was synthesized
    is_favorite: bool = False
    coordinates: Optional[Coordinates] = None
    ticket_links: list[TicketLink] = Field(default_factory=list)

    # Provenance
    source: Optional[str] = None  # ticketmaster, eventbrite, predicthq, rapidapi
    external_id: Optional[str] = None  # "<source>:<native id>"
    starts_at: Optional[datetime] = None  # venue-local wall time

    @field_validator("price")
    @classmethod
    def _price_never_empty(cls, value: str) -> str:
        return value.strip() or "Price TBA"

    @computed_field
    @property
    def dedup_key(self) -> str:
        """Composite identity used to recognize the same event across providers."""
        return f"{self.title.lower()}-{self.date}-{self.location.lower()}"


class PriceRange(ApiModel):
    min: float = 0
    max: Optional[float] = None  # None means unbounded


class DateRange(ApiModel):
    start: datetime
    end: datetime


class SearchParams(ApiModel):
    """Validated search request.

    ``size`` is clamped to 1..100 and ``radius`` (miles) to at most 100.
    A ``location`` of the form "lat,lng" also fills ``coordinates``.
    """

    keyword: Optional[str] = None
    location: Optional[str] = None
    coordinates: Optional[Coordinates] = None
    radius: Optional[float] = None
    start_date_time: Optional[datetime] = None
    end_date_time: Optional[datetime] = None
    categories: list[str] = Field(default_factory=list)
    page: int = Field(default=0, ge=0)
    size: int = DEFAULT_PAGE_SIZE
    sort: SortOrder = "date"
    price_range: Optional[PriceRange] = None
    date_range: Optional[DateRange] = None

    @field_validator("size")
    @classmethod
    def _clamp_size(cls, value: int) -> int:
        return max(1, min(value, MAX_PAGE_SIZE))

    @field_validator("radius")
    @classmethod
    def _cap_radius(cls, value: Optional[float]) -> Optional[float]:
        if value is None:
            return None
        if value < 0:
            raise ValueError("radius must not be negative")
        return min(value, MAX_RADIUS_MILES)

    @model_validator(mode="after")
    def _coordinates_from_location(self) -> "SearchParams":
        if self.coordinates is None and self.location:
            self.coordinates = Coordinates.parse(self.location)
        return self

    def cache_key(self) -> str:
        """Deterministic cache key, independent of field insertion order."""
        payload = self.model_dump(mode="json", by_alias=True, exclude_none=True)
        return "events_search:" + json.dumps(payload, sort_keys=True, separators=(",", ":"))


class FilterOptions(ApiModel):
    """Facets available for the current result set."""

    categories: list[str] = Field(default_factory=list)
    price_ranges: list[str] = Field(default_factory=list)
    locations: list[str] = Field(default_factory=list)


class SearchResult(ApiModel):
    """Response envelope for a search."""

    events: list[CanonicalEvent] = Field(default_factory=list)
    total_count: int = 0
    page: int = 0
    total_pages: int = 0
    sources: list[str] = Field(default_factory=list)
    error: Optional[str] = None
    warnings: list[str] = Field(default_factory=list)
    cached: bool = False
    response_time: int = 0  # milliseconds
    filters: Optional[FilterOptions] = None


class FetchStats(BaseModel):
    """Statistics from a fetch operation."""

    source: str
    count: int = 0
    status: FetchStatus
    duration_ms: Optional[int] = None
    error_message: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.status == "error"


class DuplicateMatch(BaseModel):
    """Records a duplicate match for audit trail."""

    kept_event_id: int
    merged_event_id: int
    similarity_score: float
    title_similarity: float
    venue_similarity: float
    date_similarity: float
    time_similarity: float
    location_similarity: float
    reason: str


class DedupeResult(BaseModel):
    """Result of deduplication with audit trail."""

    events: list[CanonicalEvent]
    original_count: int
    duplicates_removed: int
    audit_trail: list[DuplicateMatch] = Field(default_factory=list)

    @computed_field
    @property
    def dedup_rate(self) -> float:
        """Percentage of events that were duplicates."""
        if self.original_count == 0:
            return 0.0
        return self.duplicates_removed / self.original_count * 100
