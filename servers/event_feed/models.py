"""
Pydantic models for event data structures.

These models define the core data types used throughout the feed:
- Venue, EventDateTime, Pricing: parts of a normalized event
- CanonicalEvent: one event from any provider, in the shared schema
- PageResult / SourceBatch: what adapters hand back to the pipeline
- FeedQuery / FeedResult: the pipeline's inbound query and outbound result
"""

import math
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, computed_field

from .errors import QueryValidationError


class EventSource(str, Enum):
    """Known event providers."""

    TICKETMASTER = "ticketmaster"
    SKIDDLE = "skiddle"
    EVENTBRITE = "eventbrite"

    @property
    def prefix(self) -> str:
        """Namespace prefix used in canonical event ids."""
        return SOURCE_PREFIXES[self]

    @property
    def priority(self) -> int:
        """Dedup rank; lower wins."""
        return SOURCE_PRIORITY[self]


SOURCE_PREFIXES = {
    EventSource.TICKETMASTER: "tm",
    EventSource.SKIDDLE: "sk",
    EventSource.EVENTBRITE: "eb",
}

# Data quality order used when the same event appears on several providers
SOURCE_PRIORITY = {
    EventSource.TICKETMASTER: 1,
    EventSource.SKIDDLE: 2,
    EventSource.EVENTBRITE: 3,
}


class SortStrategy(str, Enum):
    """Orderings the pipeline can return."""

    RECOMMENDED = "recommended"
    SOONEST = "soonest"
    NEAREST = "nearest"
    POPULAR = "popular"


class Venue(BaseModel):
    """Represents a venue/location for events."""

    name: str = "Venue TBA"
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    address: Optional[str] = None

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


class EventDateTime(BaseModel):
    """Start/end times, always UTC-aware when known."""

    start: Optional[datetime] = None
    end: Optional[datetime] = None
    timezone: str = "Europe/London"
    doors_open: Optional[str] = None
    is_time_tba: bool = False
    is_multi_day: bool = False


class Pricing(BaseModel):
    """Ticket pricing. min_price None means unknown, not free."""

    is_free: bool = False
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    currency: str = "GBP"


class CanonicalEvent(BaseModel):
    """Represents a single event normalized from any provider."""

    # Identity
    id: str  # "<prefix>_<provider id>"
    source: EventSource

    # Core event info
    name: str
    description: str = ""

    venue: Venue = Field(default_factory=Venue)
    timing: EventDateTime = Field(default_factory=EventDateTime)
    pricing: Pricing = Field(default_factory=Pricing)

    # Classification
    categories: list[str] = Field(default_factory=list)
    genre: Optional[str] = None

    # Details
    ticket_url: Optional[str] = None
    image_url: Optional[str] = None
    is_sold_out: bool = False
    is_online: bool = False

    # Provider extras
    going_count: Optional[int] = None
    min_age: Optional[int] = None
    artists: list[str] = Field(default_factory=list)

    # Set by the pipeline
    distance_km: Optional[float] = None
    score: float = 0.0

    @property
    def start(self) -> Optional[datetime]:
        return self.timing.start

    @property
    def completeness(self) -> int:
        """Rough count of optional fields that carry data."""
        score = 0
        if self.description:
            score += 2
        if self.image_url:
            score += 1
        if self.ticket_url:
            score += 1
        if self.pricing.min_price is not None or self.pricing.is_free:
            score += 1
        if self.venue.has_coordinates:
            score += 1
        return score


class PageResult(BaseModel):
    """One page of normalized events from a single provider."""

    events: list[CanonicalEvent] = Field(default_factory=list)
    next_page_token: Optional[int] = None
    total_available: Optional[int] = None


class FetchStats(BaseModel):
    """Statistics from a fetch operation."""

    source: str
    count: int
    status: str  # success, partial, error, skipped
    pages_requested: int = 0
    pages_failed: int = 0
    duration_ms: Optional[int] = None
    error_message: Optional[str] = None


class SourceBatch(BaseModel):
    """Everything one adapter contributed to a pipeline run."""

    events: list[CanonicalEvent] = Field(default_factory=list)
    stats: FetchStats
    next_page_token: Optional[int] = None
    total_available: Optional[int] = None


class FeedQuery(BaseModel):
    """Inbound query, validated before any network call."""

    latitude: float
    longitude: float
    radius_km: float = 30.0
    pages_to_fetch: int = 3
    start_page: int = 0
    sort: SortStrategy = SortStrategy.RECOMMENDED

    @classmethod
    def build(
        cls,
        latitude: Any,
        longitude: Any,
        radius_km: Any = 30.0,
        pages_to_fetch: Any = 3,
        start_page: Any = 0,
        sort: Any = SortStrategy.RECOMMENDED,
    ) -> "FeedQuery":
        """Validate raw inputs and build a query.

        Raises:
            QueryValidationError: If any value is missing or out of range
        """
        lat = _require_number("latitude", latitude)
        lng = _require_number("longitude", longitude)
        radius = _require_number("radius_km", radius_km)

        if not -90 <= lat <= 90:
            raise QueryValidationError("latitude", "must be between -90 and 90")
        if not -180 <= lng <= 180:
            raise QueryValidationError("longitude", "must be between -180 and 180")
        if not 1 <= radius <= 200:
            raise QueryValidationError("radius_km", "must be between 1 and 200 km")

        if isinstance(pages_to_fetch, bool) or not isinstance(pages_to_fetch, int):
            raise QueryValidationError("pages_to_fetch", "must be an integer")
        if pages_to_fetch < 1:
            raise QueryValidationError("pages_to_fetch", "must be at least 1")
        if isinstance(start_page, bool) or not isinstance(start_page, int):
            raise QueryValidationError("start_page", "must be an integer")
        if start_page < 0:
            raise QueryValidationError("start_page", "must not be negative")

        try:
            strategy = SortStrategy(sort)
        except ValueError:
            raise QueryValidationError("sort", f"unknown sort strategy {sort!r}") from None

        return cls(
            latitude=lat,
            longitude=lng,
            radius_km=radius,
            pages_to_fetch=pages_to_fetch,
            start_page=start_page,
            sort=strategy,
        )

    @property
    def is_initial_page(self) -> bool:
        return self.start_page == 0


def _require_number(field: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise QueryValidationError(field, "must be a number")
    if math.isnan(value) or math.isinf(value):
        raise QueryValidationError(field, "must be a finite number")
    return float(value)


class FeedResult(BaseModel):
    """Ranked, deduplicated events plus pagination metadata."""

    events: list[CanonicalEvent] = Field(default_factory=list)
    has_more: bool = False
    total_available: int = 0
    next_page_token: Optional[int] = None
    from_cache: bool = False
    stats: list[FetchStats] = Field(default_factory=list)

    @computed_field
    @property
    def failed_sources(self) -> list[str]:
        """Sources that errored during this run."""
        return [s.source for s in self.stats if s.status == "error"]


# Shared category vocabulary every adapter maps into
CATEGORIES = {
    "music": "Music & Concerts",
    "nightlife": "Nightlife & Clubs",
    "culture": "Arts, Theatre & Culture",
    "entertainment": "Entertainment",
    "food": "Food & Drink",
    "active": "Sports & Fitness",
    "family": "Family & Kids",
    "nature": "Outdoors",
    "shopping": "Fashion & Shopping",
    "unique": "Something Different",
    "other": "Other",
}

DEFAULT_CATEGORY = "entertainment"


class DuplicateMatch(BaseModel):
    """Records a duplicate match for audit trail."""

    kept_event_id: str
    merged_event_id: str
    match_type: str  # id, primary, fuzzy
    key: str
    name_similarity: float
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
