"""
Configuration for the event feed.

Settings are plain pydantic models so each component can be built with its
own config in tests. FeedSettings.from_env() reads credentials and overrides
from the environment:

- TICKETMASTER_API_KEY, SKIDDLE_API_KEY, EVENTBRITE_TOKEN
- EVENT_FEED_REQUEST_TIMEOUT, EVENT_FEED_CACHE_TTL, EVENT_FEED_GRACE_PERIOD
- EVENT_FEED_BREAKER_THRESHOLD, EVENT_FEED_BREAKER_COOLDOWN
"""

import os
from typing import Optional

from pydantic import BaseModel, Field

from .models import EventSource


class BreakerConfig(BaseModel):
    """Circuit breaker thresholds."""

    failure_threshold: int = Field(default=3, ge=1)
    recovery_timeout: float = Field(default=300.0, ge=0)  # seconds
    half_open_max_probes: int = Field(default=1, ge=1)


class RateLimitConfig(BaseModel):
    """Outbound request ceilings for one source."""

    requests_per_second: int = Field(default=2, ge=1)
    requests_per_minute: int = Field(default=30, ge=1)


DEFAULT_RATE_LIMITS: dict[EventSource, RateLimitConfig] = {
    EventSource.TICKETMASTER: RateLimitConfig(requests_per_second=4, requests_per_minute=50),
    EventSource.SKIDDLE: RateLimitConfig(requests_per_second=2, requests_per_minute=30),
    EventSource.EVENTBRITE: RateLimitConfig(requests_per_second=2, requests_per_minute=30),
}


class DedupConfig(BaseModel):
    """Knobs for primary and fuzzy duplicate detection.

    The fuzzy word filter is a heuristic, so every threshold is adjustable.
    """

    location_precision: int = 2  # decimal places, ~1.1km at the equator
    fuzzy_word_count: int = Field(default=3, ge=1)
    fuzzy_min_word_length: int = Field(default=3, ge=1)
    fuzzy_min_significant_words: int = Field(default=1, ge=1)
    stopwords: frozenset[str] = frozenset(
        {"the", "and", "for", "with", "from", "feat", "featuring", "presents", "live", "tonight"}
    )


class RankingConfig(BaseModel):
    """Weights for the additive relevance score."""

    # (max hours until start, points); first matching band wins
    time_bands: list[tuple[float, float]] = [
        (6, 30.0),
        (24, 25.0),
        (72, 20.0),
        (168, 15.0),
        (336, 10.0),
    ]
    time_far_score: float = 5.0
    time_unknown_score: float = 3.0
    distance_max_score: float = 25.0
    distance_unknown_score: float = 5.0
    free_bonus: float = 10.0
    sold_out_penalty: float = 20.0
    image_bonus: float = 5.0
    description_chars_per_point: int = 30
    description_max_bonus: float = 5.0
    popularity_scale: float = 5.0
    popularity_max_bonus: float = 15.0
    source_trust: dict[EventSource, float] = {
        EventSource.TICKETMASTER: 3.0,
        EventSource.SKIDDLE: 2.0,
        EventSource.EVENTBRITE: 1.0,
    }


class FeedSettings(BaseModel):
    """Top-level settings shared by the controller, adapters and pipeline."""

    request_timeout: float = Field(default=10.0, gt=0)  # seconds, per provider call
    fan_out_timeout: float = Field(default=30.0, gt=0)  # seconds, whole adapter batch
    cache_ttl: float = Field(default=15 * 60, ge=0)  # seconds
    cache_max_entries: int = Field(default=32, ge=1)
    grace_period: float = Field(default=3 * 60 * 60, ge=0)  # seconds after start
    page_size: int = Field(default=50, ge=1, le=200)
    search_window_days: int = Field(default=28, ge=1)
    pages_to_fetch: int = Field(default=3, ge=1)

    breaker: BreakerConfig = Field(default_factory=BreakerConfig)
    rate_limits: dict[EventSource, RateLimitConfig] = Field(
        default_factory=lambda: dict(DEFAULT_RATE_LIMITS)
    )
    dedup: DedupConfig = Field(default_factory=DedupConfig)
    ranking: RankingConfig = Field(default_factory=RankingConfig)

    ticketmaster_api_key: Optional[str] = None
    skiddle_api_key: Optional[str] = None
    eventbrite_token: Optional[str] = None

    def rate_limit_for(self, source: str) -> RateLimitConfig:
        """Get the rate limit config for a source, falling back to defaults."""
        try:
            return self.rate_limits.get(EventSource(source), RateLimitConfig())
        except ValueError:
            return RateLimitConfig()

    @classmethod
    def from_env(cls) -> "FeedSettings":
        """Build settings from environment variables."""
        breaker = BreakerConfig(
            failure_threshold=int(os.environ.get("EVENT_FEED_BREAKER_THRESHOLD", 3)),
            recovery_timeout=float(os.environ.get("EVENT_FEED_BREAKER_COOLDOWN", 300)),
        )
        return cls(
            request_timeout=float(os.environ.get("EVENT_FEED_REQUEST_TIMEOUT", 10)),
            cache_ttl=float(os.environ.get("EVENT_FEED_CACHE_TTL", 15 * 60)),
            grace_period=float(os.environ.get("EVENT_FEED_GRACE_PERIOD", 3 * 60 * 60)),
            breaker=breaker,
            ticketmaster_api_key=os.environ.get("TICKETMASTER_API_KEY") or None,
            skiddle_api_key=os.environ.get("SKIDDLE_API_KEY") or None,
            eventbrite_token=os.environ.get("EVENTBRITE_TOKEN") or None,
        )
