"""
Staleness filtering, distance enrichment, relevance scoring and sorting.

The relevance score is additive over independent signals:
- time until start, in discrete bands
- distance, falling linearly to zero at the search radius
- free entry bonus, sold-out penalty
- image and description completeness
- log-scaled "going" count
- fixed per-source trust bonus
"""

import math
from datetime import datetime, timedelta
from typing import Optional

from .config import RankingConfig
from .geo import distance_to
from .models import CanonicalEvent, SortStrategy

# Sorts undated / unknown-distance events after everything else
_FAR_FUTURE = float("inf")


def filter_stale(
    events: list[CanonicalEvent], now: datetime, grace: timedelta
) -> list[CanonicalEvent]:
    """Drop events that started before ``now - grace``; keep undated ones."""
    cutoff = now - grace
    return [e for e in events if e.start is None or e.start >= cutoff]


def enrich_distances(events: list[CanonicalEvent], lat: float, lng: float) -> None:
    for event in events:
        event.distance_km = distance_to(lat, lng, event.venue.latitude, event.venue.longitude)


def time_score(start: Optional[datetime], now: datetime, config: RankingConfig) -> float:
    if start is None:
        return config.time_unknown_score
    hours_until = (start - now).total_seconds() / 3600
    # Already started but inside the grace window counts as happening now
    for max_hours, points in config.time_bands:
        if hours_until <= max_hours:
            return points
    return config.time_far_score


def distance_score(distance_km: Optional[float], radius_km: float, config: RankingConfig) -> float:
    if distance_km is None:
        return config.distance_unknown_score
    if radius_km <= 0:
        return 0.0
    fraction = max(0.0, 1.0 - distance_km / radius_km)
    return config.distance_max_score * fraction


def popularity_score(going_count: Optional[int], config: RankingConfig) -> float:
    if not going_count or going_count <= 0:
        return 0.0
    return min(config.popularity_max_bonus, math.log10(going_count + 1) * config.popularity_scale)


def completeness_score(event: CanonicalEvent, config: RankingConfig) -> float:
    score = config.image_bonus if event.image_url else 0.0
    if event.description:
        score += min(
            config.description_max_bonus,
            len(event.description) / config.description_chars_per_point,
        )
    return score


def score_event(
    event: CanonicalEvent, now: datetime, radius_km: float, config: Optional[RankingConfig] = None
) -> float:
    """Relevance score for one event; expects distance_km already set."""
    config = config or RankingConfig()
    score = time_score(event.start, now, config)
    score += distance_score(event.distance_km, radius_km, config)
    if event.pricing.is_free:
        score += config.free_bonus
    if event.is_sold_out:
        score -= config.sold_out_penalty
    score += completeness_score(event, config)
    score += popularity_score(event.going_count, config)
    score += config.source_trust.get(event.source, 0.0)
    return round(score, 3)


def score_events(
    events: list[CanonicalEvent], now: datetime, radius_km: float, config: Optional[RankingConfig] = None
) -> None:
    for event in events:
        event.score = score_event(event, now, radius_km, config)


def _start_key(event: CanonicalEvent) -> float:
    return event.start.timestamp() if event.start is not None else _FAR_FUTURE


def _distance_key(event: CanonicalEvent) -> float:
    return event.distance_km if event.distance_km is not None else _FAR_FUTURE


SORT_KEYS = {
    SortStrategy.RECOMMENDED: lambda e: (-e.score, _start_key(e), e.id),
    SortStrategy.SOONEST: lambda e: (_start_key(e), e.id),
    SortStrategy.NEAREST: lambda e: (_distance_key(e), _start_key(e), e.id),
    SortStrategy.POPULAR: lambda e: (-(e.going_count or 0), _start_key(e), e.id),
}


def sort_events(events: list[CanonicalEvent], strategy: SortStrategy) -> list[CanonicalEvent]:
    """Order events by the chosen strategy; id is the final tiebreak."""
    return sorted(events, key=SORT_KEYS[SortStrategy(strategy)])
