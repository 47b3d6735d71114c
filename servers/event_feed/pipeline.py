"""
Aggregation pipeline: the single entry point callers use.

get_events() validates the query, serves the initial page from a short-lived
cache, otherwise fans out to every adapter concurrently, then merges,
deduplicates, drops stale events, scores, sorts and caches the result.

Provider failures only shrink the result; the one caller-visible error is
QueryValidationError for bad input.
"""

import asyncio
import time
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

import structlog

from .cache import TTLCache, make_cache_key
from .config import FeedSettings
from .dedup import deduplicate, format_audit_summary
from .models import (
    CanonicalEvent,
    FeedQuery,
    FeedResult,
    FetchStats,
    SortStrategy,
    SourceBatch,
)
from .ranking import enrich_distances, filter_stale, score_events, sort_events
from .resilience import HealthMonitor, ResilienceController
from .sources import SourceAdapter, build_adapters
from .sources.base import utc_now

logger = structlog.get_logger()


class EventFeedPipeline:
    """Owns the adapters, the result cache and source health for one feed."""

    def __init__(
        self,
        settings: Optional[FeedSettings] = None,
        controller: Optional[ResilienceController] = None,
        adapters: Optional[list[SourceAdapter]] = None,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = utc_now,
    ):
        self.settings = settings or (controller.settings if controller else FeedSettings())
        self.controller = controller or ResilienceController(self.settings, clock=clock)
        self.adapters = (
            adapters if adapters is not None else build_adapters(self.controller, self.settings)
        )
        self.cache: TTLCache[FeedResult] = TTLCache(
            ttl_seconds=self.settings.cache_ttl,
            max_entries=self.settings.cache_max_entries,
            clock=clock,
        )
        self.health = HealthMonitor()
        self._now = now

    async def __aenter__(self) -> "EventFeedPipeline":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.controller.aclose()

    async def get_events(
        self,
        lat: float,
        lng: float,
        radius_km: float = 30.0,
        pages_to_fetch: Optional[int] = None,
        start_page: int = 0,
        sort: SortStrategy = SortStrategy.RECOMMENDED,
    ) -> FeedResult:
        """
        Fetch ranked, deduplicated events around a location.

        Args:
            lat: Latitude, -90 to 90
            lng: Longitude, -180 to 180
            radius_km: Search radius, 1 to 200 km
            pages_to_fetch: Pages requested per source (default from settings)
            start_page: First page index; 0 is the cacheable initial load
            sort: recommended, soonest, nearest or popular

        Returns:
            FeedResult, possibly with no events

        Raises:
            QueryValidationError: If the query is out of range
        """
        query = FeedQuery.build(
            lat,
            lng,
            radius_km,
            pages_to_fetch if pages_to_fetch is not None else self.settings.pages_to_fetch,
            start_page,
            sort,
        )
        cache_key = make_cache_key(query.latitude, query.longitude, query.radius_km)

        if query.is_initial_page:
            cached = self.cache.get(cache_key)
            if cached is not None:
                logger.info("feed_cache_hit", cache_key=cache_key, count=len(cached.events))
                return self._from_cache(cached, query.sort)

        batches = await asyncio.gather(*(self._fetch_source(a, query) for a in self.adapters))
        result = self._build_result(query, batches)

        if query.is_initial_page:
            if not result.events and self._any_circuit_open():
                stale = self.cache.get(cache_key, allow_stale=True)
                if stale is not None:
                    logger.warning("feed_serving_stale", cache_key=cache_key, count=len(stale.events))
                    return self._from_cache(stale, query.sort)
            self.cache.set(cache_key, result)

        logger.info(
            "feed_built",
            cache_key=cache_key,
            start_page=query.start_page,
            count=len(result.events),
            failed_sources=result.failed_sources,
        )
        return result

    async def _fetch_source(self, adapter: SourceAdapter, query: FeedQuery) -> SourceBatch:
        """Run one adapter; any failure becomes an empty batch."""
        try:
            batch = await asyncio.wait_for(
                adapter.fetch_events(
                    query.latitude,
                    query.longitude,
                    query.radius_km,
                    pages_to_fetch=query.pages_to_fetch,
                    start_page=query.start_page,
                ),
                timeout=self.settings.fan_out_timeout,
            )
        except asyncio.TimeoutError:
            batch = _failed_batch(adapter.name, f"timed out after {self.settings.fan_out_timeout}s")
        except Exception as e:
            logger.exception("source_fetch_failed", source=adapter.name)
            batch = _failed_batch(adapter.name, str(e) or type(e).__name__)

        self.health.record(batch.stats)
        return batch

    def _build_result(self, query: FeedQuery, batches: list[SourceBatch]) -> FeedResult:
        merged: list[CanonicalEvent] = [event for batch in batches for event in batch.events]
        deduped = deduplicate(merged, self.settings.dedup)
        if deduped.duplicates_removed:
            logger.debug(
                "feed_deduplicated",
                original=deduped.original_count,
                removed=deduped.duplicates_removed,
                summary=format_audit_summary(deduped),
            )

        now = self._now()
        events = filter_stale(deduped.events, now, timedelta(seconds=self.settings.grace_period))
        enrich_distances(events, query.latitude, query.longitude)
        score_events(events, now, query.radius_km, self.settings.ranking)
        events = sort_events(events, query.sort)

        has_more = any(batch.next_page_token is not None for batch in batches)
        total = sum(
            batch.total_available if batch.total_available is not None else len(batch.events)
            for batch in batches
        )
        return FeedResult(
            events=events,
            has_more=has_more,
            total_available=max(total, len(events)),
            next_page_token=query.start_page + query.pages_to_fetch if has_more else None,
            stats=[batch.stats for batch in batches],
        )

    def _from_cache(self, cached: FeedResult, sort: SortStrategy) -> FeedResult:
        return cached.model_copy(
            update={"events": sort_events(cached.events, sort), "from_cache": True}
        )

    def _any_circuit_open(self) -> bool:
        return any(self.controller.is_open(adapter.name) for adapter in self.adapters)

    def get_source_status(self) -> dict[str, Any]:
        """Health of each source plus its breaker and limiter state."""
        report = self.health.get_status()
        report["unhealthy_sources"] = self.health.get_unhealthy_sources()
        report["circuits"] = self.controller.get_status()
        return report


def _failed_batch(source: str, message: str) -> SourceBatch:
    return SourceBatch(
        stats=FetchStats(source=source, count=0, status="error", error_message=message)
    )
