"""Tests for the aggregation pipeline."""

import asyncio
import copy
from datetime import timedelta
from typing import Optional
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from structlog.testing import capture_logs

from servers.event_feed.config import FeedSettings
from servers.event_feed.errors import ProviderError, QueryValidationError
from servers.event_feed.models import EventSource, FetchStats, SourceBatch, Venue
from servers.event_feed.pipeline import EventFeedPipeline
from servers.event_feed.resilience import ResilienceController

LAT, LNG = 53.4808, -2.2426


def _batch(source: str, events: list, next_page_token: Optional[int] = None, total=None) -> SourceBatch:
    return SourceBatch(
        events=events,
        stats=FetchStats(source=source, count=len(events), status="success"),
        next_page_token=next_page_token,
        total_available=total,
    )


def _adapter(name: str, batch: Optional[SourceBatch] = None, side_effect=None) -> MagicMock:
    adapter = MagicMock()
    adapter.name = name
    adapter.fetch_events = AsyncMock(return_value=batch or _batch(name, []), side_effect=side_effect)
    return adapter


@pytest.fixture
def make_pipeline(settings, clock, fixed_now):
    def factory(adapters, feed_settings: Optional[FeedSettings] = None) -> EventFeedPipeline:
        feed_settings = feed_settings or settings
        controller = ResilienceController(feed_settings, clock=clock)
        return EventFeedPipeline(
            feed_settings, controller=controller, adapters=adapters, clock=clock, now=fixed_now
        )

    return factory


class TestGetEvents:
    """Tests for EventFeedPipeline.get_events."""

    @pytest.mark.asyncio
    async def test_merges_scores_and_sorts(self, make_pipeline, make_event):
        tm = _adapter("ticketmaster", _batch("ticketmaster", [make_event("tm_1", "Jazz Brunch")]))
        sk = _adapter(
            "skiddle",
            _batch("skiddle", [make_event("sk_1", "Warehouse Project", source=EventSource.SKIDDLE)]),
        )
        pipeline = make_pipeline([tm, sk])

        result = await pipeline.get_events(LAT, LNG, radius_km=30)

        assert {e.id for e in result.events} == {"tm_1", "sk_1"}
        assert all(e.distance_km is not None for e in result.events)
        assert all(e.score > 0 for e in result.events)
        scores = [e.score for e in result.events]
        assert scores == sorted(scores, reverse=True)
        assert result.from_cache is False

    @pytest.mark.asyncio
    async def test_passes_query_to_adapters(self, make_pipeline):
        tm = _adapter("ticketmaster")
        pipeline = make_pipeline([tm])

        await pipeline.get_events(LAT, LNG, radius_km=20, pages_to_fetch=2, start_page=4)

        tm.fetch_events.assert_awaited_once_with(LAT, LNG, 20.0, pages_to_fetch=2, start_page=4)

    @pytest.mark.asyncio
    async def test_invalid_query_raises_before_fetching(self, make_pipeline):
        tm = _adapter("ticketmaster")
        pipeline = make_pipeline([tm])

        with pytest.raises(QueryValidationError):
            await pipeline.get_events(95.0, LNG)

        tm.fetch_events.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_never_raises_on_source_failures(self, make_pipeline, make_event):
        tm = _adapter("ticketmaster", side_effect=ProviderError("ticketmaster", "boom", 500))
        sk = _adapter("skiddle", side_effect=RuntimeError("unexpected"))
        eb = _adapter(
            "eventbrite",
            _batch("eventbrite", [make_event("eb_1", "Food Walk", source=EventSource.EVENTBRITE)]),
        )
        pipeline = make_pipeline([tm, sk, eb])

        result = await pipeline.get_events(LAT, LNG)

        assert [e.id for e in result.events] == ["eb_1"]
        assert sorted(result.failed_sources) == ["skiddle", "ticketmaster"]
        assert not pipeline.health.is_healthy("ticketmaster")

    @pytest.mark.asyncio
    async def test_all_sources_down_returns_empty(self, make_pipeline):
        adapters = [
            _adapter(name, side_effect=ProviderError(name, "down", 503))
            for name in ("ticketmaster", "skiddle", "eventbrite")
        ]
        pipeline = make_pipeline(adapters)

        result = await pipeline.get_events(LAT, LNG)

        assert result.events == []
        assert result.has_more is False
        assert result.total_available == 0
        assert len(result.failed_sources) == 3

    @pytest.mark.asyncio
    async def test_slow_source_is_abandoned(self, make_pipeline, make_event, settings):
        async def hang(*args, **kwargs):
            await asyncio.sleep(5)

        slow = _adapter("eventbrite", side_effect=hang)
        fast = _adapter("ticketmaster", _batch("ticketmaster", [make_event("tm_1")]))
        pipeline = make_pipeline(
            [slow, fast], settings.model_copy(update={"fan_out_timeout": 0.05})
        )

        result = await pipeline.get_events(LAT, LNG)

        assert [e.id for e in result.events] == ["tm_1"]
        assert result.failed_sources == ["eventbrite"]

    @pytest.mark.asyncio
    async def test_duplicates_across_sources_collapse(self, make_pipeline, make_event):
        """25km search, same concert from two providers with different venue formatting."""
        start = make_event().start
        sk_event = make_event(
            "sk_5",
            "Arctic Monkeys",
            source=EventSource.SKIDDLE,
            start=start,
            venue=Venue(name="o2 apollo, MANCHESTER", latitude=53.4701, longitude=-2.2215),
        )
        tm_event = make_event(
            "tm_8",
            "Arctic Monkeys",
            start=start,
            venue=Venue(name="O2 Apollo Manchester", latitude=53.4702, longitude=-2.2219),
        )
        pipeline = make_pipeline(
            [
                _adapter("skiddle", _batch("skiddle", [sk_event])),
                _adapter("ticketmaster", _batch("ticketmaster", [tm_event])),
            ]
        )

        result = await pipeline.get_events(LAT, LNG, radius_km=25)

        assert [e.id for e in result.events] == ["tm_8"]
        assert result.events[0].source == EventSource.TICKETMASTER

    @pytest.mark.asyncio
    async def test_dedup_summary_is_logged(self, make_pipeline, make_event):
        tm_event = make_event("tm_1", "Arctic Monkeys")
        sk_event = make_event("sk_1", "Arctic Monkeys", source=EventSource.SKIDDLE)
        pipeline = make_pipeline(
            [
                _adapter("ticketmaster", _batch("ticketmaster", [tm_event])),
                _adapter("skiddle", _batch("skiddle", [sk_event])),
            ]
        )

        with capture_logs() as logs:
            await pipeline.get_events(LAT, LNG)

        entry = next(log for log in logs if log["event"] == "feed_deduplicated")
        assert entry["removed"] == 1
        assert "Dropped 'Arctic Monkeys' (skiddle)" in entry["summary"]

    @pytest.mark.asyncio
    async def test_stale_events_are_dropped(self, make_pipeline, make_event, fixed_now):
        now = fixed_now()
        events = [
            make_event("tm_old", "Yesterday Gig", start=now - timedelta(days=1)),
            make_event("tm_live", "Happening Now", start=now - timedelta(hours=1)),
            make_event("tm_tba", "Date TBA", start=None),
        ]
        pipeline = make_pipeline([_adapter("ticketmaster", _batch("ticketmaster", events))])

        result = await pipeline.get_events(LAT, LNG, sort="soonest")

        assert [e.id for e in result.events] == ["tm_live", "tm_tba"]

    @pytest.mark.asyncio
    async def test_pagination_metadata(self, make_pipeline, make_event):
        tm = _adapter(
            "ticketmaster",
            _batch("ticketmaster", [make_event("tm_1")], next_page_token=3, total=120),
        )
        sk = _adapter("skiddle", _batch("skiddle", [], total=None))
        pipeline = make_pipeline([tm, sk])

        result = await pipeline.get_events(LAT, LNG, pages_to_fetch=3)

        assert result.has_more is True
        assert result.next_page_token == 3
        assert result.total_available == 120

    @pytest.mark.asyncio
    async def test_no_more_pages(self, make_pipeline, make_event):
        tm = _adapter("ticketmaster", _batch("ticketmaster", [make_event("tm_1")]))
        pipeline = make_pipeline([tm])

        result = await pipeline.get_events(LAT, LNG)

        assert result.has_more is False
        assert result.next_page_token is None
        assert result.total_available == 1


class TestCaching:
    """Tests for the initial-page cache."""

    @pytest.mark.asyncio
    async def test_second_call_within_ttl_is_served_from_cache(self, make_pipeline, make_event, clock):
        tm = _adapter("ticketmaster", _batch("ticketmaster", [make_event("tm_1")]))
        pipeline = make_pipeline([tm])

        first = await pipeline.get_events(LAT, LNG, radius_km=25)
        clock.advance(14 * 60)
        second = await pipeline.get_events(LAT + 0.001, LNG, radius_km=25)

        assert tm.fetch_events.await_count == 1
        assert second.from_cache is True
        assert [e.id for e in second.events] == [e.id for e in first.events]

    @pytest.mark.asyncio
    async def test_expired_entry_refetches(self, make_pipeline, make_event, clock):
        tm = _adapter("ticketmaster", _batch("ticketmaster", [make_event("tm_1")]))
        pipeline = make_pipeline([tm])

        await pipeline.get_events(LAT, LNG)
        clock.advance(15 * 60)
        result = await pipeline.get_events(LAT, LNG)

        assert tm.fetch_events.await_count == 2
        assert result.from_cache is False

    @pytest.mark.asyncio
    async def test_cache_hit_applies_requested_sort(self, make_pipeline, make_event):
        events = [
            make_event(
                "tm_far", "Far Gig", venue=Venue(name="Leeds Arena", latitude=53.8, longitude=-1.55)
            ),
            make_event("tm_near", "Near Gig"),
        ]
        pipeline = make_pipeline([_adapter("ticketmaster", _batch("ticketmaster", events))])

        await pipeline.get_events(LAT, LNG, radius_km=100)
        result = await pipeline.get_events(LAT, LNG, radius_km=100, sort="nearest")

        assert result.from_cache is True
        assert [e.id for e in result.events] == ["tm_near", "tm_far"]

    @pytest.mark.asyncio
    async def test_load_more_pages_bypass_cache(self, make_pipeline, make_event):
        tm = _adapter("ticketmaster", _batch("ticketmaster", [make_event("tm_1")]))
        pipeline = make_pipeline([tm])

        await pipeline.get_events(LAT, LNG, start_page=3)
        await pipeline.get_events(LAT, LNG, start_page=3)

        assert tm.fetch_events.await_count == 2
        assert len(pipeline.cache) == 0

    @pytest.mark.asyncio
    async def test_stale_cache_served_when_circuits_open(self, make_pipeline, make_event, clock):
        tm = _adapter("ticketmaster", _batch("ticketmaster", [make_event("tm_1")]))
        pipeline = make_pipeline([tm])
        await pipeline.get_events(LAT, LNG)

        clock.advance(20 * 60)
        breaker = pipeline.controller.breaker_for("ticketmaster")
        for _ in range(breaker.failure_threshold):
            breaker.record_failure(ProviderError("ticketmaster", "down", 503))
        tm.fetch_events.return_value = SourceBatch(
            stats=FetchStats(source="ticketmaster", count=0, status="error", error_message="open")
        )

        result = await pipeline.get_events(LAT, LNG)

        assert result.from_cache is True
        assert [e.id for e in result.events] == ["tm_1"]

    @pytest.mark.asyncio
    async def test_source_status(self, make_pipeline, make_event):
        pipeline = make_pipeline(
            [
                _adapter("ticketmaster", _batch("ticketmaster", [make_event("tm_1")])),
                _adapter("skiddle", side_effect=ProviderError("skiddle", "down", 500)),
            ]
        )
        await pipeline.get_events(LAT, LNG)

        status = pipeline.get_source_status()

        assert status["sources"]["ticketmaster"]["healthy"] is True
        assert status["sources"]["skiddle"]["healthy"] is False
        assert status["summary"]["total"] == 2
        assert status["unhealthy_sources"] == ["skiddle"]
        assert "circuits" in status


class TestEndToEnd:
    """Real adapters and controller over a mocked HTTP transport."""

    @pytest.fixture
    def routes(self, ticketmaster_record, skiddle_record):
        same_concert = copy.deepcopy(skiddle_record)
        same_concert.update(
            {
                "id": "999",
                "eventname": "TAYLOR SWIFT - THE ERAS TOUR",
                "EventCode": "LIVE",
                "date": "2025-03-14",
                "openingtimes": {"doorsopen": "19:30"},
                "venue": {"name": "etihad stadium", "latitude": 53.4831, "longitude": -2.2004},
            }
        )
        return {
            "app.ticketmaster.com": {
                "_embedded": {"events": [ticketmaster_record]},
                "page": {"size": 50, "totalElements": 1, "totalPages": 1},
            },
            "www.skiddle.com": {"results": [same_concert], "totalcount": 1},
        }

    @pytest.mark.asyncio
    async def test_two_sources_one_event(self, make_controller, settings, clock, fixed_now, routes):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host in routes:
                return httpx.Response(200, json=routes[request.url.host])
            return httpx.Response(503)

        pipeline = EventFeedPipeline(
            settings, controller=make_controller(handler), clock=clock, now=fixed_now
        )

        result = await pipeline.get_events(LAT, LNG, radius_km=25, pages_to_fetch=1)

        assert [e.id for e in result.events] == ["tm_G5vYZ9abc"]
        assert result.events[0].distance_km < 25
        assert result.failed_sources == ["eventbrite"]

    @pytest.mark.asyncio
    async def test_concurrent_identical_queries_share_requests(
        self, make_controller, settings, clock, fixed_now, routes
    ):
        calls: dict[str, int] = {}

        async def handler(request: httpx.Request) -> httpx.Response:
            calls[request.url.host] = calls.get(request.url.host, 0) + 1
            await asyncio.sleep(0.01)
            return httpx.Response(200, json=routes.get(request.url.host, {}))

        pipeline = EventFeedPipeline(
            settings, controller=make_controller(handler), clock=clock, now=fixed_now
        )

        first, second = await asyncio.gather(
            pipeline.get_events(LAT, LNG, pages_to_fetch=1, start_page=1),
            pipeline.get_events(LAT, LNG, pages_to_fetch=1, start_page=1),
        )

        assert calls["app.ticketmaster.com"] == 1
        assert calls["www.skiddle.com"] == 1
        assert [e.id for e in first.events] == [e.id for e in second.events]
