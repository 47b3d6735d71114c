"""Tests for the tool-style server interface."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from servers.event_feed.__main__ import EventFeedServer, build_parser
from servers.event_feed.models import FetchStats, Pricing, SourceBatch
from servers.event_feed.pipeline import EventFeedPipeline
from servers.event_feed.resilience import ResilienceController


@pytest.fixture
def server(settings, clock, fixed_now, make_event) -> EventFeedServer:
    adapter = MagicMock()
    adapter.name = "ticketmaster"
    adapter.fetch_events = AsyncMock(
        return_value=SourceBatch(
            events=[
                make_event("tm_1", "Free Gig", pricing=Pricing(is_free=True, min_price=0.0)),
                make_event("tm_2", "Paid Gig", categories=["music"]),
            ],
            stats=FetchStats(source="ticketmaster", count=2, status="success"),
        )
    )
    pipeline = EventFeedPipeline(
        settings,
        controller=ResilienceController(settings, clock=clock),
        adapters=[adapter],
        clock=clock,
        now=fixed_now,
    )
    return EventFeedServer(pipeline)


class TestEventFeedServer:
    """Tests for EventFeedServer tools."""

    def test_tools_registered(self, server):
        assert set(server.tools) == {"get_events", "source_status", "filter_events"}

    @pytest.mark.asyncio
    async def test_get_events_returns_json_ready_dict(self, server):
        result = await server.get_events(53.4808, -2.2426, radius_km=30)

        assert len(result["events"]) == 2
        assert result["events"][0]["source"] == "ticketmaster"
        assert isinstance(result["events"][0]["timing"]["start"], str)

    @pytest.mark.asyncio
    async def test_get_events_reports_validation_error(self, server):
        result = await server.get_events(53.4808, -2.2426, radius_km=500)

        assert result["field"] == "radius_km"
        assert "error" in result

    @pytest.mark.asyncio
    async def test_filter_events(self, server):
        feed = await server.get_events(53.4808, -2.2426)

        free = await server.filter_events(feed["events"], "free")
        music = await server.filter_events(feed["events"], "category", category="music")
        unknown = await server.filter_events(feed["events"], "cheapest")

        assert [e["id"] for e in free["events"]] == ["tm_1"]
        assert music["total"] == 1
        assert "error" in unknown

    @pytest.mark.asyncio
    async def test_source_status(self, server):
        await server.get_events(53.4808, -2.2426)
        status = await server.source_status()
        assert status["sources"]["ticketmaster"]["event_count"] == 2


class TestParser:
    """Tests for CLI argument parsing."""

    def test_defaults(self):
        args = build_parser().parse_args(["53.48", "-2.24"])
        assert args.radius == 30.0
        assert args.sort == "recommended"
        assert args.start_page == 0

    def test_options(self):
        args = build_parser().parse_args(
            ["53.48", "-2.24", "--radius", "10", "--sort", "nearest", "--pages", "2", "--status"]
        )
        assert args.radius == 10.0
        assert args.sort == "nearest"
        assert args.pages == 2
        assert args.status is True
