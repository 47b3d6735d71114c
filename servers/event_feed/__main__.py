"""
Entry point for the local events feed.

This server provides tools for:
- Fetching ranked, deduplicated events around a location
- Reporting per-source health and circuit state
- Filtering a feed by day, price or category

Run with: python -m servers.event_feed LAT LNG [--radius KM] [--sort STRATEGY]
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Optional

import structlog

from .config import FeedSettings
from .errors import QueryValidationError
from .filters import (
    get_events_by_category,
    get_free_events,
    get_today_events,
    get_weekend_events,
)
from .models import CanonicalEvent, SortStrategy
from .pipeline import EventFeedPipeline

logger = structlog.get_logger()


class EventFeedServer:
    """Tool-style interface over one long-lived pipeline."""

    def __init__(self, pipeline: Optional[EventFeedPipeline] = None):
        self.pipeline = pipeline or EventFeedPipeline(FeedSettings.from_env())
        self.tools = {
            "get_events": self.get_events,
            "source_status": self.source_status,
            "filter_events": self.filter_events,
        }

    async def get_events(
        self,
        latitude: float,
        longitude: float,
        radius_km: float = 30.0,
        pages_to_fetch: Optional[int] = None,
        start_page: int = 0,
        sort: str = "recommended",
    ) -> dict:
        """
        Fetch events near a location.

        Args:
            latitude: Caller latitude
            longitude: Caller longitude
            radius_km: Search radius in km (1-200)
            pages_to_fetch: Pages per source
            start_page: 0 for the first load, next_page_token for more
            sort: recommended, soonest, nearest or popular

        Returns:
            FeedResult as a dict, or {"error": ...} for an invalid query
        """
        try:
            result = await self.pipeline.get_events(
                latitude,
                longitude,
                radius_km=radius_km,
                pages_to_fetch=pages_to_fetch,
                start_page=start_page,
                sort=sort,
            )
        except QueryValidationError as e:
            return {"error": str(e), "field": e.field}
        return result.model_dump(mode="json")

    async def source_status(self) -> dict:
        """Health, breaker and limiter state for every source."""
        return self.pipeline.get_source_status()

    async def filter_events(self, events: list[dict], kind: str, category: Optional[str] = None) -> dict:
        """
        Narrow a list of events.

        Args:
            events: Events as returned by get_events
            kind: today, weekend, free or category
            category: Required when kind is "category"
        """
        event_objects = [CanonicalEvent(**e) for e in events]

        if kind == "today":
            selected = get_today_events(event_objects)
        elif kind == "weekend":
            selected = get_weekend_events(event_objects)
        elif kind == "free":
            selected = get_free_events(event_objects)
        elif kind == "category":
            try:
                selected = get_events_by_category(event_objects, category or "")
            except ValueError as e:
                return {"error": str(e)}
        else:
            return {"error": f"Unknown filter '{kind}'"}

        return {
            "events": [e.model_dump(mode="json") for e in selected],
            "total": len(selected),
        }

    async def aclose(self) -> None:
        await self.pipeline.aclose()


def configure_logging(level: str = "INFO", json_output: bool = False) -> None:
    """Route structlog output to stderr at the given level."""
    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m servers.event_feed",
        description="Fetch ranked local events from Ticketmaster, Skiddle and Eventbrite",
    )
    parser.add_argument("latitude", type=float, nargs="?")
    parser.add_argument("longitude", type=float, nargs="?")
    parser.add_argument("--radius", type=float, default=30.0, help="Search radius in km")
    parser.add_argument("--pages", type=int, default=None, help="Pages to fetch per source")
    parser.add_argument("--start-page", type=int, default=0)
    parser.add_argument(
        "--sort",
        choices=[s.value for s in SortStrategy],
        default=SortStrategy.RECOMMENDED.value,
    )
    parser.add_argument("--status", action="store_true", help="Print source status after fetching")
    parser.add_argument("--log-level", default="WARNING")
    parser.add_argument("--json-logs", action="store_true")
    return parser


async def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point for the CLI."""
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level, args.json_logs)

    if args.latitude is None or args.longitude is None:
        server = EventFeedServer()
        print("Local Events Feed")
        print("Available tools:", list(server.tools.keys()))
        await server.aclose()
        return 0

    server = EventFeedServer()
    try:
        result = await server.get_events(
            args.latitude,
            args.longitude,
            radius_km=args.radius,
            pages_to_fetch=args.pages,
            start_page=args.start_page,
            sort=args.sort,
        )
        print(json.dumps(result, indent=2))
        if args.status:
            print(json.dumps(await server.source_status(), indent=2))
    finally:
        await server.aclose()

    return 1 if "error" in result else 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
