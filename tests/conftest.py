"""Shared pytest fixtures for event feed tests."""

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

import httpx
import pytest

from servers.event_feed.config import BreakerConfig, FeedSettings
from servers.event_feed.models import (
    CanonicalEvent,
    EventDateTime,
    EventSource,
    Pricing,
    Venue,
)
from servers.event_feed.resilience import ResilienceController

# Wednesday afternoon; the weekend is 3 days away
NOW = datetime(2025, 3, 12, 15, 0, tzinfo=timezone.utc)

MANCHESTER = (53.4808, -2.2426)


class FakeClock:
    """Monotonic clock the test advances by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    """Provide a controllable monotonic clock."""
    return FakeClock()


@pytest.fixture
def fixed_now() -> Callable[[], datetime]:
    """Provide a wall clock frozen at NOW."""
    return lambda: NOW


@pytest.fixture
def settings() -> FeedSettings:
    """Settings with credentials for every source."""
    return FeedSettings(
        ticketmaster_api_key="tm-key",
        skiddle_api_key="sk-key",
        eventbrite_token="eb-token",
        breaker=BreakerConfig(failure_threshold=3, recovery_timeout=300, half_open_max_probes=1),
    )


@pytest.fixture
def make_controller(settings: FeedSettings, clock: FakeClock):
    """Build a controller whose HTTP client answers with ``handler``."""
    def factory(
        handler: Callable[[httpx.Request], Any],
        feed_settings: Optional[FeedSettings] = None,
    ) -> ResilienceController:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return ResilienceController(feed_settings or settings, client=client, clock=clock)

    return factory


@pytest.fixture
def manchester_venue() -> Venue:
    """Provide a sample Manchester venue."""
    return Venue(
        name="Albert Hall",
        latitude=53.4776,
        longitude=-2.2485,
        address="27 Peter St, Manchester, M2 5QR",
    )


@pytest.fixture
def make_event(manchester_venue: Venue):
    """Factory for canonical events with sensible defaults."""

    def factory(
        event_id: str = "tm_1",
        name: str = "Reggae Night",
        source: EventSource = EventSource.TICKETMASTER,
        start: Optional[datetime] = NOW + timedelta(days=2),
        venue: Optional[Venue] = None,
        **overrides: Any,
    ) -> CanonicalEvent:
        return CanonicalEvent(
            id=event_id,
            source=source,
            name=name,
            venue=venue or manchester_venue,
            timing=EventDateTime(start=start),
            pricing=overrides.pop("pricing", Pricing(min_price=12.0)),
            **overrides,
        )

    return factory


@pytest.fixture
def ticketmaster_record() -> dict:
    """Provide one raw Discovery API event."""
    return {
        "id": "G5vYZ9abc",
        "name": "Taylor Swift | The Eras Tour",
        "url": "https://www.ticketmaster.co.uk/event/G5vYZ9abc",
        "info": "<p>The <b>Eras Tour</b> comes to Manchester.</p>",
        "images": [
            {"ratio": "4_3", "width": 305, "url": "https://img.tm/small.jpg"},
            {"ratio": "16_9", "width": 1024, "url": "https://img.tm/large.jpg"},
            {"ratio": "16_9", "width": 640, "url": "https://img.tm/medium.jpg"},
        ],
        "dates": {
            "start": {
                "localDate": "2025-03-14",
                "localTime": "19:30:00",
                "dateTime": "2025-03-14T19:30:00Z",
            },
            "timezone": "Europe/London",
            "status": {"code": "onsale"},
        },
        "classifications": [
            {"segment": {"name": "Music"}, "genre": {"name": "Pop"}},
        ],
        "priceRanges": [{"currency": "GBP", "min": 58.0, "max": 195.0}],
        "_embedded": {
            "venues": [
                {
                    "name": "Etihad Stadium",
                    "postalCode": "M11 3FF",
                    "city": {"name": "Manchester"},
                    "address": {"line1": "Ashton New Road"},
                    "location": {"latitude": "53.4831", "longitude": "-2.2004"},
                }
            ]
        },
    }


@pytest.fixture
def skiddle_record() -> dict:
    """Provide one raw Skiddle search result."""
    return {
        "id": "36123456",
        "eventname": "Warehouse Project: Opening Night",
        "EventCode": "CLUB",
        "description": "Season opener with special guests",
        "date": "2025-03-15",
        "openingtimes": {"doorsopen": "22:00", "doorsclose": "04:00"},
        "venue": {
            "name": "Depot Mayfield",
            "address": "11 Baring St",
            "town": "Manchester",
            "postcode": "M1 2PY",
            "latitude": 53.4763,
            "longitude": -2.2278,
        },
        "entryprice": "£35.00",
        "link": "https://www.skiddle.com/e/36123456",
        "largeimageurl": "https://img.skiddle.com/large.jpg",
        "goingcount": "1240",
        "minage": "18",
        "artists": [{"name": "Peggy Gou"}, {"name": "Bicep"}],
    }


@pytest.fixture
def eventbrite_record() -> dict:
    """Provide one raw Eventbrite event with expansions."""
    return {
        "id": "812345678901",
        "name": {"text": "Northern Quarter Food Walk"},
        "description": {"text": "Taste your way round the NQ."},
        "url": "https://www.eventbrite.co.uk/e/812345678901",
        "start": {"utc": "2025-03-16T11:00:00Z", "timezone": "Europe/London"},
        "end": {"utc": "2025-03-16T14:00:00Z", "timezone": "Europe/London"},
        "is_free": False,
        "online_event": False,
        "logo": {"url": "https://img.evbuc.com/logo.jpg"},
        "venue": {
            "name": "Afflecks",
            "latitude": "53.4827",
            "longitude": "-2.2366",
            "address": {"address_1": "52 Church St", "city": "Manchester", "postal_code": "M4 1PW"},
        },
        "category": {"name": "Food & Drink"},
        "ticket_availability": {
            "is_sold_out": False,
            "minimum_ticket_price": {"major_value": "25.00", "currency": "GBP"},
            "maximum_ticket_price": {"major_value": "30.00", "currency": "GBP"},
        },
    }
