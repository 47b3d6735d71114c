"""
Event source adapters.

Each source implements:
- fetch_page(lat, lng, radius_km, page_token) -> PageResult
- fetch_events(lat, lng, radius_km, pages_to_fetch, start_page) -> SourceBatch
- Provider-specific request building and normalization
"""

from ..config import FeedSettings
from ..resilience import ResilienceController
from .base import SourceAdapter
from .eventbrite import EventbriteAdapter
from .skiddle import SkiddleAdapter
from .ticketmaster import TicketmasterAdapter

__all__ = [
    "SourceAdapter",
    "TicketmasterAdapter",
    "SkiddleAdapter",
    "EventbriteAdapter",
    "build_adapters",
]


def build_adapters(controller: ResilienceController, settings: FeedSettings) -> list[SourceAdapter]:
    """Create one adapter per provider, wired to a shared controller."""
    return [
        TicketmasterAdapter(controller, api_key=settings.ticketmaster_api_key, settings=settings),
        SkiddleAdapter(controller, api_key=settings.skiddle_api_key, settings=settings),
        EventbriteAdapter(controller, api_key=settings.eventbrite_token, settings=settings),
    ]
