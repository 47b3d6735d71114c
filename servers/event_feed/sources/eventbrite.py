"""
Eventbrite API integration.

Local community events. Eventbrite restricted its public search endpoint in
2023, so this source may return 403/404 without partner access; client
errors like that don't trip the circuit breaker.
"""

from typing import Any, Optional

from ..errors import NormalizationSkip
from ..models import CanonicalEvent, EventDateTime, EventSource, Pricing, Venue
from ..resilience import RequestDescriptor
from .base import (
    DEFAULT_TIMEZONE,
    SourceAdapter,
    clean_description,
    join_address,
    local_date,
    map_category,
    parse_coordinate,
    parse_float,
    parse_utc,
    unique,
)

EVENTBRITE_API = "https://www.eventbriteapi.com/v3/events/search/"

CATEGORY_MAP = {
    "music": "music",
    "food & drink": "food",
    "performing & visual arts": "culture",
    "film, media & entertainment": "entertainment",
    "health & wellness": "active",
    "sports & fitness": "active",
    "travel & outdoor": "nature",
    "business & professional": "other",
    "science & technology": "other",
    "charity & causes": "other",
    "community & culture": "culture",
    "family & education": "family",
    "fashion & beauty": "shopping",
    "home & lifestyle": "other",
    "hobbies & special interest": "unique",
    "seasonal & holiday": "unique",
}


class EventbriteAdapter(SourceAdapter):
    """Fetches and normalizes Eventbrite events."""

    source = EventSource.EVENTBRITE

    def build_request(
        self, lat: float, lng: float, radius_km: float, page: int
    ) -> RequestDescriptor:
        return RequestDescriptor(
            url=EVENTBRITE_API,
            params={
                "location.latitude": f"{lat:.4f}",
                "location.longitude": f"{lng:.4f}",
                "location.within": f"{max(1, round(radius_km))}km",
                "expand": "venue,ticket_availability,category,subcategory",
                "page": str(page + 1),  # Eventbrite pages are 1-based
                "page_size": str(self.settings.page_size),
            },
            headers={"Authorization": f"Bearer {self.api_key}"},
        )

    def extract_page(
        self, payload: Any, page: int
    ) -> tuple[list[dict], Optional[int], Optional[int]]:
        payload = payload if isinstance(payload, dict) else {}
        records = payload.get("events") or []
        pagination = payload.get("pagination") or {}

        total = pagination.get("object_count")
        next_page = page + 1 if pagination.get("has_more_items") else None
        return records, next_page, total if isinstance(total, int) else None

    def normalize(self, record: dict) -> CanonicalEvent:
        event_id = self.make_id(record.get("id"))

        # Skip online-only events for a local discovery feed
        if record.get("online_event") and not record.get("venue"):
            raise NormalizationSkip(self.name, "online-only event")

        venue = record.get("venue") or {}
        address = venue.get("address") or {}
        tickets = record.get("ticket_availability") or {}
        min_ticket = tickets.get("minimum_ticket_price") or {}
        max_ticket = tickets.get("maximum_ticket_price") or {}
        start_info = record.get("start") or {}
        end_info = record.get("end") or {}

        tz_name = start_info.get("timezone") or DEFAULT_TIMEZONE
        start = parse_utc(start_info.get("utc"))
        end = parse_utc(end_info.get("utc"))

        return CanonicalEvent(
            id=event_id,
            source=self.source,
            name=(record.get("name") or {}).get("text") or "Untitled Event",
            description=clean_description(
                (record.get("description") or {}).get("text") or record.get("summary")
            ),
            image_url=_best_image(record.get("logo") or {}),
            venue=Venue(
                name=venue.get("name") or "Venue TBA",
                latitude=parse_coordinate(
                    venue.get("latitude") or address.get("latitude"), 90
                ),
                longitude=parse_coordinate(
                    venue.get("longitude") or address.get("longitude"), 180
                ),
                address=join_address(
                    address.get("address_1"), address.get("city"), address.get("postal_code")
                ),
            ),
            timing=EventDateTime(
                start=start,
                end=end,
                timezone=tz_name,
                is_multi_day=bool(
                    start and end and local_date(start, tz_name) != local_date(end, tz_name)
                ),
            ),
            pricing=Pricing(
                is_free=bool(record.get("is_free")),
                min_price=parse_float(min_ticket.get("major_value")),
                max_price=parse_float(max_ticket.get("major_value")),
                currency=min_ticket.get("currency") or "GBP",
            ),
            categories=_categories(record),
            ticket_url=record.get("url"),
            is_sold_out=bool(tickets.get("is_sold_out")),
            is_online=bool(record.get("online_event")),
        )


def _best_image(logo: dict) -> Optional[str]:
    """The cropped logo is 2:1; fall back to the original upload."""
    return logo.get("url") or (logo.get("original") or {}).get("url") or None


def _categories(record: dict) -> list[str]:
    names = [
        (record.get("category") or {}).get("name"),
        (record.get("subcategory") or {}).get("name"),
    ]
    present = [name for name in names if name]
    if not present:
        return [map_category(None, CATEGORY_MAP)]
    return unique(map_category(name, CATEGORY_MAP) for name in present)
