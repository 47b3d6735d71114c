"""
Skiddle Events API integration.

UK-focused events platform: clubs, festivals, nightlife.
Free API key: https://www.skiddle.com/api/join.php
Docs: https://github.com/Skiddle/web-api

The only provider that reports a "going" count, used for popularity.
"""

from datetime import timedelta
from typing import Any, Optional

from ..errors import ProviderError
from ..models import CanonicalEvent, EventDateTime, EventSource, Pricing, Venue
from ..resilience import RequestDescriptor
from .base import (
    DEFAULT_TIMEZONE,
    KM_TO_MILES,
    SourceAdapter,
    clean_description,
    join_address,
    local_to_utc,
    map_category,
    parse_coordinate,
    parse_float,
    parse_int,
)

SKIDDLE_API = "https://www.skiddle.com/api/v1/events/search/"

EVENT_CODE_CATEGORIES = {
    "fest": "music",
    "live": "music",
    "club": "nightlife",
    "theatre": "culture",
    "comedy": "entertainment",
    "barpub": "food",
    "exhib": "culture",
    "sport": "active",
    "kids": "family",
    "dating": "unique",
}

FREE_PRICES = {"0", "0.00", "free", "free entry"}


class SkiddleAdapter(SourceAdapter):
    """Fetches and normalizes Skiddle events."""

    source = EventSource.SKIDDLE

    def build_request(
        self, lat: float, lng: float, radius_km: float, page: int
    ) -> RequestDescriptor:
        start, end = self.search_window()
        radius_miles = max(1, min(100, round(radius_km * KM_TO_MILES)))
        limit = self.settings.page_size
        return RequestDescriptor(
            url=SKIDDLE_API,
            params={
                "api_key": self.api_key or "",
                "latitude": f"{lat:.4f}",
                "longitude": f"{lng:.4f}",
                "radius": str(radius_miles),
                "minDate": start.date().isoformat(),
                "maxDate": end.date().isoformat(),
                "order": "date",
                "description": "1",
                "imagefilter": "1",
                "limit": str(limit),
                "offset": str(page * limit),
            },
        )

    def extract_page(
        self, payload: Any, page: int
    ) -> tuple[list[dict], Optional[int], Optional[int]]:
        payload = payload if isinstance(payload, dict) else {}
        if payload.get("error"):
            # Skiddle reports some failures in a 200 body
            raise ProviderError(self.name, str(payload.get("errormessage") or payload["error"]))

        records = payload.get("results") or []
        total = parse_int(payload.get("totalcount"))
        fetched_through = page * self.settings.page_size + len(records)

        next_page: Optional[int] = None
        if total is not None and records and fetched_through < total:
            next_page = page + 1
        return records, next_page, total

    def normalize(self, record: dict) -> CanonicalEvent:
        event_id = self.make_id(record.get("id"))

        venue = record.get("venue") or {}
        opening = record.get("openingtimes") or {}
        doors_open = opening.get("doorsopen") or None
        doors_close = opening.get("doorsclose") or None

        start = local_to_utc(record.get("date"), doors_open, DEFAULT_TIMEZONE)
        end = None
        if start is not None and doors_close:
            end = local_to_utc(record.get("date"), doors_close, DEFAULT_TIMEZONE)
            # Handle events that end after midnight
            if end is not None and end < start:
                end += timedelta(days=1)

        return CanonicalEvent(
            id=event_id,
            source=self.source,
            name=record.get("eventname") or "Untitled Event",
            description=clean_description(record.get("description")),
            image_url=(
                record.get("xlargeimageurl")
                or record.get("largeimageurl")
                or record.get("imageurl")
                or None
            ),
            venue=Venue(
                name=venue.get("name") or "Venue TBA",
                latitude=parse_coordinate(venue.get("latitude"), 90),
                longitude=parse_coordinate(venue.get("longitude"), 180),
                address=join_address(venue.get("address"), venue.get("town"), venue.get("postcode")),
            ),
            timing=EventDateTime(
                start=start,
                end=end,
                timezone=DEFAULT_TIMEZONE,
                doors_open=doors_open,
                is_time_tba=start is not None and not doors_open,
            ),
            pricing=_pricing(record.get("entryprice")),
            categories=[map_category(record.get("EventCode"), EVENT_CODE_CATEGORIES)],
            ticket_url=record.get("link"),
            is_sold_out=record.get("soldout") in (True, 1, "1"),
            going_count=parse_int(record.get("goingcount")),
            min_age=parse_int(record.get("minage")) or None,
            artists=[
                a["name"] for a in record.get("artists") or [] if isinstance(a, dict) and a.get("name")
            ],
        )


def _pricing(entry_price: Any) -> Pricing:
    """Skiddle sends a free-form price string such as "10.00", "£8.50" or "Free"."""
    raw = str(entry_price).strip() if entry_price is not None else ""
    if raw.lower() in FREE_PRICES:
        return Pricing(is_free=True, min_price=0.0, currency="GBP")

    price = parse_float(raw.lstrip("£$€").replace(",", "")) if raw else None
    return Pricing(
        is_free=price == 0,
        min_price=price,
        max_price=None,
        currency="GBP",
    )
