"""
Ticketmaster Discovery API integration.

Free tier: 5,000 requests/day, 5 requests/second
Docs: https://developer.ticketmaster.com/products-and-docs/apis/discovery-api/v2/

Broadest coverage for concerts, sports and theatre; highest dedup priority.
"""

from typing import Any, Optional

from ..models import CanonicalEvent, EventDateTime, EventSource, Pricing, Venue
from ..resilience import RequestDescriptor
from .base import (
    DEFAULT_TIMEZONE,
    SourceAdapter,
    clean_description,
    join_address,
    local_to_utc,
    map_category,
    parse_coordinate,
    parse_float,
    parse_utc,
    unique,
)

TICKETMASTER_API = "https://app.ticketmaster.com/discovery/v2/events.json"

# Ticketmaster rejects deep paging past this many results
MAX_RESULT_DEPTH = 1000

SEGMENT_CATEGORIES = {
    "music": "music",
    "sports": "active",
    "arts & theatre": "culture",
    "film": "entertainment",
    "miscellaneous": "unique",
    "comedy": "entertainment",
    "family": "family",
}

GENRE_CATEGORIES = {
    "comedy": "entertainment",
    "theatre": "culture",
    "dance": "culture",
    "fine art": "culture",
    "children's theatre": "family",
    "dance/electronic": "nightlife",
    "festival": "music",
}


class TicketmasterAdapter(SourceAdapter):
    """Fetches and normalizes Ticketmaster Discovery events."""

    source = EventSource.TICKETMASTER

    def build_request(
        self, lat: float, lng: float, radius_km: float, page: int
    ) -> RequestDescriptor:
        start, end = self.search_window()
        return RequestDescriptor(
            url=TICKETMASTER_API,
            params={
                "apikey": self.api_key or "",
                "latlong": f"{lat:.4f},{lng:.4f}",
                "radius": str(max(1, round(radius_km))),
                "unit": "km",
                "startDateTime": start.strftime("%Y-%m-%dT%H:%M:%SZ"),
                "endDateTime": end.strftime("%Y-%m-%dT%H:%M:%SZ"),
                "size": str(self.settings.page_size),
                "page": str(page),
                "sort": "date,asc",
            },
        )

    def extract_page(
        self, payload: Any, page: int
    ) -> tuple[list[dict], Optional[int], Optional[int]]:
        payload = payload if isinstance(payload, dict) else {}
        records = (payload.get("_embedded") or {}).get("events") or []

        page_info = payload.get("page") or {}
        total = page_info.get("totalElements")
        total_pages = page_info.get("totalPages")
        size = page_info.get("size") or self.settings.page_size

        next_page: Optional[int] = None
        if isinstance(total_pages, int) and page + 1 < total_pages:
            if (page + 2) * size <= MAX_RESULT_DEPTH:
                next_page = page + 1

        return records, next_page, total if isinstance(total, int) else None

    def normalize(self, record: dict) -> CanonicalEvent:
        event_id = self.make_id(record.get("id"))

        venue = ((record.get("_embedded") or {}).get("venues") or [{}])[0] or {}
        location = venue.get("location") or {}
        dates = record.get("dates") or {}
        start_info = dates.get("start") or {}
        end_info = dates.get("end") or {}
        classification = (record.get("classifications") or [{}])[0] or {}
        genre = (classification.get("genre") or {}).get("name")
        price_range = (record.get("priceRanges") or [{}])[0] or {}

        tz_name = dates.get("timezone") or venue.get("timezone") or DEFAULT_TIMEZONE
        start = parse_utc(start_info.get("dateTime"))
        time_tba = bool(start_info.get("timeTBA") or start_info.get("noSpecificTime"))
        if start is None:
            start = local_to_utc(
                start_info.get("localDate"), start_info.get("localTime"), tz_name
            )
            time_tba = time_tba or not start_info.get("localTime")

        min_price = parse_float(price_range.get("min"))
        max_price = parse_float(price_range.get("max"))

        return CanonicalEvent(
            id=event_id,
            source=self.source,
            name=record.get("name") or "Untitled Event",
            description=clean_description(
                record.get("info") or record.get("pleaseNote") or record.get("description")
            ),
            image_url=_best_image(record.get("images") or []),
            venue=Venue(
                name=venue.get("name") or "Venue TBA",
                latitude=parse_coordinate(location.get("latitude"), 90),
                longitude=parse_coordinate(location.get("longitude"), 180),
                address=join_address(
                    (venue.get("address") or {}).get("line1"),
                    (venue.get("city") or {}).get("name"),
                    venue.get("postalCode"),
                ),
            ),
            timing=EventDateTime(
                start=start,
                end=parse_utc(end_info.get("dateTime")),
                timezone=tz_name,
                is_time_tba=time_tba,
            ),
            pricing=Pricing(
                is_free=min_price == 0 and not max_price,
                min_price=min_price,
                max_price=max_price,
                currency=price_range.get("currency") or "GBP",
            ),
            categories=_categories(classification),
            genre=genre if genre and genre.lower() != "undefined" else None,
            ticket_url=record.get("url"),
            is_sold_out=(dates.get("status") or {}).get("code") == "offsale",
        )


def _best_image(images: list[dict]) -> Optional[str]:
    """Prefer the widest 16:9 image at least 640px wide, else the widest."""
    usable = [img for img in images if isinstance(img, dict) and img.get("url")]
    if not usable:
        return None

    def width(img: dict) -> int:
        return int(parse_float(img.get("width")) or 0)

    wide = [img for img in usable if img.get("ratio") == "16_9" and width(img) >= 640]
    return max(wide or usable, key=width)["url"]


def _categories(classification: dict) -> list[str]:
    segment = (classification.get("segment") or {}).get("name")
    genre = ((classification.get("genre") or {}).get("name") or "").lower()
    return unique(
        [
            map_category(segment, SEGMENT_CATEGORIES),
            GENRE_CATEGORIES.get(genre),
        ]
    )
