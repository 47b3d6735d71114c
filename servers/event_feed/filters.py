"""
Convenience filters over a ranked feed.

Date filters compare calendar days in each event's own timezone rather than
in UTC.
"""

from datetime import date, datetime, timedelta
from typing import Callable, Optional

from .models import CATEGORIES, CanonicalEvent
from .sources.base import local_date, utc_now

SATURDAY = 5
SUNDAY = 6


def _event_day(event: CanonicalEvent) -> Optional[date]:
    if event.start is None:
        return None
    return local_date(event.start, event.timing.timezone)


def get_today_events(
    events: list[CanonicalEvent], now: Callable[[], datetime] = utc_now
) -> list[CanonicalEvent]:
    """Events starting on today's date, in the event's timezone."""
    moment = now()
    return [
        e
        for e in events
        if e.start is not None and _event_day(e) == local_date(moment, e.timing.timezone)
    ]


def weekend_dates(today: date) -> tuple[date, date]:
    """Saturday and Sunday of the current weekend, or the next one on weekdays."""
    if today.weekday() == SUNDAY:
        saturday = today - timedelta(days=1)
    else:
        saturday = today + timedelta(days=SATURDAY - today.weekday())
    return saturday, saturday + timedelta(days=1)


def get_weekend_events(
    events: list[CanonicalEvent], now: Callable[[], datetime] = utc_now
) -> list[CanonicalEvent]:
    moment = now()
    selected = []
    for event in events:
        day = _event_day(event)
        if day is None:
            continue
        saturday, sunday = weekend_dates(local_date(moment, event.timing.timezone))
        if saturday <= day <= sunday:
            selected.append(event)
    return selected


def get_free_events(events: list[CanonicalEvent]) -> list[CanonicalEvent]:
    return [e for e in events if e.pricing.is_free]


def get_events_by_category(events: list[CanonicalEvent], category: str) -> list[CanonicalEvent]:
    """Events tagged with ``category``.

    Raises:
        ValueError: If category is not in the shared vocabulary
    """
    key = category.strip().lower()
    if key not in CATEGORIES:
        raise ValueError(f"Unknown category '{category}'. Known: {', '.join(CATEGORIES)}")
    return [e for e in events if key in e.categories]
