"""
Shared adapter contract and normalization helpers.

Each provider adapter implements:
- build_request(lat, lng, radius_km, page) -> RequestDescriptor
- extract_page(payload, page) -> (records, next_page_token, total_available)
- normalize(record) -> CanonicalEvent, raising NormalizationSkip for records
  without a stable identity

fetch_page() and fetch_events() are provided here and route every call
through the ResilienceController.
"""

import asyncio
import re
from abc import ABC, abstractmethod
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Callable, Iterable, Optional

import structlog
from bs4 import BeautifulSoup
from dateutil import parser as date_parser
from dateutil import tz

from ..config import FeedSettings
from ..errors import NormalizationSkip
from ..models import (
    DEFAULT_CATEGORY,
    CanonicalEvent,
    EventSource,
    FetchStats,
    PageResult,
    SourceBatch,
)
from ..resilience import RequestDescriptor, ResilienceController

logger = structlog.get_logger()

DESCRIPTION_MAX_LENGTH = 150
DEFAULT_TIMEZONE = "Europe/London"
KM_TO_MILES = 0.621371


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SourceAdapter(ABC):
    """Base class for one third-party event provider."""

    source: EventSource

    def __init__(
        self,
        controller: ResilienceController,
        api_key: Optional[str] = None,
        settings: Optional[FeedSettings] = None,
        now: Callable[[], datetime] = utc_now,
    ):
        self.controller = controller
        self.api_key = api_key
        self.settings = settings or controller.settings
        self._now = now

    @property
    def name(self) -> str:
        return self.source.value

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    @abstractmethod
    def build_request(
        self, lat: float, lng: float, radius_km: float, page: int
    ) -> RequestDescriptor:
        """Build the provider-specific request for one page."""

    @abstractmethod
    def extract_page(
        self, payload: Any, page: int
    ) -> tuple[list[dict], Optional[int], Optional[int]]:
        """Pull raw records and paging info out of a decoded response."""

    @abstractmethod
    def normalize(self, record: dict) -> CanonicalEvent:
        """Map one raw provider record onto the canonical schema."""

    def make_id(self, provider_id: Any) -> str:
        """Namespace a provider id, rejecting records without one."""
        if provider_id is None or str(provider_id).strip() == "":
            raise NormalizationSkip(self.name, "missing provider id")
        return f"{self.source.prefix}_{str(provider_id).strip()}"

    def normalize_all(self, records: Iterable[Any]) -> list[CanonicalEvent]:
        """Normalize a page of records, dropping the ones that can't be."""
        events: list[CanonicalEvent] = []
        for record in records:
            if not isinstance(record, dict):
                continue
            try:
                events.append(self.normalize(record))
            except NormalizationSkip as e:
                logger.debug("record_skipped", source=self.name, reason=e.reason)
            except (AttributeError, KeyError, TypeError, ValueError) as e:
                # Skip malformed records
                logger.debug("record_malformed", source=self.name, error=str(e))
        return events

    async def fetch_page(
        self, lat: float, lng: float, radius_km: float, page_token: int = 0
    ) -> PageResult:
        """Fetch and normalize a single page.

        Raises:
            EventFeedError: Any resilience or provider failure for this page
        """
        request = self.build_request(lat, lng, radius_km, page_token)
        payload = await self.controller.guarded_call(self.name, request)
        records, next_token, total = self.extract_page(payload, page_token)
        return PageResult(
            events=self.normalize_all(records),
            next_page_token=next_token,
            total_available=total,
        )

    async def fetch_events(
        self,
        lat: float,
        lng: float,
        radius_km: float,
        pages_to_fetch: int = 3,
        start_page: int = 0,
    ) -> SourceBatch:
        """Fetch several pages concurrently and combine them.

        A page that fails contributes no events; the batch only reports an
        error when every page failed.

        Returns:
            SourceBatch with events, fetch stats and paging info
        """
        if not self.is_configured:
            return SourceBatch(
                stats=FetchStats(
                    source=self.name,
                    count=0,
                    status="skipped",
                    error_message=f"{self.name} credentials not configured",
                )
            )

        started = self._now()
        pages = [start_page + i for i in range(pages_to_fetch)]
        following_page = start_page + pages_to_fetch
        results = await asyncio.gather(
            *(self.fetch_page(lat, lng, radius_km, page) for page in pages),
            return_exceptions=True,
        )

        events: list[CanonicalEvent] = []
        seen_ids: set[str] = set()
        errors: list[str] = []
        has_more = False
        total: Optional[int] = None

        for page, result in zip(pages, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                errors.append(str(result))
                logger.warning(
                    "source_page_failed",
                    source=self.name,
                    page=page,
                    error=str(result),
                    error_type=type(result).__name__,
                )
                continue
            for event in result.events:
                if event.id not in seen_ids:
                    seen_ids.add(event.id)
                    events.append(event)
            # Pages inside the batch always point at their successor
            if result.next_page_token is not None and result.next_page_token >= following_page:
                has_more = True
            if result.total_available is not None:
                total = max(total or 0, result.total_available)

        if len(errors) == len(pages):
            status = "error"
        elif errors:
            status = "partial"
        else:
            status = "success"

        duration_ms = int((self._now() - started).total_seconds() * 1000)
        return SourceBatch(
            events=events,
            stats=FetchStats(
                source=self.name,
                count=len(events),
                status=status,
                pages_requested=len(pages),
                pages_failed=len(errors),
                duration_ms=duration_ms,
                error_message=errors[0] if errors else None,
            ),
            next_page_token=following_page if has_more else None,
            total_available=total,
        )

    def search_window(self) -> tuple[datetime, datetime]:
        """Start and end of the date range sent to providers.

        The start is floored to the hour so identical queries issued a few
        seconds apart produce the same request and can be coalesced.
        """
        start = self._now().astimezone(timezone.utc).replace(minute=0, second=0, microsecond=0)
        return start, start + timedelta(days=self.settings.search_window_days)


_TAG_RE = re.compile(r"<[^>]+>")
_WS_RE = re.compile(r"\s+")


def clean_description(text: Optional[str], max_length: int = DESCRIPTION_MAX_LENGTH) -> str:
    """Strip HTML and truncate to ``max_length`` characters."""
    if not text:
        return ""
    if _TAG_RE.search(text):
        text = BeautifulSoup(text, "html.parser").get_text(" ", strip=True)
    text = _WS_RE.sub(" ", text).strip()
    if len(text) <= max_length:
        return text
    return text[:max_length].rstrip() + "..."


def parse_float(value: Any) -> Optional[float]:
    """Parse a number that providers may send as a string."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).strip())
    except ValueError:
        return None


def parse_int(value: Any) -> Optional[int]:
    number = parse_float(value)
    return int(number) if number is not None else None


def parse_coordinate(value: Any, limit: float) -> Optional[float]:
    number = parse_float(value)
    if number is None or not -limit <= number <= limit:
        return None
    return number


def parse_utc(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO timestamp into an aware UTC datetime."""
    if not value:
        return None
    try:
        parsed = date_parser.isoparse(value)
    except (ValueError, OverflowError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def local_to_utc(
    day: Optional[str], clock_time: Optional[str], tz_name: Optional[str]
) -> Optional[datetime]:
    """Combine a local date and optional time into a UTC datetime.

    A missing time resolves to local midnight; callers flag it as TBA.
    """
    if not day:
        return None
    try:
        parsed_day: date = date_parser.isoparse(day).date()
    except (ValueError, OverflowError):
        return None

    parsed_time = time(0, 0)
    if clock_time:
        try:
            parsed_time = date_parser.parse(clock_time).time()
        except (ValueError, OverflowError):
            pass

    zone = tz.gettz(tz_name or DEFAULT_TIMEZONE) or tz.UTC
    local = datetime.combine(parsed_day, parsed_time).replace(tzinfo=zone)
    return local.astimezone(timezone.utc)


def local_date(moment: datetime, tz_name: Optional[str]) -> date:
    """Calendar date of ``moment`` in the event's own timezone."""
    zone = tz.gettz(tz_name or DEFAULT_TIMEZONE) or tz.UTC
    return moment.astimezone(zone).date()


def map_category(value: Optional[str], table: dict[str, str]) -> str:
    """Map a provider category onto the shared vocabulary."""
    if not value:
        return DEFAULT_CATEGORY
    return table.get(value.strip().lower(), DEFAULT_CATEGORY)


def unique(values: Iterable[Optional[str]]) -> list[str]:
    """Drop empties and repeats, keeping first-seen order."""
    seen: dict[str, None] = {}
    for value in values:
        if value:
            seen.setdefault(value, None)
    return list(seen)


def join_address(*parts: Optional[str]) -> Optional[str]:
    present = [p.strip() for p in parts if p and p.strip()]
    return ", ".join(present) if present else None
