"""
Cross-source deduplication for events.

Two keys identify the same real-world event:
- Primary: alphanumeric-lowercase name + local calendar date + location
  bucket (coordinates rounded to ~1km, else normalized venue name/address)
- Fuzzy: first few significant words of the name + local calendar date,
  catching near-duplicate titles such as "Artist - Tour" vs "Artist: The Tour"

Events sharing either key collapse to one record. The survivor is the one
from the highest-priority source, then the most complete, then the lowest
id, so the outcome does not depend on the order pages arrived in.
"""

from typing import Optional

from rapidfuzz import fuzz
from rapidfuzz.utils import default_process

from .config import DedupConfig
from .geo import location_bucket
from .models import CanonicalEvent, DedupeResult, DuplicateMatch
from .sources.base import local_date

NO_DATE = "nodate"
NO_VENUE = "novenue"
PLACEHOLDER_VENUES = {"venuetba", "tba", "tbc"}


def normalize_name(text: str) -> str:
    """Lowercase and keep only letters and digits."""
    if not text:
        return ""
    return default_process(text).replace(" ", "")


def significant_words(text: str, config: DedupConfig) -> list[str]:
    """Words long enough to matter, minus articles and connectors."""
    if not text:
        return []
    return [
        word
        for word in default_process(text).split()
        if len(word) >= config.fuzzy_min_word_length and word not in config.stopwords
    ]


def event_date_key(event: CanonicalEvent) -> str:
    """Calendar date in the event's own timezone."""
    if event.start is None:
        return NO_DATE
    return local_date(event.start, event.timing.timezone).isoformat()


def location_key(event: CanonicalEvent, config: DedupConfig) -> str:
    venue = event.venue
    if venue.latitude is not None and venue.longitude is not None:
        return location_bucket(venue.latitude, venue.longitude, config.location_precision)

    venue_name = normalize_name(venue.name)
    if venue_name and venue_name not in PLACEHOLDER_VENUES:
        return f"venue:{venue_name}"
    address = normalize_name(venue.address or "")
    if address:
        return f"addr:{address}"
    return NO_VENUE


def primary_key(event: CanonicalEvent, config: Optional[DedupConfig] = None) -> str:
    config = config or DedupConfig()
    return f"{normalize_name(event.name)}|{event_date_key(event)}|{location_key(event, config)}"


def fuzzy_key(event: CanonicalEvent, config: Optional[DedupConfig] = None) -> Optional[str]:
    """Approximate key, or None for undated events and names with too few
    significant words."""
    config = config or DedupConfig()
    if event.start is None:
        return None
    words = significant_words(event.name, config)[: config.fuzzy_word_count]
    if len(words) < config.fuzzy_min_significant_words:
        return None
    return f"{' '.join(words)}|{event_date_key(event)}"


def rank(event: CanonicalEvent) -> tuple[int, int, str]:
    """Sort key; the smallest rank survives a collision."""
    return (event.source.priority, -event.completeness, event.id)


def deduplicate(
    events: list[CanonicalEvent], config: Optional[DedupConfig] = None
) -> DedupeResult:
    """
    Collapse events reported by more than one source.

    Args:
        events: Events from all sources, in any order
        config: Key-building thresholds

    Returns:
        DedupeResult with surviving events (input order) and audit trail
    """
    config = config or DedupConfig()
    if not events:
        return DedupeResult(events=[], original_count=0, duplicates_removed=0)

    claimed: dict[str, CanonicalEvent] = {}
    kept_ids: set[str] = set()
    audit_trail: list[DuplicateMatch] = []

    # Best-ranked first, so whoever claims a key first is the survivor
    for event in sorted(events, key=rank):
        keys = [("id", f"id:{event.id}"), ("primary", f"p:{primary_key(event, config)}")]
        fkey = fuzzy_key(event, config)
        if fkey is not None:
            keys.append(("fuzzy", f"f:{fkey}"))

        match = next(((kind, key) for kind, key in keys if key in claimed), None)
        if match is None:
            kept_ids.add(event.id)
            for _, key in keys:
                claimed[key] = event
            continue

        kind, key = match
        winner = claimed[key]
        for _, other_key in keys:
            claimed.setdefault(other_key, winner)
        if kind == "id":
            # Same record seen on two pages; not a cross-source duplicate
            continue

        audit_trail.append(
            DuplicateMatch(
                kept_event_id=winner.id,
                merged_event_id=event.id,
                match_type=kind,
                key=key.split(":", 1)[1],
                name_similarity=fuzz.token_sort_ratio(
                    default_process(winner.name), default_process(event.name)
                ) / 100,
                reason=(
                    f"Dropped '{event.name}' ({event.source.value}) in favour of "
                    f"'{winner.name}' ({winner.source.value})"
                ),
            )
        )

    survivors: list[CanonicalEvent] = []
    for event in events:
        if event.id in kept_ids:
            survivors.append(event)
            kept_ids.discard(event.id)

    return DedupeResult(
        events=survivors,
        original_count=len(events),
        duplicates_removed=len(events) - len(survivors),
        audit_trail=audit_trail,
    )


def format_audit_summary(result: DedupeResult) -> str:
    """Format audit trail as human-readable summary."""
    if not result.audit_trail:
        return "No duplicates found."

    lines = [
        "Deduplication Summary:",
        f"  Original events: {result.original_count}",
        f"  Duplicates removed: {result.duplicates_removed}",
        f"  Final events: {len(result.events)}",
        f"  Dedup rate: {result.dedup_rate:.1f}%",
        "",
        "Dropped events:",
    ]

    for match in result.audit_trail:
        lines.append(f"  - {match.reason} ({match.match_type} match)")

    return "\n".join(lines)
