"""
Event deduplication.

Two passes are available:
- remove_duplicate_events: exact composite key (lowercased title, date,
  lowercased location), first occurrence wins. This is the identity the
  aggregator always applies.
- deduplicate: optional fuzzy pass using weighted similarity
  (title 40%, venue 25%, date 15%, time 10%, location 10%), keeping
  the most complete event of each group.
"""

import math
import re
from typing import Iterable, Optional

from rapidfuzz import fuzz
import structlog

from .extraction import DEFAULT_EVENT_IMAGE
from .models import CanonicalEvent, DedupeResult, DuplicateMatch

logger = structlog.get_logger()


WEIGHTS = {
    "title": 0.40,
    "venue": 0.25,
    "date": 0.15,
    "time": 0.10,
    "location": 0.10,
}

THRESHOLD = 0.85

SOURCE_PRIORITY = {
    "ticketmaster": 20,
    "eventbrite": 15,
    "rapidapi": 10,
}

TBA_VALUES = {"venue tba", "address tba", "date tba", "time tba", "tba"}

TIME_PATTERN = re.compile(r"(\d{1,2}):?(\d{2})?\s*(am|pm)?", re.IGNORECASE)


def remove_duplicate_events(events: Iterable[CanonicalEvent]) -> list[CanonicalEvent]:
    """Drop events whose dedup key was already seen, preserving order."""
    seen: set[str] = set()
    unique: list[CanonicalEvent] = []
    for event in events:
        key = event.dedup_key
        if key in seen:
            continue
        seen.add(key)
        unique.append(event)
    return unique


def normalize_text(text: str) -> str:
    """Lowercase, strip punctuation and collapse whitespace."""
    if not text:
        return ""
    text = re.sub(r"[^\w\s]", "", text.lower())
    return re.sub(r"\s+", " ", text).strip()


def normalize_venue_name(name: str) -> str:
    """Normalize venue name for comparison."""
    name = normalize_text(name)
    if name in TBA_VALUES:
        return ""

    suffixes = [
        " bar", " pub", " club", " lounge", " theater", " theatre",
        " hall", " venue", " room", " stage", " arena", " center",
        " stadium", " amphitheater", " ballroom",
    ]
    for suffix in suffixes:
        if name.endswith(suffix):
            name = name[:-len(suffix)].strip()

    if name.startswith("the "):
        name = name[4:]

    return name


def _parse_time(text: str) -> Optional[tuple[int, int]]:
    match = TIME_PATTERN.search(text or "")
    if not match:
        return None
    hours = int(match.group(1))
    minutes = int(match.group(2) or 0)
    period = (match.group(3) or "").upper()
    if period == "PM" and hours != 12:
        hours += 12
    if period == "AM" and hours == 12:
        hours = 0
    return hours, minutes


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in kilometers (Earth radius 6371 km)."""
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    return 6371 * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def calculate_title_similarity(e1: CanonicalEvent, e2: CanonicalEvent) -> float:
    t1 = normalize_text(e1.title)
    t2 = normalize_text(e2.title)
    if not t1 or not t2:
        return 0.0
    # Word order independent
    return fuzz.token_sort_ratio(t1, t2) / 100


def calculate_venue_similarity(e1: CanonicalEvent, e2: CanonicalEvent) -> float:
    v1 = normalize_venue_name(e1.location)
    v2 = normalize_venue_name(e2.location)
    if not v1 or not v2:
        return 0.0
    return fuzz.ratio(v1, v2) / 100


def calculate_date_similarity(e1: CanonicalEvent, e2: CanonicalEvent) -> float:
    if e1.starts_at and e2.starts_at:
        days = abs((e1.starts_at.date() - e2.starts_at.date()).days)
        if days == 0:
            return 1.0
        return 0.5 if days == 1 else 0.0
    if e1.date.lower() in TBA_VALUES or e2.date.lower() in TBA_VALUES:
        return 0.0
    return 1.0 if e1.date == e2.date else 0.0


def calculate_time_similarity(e1: CanonicalEvent, e2: CanonicalEvent) -> float:
    t1 = _parse_time(e1.time)
    t2 = _parse_time(e2.time)
    if not t1 or not t2:
        return 0.0
    minutes = abs((t1[0] * 60 + t1[1]) - (t2[0] * 60 + t2[1]))
    if minutes == 0:
        return 1.0
    if minutes <= 30:
        return 0.8
    if minutes <= 60:
        return 0.6
    if minutes <= 120:
        return 0.3
    return 0.0


def calculate_location_similarity(e1: CanonicalEvent, e2: CanonicalEvent) -> float:
    if e1.coordinates and e2.coordinates:
        distance = haversine_km(
            e1.coordinates.lat, e1.coordinates.lng,
            e2.coordinates.lat, e2.coordinates.lng,
        )
        if distance < 0.1:
            return 1.0
        if distance < 1:
            return 0.8
        if distance < 5:
            return 0.6
        if distance < 10:
            return 0.4
        return 0.0

    a1 = normalize_text(e1.address)
    a2 = normalize_text(e2.address)
    if not a1 or not a2 or a1 in TBA_VALUES or a2 in TBA_VALUES:
        return 0.0
    return fuzz.ratio(a1, a2) / 100


def calculate_similarity(
    e1: CanonicalEvent,
    e2: CanonicalEvent,
    weights: Optional[dict[str, float]] = None,
) -> dict[str, float]:
    """Weighted similarity between two events, with per-field scores."""
    weights = weights or WEIGHTS
    scores = {
        "title": calculate_title_similarity(e1, e2),
        "venue": calculate_venue_similarity(e1, e2),
        "date": calculate_date_similarity(e1, e2),
        "time": calculate_time_similarity(e1, e2),
        "location": calculate_location_similarity(e1, e2),
    }
    scores["total"] = sum(weights.get(field, 0.0) * value for field, value in scores.items())
    return scores


def event_quality(event: CanonicalEvent) -> int:
    """Completeness score used to pick the event kept from a duplicate group."""
    score = 0
    if event.image and event.image != DEFAULT_EVENT_IMAGE and event.image.startswith("http"):
        score += 20
    if len(event.description) > 100:
        score += 15
    if len(event.description) > 300:
        score += 10
    if normalize_venue_name(event.location):
        score += 15
    if event.address and event.address.lower() not in TBA_VALUES:
        score += 10
    if event.coordinates:
        score += 10
    if event.ticket_links:
        score += 15
    if event.price not in ("Free", "Price TBA"):
        score += 5
    if event.organizer.name and event.organizer.name != "Event Organizer":
        score += 10
    score += SOURCE_PRIORITY.get(event.source or "", 0)
    return score


def deduplicate(
    events: list[CanonicalEvent],
    threshold: float = THRESHOLD,
    weights: Optional[dict[str, float]] = None,
) -> DedupeResult:
    """
    Group near-duplicate events and keep the best of each group.

    Args:
        events: Events to deduplicate (order is preserved for kept events)
        threshold: Similarity threshold (0-1)
        weights: Optional custom weights dict

    Returns:
        DedupeResult with deduplicated events and audit trail
    """
    if not events:
        return DedupeResult(events=[], original_count=0, duplicates_removed=0)

    merged: set[int] = set()
    kept: list[CanonicalEvent] = []
    audit_trail: list[DuplicateMatch] = []

    for i, event in enumerate(events):
        if i in merged:
            continue

        group: list[tuple[CanonicalEvent, dict[str, float]]] = []
        for j in range(i + 1, len(events)):
            if j in merged:
                continue
            scores = calculate_similarity(event, events[j], weights)
            if scores["total"] >= threshold:
                merged.add(j)
                group.append((events[j], scores))

        if not group:
            kept.append(event)
            continue

        best = max([event] + [dup for dup, _ in group], key=event_quality)
        kept.append(best)

        for dup, scores in [(event, None)] + group:
            if dup is best:
                continue
            scores = scores or calculate_similarity(best, dup, weights)
            audit_trail.append(DuplicateMatch(
                kept_event_id=best.id,
                merged_event_id=dup.id,
                similarity_score=scores["total"],
                title_similarity=scores["title"],
                venue_similarity=scores["venue"],
                date_similarity=scores["date"],
                time_similarity=scores["time"],
                location_similarity=scores["location"],
                reason=f"Dropped '{dup.title}' ({dup.source}) in favor of '{best.title}' ({best.source})",
            ))

    result = DedupeResult(
        events=kept,
        original_count=len(events),
        duplicates_removed=len(events) - len(kept),
        audit_trail=audit_trail,
    )
    if result.duplicates_removed:
        logger.debug(
            "fuzzy_dedup_complete",
            original=result.original_count,
            removed=result.duplicates_removed,
        )
    return result


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
        lines.append(f"  - {match.reason} (similarity: {match.similarity_score:.0%})")
    return "\n".join(lines)
