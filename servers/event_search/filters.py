"""Result filters, sorting and pagination applied after dedup."""

import math
import re
import sys
from datetime import datetime
from typing import Iterable, Optional

from .dedup import haversine_km
from .extraction import DEFAULT_EVENT_IMAGE, NO_DESCRIPTION, parse_event_datetime
from .models import (
    CanonicalEvent,
    Coordinates,
    DateRange,
    FilterOptions,
    PriceRange,
    SearchParams,
    SortOrder,
)


KM_PER_MILE = 1.609344
# Absorbs floating point noise at the radius boundary
DISTANCE_TOLERANCE_MILES = 1e-9

PRICE_RANGES = ["Free", "$1-$25", "$26-$50", "$51-$100", "$100+"]

PLACEHOLDER_IMAGES = {DEFAULT_EVENT_IMAGE, "/placeholder.svg"}
PLACEHOLDER_IMAGE_MARKERS = ("placeholder", "event-", "?height=", "?text=")

BOILERPLATE_DESCRIPTIONS = {
    "No description available",
    NO_DESCRIPTION,
    "This is a sample event. Please try again later.",
}
BOILERPLATE_MARKERS = ("TBA", "To be announced", "No description")
BOILERPLATE_MARKERS_CI = ("coming soon", "more details")

DOLLAR_PATTERN = re.compile(r"\$(\d+)")

UNPRICED = sys.maxsize


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------

def has_real_image(event: CanonicalEvent) -> bool:
    image = event.image or ""
    if not image or image in PLACEHOLDER_IMAGES:
        return False
    if any(marker in image for marker in PLACEHOLDER_IMAGE_MARKERS):
        return False
    return image.startswith("http") and len(image) > 20


def has_real_description(event: CanonicalEvent) -> bool:
    description = (event.description or "").strip()
    if len(description) <= 50 or description in BOILERPLATE_DESCRIPTIONS:
        return False
    if any(marker in description for marker in BOILERPLATE_MARKERS):
        return False
    lowered = description.lower()
    return not any(marker in lowered for marker in BOILERPLATE_MARKERS_CI)


def passes_content_quality(event: CanonicalEvent) -> bool:
    """Both a real image and a real description are required."""
    return has_real_image(event) and has_real_description(event)


def distance_miles(origin: Coordinates, target: Coordinates) -> float:
    return haversine_km(origin.lat, origin.lng, target.lat, target.lng) / KM_PER_MILE


def within_radius(event: CanonicalEvent, origin: Coordinates, radius_miles: float) -> bool:
    if event.coordinates is None:
        return False
    return distance_miles(origin, event.coordinates) <= radius_miles + DISTANCE_TOLERANCE_MILES


def matches_price_range(event: CanonicalEvent, price_range: PriceRange) -> bool:
    price = event.price.lower()
    if price == "free":
        return price_range.min == 0
    match = DOLLAR_PATTERN.search(event.price)
    if match:
        amount = int(match.group(1))
        upper = math.inf if price_range.max is None else price_range.max
        return price_range.min <= amount <= upper
    # No parseable amount: benefit of the doubt
    return True


def event_start(event: CanonicalEvent) -> Optional[datetime]:
    """Start time from the event, falling back to parsing its display date."""
    if event.starts_at is not None:
        return event.starts_at
    return parse_event_datetime(event.date)


def in_date_range(event: CanonicalEvent, date_range: DateRange) -> bool:
    start = event_start(event)
    if start is None:
        return False
    # Compared by calendar day so the end date is inclusive
    return date_range.start.date() <= start.date() <= date_range.end.date()


def apply_filters(events: Iterable[CanonicalEvent], params: SearchParams) -> list[CanonicalEvent]:
    """Content quality, then geo, price and date range when requested."""
    filtered = [e for e in events if passes_content_quality(e)]

    if params.coordinates is not None and params.radius is not None:
        filtered = [e for e in filtered if within_radius(e, params.coordinates, params.radius)]

    if params.price_range is not None:
        filtered = [e for e in filtered if matches_price_range(e, params.price_range)]

    if params.date_range is not None:
        filtered = [e for e in filtered if in_date_range(e, params.date_range)]

    return filtered


# ---------------------------------------------------------------------------
# Sorting and pagination
# ---------------------------------------------------------------------------

def extract_price_value(price: str) -> int:
    """Numeric sort value for a price string, unparseable prices sort last."""
    if price.lower() == "free":
        return 0
    match = DOLLAR_PATTERN.search(price)
    return int(match.group(1)) if match else UNPRICED


def sort_events(
    events: list[CanonicalEvent],
    sort: SortOrder = "date",
    origin: Optional[Coordinates] = None,
) -> list[CanonicalEvent]:
    """Return a sorted copy. Python's sort is stable, so ties keep input order."""
    if sort == "date":
        # Undated events go last
        return sorted(events, key=lambda e: (event_start(e) is None, event_start(e) or datetime.min))
    if sort == "distance":
        if origin is None:
            return list(events)
        return sorted(
            events,
            key=lambda e: distance_miles(origin, e.coordinates) if e.coordinates else math.inf,
        )
    if sort == "popularity":
        return sorted(events, key=lambda e: e.attendees, reverse=True)
    if sort == "price":
        return sorted(events, key=lambda e: extract_price_value(e.price))
    if sort == "alphabetical":
        return sorted(events, key=lambda e: e.title.lower())
    return list(events)


def paginate(events: list[CanonicalEvent], page: int, size: int) -> list[CanonicalEvent]:
    start = page * size
    return events[start:start + size]


def total_pages(total_count: int, size: int) -> int:
    return math.ceil(total_count / size) if size > 0 else 0


def generate_filter_options(events: Iterable[CanonicalEvent]) -> FilterOptions:
    """Facets (categories, price ranges, locations) for a result set."""
    categories: set[str] = set()
    locations: set[str] = set()
    for event in events:
        if event.category:
            categories.add(event.category)
        city = event.address.split(",")[-1].strip()
        if city and city.lower() != "address tba":
            locations.add(city)
    return FilterOptions(
        categories=sorted(categories),
        price_ranges=list(PRICE_RANGES),
        locations=sorted(locations),
    )
