"""Shared pytest fixtures for event search tests."""

from datetime import datetime, timedelta
from typing import Any, Optional

import pytest

from servers.event_search.config.settings import ProviderCredentials
from servers.event_search.extraction import format_event_date, format_event_time
from servers.event_search.models import CanonicalEvent, Coordinates, SearchParams
from servers.event_search.sources.base import EventSource

FIXED_NOW = datetime(2025, 6, 1, 12, 0)

NYC = Coordinates(lat=40.7128, lng=-74.0060)

LONG_DESCRIPTION = (
    "An evening of live music with three local bands, food trucks outside "
    "and a late set from the headliner."
)


def make_event(**overrides: Any) -> CanonicalEvent:
    """Build a CanonicalEvent that passes the content quality filter."""
    starts_at = overrides.pop("starts_at", FIXED_NOW + timedelta(days=7, hours=8))
    fields: dict[str, Any] = {
        "id": 1,
        "title": "Summer Jazz Night",
        "description": LONG_DESCRIPTION,
        "category": "Music",
        "date": format_event_date(starts_at),
        "time": format_event_time(starts_at),
        "location": "Blue Note",
        "address": "131 W 3rd St, New York, NY",
        "price": "$25",
        "image": "https://images.example.com/photos/jazz-night.jpg",
        "attendees": 300,
        "coordinates": NYC,
        "source": "ticketmaster",
        "starts_at": starts_at,
    }
    fields.update(overrides)
    return CanonicalEvent(**fields)


class FakeClock:
    """Manually advanced clock returning seconds."""

    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class StubSource(EventSource):
    """Adapter returning canned events, or failing with ``error``."""

    def __init__(
        self,
        name: str = "ticketmaster",
        events: Optional[list[CanonicalEvent]] = None,
        error: Optional[Exception] = None,
        configured: bool = True,
        details: Optional[dict[str, CanonicalEvent]] = None,
        **kwargs: Any,
    ):
        kwargs.setdefault("clock", lambda: FIXED_NOW)
        super().__init__(ProviderCredentials(), **kwargs)
        self.name = name
        self.display_name = name.title()
        self.credential_env = f"{name.upper()}_API_KEY"
        self.events = events or []
        self.error = error
        self._configured = configured
        self.details = details or {}
        self.calls = 0
        self.detail_calls = 0

    @property
    def configured(self) -> bool:
        return self._configured

    async def _search(self, params: SearchParams) -> list[CanonicalEvent]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.events)

    async def _get_details(self, native_id: str) -> Optional[CanonicalEvent]:
        self.detail_calls += 1
        return self.details.get(native_id)

    def transform(self, raw: dict[str, Any]) -> CanonicalEvent:
        return CanonicalEvent(**raw)


class RaisingSource(StubSource):
    """Adapter whose fetch breaks its never-raise contract."""

    async def fetch(self, params: SearchParams):
        self.calls += 1
        raise RuntimeError("adapter exploded")


@pytest.fixture
def fixed_now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def credentials() -> ProviderCredentials:
    """Credentials for every provider."""
    return ProviderCredentials(
        ticketmaster_api_key="tm-key",
        eventbrite_private_token="eb-token",
        predicthq_api_key="phq-key",
        rapidapi_key="rapid-key",
    )


@pytest.fixture
def sample_event() -> CanonicalEvent:
    return make_event()


@pytest.fixture
def sample_events() -> list[CanonicalEvent]:
    """Four events, one an exact duplicate of the first from another provider."""
    return [
        make_event(id=1, title="Summer Jazz Night", source="ticketmaster", attendees=300),
        make_event(id=2, title="SUMMER JAZZ NIGHT", location="BLUE NOTE", source="eventbrite", attendees=120),
        make_event(
            id=3,
            title="Indie Rock Showcase",
            location="Bowery Ballroom",
            address="6 Delancey St, New York, NY",
            price="Free",
            attendees=800,
            starts_at=FIXED_NOW + timedelta(days=3, hours=8),
            source="eventbrite",
        ),
        make_event(
            id=4,
            title="Food Truck Festival",
            category="Food",
            location="Smorgasburg",
            address="90 Kent Ave, Brooklyn",
            price="$10 - $40",
            attendees=50,
            starts_at=FIXED_NOW + timedelta(days=10, hours=2),
            source="rapidapi",
        ),
    ]
