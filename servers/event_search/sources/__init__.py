"""
Event provider adapters.

Each adapter implements:
- fetch(params) -> (list[CanonicalEvent], FetchStats), never raising
- search(params) -> list[CanonicalEvent]
- get_details(native_id) -> CanonicalEvent | None
"""

from typing import Any, Iterable

from ..config.settings import ProviderCredentials
from .base import EventSource, ProviderError
from .eventbrite import EventbriteSource
from .predicthq import PredictHQSource
from .rapidapi import RapidAPISource
from .ticketmaster import TicketmasterSource

# Registry order is also the detail-lookup order
SOURCE_CLASSES: dict[str, type[EventSource]] = {
    "ticketmaster": TicketmasterSource,
    "eventbrite": EventbriteSource,
    "predicthq": PredictHQSource,
    "rapidapi": RapidAPISource,
}


def build_sources(
    enabled: Iterable[str] | None = None,
    credentials: ProviderCredentials | None = None,
    **kwargs: Any,
) -> list[EventSource]:
    """Instantiate adapters for ``enabled`` providers, in registry order."""
    credentials = credentials if credentials is not None else ProviderCredentials.from_env()
    wanted = set(SOURCE_CLASSES if enabled is None else enabled)
    return [
        cls(credentials, **kwargs)
        for name, cls in SOURCE_CLASSES.items()
        if name in wanted
    ]


__all__ = [
    "EventSource",
    "ProviderError",
    "TicketmasterSource",
    "EventbriteSource",
    "PredictHQSource",
    "RapidAPISource",
    "SOURCE_CLASSES",
    "build_sources",
]
