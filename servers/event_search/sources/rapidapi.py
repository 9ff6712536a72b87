"""
RapidAPI "Real-Time Events Search" integration.

A single upstream query under-returns, so one logical search fans out
into several sub-queries ("strategies") with their own size budgets.
Strategies run concurrently; a failed strategy drops only its slice.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Optional

import structlog

from ..dedup import remove_duplicate_events
from ..extraction import (
    RAPIDAPI_IMAGE_CANDIDATES,
    clean_description,
    extract_category,
    extract_image,
    extract_price,
    format_event_date,
    format_event_time,
    parse_event_datetime,
    path,
    stable_event_id,
)
from ..models import CanonicalEvent, Coordinates, Organizer, SearchParams, TicketLink
from .base import EventSource, ProviderError, fetch_size

logger = structlog.get_logger()


MAX_FETCH_SIZE = 100
DEFAULT_QUERY = "concert music festival entertainment"

POPULAR_QUERIES = (
    "concert",
    "music festival",
    "comedy show",
    "sports",
    "theater",
    "art",
    "food",
    "business",
    "conference",
)
POPULAR_QUERY_COUNT = 4


@dataclass(frozen=True)
class SearchStrategy:
    """One upstream sub-query and its share of the result budget."""

    name: str
    query: str
    size: int
    location: Optional[str] = None


def build_strategies(params: SearchParams, base_size: int) -> list[SearchStrategy]:
    """Diversified sub-queries for one logical search."""
    location = params.location
    if location is None and params.coordinates is not None:
        location = f"{params.coordinates.lat},{params.coordinates.lng}"

    strategies = []
    if params.keyword or location:
        strategies.append(SearchStrategy(
            name="user_query",
            query=params.keyword or "events entertainment",
            size=max(1, base_size // 2),
            location=location,
        ))

    for query in POPULAR_QUERIES[:POPULAR_QUERY_COUNT]:
        strategies.append(SearchStrategy(
            name=f"popular:{query}",
            query=query,
            size=max(1, base_size // 6),
            location=location,
        ))

    if location:
        strategies.append(SearchStrategy(
            name="location",
            query="entertainment events",
            size=max(1, base_size // 3),
            location=location,
        ))

    strategies.append(SearchStrategy(
        name="trending",
        query="trending popular events",
        size=max(1, base_size // 4),
        location=location,
    ))
    return strategies


class RapidAPISource(EventSource):
    name = "rapidapi"
    display_name = "RapidAPI Events"
    credential_env = "RAPIDAPI_KEY"

    @property
    def configured(self) -> bool:
        return bool(self.credentials.rapidapi_key)

    @property
    def base_url(self) -> str:
        return f"https://{self.credentials.rapidapi_host}"

    def _headers(self) -> dict[str, str]:
        return {
            "X-RapidAPI-Key": self.credentials.rapidapi_key or "",
            "X-RapidAPI-Host": self.credentials.rapidapi_host,
        }

    def build_query(self, params: SearchParams, strategy: SearchStrategy) -> dict[str, Any]:
        start, end = self.date_window(params)
        query: dict[str, Any] = {
            "query": strategy.query or DEFAULT_QUERY,
            "start_date": start.strftime("%Y-%m-%d"),
            "end_date": end.strftime("%Y-%m-%d"),
            "is_virtual": "false",
            "sort": "date",
            "limit": min(strategy.size, MAX_FETCH_SIZE),
            "include_description": "true",
            "include_venue": "true",
        }
        if strategy.location:
            query["location"] = strategy.location
        return query

    async def _run_strategy(self, params: SearchParams, strategy: SearchStrategy) -> list[CanonicalEvent]:
        data = await self._get_json(
            f"{self.base_url}/search-events",
            self.build_query(params, strategy),
            self._headers(),
        )
        if not isinstance(data, dict) or data.get("status") != "OK":
            status = data.get("status") if isinstance(data, dict) else type(data).__name__
            raise ProviderError(f"unexpected response status: {status}")
        return self._transform_all(data.get("data") or [])

    async def _search(self, params: SearchParams) -> list[CanonicalEvent]:
        base_size = fetch_size(params, MAX_FETCH_SIZE)
        strategies = build_strategies(params, base_size)

        results = await asyncio.gather(
            *(self._run_strategy(params, s) for s in strategies),
            return_exceptions=True,
        )

        merged: list[CanonicalEvent] = []
        failures: list[BaseException] = []
        for strategy, result in zip(strategies, results):
            if isinstance(result, BaseException):
                failures.append(result)
                logger.debug("rapidapi_strategy_failed", strategy=strategy.name, error=str(result))
                continue
            merged.extend(result)

        if failures and len(failures) == len(strategies):
            # Nothing worked; surface the first failure as the provider's error
            raise failures[0]

        return remove_duplicate_events(merged)[:base_size]

    async def _get_details(self, native_id: str) -> Optional[CanonicalEvent]:
        data = await self._get_json(
            f"{self.base_url}/event-details",
            {"event_id": native_id},
            self._headers(),
        )
        item = path("data")(data)
        if isinstance(item, list):
            item = item[0] if item else None
        return self.transform(item) if isinstance(item, dict) else None

    @staticmethod
    def _coordinates(raw: dict[str, Any]) -> Optional[Coordinates]:
        for lat_path, lng_path in (
            (("venue", "latitude"), ("venue", "longitude")),
            (("latitude",), ("longitude",)),
            (("lat",), ("lng",)),
        ):
            lat, lng = path(*lat_path)(raw), path(*lng_path)(raw)
            if lat is not None and lng is not None:
                return Coordinates(lat=float(lat), lng=float(lng))
        return None

    @staticmethod
    def _ticket_links(raw: dict[str, Any]) -> list[TicketLink]:
        links = []
        for ticket in raw.get("ticket_links") or []:
            if isinstance(ticket, dict) and ticket.get("link"):
                links.append(TicketLink(source=ticket.get("source") or "Tickets", link=ticket["link"]))
        if raw.get("link"):
            links.append(TicketLink(source=raw.get("publisher") or "Event Page", link=raw["link"]))
        return links

    def transform(self, raw: dict[str, Any]) -> CanonicalEvent:
        title = raw.get("name") or raw.get("title")
        if not title:
            raise ValueError("event has no name")

        starts_at = parse_event_datetime(
            raw.get("start_time") or raw.get("start_time_utc") or raw.get("date"),
            self._now(),
        )
        category = extract_category(raw)
        venue = raw.get("venue") if isinstance(raw.get("venue"), dict) else {}
        location = venue.get("name") or raw.get("venue_name") or "Venue TBA"
        address = venue.get("full_address") or raw.get("venue_address") or "Address TBA"

        organizer = raw.get("organizer")
        organizer_name = (
            organizer if isinstance(organizer, str) and organizer.strip()
            else path("organizer", "name")(raw) or venue.get("name") or "Event Organizer"
        )

        date = format_event_date(starts_at)
        attendees, estimated = self._attendees(raw.get("attendee_count"))
        native_id = raw.get("event_id") or raw.get("id")

        return CanonicalEvent(
            id=stable_event_id(native_id, title, date, location),
            title=title,
            description=clean_description(raw.get("description")),
            category=category,
            date=date,
            time=format_event_time(starts_at),
            location=location,
            address=address,
            price=extract_price(raw),
            image=extract_image(raw, RAPIDAPI_IMAGE_CANDIDATES, category),
            organizer=Organizer(name=organizer_name),
            attendees=attendees,
            attendees_estimated=estimated,
            coordinates=self._coordinates(raw),
            ticket_links=self._ticket_links(raw),
            source=self.name,
            external_id=f"{self.name}:{native_id}" if native_id else None,
            starts_at=starts_at,
        )
