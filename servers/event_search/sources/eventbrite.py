"""
Eventbrite API integration.

Auth: private OAuth token (falls back to the public token)
Docs: https://www.eventbrite.com/platform/api
"""

from typing import Any, Optional

from ..extraction import (
    Candidate,
    clean_description,
    extract_image,
    format_event_date,
    format_event_time,
    format_price_range,
    is_valid_image_url,
    parse_event_datetime,
    path,
    stable_event_id,
)
from ..models import CanonicalEvent, Coordinates, Organizer, SearchParams, TicketLink
from .base import EventSource, ProviderError, fetch_size


EVENTBRITE_BASE = "https://www.eventbriteapi.com/v3"
MAX_PAGE_SIZE = 50
DEFAULT_RADIUS_MILES = 25
EXPANSIONS = "venue,organizer,ticket_availability"

EVENTBRITE_IMAGE_CANDIDATES: tuple[Candidate, ...] = (
    ("logo.original.url", path("logo", "original", "url")),
    ("logo.url", path("logo", "url")),
    ("image.original.url", path("image", "original", "url")),
    ("image.url", path("image", "url")),
    ("organizer.logo.url", path("organizer", "logo", "url")),
    ("venue.image.url", path("venue", "image", "url")),
)


class EventbriteSource(EventSource):
    name = "eventbrite"
    display_name = "Eventbrite"
    credential_env = "EVENTBRITE_PRIVATE_TOKEN"

    @property
    def token(self) -> Optional[str]:
        return self.credentials.eventbrite_private_token or self.credentials.eventbrite_public_token

    @property
    def configured(self) -> bool:
        return bool(self.token)

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}

    def build_query(self, params: SearchParams) -> dict[str, Any]:
        start, end = self.date_window(params)
        query: dict[str, Any] = {
            "expand": EXPANSIONS,
            "page_size": fetch_size(params, MAX_PAGE_SIZE),
            "page": 1,
            "sort_by": "date",
            "start_date.range_start": start.strftime("%Y-%m-%dT%H:%M:%SZ"),
            "start_date.range_end": end.strftime("%Y-%m-%dT%H:%M:%SZ"),
        }
        if params.keyword:
            query["q"] = params.keyword
        if params.coordinates is not None:
            query["location.latitude"] = params.coordinates.lat
            query["location.longitude"] = params.coordinates.lng
        elif params.location:
            query["location.address"] = params.location
        if params.coordinates is not None or params.location:
            query["location.within"] = f"{int(round(params.radius or DEFAULT_RADIUS_MILES))}mi"
        return query

    async def _search(self, params: SearchParams) -> list[CanonicalEvent]:
        data = await self._get_json(
            f"{EVENTBRITE_BASE}/events/search/",
            self.build_query(params),
            self._headers(),
        )
        if not isinstance(data, dict):
            raise ProviderError("malformed response: expected a JSON object")
        return self._transform_all(data.get("events") or [])

    async def _get_details(self, native_id: str) -> Optional[CanonicalEvent]:
        data = await self._get_json(
            f"{EVENTBRITE_BASE}/events/{native_id}/",
            {"expand": EXPANSIONS},
            self._headers(),
        )
        if not isinstance(data, dict) or not data.get("id"):
            return None
        return self.transform(data)

    def _price(self, raw: dict[str, Any]) -> str:
        if raw.get("is_free") is True:
            return "Free"
        text = format_price_range(
            path("ticket_availability", "minimum_ticket_price", "major_value")(raw),
            path("ticket_availability", "maximum_ticket_price", "major_value")(raw),
        )
        return text or "Tickets Available"

    def transform(self, raw: dict[str, Any]) -> CanonicalEvent:
        title = path("name", "text")(raw) or (raw.get("name") if isinstance(raw.get("name"), str) else None)
        if not title:
            raise ValueError("event has no name")

        starts_at = parse_event_datetime(
            path("start", "local")(raw) or path("start", "utc")(raw), self._now()
        )
        category = path("category", "name")(raw) or path("subcategory", "name")(raw) or "Event"

        venue = raw.get("venue") or {}
        location = venue.get("name") or "Venue TBA"
        address_parts = [
            path("address", field)(venue)
            for field in ("address_1", "city", "region", "country")
        ]
        address = (
            ", ".join(filter(None, address_parts))
            or path("address", "localized_address_display")(venue)
            or "Address TBA"
        )

        coordinates = None
        lat = venue.get("latitude") or path("address", "latitude")(venue)
        lng = venue.get("longitude") or path("address", "longitude")(venue)
        if lat is not None and lng is not None:
            coordinates = Coordinates(lat=float(lat), lng=float(lng))

        organizer = raw.get("organizer") or {}
        logo = path("logo", "url")(organizer)

        date = format_event_date(starts_at)
        attendees, estimated = self._attendees(None)
        native_id = raw.get("id")
        url = raw.get("url")

        return CanonicalEvent(
            id=stable_event_id(native_id, title, date, location),
            title=title,
            description=clean_description(
                path("description", "text")(raw)
                or raw.get("summary")
                or path("description", "html")(raw)
            ),
            category=category,
            date=date,
            time=format_event_time(starts_at),
            location=location,
            address=address,
            price=self._price(raw),
            image=extract_image(raw, EVENTBRITE_IMAGE_CANDIDATES, category),
            organizer=Organizer(
                name=organizer.get("name") or "Event Organizer",
                avatar=logo if is_valid_image_url(logo) else "/avatar-1.png",
            ),
            attendees=attendees,
            attendees_estimated=estimated,
            coordinates=coordinates,
            ticket_links=[TicketLink(source="Eventbrite", link=url)] if url else [],
            source=self.name,
            external_id=f"{self.name}:{native_id}" if native_id else None,
            starts_at=starts_at,
        )
