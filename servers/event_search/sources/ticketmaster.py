"""
Ticketmaster Discovery API integration.

Rate limit: 5000 calls/day, 5 requests/second
Docs: https://developer.ticketmaster.com/products-and-docs/apis/discovery-api/v2/
"""

from datetime import datetime, timezone
from typing import Any, Optional

from ..extraction import (
    clean_description,
    category_image,
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


TICKETMASTER_BASE = "https://app.ticketmaster.com/discovery/v2"
MAX_FETCH_SIZE = 200
DEFAULT_RADIUS_MILES = 50

RATIO_PREFERENCE = {"16_9": 0, "3_2": 1, "4_3": 2}


def best_image(images: Any) -> Optional[str]:
    """Widest valid image, preferring 16:9, then 3:2, then 4:3, non-fallback first."""
    if not isinstance(images, list):
        return None
    candidates = [
        img for img in images
        if isinstance(img, dict) and is_valid_image_url(img.get("url"))
    ]
    if not candidates:
        return None
    candidates.sort(key=lambda img: (
        bool(img.get("fallback")),
        RATIO_PREFERENCE.get(img.get("ratio"), len(RATIO_PREFERENCE)),
        -(img.get("width") or 0),
    ))
    return candidates[0]["url"]


def _format_utc(value: datetime) -> str:
    """Discovery API timestamp. Naive values are taken as local time."""
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class TicketmasterSource(EventSource):
    name = "ticketmaster"
    display_name = "Ticketmaster"
    credential_env = "TICKETMASTER_API_KEY"

    @property
    def configured(self) -> bool:
        return bool(self.credentials.ticketmaster_api_key)

    def build_query(self, params: SearchParams) -> dict[str, Any]:
        start, end = self.date_window(params)
        query: dict[str, Any] = {
            "apikey": self.credentials.ticketmaster_api_key,
            "size": fetch_size(params, MAX_FETCH_SIZE),
            "page": 0,
            "sort": "relevance,desc",
            "includeSpellcheck": "yes",
            "startDateTime": _format_utc(start),
            "endDateTime": _format_utc(end),
        }

        if params.coordinates is not None:
            query["latlong"] = f"{params.coordinates.lat},{params.coordinates.lng}"
            query["radius"] = int(round(params.radius or DEFAULT_RADIUS_MILES))
            query["unit"] = "miles"
        elif params.location:
            city, _, state = params.location.partition(",")
            query["city"] = city.strip()
            if len(state.strip()) == 2:
                query["stateCode"] = state.strip().upper()

        if params.keyword:
            query["keyword"] = params.keyword
        if params.categories:
            query["classificationName"] = params.categories[0]
        return query

    async def _search(self, params: SearchParams) -> list[CanonicalEvent]:
        data = await self._get_json(f"{TICKETMASTER_BASE}/events.json", self.build_query(params))
        if not isinstance(data, dict):
            raise ProviderError("malformed response: expected a JSON object")
        # No "_embedded" means zero results
        return self._transform_all(path("_embedded", "events")(data) or [])

    async def _get_details(self, native_id: str) -> Optional[CanonicalEvent]:
        data = await self._get_json(
            f"{TICKETMASTER_BASE}/events/{native_id}.json",
            {"apikey": self.credentials.ticketmaster_api_key},
        )
        if not isinstance(data, dict) or not data.get("name"):
            return None
        return self.transform(data)

    def _start(self, raw: dict[str, Any]) -> tuple[Optional[datetime], bool]:
        local_date = path("dates", "start", "localDate")(raw)
        local_time = path("dates", "start", "localTime")(raw)
        if local_date:
            starts_at = parse_event_datetime(f"{local_date}T{local_time or '00:00:00'}", self._now())
            return starts_at, bool(local_time)
        starts_at = parse_event_datetime(path("dates", "start", "dateTime")(raw), self._now())
        return starts_at, starts_at is not None

    def _price(self, raw: dict[str, Any]) -> str:
        first = path("priceRanges", 0)(raw)
        if isinstance(first, dict):
            text = format_price_range(first.get("min"), first.get("max"))
            if text:
                return text
        if "free" in str(path("accessibility", "info")(raw) or "").lower():
            return "Free"
        return "Price TBA"

    def _category(self, raw: dict[str, Any]) -> str:
        for field in ("segment", "genre"):
            value = path("classifications", 0, field, "name")(raw)
            if value and value != "Undefined":
                return value
        return "Event"

    def _ticket_links(self, raw: dict[str, Any], venue: dict[str, Any]) -> list[TicketLink]:
        links: list[TicketLink] = []
        url = raw.get("url")
        if url:
            links.append(TicketLink(source="Ticketmaster", link=url))
            sale_start = parse_event_datetime(path("sales", "public", "startDateTime")(raw), self._now())
            if sale_start is not None and sale_start <= self._now():
                links.append(TicketLink(source="Buy Tickets", link=url))

        for presale in path("sales", "presales")(raw) or []:
            if isinstance(presale, dict) and (presale.get("url") or url):
                links.append(TicketLink(
                    source=presale.get("name") or "Presale",
                    link=presale.get("url") or url,
                ))

        phone = path("boxOfficeInfo", "phoneNumberDetail")(venue)
        if phone:
            links.append(TicketLink(source="Box Office", link=f"tel:{phone}"))
        return links

    def _organizer(self, raw: dict[str, Any]) -> Organizer:
        attraction = path("_embedded", "attractions", 0)(raw) or {}
        name = attraction.get("name") or path("promoter", "name")(raw) or "Event Organizer"
        avatar = best_image(attraction.get("images")) or "/avatar-1.png"
        return Organizer(name=name, avatar=avatar)

    def transform(self, raw: dict[str, Any]) -> CanonicalEvent:
        title = raw.get("name")
        if not title:
            raise ValueError("event has no name")

        starts_at, time_known = self._start(raw)
        category = self._category(raw)
        venue = path("_embedded", "venues", 0)(raw) or {}
        location = venue.get("name") or "Venue TBA"
        address = ", ".join(filter(None, [
            path("address", "line1")(venue),
            path("city", "name")(venue),
            path("state", "stateCode")(venue),
        ])) or "Address TBA"

        coordinates = None
        lat, lng = path("location", "latitude")(venue), path("location", "longitude")(venue)
        if lat is not None and lng is not None:
            coordinates = Coordinates(lat=float(lat), lng=float(lng))

        description = " ".join(filter(None, [
            raw.get("info") or raw.get("pleaseNote"),
            path("promoter", "description")(raw),
        ]))

        date = format_event_date(starts_at)
        attendees, estimated = self._attendees(None)
        native_id = raw.get("id")

        return CanonicalEvent(
            id=stable_event_id(native_id, title, date, location),
            title=title,
            description=clean_description(description),
            category=category,
            date=date,
            time=format_event_time(starts_at if time_known else None),
            location=location,
            address=address,
            price=self._price(raw),
            image=best_image(raw.get("images")) or category_image(category),
            organizer=self._organizer(raw),
            attendees=attendees,
            attendees_estimated=estimated,
            coordinates=coordinates,
            ticket_links=self._ticket_links(raw, venue),
            source=self.name,
            external_id=f"{self.name}:{native_id}" if native_id else None,
            starts_at=starts_at,
        )
