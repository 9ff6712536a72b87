"""
PredictHQ Events API integration.

Event intelligence data: no images or prices, but real attendance
estimates (phq_attendance) and precise geocoding.
Docs: https://docs.predicthq.com/api/events/search-events
"""

from datetime import datetime
from typing import Any, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..extraction import (
    category_image,
    clean_description,
    format_event_date,
    format_event_time,
    parse_event_datetime,
    path,
    stable_event_id,
)
from ..models import CanonicalEvent, Coordinates, Organizer, SearchParams, TicketLink
from .base import EventSource, ProviderError, fetch_size


PREDICTHQ_BASE = "https://api.predicthq.com/v1"
MAX_LIMIT = 50
DEFAULT_RADIUS_MILES = 25


class PredictHQSource(EventSource):
    name = "predicthq"
    display_name = "PredictHQ"
    credential_env = "PREDICTHQ_API_KEY"

    @property
    def configured(self) -> bool:
        return bool(self.credentials.predicthq_api_key)

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.credentials.predicthq_api_key}",
            "Accept": "application/json",
        }

    def build_query(self, params: SearchParams) -> dict[str, Any]:
        start, end = self.date_window(params)
        query: dict[str, Any] = {
            "limit": fetch_size(params, MAX_LIMIT),
            "sort": "start",
            "active.gte": start.strftime("%Y-%m-%d"),
            "active.lte": end.strftime("%Y-%m-%d"),
        }
        if params.keyword:
            query["q"] = params.keyword
        # PredictHQ only filters by point + radius, free-text places are ignored
        if params.coordinates is not None:
            radius = int(round(params.radius or DEFAULT_RADIUS_MILES))
            query["within"] = f"{radius}mi@{params.coordinates.lat},{params.coordinates.lng}"
        if params.categories:
            query["category"] = ",".join(c.lower() for c in params.categories)
        return query

    async def _search(self, params: SearchParams) -> list[CanonicalEvent]:
        data = await self._get_json(f"{PREDICTHQ_BASE}/events/", self.build_query(params), self._headers())
        if not isinstance(data, dict):
            raise ProviderError("malformed response: expected a JSON object")
        return self._transform_all(data.get("results") or [])

    async def _get_details(self, native_id: str) -> Optional[CanonicalEvent]:
        data = await self._get_json(f"{PREDICTHQ_BASE}/events/", {"id": native_id}, self._headers())
        first = path("results", 0)(data)
        return self.transform(first) if isinstance(first, dict) else None

    def _start(self, raw: dict[str, Any]) -> Optional[datetime]:
        start = parse_event_datetime(raw.get("start_local") or None, self._now())
        if start is not None:
            return start
        value = raw.get("start")
        tz_name = raw.get("timezone")
        if isinstance(value, str) and tz_name:
            try:
                aware = datetime.fromisoformat(value.replace("Z", "+00:00"))
                local = aware.astimezone(ZoneInfo(tz_name)).replace(tzinfo=None)
                return parse_event_datetime(local, self._now())
            except (ValueError, ZoneInfoNotFoundError):
                pass
        return parse_event_datetime(value, self._now())

    @staticmethod
    def _coordinates(raw: dict[str, Any]) -> Optional[Coordinates]:
        # GeoJSON order: [longitude, latitude]
        point = raw.get("location") or path("geo", "geometry", "coordinates")(raw)
        if isinstance(point, list) and len(point) == 2:
            return Coordinates(lat=float(point[1]), lng=float(point[0]))
        return None

    def transform(self, raw: dict[str, Any]) -> CanonicalEvent:
        title = raw.get("title")
        if not title:
            raise ValueError("event has no title")

        starts_at = self._start(raw)
        category = str(raw.get("category") or "Event").replace("-", " ").title()

        entities = [e for e in raw.get("entities") or [] if isinstance(e, dict)]
        venue = next((e for e in entities if e.get("type") == "venue"), {})
        other = next((e for e in entities if e.get("type") != "venue" and e.get("name")), {})

        location = venue.get("name") or "Venue TBA"
        address = (
            venue.get("formatted_address")
            or path("geo", "address", "formatted_address")(raw)
            or "Address TBA"
        )

        date = format_event_date(starts_at)
        attendees, estimated = self._attendees(raw.get("phq_attendance"))
        native_id = raw.get("id")
        url = raw.get("url")

        return CanonicalEvent(
            id=stable_event_id(native_id, title, date, location),
            title=title,
            description=clean_description(raw.get("description")),
            category=category,
            date=date,
            time=format_event_time(starts_at),
            location=location,
            address=address,
            price="Price TBA",
            image=category_image(category),
            organizer=Organizer(name=other.get("name") or "Event Organizer"),
            attendees=attendees,
            attendees_estimated=estimated,
            coordinates=self._coordinates(raw),
            ticket_links=[TicketLink(source="PredictHQ", link=url)] if url else [],
            source=self.name,
            external_id=f"{self.name}:{native_id}" if native_id else None,
            starts_at=starts_at,
        )
