"""
Tool server entry point for the event search engine.

This server provides tools for:
- Searching events across all configured providers
- Looking up single events and featured events
- Checking provider connectivity, health and cache statistics

Run with: python -m servers.event_search [--test]
"""

import asyncio
import sys
from typing import Any, Optional

from .aggregator import EventAggregator


class EventSearchServer:
    """JSON-style tool interface over an EventAggregator."""

    def __init__(self, aggregator: Optional[EventAggregator] = None):
        self.aggregator = aggregator or EventAggregator.from_config()
        self.tools = {
            "search_events": self.search_events,
            "get_event_details": self.get_event_details,
            "get_featured_events": self.get_featured_events,
            "test_connections": self.test_connections,
            "provider_status": self.provider_status,
            "cache_stats": self.cache_stats,
            "clear_cache": self.clear_cache,
        }

    async def search_events(self, **params: Any) -> dict:
        """
        Search events.

        Accepts SearchParams fields in snake_case or camelCase, e.g.
        keyword, location, radius, startDateTime, categories, page, size,
        sort, priceRange, dateRange.
        """
        result = await self.aggregator.search(params)
        return result.to_api()

    async def get_event_details(self, event_id: str) -> dict:
        event = await self.aggregator.get_event_details(event_id)
        return {"event": event.to_api() if event else None}

    async def get_featured_events(self, limit: int = 8) -> dict:
        events = await self.aggregator.get_featured_events(limit)
        return {"events": [e.to_api() for e in events], "count": len(events)}

    async def test_connections(self) -> dict:
        return await self.aggregator.test_connections()

    async def provider_status(self) -> dict:
        return self.aggregator.get_provider_status()

    async def cache_stats(self) -> dict:
        return self.aggregator.get_cache_stats().to_api()

    async def clear_cache(self) -> dict:
        self.aggregator.clear_cache()
        return {"cleared": True}

    async def call(self, tool: str, arguments: Optional[dict] = None) -> dict:
        """Dispatch a tool call by name."""
        if tool not in self.tools:
            raise KeyError(f"Unknown tool: {tool}")
        return await self.tools[tool](**(arguments or {}))


async def main():
    """Main entry point for the tool server."""
    server = EventSearchServer()

    print("Event Search Server")
    print("Available tools:", list(server.tools.keys()))

    if "--test" in sys.argv:
        async with server.aggregator:
            print("\n--- Provider connections ---")
            report = await server.test_connections()
            for name, status in report.items():
                detail = status["error"] or f"{status['count']} events"
                print(f"  {name}: {status['status']} ({detail})")

            print("\n--- Running test search ---")
            result = await server.search_events(keyword="music", location="New York, NY", size=5)
            print(f"Found {result['totalCount']} events from {result['sources']}")
            if result["error"]:
                print(f"  warning: {result['error']}")
            for event in result["events"]:
                print(f"  {event['date']} {event['time']} - {event['title']} @ {event['location']}")


if __name__ == "__main__":
    asyncio.run(main())
