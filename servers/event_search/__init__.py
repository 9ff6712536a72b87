"""
Event Search Engine

Federated event search over several third-party event APIs:
- Provider adapters for Ticketmaster, Eventbrite, PredictHQ and RapidAPI
- Dedup, content-quality/geo/price/date filters, sorting and pagination
- TTL cache with approximate-LFU eviction and pluggable backends
- Per-provider sliding-window rate limits and circuit breakers
"""

__version__ = "1.0.0"
