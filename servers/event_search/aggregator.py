"""
Federated event search.

EventAggregator fans a search out to every eligible provider adapter,
merges what comes back, dedupes, filters, sorts and paginates, and
caches the resulting envelope. One aggregator owns one RateLimiter, one
CacheManager, one health monitor and a circuit breaker per provider.

Pipeline for search():
    cache lookup -> rate limit / circuit gate -> concurrent fetch ->
    dedup -> content/geo/price/date filters -> sort -> paginate -> cache
"""

import asyncio
import math
import time
from typing import Any, Mapping, Optional

import structlog

from .cache import CacheBackend, CacheManager, CacheStats
from .config.settings import (
    ProviderCredentials,
    merge_config,
    validate_config,
)
from .dedup import deduplicate, remove_duplicate_events
from .filters import (
    apply_filters,
    generate_filter_options,
    paginate,
    sort_events,
    total_pages,
)
from .models import CanonicalEvent, FetchStats, SearchParams, SearchResult
from .rate_limiter import RateLimiter, RateLimitRule
from .resilience import CircuitBreaker, ProviderHealthMonitor
from .sources import EventSource, build_sources

logger = structlog.get_logger()


FEATURED_STRATEGIES = (
    ("concert music festival", "New York, NY"),
    ("popular events", "Los Angeles, CA"),
    ("entertainment shows", "Chicago, IL"),
    ("live music", "Austin, TX"),
)
FEATURED_MIN_STRATEGIES = 2
DEFAULT_FEATURED_LIMIT = 8

SEARCH_KEY_PREFIX = "events_search:"
DETAILS_KEY_PREFIX = "event_details:"
FEATURED_KEY_PREFIX = "featured_events:"


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


class EventAggregator:
    """Multi-provider event search with caching and failure isolation."""

    def __init__(
        self,
        sources: list[EventSource] | None = None,
        *,
        config: dict[str, Any] | None = None,
        rate_limiter: RateLimiter | None = None,
        cache: CacheManager | None = None,
        health: ProviderHealthMonitor | None = None,
        credentials: ProviderCredentials | None = None,
    ):
        """Initialize aggregator.

        Args:
            sources: Provider adapters (built from config and credentials if None)
            config: Config overrides, merged onto config.settings.get_default_config()
            rate_limiter: Shared limiter; adapters without one are given this one
            cache: Result cache (in-memory, sized from config, if None)
            health: Provider health monitor
            credentials: Used only when ``sources`` is None
        """
        self.config = merge_config(config)
        cache_cfg = self.config["cache"]

        self.rate_limiter = rate_limiter if rate_limiter is not None else RateLimiter({
            name: RateLimitRule(rule["max_requests"], rule["window_seconds"])
            for name, rule in self.config["rate_limits"].items()
        })
        self.cache = cache if cache is not None else CacheManager(
            max_size=cache_cfg["max_size"],
            default_ttl=cache_cfg["search_ttl_seconds"],
            cleanup_interval=cache_cfg["cleanup_interval_seconds"],
            sample_size=cache_cfg["sample_size"],
            exact_scan_threshold=cache_cfg["exact_scan_threshold"],
            name="events",
        )
        self.health = health if health is not None else ProviderHealthMonitor()

        if sources is None:
            sources = build_sources(
                self.config["providers"]["enabled"],
                credentials,
                timeout=self.config["providers"]["timeout_seconds"],
            )
        self.sources = sources
        for source in self.sources:
            if source.rate_limiter is None:
                source.rate_limiter = self.rate_limiter

        breaker_cfg = self.config["circuit_breaker"]
        self.breakers = {
            source.name: CircuitBreaker(
                failure_threshold=breaker_cfg["failure_threshold"],
                recovery_timeout=breaker_cfg["recovery_timeout"],
                name=source.name,
            )
            for source in self.sources
        }

    @classmethod
    def from_config(
        cls,
        overrides: Mapping[str, Any] | None = None,
        credentials: ProviderCredentials | None = None,
        cache_backend: CacheBackend | None = None,
        **source_kwargs: Any,
    ) -> "EventAggregator":
        """Build the whole object graph from config overrides.

        Raises:
            ValueError: If the merged config is invalid
        """
        config = merge_config(overrides)
        errors = validate_config(config)
        if errors:
            raise ValueError("Invalid configuration: " + "; ".join(errors))

        rate_limiter = RateLimiter({
            name: RateLimitRule(rule["max_requests"], rule["window_seconds"])
            for name, rule in config["rate_limits"].items()
        })
        sources = build_sources(
            config["providers"]["enabled"],
            credentials,
            timeout=config["providers"]["timeout_seconds"],
            rate_limiter=rate_limiter,
            **source_kwargs,
        )
        cache_cfg = config["cache"]
        cache = CacheManager(
            backend=cache_backend,
            max_size=cache_cfg["max_size"],
            default_ttl=cache_cfg["search_ttl_seconds"],
            cleanup_interval=cache_cfg["cleanup_interval_seconds"],
            sample_size=cache_cfg["sample_size"],
            exact_scan_threshold=cache_cfg["exact_scan_threshold"],
            name="events",
        )
        return cls(sources, config=config, rate_limiter=rate_limiter, cache=cache)

    async def __aenter__(self) -> "EventAggregator":
        self.cache.start_cleanup()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.cache.stop_cleanup()

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def _coerce_params(self, params: SearchParams | Mapping[str, Any] | None) -> SearchParams:
        if isinstance(params, SearchParams):
            return params
        if params is None:
            params = {}
        if not isinstance(params, Mapping):
            raise TypeError(f"search params must be a mapping, got {type(params).__name__}")
        data = dict(params)
        data.setdefault("size", self.config["search"]["default_size"])
        data.setdefault("sort", self.config["search"]["default_sort"])
        return SearchParams.model_validate(data)

    async def search(self, params: SearchParams | Mapping[str, Any] | None = None) -> SearchResult:
        """
        Search every eligible provider.

        Never raises: provider failures become warnings, and a failure of
        the search itself (bad params included) becomes an empty result
        with total_pages=0 and an error message.
        """
        started = time.perf_counter()
        page = 0
        try:
            params = self._coerce_params(params)
            page = params.page
            key = params.cache_key()

            cached = self.cache.get(key)
            if cached is not None:
                logger.info("events_search_cache_hit", key=key)
                result = SearchResult.model_validate(cached)
                return result.model_copy(update={"cached": True, "response_time": _elapsed_ms(started)})

            result = await self._search_providers(params, started)
            if result.events:
                self._store(key, result, self.config["cache"]["search_ttl_seconds"])
            return result

        except Exception as e:
            logger.exception("events_search_failed")
            message = (str(e).splitlines() or [type(e).__name__])[0]
            return SearchResult(
                events=[],
                total_count=0,
                page=page,
                total_pages=0,
                error=f"Search failed: {message}",
                response_time=_elapsed_ms(started),
            )

    def _store(self, key: str, value: Any, ttl: float) -> None:
        """Cache a result; a failing backend write only costs the cache entry."""
        try:
            self.cache.set(key, value, ttl)
        except OSError as e:
            logger.warning("cache_write_failed", key=key, error=str(e))

    def _eligible_sources(self) -> list[EventSource]:
        eligible = []
        for source in self.sources:
            if not self.rate_limiter.check_limit(source.name):
                self.health.record_skip(source.name, "rate limited")
                continue
            if not self.breakers[source.name].allow_request():
                self.health.record_skip(source.name, "circuit open")
                logger.info("provider_circuit_open", source=source.name)
                continue
            eligible.append(source)
        return eligible

    def _record_outcome(self, stats: FetchStats) -> None:
        self.health.record(stats)
        breaker = self.breakers.get(stats.source)
        if breaker is None:
            return
        if stats.status == "success":
            breaker.record_success()
        elif stats.status == "error":
            breaker.record_failure(stats.error_message or "unknown error")

    async def _fan_out(
        self, params: SearchParams
    ) -> tuple[list[CanonicalEvent], list[str], list[str]]:
        """Fetch from every eligible provider. Returns (events, sources, warnings)."""
        eligible = self._eligible_sources()
        outcomes = await asyncio.gather(
            *(source.fetch(params) for source in eligible),
            return_exceptions=True,
        )

        merged: list[CanonicalEvent] = []
        contributed: list[str] = []
        warnings: list[str] = []
        for source, outcome in zip(eligible, outcomes):
            if isinstance(outcome, Exception):
                events: list[CanonicalEvent] = []
                stats = FetchStats(
                    source=source.name,
                    status="error",
                    error_message=str(outcome) or type(outcome).__name__,
                )
                logger.warning("provider_raised", source=source.name, error=stats.error_message)
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                events, stats = outcome

            self._record_outcome(stats)
            if stats.status == "error":
                warnings.append(f"{source.display_name}: {stats.error_message}")
            if events:
                contributed.append(source.name)
                merged.extend(events)

        return merged, contributed, warnings

    async def _search_providers(self, params: SearchParams, started: float) -> SearchResult:
        merged, contributed, warnings = await self._fan_out(params)

        unique = remove_duplicate_events(merged)
        threshold = self.config["dedup"].get("fuzzy_threshold")
        if threshold:
            unique = deduplicate(unique, threshold=threshold).events

        filtered = apply_filters(unique, params)
        ordered = sort_events(filtered, params.sort, params.coordinates)
        total = len(ordered)

        if total == 0:
            contributed = []
            if warnings:
                error = f"Providers had issues: {'; '.join(warnings)}; no events available"
            else:
                error = "No events available for this search"
        elif warnings:
            error = "Some providers had issues: " + "; ".join(warnings)
        else:
            error = None

        result = SearchResult(
            events=paginate(ordered, params.page, params.size),
            total_count=total,
            page=params.page,
            total_pages=total_pages(total, params.size),
            sources=contributed,
            error=error,
            warnings=warnings,
            cached=False,
            response_time=_elapsed_ms(started),
            filters=generate_filter_options(ordered),
        )
        logger.info(
            "events_search_complete",
            raw=len(merged),
            unique=len(unique),
            matched=total,
            returned=len(result.events),
            sources=contributed,
            warnings=len(warnings),
            response_time=result.response_time,
        )
        return result

    # ------------------------------------------------------------------
    # Single events
    # ------------------------------------------------------------------

    def _source(self, name: str) -> Optional[EventSource]:
        return next((s for s in self.sources if s.name == name), None)

    async def _source_details(self, source: EventSource, native_id: str) -> Optional[CanonicalEvent]:
        if not source.configured:
            return None
        if not self.rate_limiter.check_limit(source.name):
            return None
        if not self.breakers[source.name].allow_request():
            return None
        return await source.get_details(native_id)

    def _find_in_cached_results(self, event_id: str) -> Optional[CanonicalEvent]:
        for key in self.cache.keys():
            if not key.startswith((SEARCH_KEY_PREFIX, FEATURED_KEY_PREFIX)):
                continue
            data = self.cache.peek(key)
            if data is None:
                continue
            if key.startswith(SEARCH_KEY_PREFIX):
                events = SearchResult.model_validate(data).events
            else:
                events = [CanonicalEvent.model_validate(e) for e in data]
            for event in events:
                if str(event.id) == event_id or event.external_id == event_id:
                    return event
        return None

    async def _lookup_details(self, event_id: str) -> Optional[CanonicalEvent]:
        provider, sep, native_id = event_id.partition(":")
        source = self._source(provider) if sep else None
        if source is not None:
            return await self._source_details(source, native_id)

        event = self._find_in_cached_results(event_id)
        if event is not None:
            return event

        for source in self.sources:
            event = await self._source_details(source, event_id)
            if event is not None:
                return event

        result = await self.search(SearchParams(keyword=event_id, size=10))
        return next(
            (e for e in result.events if str(e.id) == event_id or e.external_id == event_id),
            None,
        )

    async def get_event_details(self, event_id: str | int) -> Optional[CanonicalEvent]:
        """
        Look up one event.

        Accepts a canonical id, or "<provider>:<native id>" to ask that
        provider directly. Returns None when nothing matches.
        """
        event_id = str(event_id).strip()
        if not event_id:
            return None

        key = f"{DETAILS_KEY_PREFIX}{event_id}"
        cached = self.cache.get(key)
        if cached is not None:
            return CanonicalEvent.model_validate(cached)

        try:
            event = await self._lookup_details(event_id)
        except Exception:
            logger.exception("event_details_failed", event_id=event_id)
            return None

        if event is not None:
            self._store(key, event, self.config["cache"]["details_ttl_seconds"])
        return event

    async def get_featured_events(self, limit: int = DEFAULT_FEATURED_LIMIT) -> list[CanonicalEvent]:
        """Most popular events across a few fixed high-signal searches."""
        if limit < 1:
            return []

        key = f"{FEATURED_KEY_PREFIX}{limit}"
        cached = self.cache.get(key)
        if cached is not None:
            return [CanonicalEvent.model_validate(e) for e in cached]

        try:
            collected: list[CanonicalEvent] = []
            successful = 0
            for keyword, location in FEATURED_STRATEGIES:
                result = await self.search(SearchParams(
                    keyword=keyword,
                    location=location,
                    size=math.ceil(limit / 2),
                    sort="popularity",
                ))
                if result.events:
                    collected.extend(result.events)
                    successful += 1
                if len(collected) >= limit and successful >= FEATURED_MIN_STRATEGIES:
                    break

            featured = sorted(
                remove_duplicate_events(collected),
                key=lambda e: e.attendees,
                reverse=True,
            )[:limit]
        except Exception:
            logger.exception("featured_events_failed", limit=limit)
            return []

        if featured:
            self._store(key, featured, self.config["cache"]["featured_ttl_seconds"])
        return featured

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    async def test_connections(self) -> dict[str, dict[str, Any]]:
        """Probe every provider with a one-event search."""
        probe = SearchParams(keyword="music", size=1)
        outcomes = await asyncio.gather(
            *(source.fetch(probe) for source in self.sources),
            return_exceptions=True,
        )

        report: dict[str, dict[str, Any]] = {}
        for source, outcome in zip(self.sources, outcomes):
            if isinstance(outcome, Exception):
                stats = FetchStats(source=source.name, status="error", error_message=str(outcome))
            else:
                _, stats = outcome
            self.health.record(stats)
            report[source.name] = {
                "configured": source.configured,
                "connected": stats.status == "success",
                "status": stats.status,
                "count": stats.count,
                "duration_ms": stats.duration_ms,
                "error": stats.error_message,
            }
        logger.info(
            "provider_connection_test",
            connected=[name for name, r in report.items() if r["connected"]],
        )
        return report

    def get_provider_status(self) -> dict[str, dict[str, Any]]:
        return {
            source.name: {
                "display_name": source.display_name,
                "configured": source.configured,
                "health": self.health.get_provider_status(source.name),
                "circuit": self.breakers[source.name].get_status(),
                "rate_limit_remaining": self.rate_limiter.remaining(source.name),
            }
            for source in self.sources
        }

    def get_cache_stats(self) -> CacheStats:
        return self.cache.get_stats()

    def clear_cache(self) -> None:
        self.cache.clear()


_default_aggregator: Optional[EventAggregator] = None


def get_default_aggregator() -> EventAggregator:
    """Process-wide aggregator built from defaults and the environment."""
    global _default_aggregator
    if _default_aggregator is None:
        _default_aggregator = EventAggregator.from_config()
    return _default_aggregator


async def search_events(params: SearchParams | Mapping[str, Any] | None = None) -> SearchResult:
    return await get_default_aggregator().search(params)


async def get_event_details(event_id: str | int) -> Optional[CanonicalEvent]:
    return await get_default_aggregator().get_event_details(event_id)


async def get_featured_events(limit: int = DEFAULT_FEATURED_LIMIT) -> list[CanonicalEvent]:
    return await get_default_aggregator().get_featured_events(limit)
