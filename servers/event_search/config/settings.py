"""
Configuration for the event search engine.

Two layers:
- ProviderCredentials: API keys read from the process environment.
  A missing key disables that provider; it is never a startup error.
- A nested config dict (cache, rate limits, providers, search, circuit
  breaker, dedup) with defaults, deep-merge and validation.
"""

import copy
import os
from typing import Any, Mapping, Optional

from pydantic import BaseModel
import structlog

log = structlog.get_logger(__name__)

PROVIDER_NAMES = ("ticketmaster", "eventbrite", "predicthq", "rapidapi")

DEFAULT_RAPIDAPI_HOST = "real-time-events-search.p.rapidapi.com"


class ProviderCredentials(BaseModel):
    """Credentials for each upstream provider, all optional."""

    ticketmaster_api_key: Optional[str] = None
    eventbrite_private_token: Optional[str] = None
    eventbrite_public_token: Optional[str] = None
    predicthq_api_key: Optional[str] = None
    rapidapi_key: Optional[str] = None
    rapidapi_host: str = DEFAULT_RAPIDAPI_HOST

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "ProviderCredentials":
        env = os.environ if environ is None else environ

        def value(*names: str) -> Optional[str]:
            for name in names:
                found = (env.get(name) or "").strip()
                if found:
                    return found
            return None

        return cls(
            ticketmaster_api_key=value("TICKETMASTER_API_KEY"),
            eventbrite_private_token=value("EVENTBRITE_PRIVATE_TOKEN"),
            eventbrite_public_token=value("EVENTBRITE_PUBLIC_TOKEN"),
            predicthq_api_key=value("PREDICTHQ_API_KEY", "PREDICTHQ_TOKEN"),
            rapidapi_key=value("RAPIDAPI_KEY"),
            rapidapi_host=value("RAPIDAPI_HOST") or DEFAULT_RAPIDAPI_HOST,
        )

    def configured_providers(self) -> list[str]:
        configured = {
            "ticketmaster": bool(self.ticketmaster_api_key),
            "eventbrite": bool(self.eventbrite_private_token or self.eventbrite_public_token),
            "predicthq": bool(self.predicthq_api_key),
            "rapidapi": bool(self.rapidapi_key),
        }
        return [name for name in PROVIDER_NAMES if configured[name]]


def get_default_config() -> dict[str, Any]:
    """Return the default configuration."""
    return {
        "cache": {
            "max_size": 1000,
            "search_ttl_seconds": 300,
            "details_ttl_seconds": 1800,
            "featured_ttl_seconds": 900,
            "cleanup_interval_seconds": 300,
            "sample_size": 20,
            "exact_scan_threshold": 100,
        },
        "rate_limits": {
            "ticketmaster": {"max_requests": 200, "window_seconds": 60},
            "rapidapi": {"max_requests": 500, "window_seconds": 3600},
            "eventbrite": {"max_requests": 1000, "window_seconds": 3600},
            "predicthq": {"max_requests": 1000, "window_seconds": 3600},
        },
        "providers": {
            "enabled": list(PROVIDER_NAMES),
            "timeout_seconds": 30,
        },
        "search": {
            "default_size": 20,
            "default_sort": "date",
        },
        "circuit_breaker": {
            "failure_threshold": 5,
            "recovery_timeout": 60,
        },
        "dedup": {
            "fuzzy_threshold": None,
        },
    }


def _deep_merge(base: dict[str, Any], overrides: Mapping[str, Any]) -> dict[str, Any]:
    for key, value in overrides.items():
        if isinstance(value, Mapping) and isinstance(base.get(key), dict):
            _deep_merge(base[key], value)
        else:
            base[key] = copy.deepcopy(value)
    return base


def merge_config(overrides: Mapping[str, Any] | None = None) -> dict[str, Any]:
    """Defaults with ``overrides`` deep-merged on top."""
    config = get_default_config()
    if overrides:
        _deep_merge(config, overrides)
        log.debug("config_merged", sections=sorted(overrides))
    return config


def validate_config(config: dict[str, Any]) -> list[str]:
    """
    Validate config and return list of errors.

    Returns:
        List of error messages (empty if valid)
    """
    errors: list[str] = []

    cache = config.get("cache", {})
    if cache.get("max_size", 1) < 1:
        errors.append(f"Invalid cache.max_size: {cache.get('max_size')} (must be >= 1)")
    for field in ("search_ttl_seconds", "details_ttl_seconds", "featured_ttl_seconds"):
        if cache.get(field, 1) <= 0:
            errors.append(f"Invalid cache.{field}: {cache.get(field)} (must be > 0)")
    if cache.get("sample_size", 1) < 1:
        errors.append(f"Invalid cache.sample_size: {cache.get('sample_size')} (must be >= 1)")

    for provider, rule in config.get("rate_limits", {}).items():
        if rule.get("max_requests", 0) < 1 or rule.get("window_seconds", 0) <= 0:
            errors.append(f"Invalid rate limit for {provider}: {rule}")

    for provider in config.get("providers", {}).get("enabled", []):
        if provider not in PROVIDER_NAMES:
            errors.append(f"Unknown provider: {provider}")
    if config.get("providers", {}).get("timeout_seconds", 1) <= 0:
        errors.append("providers.timeout_seconds must be > 0")

    default_size = config.get("search", {}).get("default_size", 20)
    if not 1 <= default_size <= 100:
        errors.append(f"Invalid search.default_size: {default_size} (must be 1-100)")

    threshold = config.get("dedup", {}).get("fuzzy_threshold")
    if threshold is not None and not 0 < threshold <= 1:
        errors.append(f"Invalid dedup.fuzzy_threshold: {threshold} (must be 0-1)")

    if config.get("circuit_breaker", {}).get("failure_threshold", 1) < 1:
        errors.append("circuit_breaker.failure_threshold must be >= 1")

    return errors
