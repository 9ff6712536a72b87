"""Health tracking for event providers."""

from datetime import datetime
from typing import Any, Optional

import structlog

from ..models import FetchStats

logger = structlog.get_logger()


class ProviderHealthMonitor:
    """Remembers the outcome of each provider's most recent fetch.

    Skipped fetches (missing credentials, rate limit, open circuit) are
    recorded without touching the failure streak.
    """

    def __init__(self):
        self.status: dict[str, dict[str, Any]] = {}

    def record_success(self, provider: str, event_count: int, duration_ms: Optional[int] = None) -> None:
        self.status[provider] = {
            "healthy": True,
            "last_check": datetime.now().isoformat(),
            "event_count": event_count,
            "duration_ms": duration_ms,
            "consecutive_failures": 0,
            "last_error": None,
            "skipped": None,
        }
        logger.debug("provider_healthy", provider=provider, event_count=event_count)

    def record_failure(self, provider: str, error: str) -> None:
        consecutive = self.status.get(provider, {}).get("consecutive_failures", 0) + 1
        self.status[provider] = {
            "healthy": False,
            "last_check": datetime.now().isoformat(),
            "event_count": 0,
            "duration_ms": None,
            "consecutive_failures": consecutive,
            "last_error": error,
            "skipped": None,
        }
        logger.warning(
            "provider_unhealthy",
            provider=provider,
            consecutive_failures=consecutive,
            error=error,
        )

    def record_skip(self, provider: str, reason: str) -> None:
        current = self.status.setdefault(provider, {
            "healthy": True,
            "event_count": 0,
            "duration_ms": None,
            "consecutive_failures": 0,
            "last_error": None,
        })
        current["last_check"] = datetime.now().isoformat()
        current["skipped"] = reason

    def record(self, stats: FetchStats) -> None:
        """Record a fetch outcome from its FetchStats."""
        if stats.status == "success":
            self.record_success(stats.source, stats.count, stats.duration_ms)
        elif stats.status == "error":
            self.record_failure(stats.source, stats.error_message or "unknown error")
        else:
            self.record_skip(stats.source, stats.error_message or "skipped")

    def is_healthy(self, provider: str) -> bool:
        """True if the provider is healthy or has never been checked."""
        return self.status.get(provider, {}).get("healthy", True)

    def get_provider_status(self, provider: str) -> dict[str, Any] | None:
        return self.status.get(provider)

    def get_status(self) -> dict[str, Any]:
        """Full report with timestamp and summary counts."""
        healthy_count = sum(1 for s in self.status.values() if s.get("healthy", False))
        total_count = len(self.status)
        return {
            "timestamp": datetime.now().isoformat(),
            "summary": {
                "healthy": healthy_count,
                "unhealthy": total_count - healthy_count,
                "total": total_count,
            },
            "providers": self.status,
        }

    def get_unhealthy_providers(self) -> list[str]:
        return [name for name, status in self.status.items() if not status.get("healthy", True)]

    def reset(self, provider: str | None = None) -> None:
        if provider:
            self.status.pop(provider, None)
        else:
            self.status.clear()
