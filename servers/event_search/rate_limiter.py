"""Per-provider sliding-window rate limiting."""

import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Mapping

import structlog

logger = structlog.get_logger()


@dataclass(frozen=True)
class RateLimitRule:
    """At most ``max_requests`` within any rolling ``window_seconds``."""

    max_requests: int
    window_seconds: float


# Ceilings follow each provider's API plan
DEFAULT_RATE_LIMITS: dict[str, RateLimitRule] = {
    "ticketmaster": RateLimitRule(max_requests=200, window_seconds=60),
    "rapidapi": RateLimitRule(max_requests=500, window_seconds=3600),
    "eventbrite": RateLimitRule(max_requests=1000, window_seconds=3600),
    "predicthq": RateLimitRule(max_requests=1000, window_seconds=3600),
}


class RateLimiter:
    """Sliding-window request counters, one window per provider.

    ``check_limit`` never blocks: a provider over its ceiling is simply
    left out of the current fan-out. Providers without a rule are
    unrestricted.
    """

    def __init__(
        self,
        rules: Mapping[str, RateLimitRule] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.rules = dict(DEFAULT_RATE_LIMITS if rules is None else rules)
        self._clock = clock
        self._windows: dict[str, deque[float]] = {}

    def _prune(self, provider: str) -> deque[float]:
        window = self._windows.setdefault(provider, deque())
        rule = self.rules.get(provider)
        if rule is None:
            return window
        cutoff = self._clock() - rule.window_seconds
        while window and window[0] <= cutoff:
            window.popleft()
        return window

    def check_limit(self, provider: str) -> bool:
        """Return True if ``provider`` may be called right now."""
        rule = self.rules.get(provider)
        if rule is None:
            return True
        allowed = len(self._prune(provider)) < rule.max_requests
        if not allowed:
            logger.info(
                "rate_limit_reached",
                provider=provider,
                max_requests=rule.max_requests,
                window_seconds=rule.window_seconds,
            )
        return allowed

    def record_request(self, provider: str) -> None:
        """Record one outbound call. Call once per actual request."""
        if provider not in self.rules:
            return
        self._prune(provider).append(self._clock())

    def remaining(self, provider: str) -> int | None:
        """Requests left in the current window, or None when unrestricted."""
        rule = self.rules.get(provider)
        if rule is None:
            return None
        return max(0, rule.max_requests - len(self._prune(provider)))

    def reset(self, provider: str | None = None) -> None:
        if provider:
            self._windows.pop(provider, None)
        else:
            self._windows.clear()

    def get_status(self) -> dict[str, dict[str, Any]]:
        return {
            name: {
                "max_requests": rule.max_requests,
                "window_seconds": rule.window_seconds,
                "remaining": self.remaining(name),
            }
            for name, rule in self.rules.items()
        }
