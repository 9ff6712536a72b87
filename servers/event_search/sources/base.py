"""
Common adapter machinery.

Every provider adapter subclasses EventSource and implements
``_search`` (and optionally ``_get_details``). The public ``fetch``,
``search`` and ``get_details`` never raise: credentials, HTTP status,
timeouts and malformed payloads all end up as a FetchStats with
status "skipped" or "error" and an empty result.
"""

import random
import time
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, ClassVar, Optional

import httpx
from dateutil.relativedelta import relativedelta
import structlog

from ..config.settings import ProviderCredentials
from ..extraction import synthesize_attendees
from ..models import CanonicalEvent, FetchStats, SearchParams
from ..rate_limiter import RateLimiter

logger = structlog.get_logger()


DEFAULT_TIMEOUT = 30.0
DEFAULT_WINDOW = relativedelta(months=6)

STATUS_REASONS = {
    400: "bad request",
    401: "authentication failed",
    403: "access forbidden",
    404: "not found",
    429: "rate limit exceeded",
}


class ProviderError(Exception):
    """A provider answered, but not with something usable."""


def describe_status(status_code: int) -> str:
    reason = STATUS_REASONS.get(status_code)
    if reason is None:
        reason = "server error" if status_code >= 500 else "unexpected response"
    return f"{reason} (HTTP {status_code})"


def fetch_size(params: SearchParams, cap: int) -> int:
    """Events to request upstream so every page up to params.page can be filled."""
    return max(1, min(params.size * (params.page + 1), cap))


class EventSource(ABC):
    """Base class for a provider adapter."""

    name: ClassVar[str]
    display_name: ClassVar[str]
    credential_env: ClassVar[str]

    def __init__(
        self,
        credentials: ProviderCredentials | None = None,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        rate_limiter: RateLimiter | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """Initialize adapter.

        Args:
            credentials: API credentials (read from the environment if None)
            timeout: Per-request timeout in seconds
            rate_limiter: Records every outbound request when given
            transport: Custom httpx transport (tests use httpx.MockTransport)
            rng: Random source for synthesized attendee counts
            clock: Returns "now" as a naive local datetime
        """
        self.credentials = credentials if credentials is not None else ProviderCredentials.from_env()
        self.timeout = timeout
        self.rate_limiter = rate_limiter
        self.transport = transport
        self._rng = rng or random.Random()
        self._now = clock

    @property
    @abstractmethod
    def configured(self) -> bool:
        """True when the credentials this provider needs are present."""

    @abstractmethod
    async def _search(self, params: SearchParams) -> list[CanonicalEvent]:
        ...

    async def _get_details(self, native_id: str) -> Optional[CanonicalEvent]:
        return None

    async def fetch(self, params: SearchParams) -> tuple[list[CanonicalEvent], FetchStats]:
        """
        Search this provider.

        Returns:
            Tuple of (events, fetch_stats). Never raises.
        """
        if not self.configured:
            return [], FetchStats(
                source=self.name,
                count=0,
                status="skipped",
                error_message=f"{self.credential_env} not configured",
            )

        started = time.perf_counter()
        try:
            events = await self._search(params)
        except httpx.TimeoutException:
            reason = "request timed out"
        except httpx.HTTPStatusError as e:
            reason = describe_status(e.response.status_code)
        except httpx.HTTPError as e:
            reason = f"network error: {e}"
        except ProviderError as e:
            reason = str(e)
        except ValueError as e:
            reason = f"malformed response: {e}"
        except Exception as e:
            logger.exception("provider_unexpected_error", source=self.name)
            reason = str(e) or type(e).__name__
        else:
            events = self._drop_past(events)
            duration_ms = int((time.perf_counter() - started) * 1000)
            logger.info(
                "provider_fetch_complete",
                source=self.name,
                count=len(events),
                duration_ms=duration_ms,
            )
            return events, FetchStats(
                source=self.name,
                count=len(events),
                status="success",
                duration_ms=duration_ms,
            )

        logger.warning("provider_fetch_failed", source=self.name, error=reason)
        return [], FetchStats(
            source=self.name,
            count=0,
            status="error",
            duration_ms=int((time.perf_counter() - started) * 1000),
            error_message=reason,
        )

    async def search(self, params: SearchParams) -> list[CanonicalEvent]:
        """Events matching ``params``; empty when the provider is unavailable."""
        events, _ = await self.fetch(params)
        return events

    async def get_details(self, native_id: str) -> Optional[CanonicalEvent]:
        """Single event by provider-native id, or None. Never raises."""
        if not self.configured:
            return None
        try:
            return await self._get_details(native_id)
        except httpx.HTTPStatusError as e:
            error = describe_status(e.response.status_code)
        except Exception as e:
            error = str(e) or type(e).__name__
        logger.warning("provider_details_failed", source=self.name, event_id=native_id, error=error)
        return None

    async def _get_json(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """GET ``url`` and decode JSON. Counts as one request for rate limiting.

        Raises:
            ProviderError: If the provider's request window is already full
        """
        if self.rate_limiter is not None:
            if not self.rate_limiter.check_limit(self.name):
                raise ProviderError("rate limit exceeded")
            self.rate_limiter.record_request(self.name)
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            response = await client.get(url, params=params, headers=headers)
            response.raise_for_status()
            return response.json()

    def date_window(self, params: SearchParams) -> tuple[datetime, datetime]:
        """Requested window, never starting before now, ending +6 months by default."""
        now = self._now()
        start = now
        if params.start_date_time is not None:
            start = max(now, params.start_date_time.replace(tzinfo=None))
        end = now + DEFAULT_WINDOW
        if params.end_date_time is not None:
            end = params.end_date_time.replace(tzinfo=None)
        return start, end

    def _drop_past(self, events: list[CanonicalEvent]) -> list[CanonicalEvent]:
        today = self._now().date()
        return [e for e in events if e.starts_at is None or e.starts_at.date() >= today]

    def _attendees(self, reported: Any) -> tuple[int, bool]:
        """(count, estimated). Synthesizes a count when the provider has none."""
        try:
            count = int(reported)
        except (TypeError, ValueError):
            count = 0
        if count > 0:
            return count, False
        return synthesize_attendees(self._rng), True

    def _transform_all(self, raw_events: Any) -> list[CanonicalEvent]:
        """Transform each raw event, skipping ones that cannot be parsed."""
        if not isinstance(raw_events, list):
            return []
        events = []
        for raw in raw_events:
            try:
                events.append(self.transform(raw))
            except (ValueError, TypeError, KeyError, AttributeError) as e:
                logger.debug("provider_event_skipped", source=self.name, error=str(e))
        return events

    @abstractmethod
    def transform(self, raw: dict[str, Any]) -> CanonicalEvent:
        """Build a CanonicalEvent from one provider-native event."""
