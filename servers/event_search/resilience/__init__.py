"""Resilience patterns for provider fan-out."""

from .circuit_breaker import CircuitBreaker, CircuitBreakerOpenError, CircuitState
from .health import ProviderHealthMonitor

__all__ = [
    "CircuitBreaker",
    "CircuitState",
    "CircuitBreakerOpenError",
    "ProviderHealthMonitor",
]
