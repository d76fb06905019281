"""Provider health tracking and circuit breakers."""

from .circuit_breaker import CircuitBreaker, CircuitBreakerRegistry, CircuitState
from .health import HealthStatus, ProviderHealth, ProviderHealthTracker

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitState",
    "HealthStatus",
    "ProviderHealth",
    "ProviderHealthTracker",
]
