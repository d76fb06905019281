"""Circuit Breaker pattern implementation for provider resilience.

Provides:
- CircuitState enum for state machine states (CLOSED, OPEN, HALF_OPEN)
- CircuitBreaker dataclass for an individual provider circuit
- CircuitBreakerRegistry owning one breaker and one lock per provider

The circuit breaker prevents cascading failures by:
- Tracking consecutive failures per provider
- Opening the circuit after threshold failures (fail-fast)
- Admitting a limited number of trial calls after the reset timeout
- Closing the circuit on a successful trial

CircuitBreaker itself does no locking. CircuitBreakerRegistry serializes
every transition for a provider under that provider's lock.

Usage:
    from switchyard.observability.circuit_breaker import CircuitBreakerRegistry

    registry = CircuitBreakerRegistry(config.circuit_breaker_config)

    if registry.allow("primary-llm"):
        try:
            result = await call_provider()
            registry.record_success("primary-llm")
        except Exception as e:
            registry.record_failure("primary-llm", str(e))
    else:
        raise CircuitOpenError("primary-llm")
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from switchyard.config import CircuitBreakerSettings
from switchyard.core.constants import (
    CIRCUIT_BREAKER_FAILURE_THRESHOLD,
    CIRCUIT_BREAKER_HALF_OPEN_MAX_CALLS,
    CIRCUIT_BREAKER_RESET_TIMEOUT_MS,
)

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    """Circuit breaker states.

    State machine:
        CLOSED -> OPEN: After failure_threshold consecutive failures
        OPEN -> HALF_OPEN: On the first allow() after reset_timeout_ms
        HALF_OPEN -> CLOSED: On a successful trial call
        HALF_OPEN -> OPEN: On a failed trial call
    """

    CLOSED = "closed"  # Normal operation - requests allowed
    OPEN = "open"  # Failing fast - requests blocked
    HALF_OPEN = "half-open"  # Testing recovery - limited trial calls


StateChangeCallback = Callable[[str, CircuitState, CircuitState], None]


@dataclass
class CircuitBreaker:
    """Circuit breaker for a single provider.

    Attributes:
        provider: Provider identity
        failure_threshold: Consecutive failures before opening
        reset_timeout_ms: Milliseconds spent OPEN before trial calls
        half_open_max_calls: Trial calls admitted while HALF_OPEN
        on_state_change: Observer called with (provider, old, new)
        clock: Monotonic clock in seconds
        state: Current circuit state
        failure_count: Consecutive failure count
        opened_at: Clock reading when the circuit last opened
        half_open_calls: Trial calls admitted since entering HALF_OPEN
    """

    provider: str
    failure_threshold: int = CIRCUIT_BREAKER_FAILURE_THRESHOLD
    reset_timeout_ms: int = CIRCUIT_BREAKER_RESET_TIMEOUT_MS
    half_open_max_calls: int = CIRCUIT_BREAKER_HALF_OPEN_MAX_CALLS
    on_state_change: Optional[StateChangeCallback] = None
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)
    state: CircuitState = CircuitState.CLOSED
    failure_count: int = 0
    opened_at: Optional[float] = None
    half_open_calls: int = 0
    last_error: str = ""

    def allow(self) -> bool:
        """Decide whether a call may proceed.

        In OPEN, the first call after reset_timeout_ms moves the circuit to
        HALF_OPEN and is admitted as a trial. In HALF_OPEN, at most
        half_open_max_calls calls are admitted until a trial resolves.
        """
        if self.state == CircuitState.CLOSED:
            return True

        if self.state == CircuitState.OPEN:
            if self.time_until_recovery() > 0:
                return False
            self._transition_to(CircuitState.HALF_OPEN)
            logger.info(
                f"Circuit HALF_OPEN for {self.provider} - testing recovery after {self.reset_timeout_ms}ms"
            )

        if self.half_open_calls >= self.half_open_max_calls:
            return False
        self.half_open_calls += 1
        return True

    def on_success(self) -> None:
        """Record a successful call.

        If in HALF_OPEN state, transitions to CLOSED (recovery successful).
        Resets failure count in all cases.
        """
        if self.state == CircuitState.HALF_OPEN:
            self._transition_to(CircuitState.CLOSED)
            logger.info(f"Circuit CLOSED for {self.provider} - recovery successful")
        self.failure_count = 0

    def on_failure(self, error: str = "") -> None:
        """Record a failed call.

        Args:
            error: Error message for logging

        State transitions:
            - HALF_OPEN -> OPEN: Recovery failed
            - CLOSED -> OPEN: If failure_count >= failure_threshold
        """
        self.failure_count += 1
        self.last_error = error

        if self.state == CircuitState.HALF_OPEN:
            self._transition_to(CircuitState.OPEN)
            logger.warning(f"Circuit OPEN (recovery failed) for {self.provider}: {error}")
        elif self.state == CircuitState.CLOSED and self.failure_count >= self.failure_threshold:
            self._transition_to(CircuitState.OPEN)
            logger.warning(
                f"Circuit OPEN (threshold {self.failure_threshold} reached) for {self.provider}: {error}"
            )

    def release(self) -> None:
        """Give back a HALF_OPEN trial slot whose call ended without an outcome."""
        if self.state == CircuitState.HALF_OPEN and self.half_open_calls > 0:
            self.half_open_calls -= 1

    def current_state(self) -> CircuitState:
        return self.state

    def time_until_recovery(self) -> float:
        """Seconds until an OPEN circuit admits a trial call (0 otherwise)."""
        if self.state != CircuitState.OPEN or self.opened_at is None:
            return 0.0
        elapsed = self.clock() - self.opened_at
        return max(0.0, self.reset_timeout_ms / 1000.0 - elapsed)

    def reset(self) -> None:
        """Force the circuit back to CLOSED with a clean counter."""
        if self.state != CircuitState.CLOSED:
            self._transition_to(CircuitState.CLOSED)
        self.failure_count = 0
        self.last_error = ""

    def _transition_to(self, new_state: CircuitState) -> None:
        old_state = self.state
        self.state = new_state

        if new_state == CircuitState.OPEN:
            self.opened_at = self.clock()
        elif new_state == CircuitState.HALF_OPEN:
            self.half_open_calls = 0
        elif new_state == CircuitState.CLOSED:
            self.failure_count = 0
            self.opened_at = None
            self.half_open_calls = 0

        logger.debug(f"Circuit {self.provider}: {old_state.value} -> {new_state.value}")
        if self.on_state_change is not None and old_state != new_state:
            self.on_state_change(self.provider, old_state, new_state)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize circuit state for monitoring."""
        return {
            "provider": self.provider,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "time_until_recovery": round(self.time_until_recovery(), 3),
            "half_open_calls": self.half_open_calls,
            "failure_threshold": self.failure_threshold,
            "reset_timeout_ms": self.reset_timeout_ms,
            "half_open_max_calls": self.half_open_max_calls,
            "last_error": self.last_error or None,
        }


class CircuitBreakerRegistry:
    """Registry managing one circuit breaker per provider.

    Every mutation of a provider's breaker happens under that provider's
    lock. Locks are plain threading locks held only for the in-memory
    transition, never across an await.
    """

    def __init__(
        self,
        settings: Optional[CircuitBreakerSettings] = None,
        on_state_change: Optional[StateChangeCallback] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings or CircuitBreakerSettings()
        self.on_state_change = on_state_change
        self.clock = clock
        self.circuits: Dict[str, CircuitBreaker] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, provider: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(provider)
            if lock is None:
                lock = self._locks[provider] = threading.Lock()
            return lock

    def _new_circuit(self, provider: str) -> CircuitBreaker:
        return CircuitBreaker(
            provider=provider,
            failure_threshold=self.settings.failure_threshold,
            reset_timeout_ms=self.settings.reset_timeout_ms,
            half_open_max_calls=self.settings.half_open_max_calls,
            on_state_change=self.on_state_change,
            clock=self.clock,
        )

    def get_circuit(self, provider: str) -> CircuitBreaker:
        """Get or create the circuit breaker for a provider."""
        with self._registry_lock:
            circuit = self.circuits.get(provider)
            if circuit is None:
                circuit = self.circuits[provider] = self._new_circuit(provider)
            return circuit

    def allow(self, provider: str) -> bool:
        circuit = self.get_circuit(provider)
        with self._lock_for(provider):
            return circuit.allow()

    def record_success(self, provider: str) -> None:
        circuit = self.get_circuit(provider)
        with self._lock_for(provider):
            circuit.on_success()

    def record_failure(self, provider: str, error: str = "") -> None:
        circuit = self.get_circuit(provider)
        with self._lock_for(provider):
            circuit.on_failure(error)

    def release(self, provider: str) -> None:
        circuit = self.get_circuit(provider)
        with self._lock_for(provider):
            circuit.release()

    def current_state(self, provider: str) -> CircuitState:
        circuit = self.get_circuit(provider)
        with self._lock_for(provider):
            return circuit.current_state()

    def get_status(self) -> Dict[str, Any]:
        """Get status of all circuits keyed by provider."""
        with self._registry_lock:
            circuits = dict(self.circuits)
        return {provider: cb.to_dict() for provider, cb in circuits.items()}

    def reset_circuit(self, provider: str) -> None:
        """Reset a circuit to CLOSED state."""
        circuit = self.get_circuit(provider)
        with self._lock_for(provider):
            circuit.reset()
        logger.info(f"Circuit manually reset for {provider}")

    def reset_all(self) -> None:
        with self._registry_lock:
            providers = list(self.circuits)
        for provider in providers:
            self.reset_circuit(provider)

    def rebuild(self, settings: CircuitBreakerSettings) -> List[str]:
        """Replace every breaker with a fresh CLOSED one using new settings.

        Returns:
            Providers whose breakers were rebuilt
        """
        with self._registry_lock:
            self.settings = settings
            providers = list(self.circuits)
            self.circuits = {provider: self._new_circuit(provider) for provider in providers}
        logger.info(f"Circuit breakers rebuilt ({len(providers)} provider(s))")
        return providers
