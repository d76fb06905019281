"""Rolling per-provider health records and provider scoring.

Provides:
- HealthStatus enum (healthy, degraded, unhealthy)
- ProviderHealth dataclass, one record per known provider
- ProviderHealthTracker updating records from call outcomes and probes

Rates are nudged rather than recomputed: each observation moves
success_rate and error_rate by a fixed step, with failures penalized
harder than successes are rewarded. Both rates stay within [0, 1].

Usage:
    from switchyard.observability.health import ProviderHealthTracker

    tracker = ProviderHealthTracker(config.performance_thresholds)
    tracker.record_outcome("primary-llm", success=True, response_time_ms=850)
    best = tracker.best(["primary-llm", "enterprise-gateway"])
"""

import copy
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from switchyard.config import PerformanceThresholds
from switchyard.core.constants import (
    CALL_FAILURE_NUDGE,
    CALL_SUCCESS_NUDGE,
    PROBE_FAILURE_NUDGE,
    PROBE_SUCCESS_NUDGE,
    UNHEALTHY_SUCCESS_RATE,
)
from switchyard.observability.circuit_breaker import CircuitState

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    """Return current UTC time (timezone-aware)."""
    return datetime.now(timezone.utc)


def _clamp(value: float) -> float:
    return round(min(1.0, max(0.0, value)), 6)


class HealthStatus(Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass
class ProviderHealth:
    """Health record for a single provider.

    Attributes:
        provider: Provider identity
        status: Derived health status
        response_time_ms: Latest observed response time
        success_rate: Smoothed success rate in [0, 1]
        error_rate: Smoothed error rate in [0, 1]
        last_checked_at: Time of the latest observation
        consecutive_failures: Failures since the last success
        circuit_state: Mirror of the provider's circuit breaker state
        consecutive_unhealthy_probes: Probe rounds in a row that ended unhealthy
        last_error: Message of the most recent failure
    """

    provider: str
    status: HealthStatus = HealthStatus.HEALTHY
    response_time_ms: float = 0.0
    success_rate: float = 1.0
    error_rate: float = 0.0
    last_checked_at: Optional[datetime] = None
    consecutive_failures: int = 0
    circuit_state: CircuitState = CircuitState.CLOSED
    consecutive_unhealthy_probes: int = 0
    last_error: str = ""

    @property
    def is_unhealthy(self) -> bool:
        return self.status == HealthStatus.UNHEALTHY

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider,
            "status": self.status.value,
            "response_time_ms": round(self.response_time_ms, 2),
            "success_rate": self.success_rate,
            "error_rate": self.error_rate,
            "last_checked_at": self.last_checked_at.isoformat() if self.last_checked_at else None,
            "consecutive_failures": self.consecutive_failures,
            "circuit_state": self.circuit_state.value,
            "consecutive_unhealthy_probes": self.consecutive_unhealthy_probes,
            "last_error": self.last_error or None,
        }


class ProviderHealthTracker:
    """Maintains health records and ranks providers for selection.

    Each provider's record is mutated under its own lock. Readers receive
    copies, so a snapshot never changes underneath the caller.
    """

    def __init__(
        self,
        thresholds: Optional[PerformanceThresholds] = None,
        providers: Iterable[str] = (),
        call_nudges: tuple = (CALL_SUCCESS_NUDGE, CALL_FAILURE_NUDGE),
        probe_nudges: tuple = (PROBE_SUCCESS_NUDGE, PROBE_FAILURE_NUDGE),
    ):
        self.thresholds = thresholds or PerformanceThresholds()
        self.call_success_nudge, self.call_failure_nudge = call_nudges
        self.probe_success_nudge, self.probe_failure_nudge = probe_nudges
        self._records: Dict[str, ProviderHealth] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()
        for provider in providers:
            self._record(provider)

    def _lock_for(self, provider: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(provider)
            if lock is None:
                lock = self._locks[provider] = threading.Lock()
            return lock

    def _record(self, provider: str) -> ProviderHealth:
        with self._registry_lock:
            record = self._records.get(provider)
            if record is None:
                record = self._records[provider] = ProviderHealth(provider=provider)
            return record

    def _derive_status(self, record: ProviderHealth) -> HealthStatus:
        if (
            record.success_rate >= self.thresholds.min_success_rate
            and record.error_rate <= self.thresholds.max_error_rate
        ):
            return HealthStatus.HEALTHY
        if record.success_rate < UNHEALTHY_SUCCESS_RATE:
            return HealthStatus.UNHEALTHY
        return HealthStatus.DEGRADED

    @staticmethod
    def _nudge(record: ProviderHealth, step: float) -> None:
        """Move success_rate by +step and error_rate by -step, clamped."""
        record.success_rate = _clamp(record.success_rate + step)
        record.error_rate = _clamp(record.error_rate - step)

    def record_outcome(
        self,
        provider: str,
        success: bool,
        response_time_ms: float = 0.0,
        error: Optional[str] = None,
    ) -> ProviderHealth:
        """Record the outcome of a live call.

        Args:
            provider: Provider identity
            success: Whether the call succeeded
            response_time_ms: Call latency (only stored on success)
            error: Failure message, if any

        Returns:
            Snapshot of the updated record
        """
        record = self._record(provider)
        with self._lock_for(provider):
            if success:
                self._nudge(record, self.call_success_nudge)
                record.consecutive_failures = 0
                record.response_time_ms = max(0.0, float(response_time_ms))
            else:
                self._nudge(record, -self.call_failure_nudge)
                record.consecutive_failures += 1
                record.last_error = error or ""
            record.last_checked_at = _utc_now()

            previous = record.status
            record.status = self._derive_status(record)
            if previous != record.status:
                logger.info(f"Provider {provider} health {previous.value} -> {record.status.value}")
            return copy.copy(record)

    def record_probe(
        self,
        provider: str,
        reachable: bool,
        response_time_ms: float = 0.0,
        error: Optional[str] = None,
    ) -> ProviderHealth:
        """Record a background reachability probe.

        An unreachable provider (including probe timeout or exception) is
        UNHEALTHY. A reachable provider is HEALTHY when it answered within
        max_response_time_ms and DEGRADED otherwise.

        Returns:
            Snapshot of the updated record
        """
        record = self._record(provider)
        with self._lock_for(provider):
            record.response_time_ms = max(0.0, float(response_time_ms))
            record.last_checked_at = _utc_now()

            if not reachable:
                self._nudge(record, -self.probe_failure_nudge)
                record.consecutive_failures += 1
                record.consecutive_unhealthy_probes += 1
                record.status = HealthStatus.UNHEALTHY
                record.last_error = error or "unreachable"
                logger.warning(f"Health probe failed for {provider}: {record.last_error}")
            else:
                record.consecutive_failures = 0
                record.consecutive_unhealthy_probes = 0
                if record.response_time_ms <= self.thresholds.max_response_time_ms:
                    self._nudge(record, self.probe_success_nudge)
                    record.status = HealthStatus.HEALTHY
                else:
                    self._nudge(record, -self.probe_success_nudge)
                    record.status = HealthStatus.DEGRADED
                    logger.warning(
                        f"Health probe slow for {provider}: {record.response_time_ms:.0f}ms "
                        f"> {self.thresholds.max_response_time_ms}ms"
                    )
            return copy.copy(record)

    def set_circuit_state(self, provider: str, state: CircuitState) -> None:
        """Mirror a circuit breaker transition into the health record."""
        record = self._record(provider)
        with self._lock_for(provider):
            record.circuit_state = state

    def on_circuit_state_change(self, provider: str, old: CircuitState, new: CircuitState) -> None:
        """Observer hook for CircuitBreakerRegistry."""
        self.set_circuit_state(provider, new)

    def health(self, provider: str) -> ProviderHealth:
        """Snapshot of a provider's record.

        Unknown providers get a default (healthy) record that is not stored.
        """
        with self._registry_lock:
            record = self._records.get(provider)
        if record is None:
            return ProviderHealth(provider=provider)
        with self._lock_for(provider):
            return copy.copy(record)

    def all_health(self) -> Dict[str, ProviderHealth]:
        with self._registry_lock:
            providers = list(self._records)
        return {provider: self.health(provider) for provider in providers}

    def is_unhealthy(self, provider: str) -> bool:
        return self.health(provider).is_unhealthy

    def score(self, provider: str) -> float:
        """Score a provider in [0, 1] for selection.

        Unweighted mean of:
        - latency: max(0, 1 - response_time / max_response_time)
        - success rate
        - 1 - error rate
        - 1 if the circuit is CLOSED, else 0
        """
        record = self.health(provider)
        latency_score = max(0.0, 1.0 - record.response_time_ms / self.thresholds.max_response_time_ms)
        circuit_score = 1.0 if record.circuit_state == CircuitState.CLOSED else 0.0
        return (latency_score + record.success_rate + (1.0 - record.error_rate) + circuit_score) / 4

    def best(self, candidates: Iterable[str]) -> Optional[str]:
        """Highest-scoring candidate; ties go to the earliest in order."""
        best_provider = None
        best_score = -1.0
        for provider in candidates:
            score = self.score(provider)
            if score > best_score:
                best_provider, best_score = provider, score
        return best_provider

    def rank(self, candidates: Iterable[str]) -> List[str]:
        """Candidates by descending score, stable on declaration order."""
        candidates = list(candidates)
        scores = {provider: self.score(provider) for provider in candidates}
        return sorted(candidates, key=lambda p: -scores[p])

    def reset(self, provider: Optional[str] = None) -> None:
        """Reset one provider's record, or all of them."""
        with self._registry_lock:
            providers = [provider] if provider else list(self._records)
        for name in providers:
            record = self._record(name)
            with self._lock_for(name):
                fresh = ProviderHealth(provider=name, circuit_state=record.circuit_state)
                record.__dict__.update(fresh.__dict__)
        logger.info(f"Health reset for {provider or 'all providers'}")

    def update_thresholds(self, thresholds: PerformanceThresholds) -> None:
        self.thresholds = thresholds
