"""Fallback coordination: the ordered provider list and primary promotion.

Provides:
- FallbackEvent dataclass, one per attempted promotion
- FallbackCoordinator owning the current primary, the ordered fallbacks,
  the background health-probe loop and the promotion audit log

Promotion happens in one place, trigger_fallback(), whether it was started
by a failing call or by the probe loop noticing an unhealthy primary. The
primary field and the event log are guarded by a single writer lock, so
readers never observe a half-finished switch and events are appended in
the order switches happen.

Usage:
    coordinator = FallbackCoordinator(config, catalog, tracker)
    await coordinator.start()          # background probes
    provider = coordinator.active_provider()
    if not await coordinator.trigger_fallback("primary-llm timed out"):
        ...  # no healthy fallback
    await coordinator.stop()
"""

import asyncio
import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Deque, Dict, Iterable, List, Optional

from switchyard.config import EnvironmentConfig
from switchyard.core.cancellation import CancellationToken, cancellable_sleep
from switchyard.core.errors import MissingCredentialsError, OperationCancelledError
from switchyard.observability.health import ProviderHealth, ProviderHealthTracker
from switchyard.providers.registry import ProviderCatalog

logger = logging.getLogger(__name__)

MANUAL_SWITCH_REASON = "manual_switch"


def _utc_now() -> datetime:
    """Return current UTC time (timezone-aware)."""
    return datetime.now(timezone.utc)


@dataclass
class FallbackEvent:
    """Record of one attempted promotion.

    Attributes:
        from_provider: Primary at the time of the attempt
        to_provider: Candidate that was (or would have been) promoted
        reason: Why the switch was attempted
        success: Whether the candidate became primary
        timestamp: When the attempt resolved
    """

    from_provider: str
    to_provider: str
    reason: str
    success: bool
    timestamp: datetime = field(default_factory=_utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "from_provider": self.from_provider,
            "to_provider": self.to_provider,
            "reason": self.reason,
            "success": self.success,
        }


class FallbackCoordinator:
    """Owns the primary/fallback order, health probes and promotions."""

    def __init__(
        self,
        config: EnvironmentConfig,
        catalog: ProviderCatalog,
        tracker: ProviderHealthTracker,
    ):
        self.config = config
        self.catalog = catalog
        self.tracker = tracker
        self._lock = threading.Lock()
        self._primary = config.primary_provider
        self._fallbacks: List[str] = list(config.fallback_providers)
        self._events: Deque[FallbackEvent] = deque(maxlen=config.max_fallback_events)
        self._monitor_task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Provider order
    # ------------------------------------------------------------------

    def active_provider(self) -> str:
        with self._lock:
            return self._primary

    def fallback_providers(self) -> List[str]:
        with self._lock:
            return list(self._fallbacks)

    def provider_order(self) -> List[str]:
        """Primary followed by fallbacks, as one consistent snapshot."""
        with self._lock:
            return [self._primary, *self._fallbacks]

    def best_provider(self, candidates: Optional[Iterable[str]] = None) -> str:
        """Highest-scoring provider that is not unhealthy.

        Ties go to the earlier provider in primary-then-fallback order.
        Falls back to the active primary when every candidate is unhealthy.
        """
        order = list(candidates) if candidates is not None else self.provider_order()
        healthy = [p for p in order if not self.tracker.is_unhealthy(p)]
        return self.tracker.best(healthy) or self.active_provider()

    def _promote(self, candidate: str) -> str:
        """Make candidate primary and demote the old primary to the end. Caller holds the lock."""
        previous = self._primary
        self._fallbacks = [p for p in self._fallbacks if p != candidate]
        self._fallbacks.append(previous)
        self._primary = candidate
        return previous

    # ------------------------------------------------------------------
    # Health probes
    # ------------------------------------------------------------------

    async def probe_provider(self, provider: str, cancel: Optional[CancellationToken] = None) -> ProviderHealth:
        """Probe one provider under the configured timeout and record the result.

        Timeouts and exceptions count as an unreachable probe. Cancellation
        of the caller's token propagates.
        """
        timeout = self.config.performance_thresholds.health_check_timeout_ms / 1000.0
        if cancel is not None:
            cancel.raise_if_cancelled()
        try:
            if cancel is not None:
                result = await cancel.wait_for(self.catalog.check_reachable(provider), timeout=timeout)
            else:
                result = await asyncio.wait_for(self.catalog.check_reachable(provider), timeout=timeout)
        except OperationCancelledError:
            raise
        except asyncio.TimeoutError:
            return self.tracker.record_probe(
                provider, reachable=False, response_time_ms=timeout * 1000, error="health check timeout"
            )
        except Exception as e:
            return self.tracker.record_probe(provider, reachable=False, error=f"{type(e).__name__}: {e}")

        return self.tracker.record_probe(
            provider, reachable=result.reachable, response_time_ms=result.response_time_ms, error=result.error
        )

    async def run_health_probes(self, cancel: Optional[CancellationToken] = None) -> Dict[str, ProviderHealth]:
        """Probe every provider once and fall back proactively if needed.

        The primary triggers a fallback when it is unhealthy, auto-fallback
        is enabled, and it has failed unhealthy_probe_threshold probes in a row.

        Returns:
            Post-probe health per provider
        """
        providers = self.provider_order()
        healths = await asyncio.gather(*(self.probe_provider(provider, cancel=cancel) for provider in providers))
        results: Dict[str, ProviderHealth] = dict(zip(providers, healths))

        primary = self.active_provider()
        health = results.get(primary) or self.tracker.health(primary)
        if (
            health.is_unhealthy
            and self.config.auto_fallback_enabled
            and health.consecutive_unhealthy_probes >= self.config.unhealthy_probe_threshold
        ):
            logger.warning(
                f"Primary {primary} unhealthy for {health.consecutive_unhealthy_probes} probe(s); triggering fallback"
            )
            await self.trigger_fallback("Primary provider unhealthy", from_provider=primary, cancel=cancel)
        return results

    # ------------------------------------------------------------------
    # Promotion
    # ------------------------------------------------------------------

    async def trigger_fallback(
        self,
        reason: str,
        from_provider: Optional[str] = None,
        exclude: Iterable[str] = (),
        cancel: Optional[CancellationToken] = None,
    ) -> bool:
        """Promote the first healthy fallback to primary.

        Candidates are scanned in declared order. Unhealthy candidates are
        skipped without an event; every probed candidate yields an event.
        Probes run outside the lock. If another promotion wins while this
        one is probing, the switch is abandoned (a failed event is recorded)
        and True is returned, since a new primary exists.

        Args:
            reason: Why the fallback was requested
            from_provider: Primary the caller saw fail; if the primary has
                already moved on, no promotion is attempted
            exclude: Providers that must not be promoted (already tried)
            cancel: Optional token bounding each candidate probe

        Returns:
            True if the primary now differs from the failed one
        """
        with self._lock:
            expected = self._primary
            candidates = list(self._fallbacks)

        if from_provider is not None and from_provider != expected:
            logger.info(f"Fallback from {from_provider} not needed; primary is already {expected}")
            return True

        excluded = set(exclude)
        for candidate in candidates:
            if candidate in excluded:
                continue
            if self.tracker.is_unhealthy(candidate):
                logger.warning(f"Skipping fallback candidate {candidate}: unhealthy")
                continue

            health = await self.probe_provider(candidate, cancel=cancel)

            with self._lock:
                if self._primary != expected:
                    self._events.append(
                        FallbackEvent(expected, candidate, f"{reason} (superseded by switch to {self._primary})", False)
                    )
                    logger.info(f"Fallback to {candidate} abandoned; primary already switched to {self._primary}")
                    return True

                if not health.is_unhealthy:
                    self._promote(candidate)
                    self._events.append(FallbackEvent(expected, candidate, reason, True))
                    logger.info(f"Automatic fallback: {expected} -> {candidate} ({reason})")
                    return True

                self._events.append(FallbackEvent(expected, candidate, reason, False))
            logger.warning(f"Fallback to {candidate} failed: post-probe status {health.status.value}")

        logger.error(f"No healthy fallback providers available. Current: {expected} ({reason})")
        return False

    def force_provider_switch(self, provider: str, reason: str = MANUAL_SWITCH_REASON) -> None:
        """Make `provider` primary immediately, without probing.

        Raises:
            UnsupportedProviderError: If the provider is not in the catalog
            MissingCredentialsError: If the provider is not configured
        """
        adapter = self.catalog.get(provider)
        if not adapter.check_configured():
            raise MissingCredentialsError(provider, adapter.required_credential_names)

        with self._lock:
            previous = self._primary
            if previous == provider:
                return
            if provider not in self._fallbacks:
                self._fallbacks.insert(0, provider)
            self._promote(provider)
            self._events.append(FallbackEvent(previous, provider, reason, True))
        logger.info(f"Manual provider switch: {previous} -> {provider}")

    def get_fallback_history(self) -> List[FallbackEvent]:
        with self._lock:
            return list(self._events)

    # ------------------------------------------------------------------
    # Configuration and background monitor
    # ------------------------------------------------------------------

    def update_config(self, config: EnvironmentConfig, reset_order: bool = True) -> None:
        """Adopt a new configuration.

        With reset_order, the configured primary and fallbacks replace the
        runtime order; otherwise earlier promotions are kept.
        """
        with self._lock:
            self.config = config
            if reset_order:
                self._primary = config.primary_provider
                self._fallbacks = list(config.fallback_providers)
            if self._events.maxlen != config.max_fallback_events:
                self._events = deque(self._events, maxlen=config.max_fallback_events)

    @property
    def is_running(self) -> bool:
        return self._monitor_task is not None and not self._monitor_task.done()

    async def _monitor_loop(self) -> None:
        while True:
            try:
                await self.run_health_probes()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Health probe round failed: {e}", exc_info=True)
            await cancellable_sleep(self.config.health_check_interval_ms / 1000.0)

    async def start(self) -> None:
        """Start the background probe loop (first round runs immediately)."""
        if self.is_running:
            return
        self._monitor_task = asyncio.create_task(self._monitor_loop())
        logger.info(f"Health monitoring started (every {self.config.health_check_interval_ms}ms)")

    async def stop(self) -> None:
        task, self._monitor_task = self._monitor_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Health monitoring stopped")

    async def restart(self) -> None:
        await self.stop()
        await self.start()
