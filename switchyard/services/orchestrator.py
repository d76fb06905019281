"""Call orchestration: provider selection, gating, retries and fallback.

CallOrchestrator is the entry point callers use. One execute() call:

1. Selects a provider: the strict provider if one is set, otherwise the
   active primary (or the best-scoring provider with selection_strategy
   "score"), skipping providers already tried for this call.
2. Ensures a client exists for it.
3. Checks gates: health (non-strict only), circuit breaker, request
   window, daily quota.
4. Runs the operation through RetryExecutor, with each attempt reporting
   its outcome to the circuit breaker and the health tracker.
5. On failure, asks FallbackCoordinator to promote a fallback and tries
   again with the new provider.

The loop is bounded: a call switches providers at most once per configured
provider. Strict mode, disabled auto-fallback, and running out of healthy
fallbacks each end the call with a distinct ExhaustionError.

Usage:
    orchestrator = CallOrchestrator(config, ProviderCatalog.with_builtin_providers())
    await orchestrator.start()

    text = await orchestrator.execute(
        "summarize",
        lambda provider: catalog.get(provider).complete(messages),
    )

    with orchestrator.strict_provider("local-inference"):
        text = await orchestrator.complete(messages)

    await orchestrator.close()
"""

import contextvars
import logging
import time
from contextlib import contextmanager
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Optional, Sequence, TypeVar, Union

from pydantic import ValidationError

from switchyard.config import EnvironmentConfig
from switchyard.core.cancellation import CancellationToken
from switchyard.core.errors import (
    ChunkingError,
    CircuitOpenError,
    ConfigurationError,
    FallbackDisabledError,
    GateError,
    InvalidConfigError,
    NoHealthyFallbackError,
    OperationCancelledError,
    ProviderUnhealthyError,
    QuotaExceededError,
    RateLimitGateError,
    StrictProviderError,
    SwitchLimitError,
    UnsupportedProviderError,
)
from switchyard.core.settings import ConfigStore, _format_validation_error
from switchyard.observability.circuit_breaker import CircuitBreakerRegistry
from switchyard.observability.health import ProviderHealth, ProviderHealthTracker
from switchyard.providers.base import ChatMessage
from switchyard.providers.registry import BUILTIN_PROVIDERS, ProviderCatalog
from switchyard.services.context_chunker import estimate_tokens
from switchyard.services.fallback import FallbackCoordinator, FallbackEvent
from switchyard.services.retry import RetryExecutor
from switchyard.services.usage_gate import UsageGate

logger = logging.getLogger(__name__)

T = TypeVar("T")

Operation = Callable[[str], Awaitable[T]]

# Failures that say nothing about the provider's health
_TERMINAL_ERRORS = (ConfigurationError, ChunkingError, OperationCancelledError)


class _ProviderAttempts:
    """Retry attempts against one provider, reporting outcomes to breaker and tracker.

    The first attempt runs on the breaker admission taken by the gate
    check; later attempts ask the breaker again. An admission is held
    until an outcome is recorded, and release() returns one that never
    got an outcome (terminal error, cancellation).
    """

    def __init__(self, orchestrator: "CallOrchestrator", provider: str, operation: Operation):
        self.orchestrator = orchestrator
        self.provider = provider
        self.operation = operation
        self.admitted = True

    async def __call__(self) -> Any:
        orch = self.orchestrator
        provider = self.provider
        if not self.admitted:
            if not orch.breakers.allow(provider):
                raise CircuitOpenError(provider, "opened during retries")
            self.admitted = True

        start = orch.clock()
        try:
            result = await self.operation(provider)
        except _TERMINAL_ERRORS:
            raise
        except Exception as e:
            elapsed_ms = (orch.clock() - start) * 1000
            self.admitted = False
            orch.breakers.record_failure(provider, str(e))
            orch.tracker.record_outcome(provider, False, elapsed_ms, error=str(e))
            raise

        elapsed_ms = (orch.clock() - start) * 1000
        self.admitted = False
        orch.breakers.record_success(provider)
        orch.tracker.record_outcome(provider, True, elapsed_ms)
        if isinstance(result, str):
            orch.usage.record_usage(provider, estimate_tokens(result))
        return result

    def release(self) -> None:
        if self.admitted:
            self.admitted = False
            self.orchestrator.breakers.release(self.provider)


class CallOrchestrator:
    """Executes operations against the best available provider.

    Construct one per application (composition root) and pass it by
    reference; nothing here is process-global.

    Attributes:
        config: Current EnvironmentConfig
        catalog: Provider adapters keyed by id
        tracker: Per-provider health records
        breakers: Per-provider circuit breakers
        usage: Request-window and quota gates
        coordinator: Primary/fallback order and promotions
        retry: Backoff executor
        max_switches_per_call: Provider switches allowed per execute() call
            (None: one per configured provider)
    """

    def __init__(
        self,
        config: EnvironmentConfig,
        catalog: ProviderCatalog,
        config_store: Optional[ConfigStore] = None,
        retry_executor: Optional[RetryExecutor] = None,
        usage_gate: Optional[UsageGate] = None,
        max_switches_per_call: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.max_switches_per_call = max_switches_per_call
        self.catalog = catalog
        self.config_store = config_store
        self.clock = clock

        self.tracker = ProviderHealthTracker(config.performance_thresholds, providers=config.all_providers)
        self.breakers = CircuitBreakerRegistry(
            config.circuit_breaker_config,
            on_state_change=self.tracker.on_circuit_state_change,
            clock=clock,
        )
        self.usage = usage_gate or UsageGate(config.quotas)
        self.coordinator = FallbackCoordinator(config, catalog, self.tracker)
        self.retry = retry_executor or RetryExecutor()
        self.catalog.set_safety_margin(config.context_safety_margin)

        self._strict: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
            f"switchyard_strict_provider_{id(self)}", default=None
        )

    # ------------------------------------------------------------------
    # Strict provider mode
    # ------------------------------------------------------------------

    def set_strict_provider(self, provider: Optional[str]) -> None:
        """Pin calls in the current context to one provider (None clears).

        Strict mode is scoped to the current asyncio task / context and is
        never persisted.
        """
        self._strict.set(provider)
        if provider:
            logger.info(f"Strict provider mode: {provider}")

    def get_strict_provider(self) -> Optional[str]:
        return self._strict.get()

    @contextmanager
    def strict_provider(self, provider: Optional[str]) -> Iterator[None]:
        """Context manager form of set_strict_provider()."""
        token = self._strict.set(provider)
        try:
            yield
        finally:
            self._strict.reset(token)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _select_provider(self, strict: Optional[str], attempted: Sequence[str]) -> Optional[str]:
        if strict:
            return strict if strict not in attempted else None

        if self.config.selection_strategy == "score":
            remaining = [p for p in self.coordinator.provider_order() if p not in attempted]
            if not remaining:
                return None
            choice = self.coordinator.best_provider(remaining)
            return choice if choice not in attempted else remaining[0]

        active = self.coordinator.active_provider()
        return active if active not in attempted else None

    def _check_gates(self, provider: str, strict: bool) -> None:
        """Raise the GateError for the first gate that rejects the call."""
        if not strict and self.tracker.is_unhealthy(provider):
            raise ProviderUnhealthyError(provider, self.tracker.health(provider).last_error)
        if not self.breakers.allow(provider):
            raise CircuitOpenError(provider, self.breakers.get_circuit(provider).last_error)

        try:
            if not self.usage.within_rate_limit(provider):
                raise RateLimitGateError(provider, "request window full")
            if not self.usage.check_quota(provider):
                raise QuotaExceededError(provider, "daily quota exhausted")
            if not self.usage.try_acquire(provider):
                raise RateLimitGateError(provider, "request window full")
        except GateError:
            self.breakers.release(provider)
            raise

    def _wrap(self, provider: str, operation: Operation) -> "_ProviderAttempts":
        return _ProviderAttempts(self, provider, operation)

    async def _run_on(
        self,
        provider: str,
        operation_name: str,
        operation: Operation,
        strict: bool,
        cancel: Optional[CancellationToken],
    ) -> Any:
        if provider not in self.catalog:
            raise UnsupportedProviderError(provider)
        self.catalog.ensure_client(provider)
        self._check_gates(provider, strict)

        logger.debug(f"{operation_name}: dispatching to {provider}")
        attempts = self._wrap(provider, operation)
        try:
            return await self.retry.execute_with_retry(
                attempts,
                operation_name=operation_name,
                provider=provider,
                config=self.config.retry_config,
                cancel=cancel,
            )
        finally:
            attempts.release()

    async def execute(
        self,
        operation_name: str,
        operation: Operation,
        cancel: Optional[CancellationToken] = None,
    ) -> T:
        """Run `operation(provider_id)` on the best available provider.

        Args:
            operation_name: Logical name for logs and errors
            operation: Coroutine factory taking the chosen provider id
            cancel: Optional cancellation token / deadline

        Returns:
            The operation's result

        Raises:
            ConfigurationError: Unsupported provider or missing credentials
            ChunkingError: The input could not be chunked
            StrictProviderError: Strict mode's provider failed or was gated
            FallbackDisabledError: Provider failed and auto-fallback is off
            NoHealthyFallbackError: Provider failed and no fallback qualified
            SwitchLimitError: The per-call switch bound was reached
            OperationCancelledError: The token was cancelled or expired
        """
        strict = self.get_strict_provider()
        limit = self.max_switches_per_call or len(self.coordinator.provider_order())
        attempted: List[str] = []
        last_error: Optional[Exception] = None
        switches = 0

        while True:
            if cancel is not None:
                cancel.raise_if_cancelled()

            provider = self._select_provider(strict, attempted)
            if provider is None:
                logger.error(f"{operation_name}: no untried provider left after {', '.join(attempted)}")
                raise NoHealthyFallbackError(
                    operation_name, attempted, self.coordinator.fallback_providers(), last_error
                ) from last_error

            try:
                return await self._run_on(provider, operation_name, operation, bool(strict), cancel)
            except _TERMINAL_ERRORS:
                raise
            except Exception as e:
                last_error = e
                attempted.append(provider)
                if isinstance(e, GateError):
                    logger.warning(f"{operation_name}: {e}")
                else:
                    logger.warning(f"{operation_name} failed on {provider}: {e}")

            if strict:
                logger.error(f"{operation_name}: strict provider {strict} failed; not falling back")
                raise StrictProviderError(strict, operation_name, last_error) from last_error

            if not self.config.auto_fallback_enabled:
                logger.error(f"{operation_name}: {provider} failed and automatic fallback is disabled")
                raise FallbackDisabledError(operation_name, attempted, last_error) from last_error

            if switches >= limit:
                logger.error(f"{operation_name}: provider switch limit ({limit}) reached")
                raise SwitchLimitError(operation_name, attempted, limit, last_error) from last_error

            switched = await self.coordinator.trigger_fallback(
                f"{operation_name} failed on {provider}: {last_error}",
                from_provider=provider if self.config.selection_strategy == "primary" else None,
                exclude=attempted,
                cancel=cancel,
            )
            if not switched and self.config.selection_strategy == "primary":
                logger.error(f"{operation_name}: no healthy fallback after {', '.join(attempted)}")
                raise NoHealthyFallbackError(
                    operation_name, attempted, self.coordinator.fallback_providers(), last_error
                ) from last_error
            switches += 1

    async def complete(
        self,
        messages: Sequence[Union[ChatMessage, Dict[str, str]]],
        max_output_tokens: Optional[int] = None,
        operation_name: str = "complete",
        cancel: Optional[CancellationToken] = None,
    ) -> str:
        """Chat completion through execute(); adapters chunk oversized prompts."""
        prepared = [m if isinstance(m, ChatMessage) else ChatMessage(**m) for m in messages]

        async def operation(provider: str) -> str:
            return await self.catalog.get(provider).complete(prepared, max_output_tokens, cancel=cancel)

        return await self.execute(operation_name, operation, cancel=cancel)

    # ------------------------------------------------------------------
    # Health and history
    # ------------------------------------------------------------------

    def get_provider_health(
        self, provider: Optional[str] = None
    ) -> Union[ProviderHealth, Dict[str, ProviderHealth]]:
        """Health for one provider, or for every configured provider."""
        if provider is not None:
            return self.tracker.health(provider)
        return {p: self.tracker.health(p) for p in self.coordinator.provider_order()}

    def get_fallback_history(self) -> List[FallbackEvent]:
        return self.coordinator.get_fallback_history()

    def reset_provider_health(self, provider: Optional[str] = None) -> None:
        """Reset breaker and health record for one provider, or all."""
        if provider is None:
            self.breakers.reset_all()
        else:
            self.breakers.reset_circuit(provider)
        self.tracker.reset(provider)

    def active_provider(self) -> str:
        return self.coordinator.active_provider()

    def best_provider(self) -> str:
        return self.coordinator.best_provider()

    def force_provider_switch(self, provider: str) -> None:
        self.coordinator.force_provider_switch(provider)

    async def run_health_probes(self, cancel: Optional[CancellationToken] = None) -> Dict[str, ProviderHealth]:
        return await self.coordinator.run_health_probes(cancel=cancel)

    def get_status(self) -> Dict[str, Any]:
        """Snapshot of provider order, health, scores, breakers and usage."""
        circuits = self.breakers.get_status()
        providers = {}
        for provider in self.coordinator.provider_order():
            providers[provider] = {
                "health": self.tracker.health(provider).to_dict(),
                "score": round(self.tracker.score(provider), 4),
                "circuit": circuits.get(provider, {"state": "closed"}),
                "usage": self.usage.status(provider),
                "configured": provider in self.catalog and self.catalog.is_configured(provider),
            }
        return {
            "active_provider": self.coordinator.active_provider(),
            "strict_provider": self.get_strict_provider(),
            "auto_fallback_enabled": self.config.auto_fallback_enabled,
            "selection_strategy": self.config.selection_strategy,
            "monitoring": self.coordinator.is_running,
            "providers": providers,
            "fallback_events": len(self.coordinator.get_fallback_history()),
        }

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    async def update_configuration(self, updates: Union[EnvironmentConfig, Dict[str, Any]]) -> EnvironmentConfig:
        """Replace or patch the configuration at runtime.

        Restarts the health monitor when the interval or auto-fallback flag
        changes, and rebuilds circuit breakers when breaker settings change.
        The attached config store, if any, is saved.

        Args:
            updates: A full EnvironmentConfig or a partial (nested) dict

        Returns:
            The new configuration
        """
        old = self.config
        if isinstance(updates, EnvironmentConfig):
            new = updates
            reset_order = True
        else:
            try:
                new = old.merged(updates)
            except ValidationError as e:
                raise InvalidConfigError("update", updates, _format_validation_error(e)) from e
            reset_order = "primary_provider" in updates or "fallback_providers" in updates

        self.config = new
        self.coordinator.update_config(new, reset_order=reset_order)
        self.tracker.update_thresholds(new.performance_thresholds)
        self.usage.update_quotas(new.quotas)
        self.catalog.set_safety_margin(new.context_safety_margin)

        if new.circuit_breaker_config != old.circuit_breaker_config:
            for provider in self.breakers.rebuild(new.circuit_breaker_config):
                self.tracker.set_circuit_state(provider, self.breakers.current_state(provider))

        monitor_changed = (
            new.health_check_interval_ms != old.health_check_interval_ms
            or new.auto_fallback_enabled != old.auto_fallback_enabled
        )
        if monitor_changed and self.coordinator.is_running:
            await self.coordinator.restart()

        if self.config_store is not None:
            self.config_store.save(new)
        logger.info("Configuration updated")
        return new

    def generate_configuration_template(self) -> str:
        """Human-readable .env template reflecting the current configuration."""
        c = self.config
        t = c.performance_thresholds
        lines = [
            "# Switchyard - Environment Configuration",
            "# Copy this to .env and configure your providers",
            "",
            "# " + "=" * 77,
            "# PROVIDER ORDER",
            "# " + "=" * 77,
            f"# Available providers: {', '.join(self.catalog.ids())}",
            f"SWITCHYARD_PRIMARY_PROVIDER={c.primary_provider}",
            "# Comma-separated fallbacks, in order of preference",
            f"SWITCHYARD_FALLBACK_PROVIDERS={','.join(c.fallback_providers)}",
            "",
            "# " + "=" * 77,
            "# AUTOMATIC FALLBACK",
            "# " + "=" * 77,
            f"SWITCHYARD_AUTO_FALLBACK={str(c.auto_fallback_enabled).lower()}",
            "# Health check interval in milliseconds",
            f"SWITCHYARD_HEALTH_CHECK_INTERVAL={c.health_check_interval_ms}",
            "# Consecutive unhealthy probes of the primary before falling back",
            f"SWITCHYARD_UNHEALTHY_PROBE_THRESHOLD={c.unhealthy_probe_threshold}",
            "# primary (use the active primary) or score (best health score)",
            f"SWITCHYARD_SELECTION_STRATEGY={c.selection_strategy}",
            "",
            "# " + "=" * 77,
            "# PERFORMANCE THRESHOLDS",
            "# " + "=" * 77,
            f"SWITCHYARD_MAX_RESPONSE_TIME={t.max_response_time_ms}",
            f"SWITCHYARD_MIN_SUCCESS_RATE={t.min_success_rate}",
            f"SWITCHYARD_MAX_ERROR_RATE={t.max_error_rate}",
            f"SWITCHYARD_HEALTH_CHECK_TIMEOUT={t.health_check_timeout_ms}",
            "",
        ]

        for provider_id in self.catalog.ids():
            adapter = self.catalog.get(provider_id)
            definition = BUILTIN_PROVIDERS.get(provider_id)
            title = definition.description if definition else adapter.display_name
            lines.extend(["# " + "=" * 77, f"# {provider_id.upper()} - {title}", "# " + "=" * 77])
            if adapter.required_credential_names:
                lines.extend(f"# {name}=" for name in adapter.required_credential_names)
            else:
                lines.append("# No credentials required")
            lines.append("")

        r = c.retry_config
        b = c.circuit_breaker_config
        lines.extend(
            [
                "# " + "=" * 77,
                "# ADVANCED",
                "# " + "=" * 77,
                f"SWITCHYARD_CIRCUIT_BREAKER_THRESHOLD={b.failure_threshold}",
                f"SWITCHYARD_CIRCUIT_BREAKER_RESET_TIMEOUT={b.reset_timeout_ms}",
                f"SWITCHYARD_CIRCUIT_BREAKER_HALF_OPEN_MAX_CALLS={b.half_open_max_calls}",
                f"SWITCHYARD_MAX_RETRIES={r.max_retries}",
                f"SWITCHYARD_RETRY_BASE_DELAY={r.base_delay_ms}",
                f"SWITCHYARD_RETRY_MAX_DELAY={r.max_delay_ms}",
                "",
            ]
        )
        return "\n".join(lines)

    async def validate_configuration(self) -> Dict[str, Any]:
        """Check the configuration against the catalog.

        Returns:
            {"valid": bool, "errors": [...], "warnings": [...], "recommendations": [...]}
        """
        c = self.config
        errors: List[str] = []
        warnings: List[str] = []
        recommendations: List[str] = []

        if c.primary_provider not in self.catalog:
            errors.append(f"Primary provider '{c.primary_provider}' is not supported")
        else:
            adapter = self.catalog.get(c.primary_provider)
            if not adapter.check_configured():
                errors.append(f"Primary provider '{c.primary_provider}' is not properly configured")
                if adapter.required_credential_names:
                    recommendations.append(
                        f"Configure {c.primary_provider} by setting: {', '.join(adapter.required_credential_names)}"
                    )

        configured_fallbacks = 0
        for provider in c.fallback_providers:
            if provider not in self.catalog:
                warnings.append(f"Fallback provider '{provider}' is not supported")
            elif self.catalog.is_configured(provider):
                configured_fallbacks += 1
            else:
                warnings.append(f"Fallback provider '{provider}' is not configured")

        if configured_fallbacks == 0:
            warnings.append("No fallback providers are configured - this may impact reliability")
            recommendations.append("Configure at least one fallback provider for better reliability")

        if c.performance_thresholds.max_response_time_ms < 1000:
            warnings.append("Maximum response time is very low - this may cause frequent fallbacks")
        if c.performance_thresholds.min_success_rate > 0.99:
            warnings.append("Minimum success rate is very high - this may cause frequent fallbacks")
        if c.performance_thresholds.health_check_timeout_ms > c.health_check_interval_ms:
            warnings.append("Health check timeout exceeds the health check interval")

        if not c.auto_fallback_enabled:
            recommendations.append("Enable automatic fallback for better reliability")
        if c.unhealthy_probe_threshold == 1 and c.auto_fallback_enabled:
            recommendations.append(
                "Consider an unhealthy probe threshold above 1 to avoid flapping on a single slow probe"
            )

        return {
            "valid": not errors,
            "errors": errors,
            "warnings": warnings,
            "recommendations": recommendations,
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start background health monitoring."""
        await self.coordinator.start()

    async def close(self) -> None:
        """Stop monitoring and close every adapter client."""
        await self.coordinator.stop()
        await self.catalog.close()

    async def __aenter__(self) -> "CallOrchestrator":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()
