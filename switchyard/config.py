"""Configuration models for Switchyard.

EnvironmentConfig is the fully-populated value handed to the orchestrator at
construction. It is loaded by switchyard.core.settings (defaults, then a JSON
file, then SWITCHYARD_* environment variables) and may be replaced wholesale
at runtime through CallOrchestrator.update_configuration.
"""

import copy
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from switchyard.core import constants


class PerformanceThresholds(BaseModel):
    """Thresholds used to derive provider health status."""

    model_config = ConfigDict(validate_default=True)

    max_response_time_ms: int = Field(
        default=constants.MAX_RESPONSE_TIME_MS, ge=1, description="Response time at which latency score reaches 0"
    )
    min_success_rate: float = Field(
        default=constants.MIN_SUCCESS_RATE, ge=0.0, le=1.0, description="Minimum success rate for HEALTHY"
    )
    max_error_rate: float = Field(
        default=constants.MAX_ERROR_RATE, ge=0.0, le=1.0, description="Maximum error rate for HEALTHY"
    )
    health_check_timeout_ms: int = Field(
        default=constants.HEALTH_CHECK_TIMEOUT_MS, ge=1, description="Timeout for a single reachability probe"
    )


class RetrySettings(BaseModel):
    """Bounded exponential backoff policy for one provider."""

    model_config = ConfigDict(validate_default=True)

    max_retries: int = Field(default=constants.MAX_RETRIES, ge=0, description="Retries after the first attempt")
    base_delay_ms: int = Field(default=constants.RETRY_BASE_DELAY_MS, ge=0, description="Delay before first retry")
    max_delay_ms: int = Field(default=constants.RETRY_MAX_DELAY_MS, ge=0, description="Upper bound on any delay")
    backoff_multiplier: float = Field(default=constants.RETRY_BACKOFF_MULTIPLIER, ge=1.0)
    retryable_errors: List[str] = Field(
        default_factory=lambda: list(constants.RETRYABLE_ERROR_SIGNATURES),
        description="Case-insensitive substrings marking an error as retryable",
    )
    jitter_ratio: float = Field(default=constants.RETRY_JITTER_RATIO, ge=0.0, le=1.0)

    @field_validator("retryable_errors")
    @classmethod
    def strip_signatures(cls, v: List[str]) -> List[str]:
        return [s.strip() for s in v if s and s.strip()]

    @model_validator(mode="after")
    def validate_delays(self) -> "RetrySettings":
        if self.max_delay_ms < self.base_delay_ms:
            raise ValueError("max_delay_ms must be >= base_delay_ms")
        return self


class CircuitBreakerSettings(BaseModel):
    """Per-provider circuit breaker thresholds."""

    model_config = ConfigDict(validate_default=True)

    failure_threshold: int = Field(default=constants.CIRCUIT_BREAKER_FAILURE_THRESHOLD, ge=1)
    reset_timeout_ms: int = Field(default=constants.CIRCUIT_BREAKER_RESET_TIMEOUT_MS, ge=0)
    half_open_max_calls: int = Field(default=constants.CIRCUIT_BREAKER_HALF_OPEN_MAX_CALLS, ge=1)


class ProviderQuota(BaseModel):
    """Request window and daily usage limits for one provider.

    None means unlimited.
    """

    requests_per_minute: Optional[int] = Field(default=None, ge=1)
    daily_token_limit: Optional[int] = Field(default=None, ge=0)
    daily_cost_limit: Optional[float] = Field(default=None, ge=0.0)
    cost_per_token: float = Field(default=0.0, ge=0.0)


def default_quotas() -> Dict[str, ProviderQuota]:
    """Quota table for the built-in providers."""
    return {
        constants.PRIMARY_LLM: ProviderQuota(
            requests_per_minute=60, daily_token_limit=100_000_000, cost_per_token=0.000_002
        ),
        constants.ENTERPRISE_GATEWAY: ProviderQuota(
            requests_per_minute=150, daily_token_limit=300_000_000, daily_cost_limit=500.0, cost_per_token=0.000_03
        ),
        constants.COMMUNITY_INFERENCE: ProviderQuota(requests_per_minute=30, daily_token_limit=50_000_000),
        constants.LOCAL_INFERENCE: ProviderQuota(requests_per_minute=20),
    }


class EnvironmentConfig(BaseModel):
    """Complete orchestration configuration."""

    model_config = ConfigDict(validate_default=True)

    primary_provider: str = Field(default=constants.DEFAULT_PRIMARY_PROVIDER, min_length=1)
    fallback_providers: List[str] = Field(
        default_factory=lambda: list(constants.DEFAULT_FALLBACK_PROVIDERS),
        description="Ordered fallback ids; no duplicates and never the primary",
    )
    health_check_interval_ms: int = Field(default=constants.HEALTH_CHECK_INTERVAL_MS, ge=1)
    auto_fallback_enabled: bool = Field(default=True, description="Allow promotion of fallbacks to primary")

    performance_thresholds: PerformanceThresholds = Field(default_factory=PerformanceThresholds)
    retry_config: RetrySettings = Field(default_factory=RetrySettings)
    circuit_breaker_config: CircuitBreakerSettings = Field(default_factory=CircuitBreakerSettings)
    quotas: Dict[str, ProviderQuota] = Field(default_factory=default_quotas)

    unhealthy_probe_threshold: int = Field(
        default=constants.UNHEALTHY_PROBE_THRESHOLD,
        ge=1,
        description="Consecutive unhealthy probes of the primary before the probe loop falls back",
    )
    selection_strategy: Literal["primary", "score"] = Field(
        default="primary", description="primary: use the active primary; score: argmax health score"
    )
    context_safety_margin: float = Field(default=constants.CONTEXT_SAFETY_MARGIN, ge=0.0, lt=1.0)
    max_fallback_events: int = Field(default=constants.MAX_STORED_FALLBACK_EVENTS, ge=1)

    @field_validator("primary_provider", mode="before")
    @classmethod
    def strip_primary(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator("fallback_providers", mode="before")
    @classmethod
    def split_fallbacks(cls, v: Any) -> Any:
        """Accept a comma-separated string as well as a list."""
        if isinstance(v, str):
            return v.split(",")
        return v

    @model_validator(mode="after")
    def normalize_fallbacks(self) -> "EnvironmentConfig":
        """Strip entries, drop blanks and duplicates, and remove the primary."""
        seen = {self.primary_provider}
        normalized = []
        for provider in self.fallback_providers:
            provider = provider.strip()
            if provider and provider not in seen:
                seen.add(provider)
                normalized.append(provider)
        self.fallback_providers = normalized
        return self

    @property
    def all_providers(self) -> List[str]:
        """Primary followed by fallbacks in declaration order."""
        return [self.primary_provider, *self.fallback_providers]

    def merged(self, updates: Dict[str, Any]) -> "EnvironmentConfig":
        """Return a new validated config with `updates` deep-merged in.

        Nested sections accept partial dicts, e.g.
        ``{"retry_config": {"max_retries": 5}}``.
        """
        data = self.model_dump()
        _deep_merge(data, updates)
        return EnvironmentConfig.model_validate(data)


def _deep_merge(base: Dict[str, Any], updates: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in updates.items():
        if isinstance(value, BaseModel):
            value = value.model_dump()
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _deep_merge(base[key], value)
        else:
            base[key] = copy.deepcopy(value)
    return base
