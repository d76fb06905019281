"""Core exception hierarchy for Switchyard.

This module defines the exception classes used throughout Switchyard.
All Switchyard exceptions inherit from SwitchyardError, enabling both
specific and broad exception handling.

Exception Hierarchy:
    SwitchyardError (base)
    ├── ConfigurationError - never retried, surfaced immediately
    │   ├── UnsupportedProviderError
    │   ├── MissingCredentialsError
    │   ├── MissingConfigError
    │   └── InvalidConfigError
    ├── ProviderError - transient backend failures (retry candidates)
    │   ├── ProviderTimeoutError
    │   ├── ProviderRateLimitError
    │   ├── ProviderUnavailableError
    │   ├── ProviderResponseError
    │   └── RetryExhaustedError
    ├── GateError - rejected before dispatch
    │   ├── CircuitOpenError
    │   ├── RateLimitGateError
    │   ├── QuotaExceededError
    │   └── ProviderUnhealthyError
    ├── ExhaustionError - no viable provider left
    │   ├── StrictProviderError
    │   ├── NoHealthyFallbackError
    │   ├── FallbackDisabledError
    │   └── SwitchLimitError
    ├── ChunkingError
    └── OperationCancelledError
        └── DeadlineExceededError
"""

from typing import Any, Dict, List, Optional, Sequence


class SwitchyardError(Exception):
    """Base exception for all Switchyard errors.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code (e.g., "PROVIDER_TIMEOUT")
        details: Optional dict with additional context
    """

    error_code: str = "SWITCHYARD_ERROR"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        if error_code:
            self.error_code = error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dict for diagnostics output."""
        return {
            "error": True,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


# Configuration Errors
class ConfigurationError(SwitchyardError):
    """Base class for configuration errors."""

    error_code = "CONFIG_ERROR"


class UnsupportedProviderError(ConfigurationError):
    """Provider id is not registered in the catalog."""

    error_code = "UNSUPPORTED_PROVIDER"

    def __init__(self, provider: str):
        self.provider = provider
        super().__init__(
            f"Configuration invalid: provider '{provider}' is not supported.",
            details={"provider": provider},
        )


class MissingCredentialsError(ConfigurationError):
    """Provider is registered but its credentials are not set."""

    error_code = "MISSING_CREDENTIALS"

    def __init__(self, provider: str, credential_names: Sequence[str] = ()):
        self.provider = provider
        self.credential_names = list(credential_names)
        msg = f"Configuration invalid: provider '{provider}' is not configured."
        if self.credential_names:
            msg += f" Set: {', '.join(self.credential_names)}"
        super().__init__(msg, details={"provider": provider, "credential_names": self.credential_names})


class MissingConfigError(ConfigurationError):
    """Required configuration is missing."""

    error_code = "MISSING_CONFIG"

    def __init__(self, config_key: str, source: str = "environment"):
        super().__init__(
            f"Required configuration '{config_key}' not found in {source}.",
            details={"config_key": config_key, "source": source},
        )


class InvalidConfigError(ConfigurationError):
    """Configuration value is invalid."""

    error_code = "INVALID_CONFIG"

    def __init__(self, config_key: str, value: Any, reason: str):
        super().__init__(
            f"Invalid value for '{config_key}': {reason}",
            details={"config_key": config_key, "value": str(value), "reason": reason},
        )


# Provider Errors
class ProviderError(SwitchyardError):
    """Base class for errors raised by a provider backend."""

    error_code = "PROVIDER_ERROR"

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.provider = provider
        details = dict(details or {})
        if provider:
            details.setdefault("provider", provider)
        super().__init__(message, error_code=error_code, details=details)


class ProviderTimeoutError(ProviderError):
    """Provider call timed out."""

    error_code = "PROVIDER_TIMEOUT"

    def __init__(self, provider: str, timeout_seconds: Optional[float] = None):
        msg = f"{provider} request timeout"
        if timeout_seconds:
            msg += f" after {timeout_seconds:g}s"
        super().__init__(msg, provider=provider, details={"timeout_seconds": timeout_seconds})


class ProviderRateLimitError(ProviderError):
    """Provider rejected the call with a rate limit (HTTP 429)."""

    error_code = "PROVIDER_RATE_LIMIT"

    def __init__(self, provider: str, retry_after: Optional[int] = None):
        msg = f"{provider} rate limit exceeded (429)."
        if retry_after:
            msg += f" Retry after {retry_after} seconds."
        super().__init__(msg, provider=provider, details={"retry_after": retry_after})


class ProviderUnavailableError(ProviderError):
    """Provider service is unavailable (5xx or connection failure)."""

    error_code = "PROVIDER_UNAVAILABLE"

    def __init__(self, provider: str, status_code: Optional[int] = None, reason: str = ""):
        msg = f"{provider} service is currently unavailable."
        if status_code:
            msg += f" (HTTP {status_code})"
        if reason:
            msg += f" {reason}"
        self.status_code = status_code
        super().__init__(msg, provider=provider, details={"status_code": status_code})


class ProviderResponseError(ProviderError):
    """Provider returned a response the adapter could not use."""

    error_code = "PROVIDER_RESPONSE"

    def __init__(self, provider: str, reason: str, status_code: Optional[int] = None):
        self.status_code = status_code
        msg = f"{provider} returned an unusable response: {reason}"
        if status_code:
            msg += f" (HTTP {status_code})"
        super().__init__(msg, provider=provider, details={"status_code": status_code})


class RetryExhaustedError(ProviderError):
    """All retry attempts against one provider failed."""

    error_code = "RETRY_EXHAUSTED"

    def __init__(self, provider: str, operation: str, attempts: int, last_error: BaseException):
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"{operation} failed on {provider} after {attempts} attempt(s): {last_error}",
            provider=provider,
            details={"operation": operation, "attempts": attempts, "last_error": str(last_error)},
        )


# Gate Errors
class GateError(SwitchyardError):
    """A pre-dispatch gate rejected the call."""

    error_code = "GATE_REJECTED"
    gate: str = "gate"

    def __init__(self, provider: str, reason: str = ""):
        self.provider = provider
        msg = f"{self.gate} gate rejected call to {provider}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg, details={"provider": provider, "gate": self.gate})


class CircuitOpenError(GateError):
    """Circuit breaker for the provider is open."""

    error_code = "CIRCUIT_OPEN"
    gate = "circuit"


class RateLimitGateError(GateError):
    """Local request window for the provider is full."""

    error_code = "RATE_LIMIT_GATE"
    gate = "rate-limit"


class QuotaExceededError(GateError):
    """Daily token or cost quota for the provider is used up."""

    error_code = "QUOTA_EXCEEDED"
    gate = "quota"


class ProviderUnhealthyError(GateError):
    """Provider is currently marked unhealthy."""

    error_code = "PROVIDER_UNHEALTHY"
    gate = "health"


# Exhaustion Errors
class ExhaustionError(SwitchyardError):
    """No viable provider remains for an operation."""

    error_code = "PROVIDERS_EXHAUSTED"

    def __init__(
        self,
        message: str,
        operation: str,
        attempted: Sequence[str],
        last_error: Optional[BaseException] = None,
    ):
        self.operation = operation
        self.attempted: List[str] = list(attempted)
        self.last_error = last_error
        super().__init__(
            message,
            details={
                "operation": operation,
                "attempted": self.attempted,
                "last_error": str(last_error) if last_error else None,
            },
        )


def _last_error_suffix(last_error: Optional[BaseException]) -> str:
    return f" Last error: {last_error}" if last_error else ""


class StrictProviderError(ExhaustionError):
    """Strict provider mode forbade falling back."""

    error_code = "STRICT_PROVIDER"

    def __init__(self, provider: str, operation: str, last_error: Optional[BaseException] = None):
        self.provider = provider
        super().__init__(
            f"{operation} failed on {provider}; strict provider mode disabled fallback."
            f"{_last_error_suffix(last_error)}",
            operation=operation,
            attempted=[provider],
            last_error=last_error,
        )


class NoHealthyFallbackError(ExhaustionError):
    """Every fallback candidate was unhealthy or failed its probe."""

    error_code = "NO_HEALTHY_FALLBACK"

    def __init__(
        self,
        operation: str,
        attempted: Sequence[str],
        candidates: Sequence[str] = (),
        last_error: Optional[BaseException] = None,
    ):
        self.candidates = list(candidates)
        tried = ", ".join(attempted) or "none"
        msg = f"{operation} failed: no healthy fallback existed. Attempted providers: {tried}."
        if self.candidates:
            msg += f" Fallback candidates: {', '.join(self.candidates)}."
        super().__init__(
            msg + _last_error_suffix(last_error),
            operation=operation,
            attempted=attempted,
            last_error=last_error,
        )


class FallbackDisabledError(ExhaustionError):
    """Automatic fallback is switched off in configuration."""

    error_code = "FALLBACK_DISABLED"

    def __init__(self, operation: str, attempted: Sequence[str], last_error: Optional[BaseException] = None):
        super().__init__(
            f"{operation} failed on {', '.join(attempted)}; automatic fallback is disabled."
            f"{_last_error_suffix(last_error)}",
            operation=operation,
            attempted=attempted,
            last_error=last_error,
        )


class SwitchLimitError(ExhaustionError):
    """Provider switch bound for a single call was reached."""

    error_code = "SWITCH_LIMIT"

    def __init__(
        self,
        operation: str,
        attempted: Sequence[str],
        limit: int,
        last_error: Optional[BaseException] = None,
    ):
        self.limit = limit
        super().__init__(
            f"{operation} failed after {limit} provider switch(es). "
            f"Attempted providers: {', '.join(attempted)}.{_last_error_suffix(last_error)}",
            operation=operation,
            attempted=attempted,
            last_error=last_error,
        )


# Chunking Errors
class ChunkingError(SwitchyardError):
    """Oversized input could not be split into model calls."""

    error_code = "CHUNKING_ERROR"


# Cancellation
class OperationCancelledError(SwitchyardError):
    """The caller cancelled the operation."""

    error_code = "CANCELLED"

    def __init__(self, message: str = "Operation cancelled"):
        super().__init__(message)


class DeadlineExceededError(OperationCancelledError):
    """The caller's deadline passed before the operation finished."""

    error_code = "DEADLINE_EXCEEDED"

    def __init__(self, message: str = "Operation deadline exceeded"):
        super().__init__(message)
