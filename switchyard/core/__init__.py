"""Core primitives: errors, constants, cancellation and configuration loading."""

from .cancellation import CancellationToken, cancellable_sleep
from .errors import (
    ConfigurationError,
    ExhaustionError,
    GateError,
    OperationCancelledError,
    ProviderError,
    SwitchyardError,
)

__all__ = [
    "CancellationToken",
    "cancellable_sleep",
    "SwitchyardError",
    "ConfigurationError",
    "ProviderError",
    "GateError",
    "ExhaustionError",
    "OperationCancelledError",
]
