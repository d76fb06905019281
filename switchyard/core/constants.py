"""Central configuration constants for Switchyard.

This module defines the default thresholds used throughout the
orchestration core. Values mirror the reference deployment and are the
starting point that the config file and SWITCHYARD_* environment
variables layer on top of (see switchyard.core.settings).

Usage:
    from switchyard.core.constants import (
        DEFAULT_PRIMARY_PROVIDER,
        CIRCUIT_BREAKER_FAILURE_THRESHOLD,
    )
"""

import os
from typing import List, Optional

from switchyard.core.errors import InvalidConfigError

# =============================================================================
# Provider Identity
# =============================================================================

PRIMARY_LLM = "primary-llm"
ENTERPRISE_GATEWAY = "enterprise-gateway"
COMMUNITY_INFERENCE = "community-inference"
LOCAL_INFERENCE = "local-inference"

DEFAULT_PRIMARY_PROVIDER: str = PRIMARY_LLM
DEFAULT_FALLBACK_PROVIDERS: List[str] = [ENTERPRISE_GATEWAY, COMMUNITY_INFERENCE, LOCAL_INFERENCE]

# =============================================================================
# Health Monitoring
# =============================================================================

# Interval between background probe rounds (ms)
HEALTH_CHECK_INTERVAL_MS: int = 30_000

# Probe timeout (ms)
HEALTH_CHECK_TIMEOUT_MS: int = 5_000

# Performance thresholds for status derivation
MAX_RESPONSE_TIME_MS: int = 10_000
MIN_SUCCESS_RATE: float = 0.95
MAX_ERROR_RATE: float = 0.05

# Success rate below which a provider is unhealthy regardless of thresholds
UNHEALTHY_SUCCESS_RATE: float = 0.7

# Rate nudges applied per observation
CALL_SUCCESS_NUDGE: float = 0.05
CALL_FAILURE_NUDGE: float = 0.1
PROBE_SUCCESS_NUDGE: float = 0.1
PROBE_FAILURE_NUDGE: float = 0.2

# Consecutive unhealthy probes of the primary before proactive fallback
UNHEALTHY_PROBE_THRESHOLD: int = 1

# =============================================================================
# Retry Settings
# =============================================================================

MAX_RETRIES: int = 3
RETRY_BASE_DELAY_MS: int = 1_000
RETRY_MAX_DELAY_MS: int = 30_000
RETRY_BACKOFF_MULTIPLIER: float = 2.0
RETRY_JITTER_RATIO: float = 0.1

RETRYABLE_ERROR_SIGNATURES: List[str] = [
    "429",
    "rate limit",
    "timeout",
    "500",
    "502",
    "503",
    "504",
    "ECONNRESET",
    "ETIMEDOUT",
]

# =============================================================================
# Circuit Breaker Settings
# =============================================================================

# Number of consecutive failures before circuit opens
CIRCUIT_BREAKER_FAILURE_THRESHOLD: int = 5

# Milliseconds to wait before attempting recovery (OPEN -> HALF_OPEN)
CIRCUIT_BREAKER_RESET_TIMEOUT_MS: int = 60_000

# Trial calls admitted while HALF_OPEN
CIRCUIT_BREAKER_HALF_OPEN_MAX_CALLS: int = 3

# =============================================================================
# Fallback Audit Log
# =============================================================================

MAX_STORED_FALLBACK_EVENTS: int = 100

# =============================================================================
# Context Chunking
# =============================================================================

# Fraction of a model's context held back from the input budget
CONTEXT_SAFETY_MARGIN: float = 0.10

# Characters per token used by the estimator
CHARS_PER_TOKEN: int = 4

# Delay between sequential chunk calls (seconds)
CHUNK_DELAY_SECONDS: float = 1.0

# Output tokens added to each chunk's share of the output budget
CHUNK_OUTPUT_RESERVE_TOKENS: int = 500

# Tokens held back for the "part i of n" note
CHUNK_NOTE_RESERVE_TOKENS: int = 50

DEFAULT_MAX_OUTPUT_TOKENS: int = 4_000

# =============================================================================
# Usage Gate
# =============================================================================

RATE_LIMIT_WINDOW_SECONDS: float = 60.0


# =============================================================================
# Helper Functions for Environment Variable Loading
# =============================================================================

def get_env_int(key: str, default: Optional[int] = None) -> Optional[int]:
    """Get integer from environment variable with validation.

    Args:
        key: Environment variable name
        default: Default value if not set

    Returns:
        Integer value from environment or default

    Raises:
        InvalidConfigError: If value is not a valid non-negative integer
    """
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default

    try:
        result = int(value)
    except ValueError:
        raise InvalidConfigError(key, value, "must be an integer")
    if result < 0:
        raise InvalidConfigError(key, value, "must be non-negative")
    return result


def get_env_float(key: str, default: Optional[float] = None) -> Optional[float]:
    """Get float from environment variable with validation.

    Raises:
        InvalidConfigError: If value is not a valid non-negative number
    """
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default

    try:
        result = float(value)
    except ValueError:
        raise InvalidConfigError(key, value, "must be a number")
    if result < 0:
        raise InvalidConfigError(key, value, "must be non-negative")
    return result


def get_env_bool(key: str, default: Optional[bool] = None) -> Optional[bool]:
    """Get boolean from environment variable ("true"/"1"/"yes"/"on")."""
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("true", "1", "yes", "on")


def get_env_list(key: str, default: Optional[List[str]] = None) -> Optional[List[str]]:
    """Get comma-separated list from environment variable."""
    value = os.getenv(key)
    if value is None:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]
