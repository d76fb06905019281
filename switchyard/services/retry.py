"""Bounded exponential backoff for a single operation against one provider.

The executor is stateless across calls; the whole policy travels in the
RetrySettings passed to each call.

Delay before retry n (first retry is n=1):
    min(max_delay, base_delay * backoff_multiplier ** (n - 1))
plus jitter drawn uniformly from [0, delay * jitter_ratio].

Usage:
    from switchyard.services.retry import RetryExecutor

    executor = RetryExecutor()
    text = await executor.execute_with_retry(
        lambda: adapter.call(messages, 1000),
        operation_name="summarize",
        provider="primary-llm",
        config=config.retry_config,
    )
"""

import logging
import random
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

from switchyard.config import RetrySettings
from switchyard.core.cancellation import CancellationToken, cancellable_sleep
from switchyard.core.errors import (
    ChunkingError,
    ConfigurationError,
    GateError,
    OperationCancelledError,
    RetryExhaustedError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Errors that describe the request or the caller, never the backend
NON_RETRYABLE_ERRORS = (ConfigurationError, GateError, ChunkingError, OperationCancelledError)


def compute_delay_ms(retry_number: int, config: RetrySettings) -> float:
    """Backoff delay before retry `retry_number` (1-based), without jitter."""
    raw = config.base_delay_ms * config.backoff_multiplier ** (retry_number - 1)
    return float(min(config.max_delay_ms, raw))


def error_fingerprint(error: BaseException) -> str:
    """Lower-cased text an error is matched against.

    Covers the message, any error_code/status_code/code attributes and the
    exception class name, so SDK errors carrying an HTTP status match "429"
    or "503" even when their message does not.
    """
    parts: List[str] = [str(error), type(error).__name__]
    for attr in ("error_code", "status_code", "code"):
        value = getattr(error, attr, None)
        if value is not None:
            parts.append(str(value))
    return " ".join(parts).lower()


def is_retryable(error: BaseException, config: RetrySettings) -> bool:
    """Whether an error matches a configured retryable signature."""
    if isinstance(error, NON_RETRYABLE_ERRORS):
        return False
    fingerprint = error_fingerprint(error)
    return any(signature.lower() in fingerprint for signature in config.retryable_errors)


class RetryExecutor:
    """Runs an async operation with bounded, jittered exponential backoff.

    Attributes:
        sleep: Optional async sleep override (seconds); used by tests
        random_fn: Source of uniform [0, 1) values for jitter
    """

    def __init__(
        self,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
        random_fn: Callable[[], float] = random.random,
    ):
        self.sleep = sleep
        self.random_fn = random_fn

    def delay_for(self, retry_number: int, config: RetrySettings) -> float:
        """Delay in milliseconds before retry `retry_number`, with jitter."""
        delay = compute_delay_ms(retry_number, config)
        return delay + self.random_fn() * delay * config.jitter_ratio

    async def _backoff(self, delay_ms: float, cancel: Optional[CancellationToken]) -> None:
        seconds = delay_ms / 1000.0
        if self.sleep is None:
            await cancellable_sleep(seconds, cancel)
            return
        await self.sleep(seconds)
        if cancel is not None:
            cancel.raise_if_cancelled()

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        operation_name: str,
        provider: str,
        config: RetrySettings,
        cancel: Optional[CancellationToken] = None,
    ) -> T:
        """Execute `operation`, retrying retryable failures.

        Args:
            operation: Zero-argument coroutine factory, called once per attempt
            operation_name: Logical operation name for logs and errors
            provider: Provider the operation runs against
            config: Retry policy
            cancel: Optional cancellation token, checked before every attempt

        Returns:
            The operation's result

        Raises:
            RetryExhaustedError: When every attempt failed with retryable errors
            Exception: The original error when it is not retryable
            OperationCancelledError: When cancelled before or between attempts
        """
        attempts = config.max_retries + 1
        last_error: Optional[Exception] = None

        for attempt in range(1, attempts + 1):
            if cancel is not None:
                cancel.raise_if_cancelled()

            try:
                return await operation()
            except Exception as e:
                last_error = e
                if not is_retryable(e, config):
                    logger.debug(f"{operation_name} on {provider}: non-retryable {type(e).__name__}: {e}")
                    raise

                if attempt == attempts:
                    break

                delay_ms = self.delay_for(attempt, config)
                logger.warning(
                    f"{operation_name} on {provider} failed (attempt {attempt}/{attempts}): {e}; "
                    f"retrying in {delay_ms:.0f}ms"
                )
                await self._backoff(delay_ms, cancel)

        logger.error(f"{operation_name} on {provider} exhausted {attempts} attempt(s): {last_error}")
        raise RetryExhaustedError(provider, operation_name, attempts, last_error) from last_error
