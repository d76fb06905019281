"""Cooperative cancellation for long-running orchestration calls.

A CancellationToken carries an optional deadline and an explicit cancel
flag. Every suspension point in the core (probe waits, retry backoff,
inter-chunk delays) goes through the token so a caller can abort a call
without waiting for the current sleep to finish.

Usage:
    token = CancellationToken.with_timeout(30.0)
    result = await orchestrator.execute("summarize", op, cancel=token)

    # elsewhere
    token.cancel()
"""

import asyncio
import time
from typing import Awaitable, Callable, Optional, TypeVar

from switchyard.core.errors import DeadlineExceededError, OperationCancelledError

T = TypeVar("T")


class CancellationToken:
    """Deadline plus explicit cancel signal.

    Attributes:
        deadline: Absolute deadline on the token's clock, or None
    """

    def __init__(
        self,
        deadline: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.deadline = deadline
        self._clock = clock
        self._cancelled = False
        self._event: Optional[asyncio.Event] = None

    @classmethod
    def with_timeout(cls, seconds: float, clock: Callable[[], float] = time.monotonic) -> "CancellationToken":
        """Create a token whose deadline is `seconds` from now."""
        return cls(deadline=clock() + seconds, clock=clock)

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def expired(self) -> bool:
        return self.deadline is not None and self._clock() >= self.deadline

    def cancel(self) -> None:
        """Signal cancellation and wake any pending sleep."""
        self._cancelled = True
        if self._event is not None:
            self._event.set()

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None when unbounded."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - self._clock())

    def raise_if_cancelled(self) -> None:
        """Raise if the token was cancelled or its deadline passed."""
        if self._cancelled:
            raise OperationCancelledError()
        if self.expired:
            raise DeadlineExceededError()

    def _wake_event(self) -> asyncio.Event:
        if self._event is None:
            self._event = asyncio.Event()
            if self._cancelled:
                self._event.set()
        return self._event

    async def sleep(self, seconds: float) -> None:
        """Sleep for `seconds`, waking early on cancel or deadline.

        Raises:
            OperationCancelledError: If cancelled during the sleep
            DeadlineExceededError: If the deadline falls inside the sleep
        """
        self.raise_if_cancelled()
        remaining = self.remaining()
        hits_deadline = remaining is not None and remaining < seconds
        wait = remaining if hits_deadline else seconds

        try:
            await asyncio.wait_for(self._wake_event().wait(), timeout=max(0.0, wait))
        except asyncio.TimeoutError:
            pass

        if self._cancelled:
            raise OperationCancelledError()
        if hits_deadline:
            raise DeadlineExceededError()

    async def wait_for(self, awaitable: Awaitable[T], timeout: Optional[float] = None) -> T:
        """Await with a timeout bounded by the remaining deadline.

        asyncio.TimeoutError is raised when the local timeout fires;
        DeadlineExceededError when the token's deadline was the bound.
        """
        self.raise_if_cancelled()
        remaining = self.remaining()
        bound_by_deadline = remaining is not None and (timeout is None or remaining < timeout)
        effective = remaining if bound_by_deadline else timeout
        try:
            return await asyncio.wait_for(awaitable, timeout=effective)
        except asyncio.TimeoutError:
            if bound_by_deadline:
                raise DeadlineExceededError()
            raise


async def cancellable_sleep(seconds: float, cancel: Optional[CancellationToken] = None) -> None:
    """Sleep through the token when one is given, else a plain asyncio sleep."""
    if cancel is None:
        await asyncio.sleep(seconds)
    else:
        await cancel.sleep(seconds)
