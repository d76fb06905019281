"""Tests for CancellationToken deadlines, cancel signal and cancellable waits."""

import asyncio

import pytest

from switchyard.core.cancellation import CancellationToken, cancellable_sleep
from switchyard.core.errors import DeadlineExceededError, OperationCancelledError

from tests.conftest import FakeClock


@pytest.mark.unit
class TestTokenState:
    def test_unbounded_token(self):
        token = CancellationToken()

        assert token.remaining() is None
        assert not token.expired
        token.raise_if_cancelled()

    def test_with_timeout_uses_clock(self):
        clock = FakeClock(start=100.0)
        token = CancellationToken.with_timeout(5.0, clock=clock)

        assert token.deadline == 105.0
        clock.advance(2)
        assert token.remaining() == pytest.approx(3.0)

    def test_expired_token_raises_deadline_exceeded(self):
        clock = FakeClock()
        token = CancellationToken.with_timeout(1.0, clock=clock)
        clock.advance(1.0)

        assert token.expired
        assert token.remaining() == 0.0
        with pytest.raises(DeadlineExceededError):
            token.raise_if_cancelled()

    def test_cancel_raises_operation_cancelled(self):
        token = CancellationToken()
        token.cancel()

        assert token.cancelled
        with pytest.raises(OperationCancelledError) as exc_info:
            token.raise_if_cancelled()
        assert not isinstance(exc_info.value, DeadlineExceededError)

    def test_deadline_exceeded_is_a_cancellation(self):
        assert issubclass(DeadlineExceededError, OperationCancelledError)


@pytest.mark.unit
class TestCancellableWaits:
    @pytest.mark.asyncio
    async def test_sleep_completes_normally(self):
        token = CancellationToken()

        await token.sleep(0.01)

    @pytest.mark.asyncio
    async def test_cancel_wakes_pending_sleep(self):
        token = CancellationToken()

        async def cancel_soon():
            await asyncio.sleep(0.01)
            token.cancel()

        canceller = asyncio.create_task(cancel_soon())
        loop = asyncio.get_running_loop()
        start = loop.time()

        with pytest.raises(OperationCancelledError):
            await token.sleep(30)

        assert loop.time() - start < 5
        await canceller

    @pytest.mark.asyncio
    async def test_sleep_past_deadline_raises(self):
        token = CancellationToken.with_timeout(0.01)

        with pytest.raises(DeadlineExceededError):
            await token.sleep(30)

    @pytest.mark.asyncio
    async def test_wait_for_returns_result(self):
        token = CancellationToken()

        async def work():
            return 42

        assert await token.wait_for(work(), timeout=1) == 42

    @pytest.mark.asyncio
    async def test_wait_for_local_timeout(self):
        token = CancellationToken.with_timeout(30)

        with pytest.raises(asyncio.TimeoutError) as exc_info:
            await token.wait_for(asyncio.sleep(10), timeout=0.01)
        assert not isinstance(exc_info.value, DeadlineExceededError)

    @pytest.mark.asyncio
    async def test_wait_for_bounded_by_deadline(self):
        token = CancellationToken.with_timeout(0.01)

        with pytest.raises(DeadlineExceededError):
            await token.wait_for(asyncio.sleep(10), timeout=30)

    @pytest.mark.asyncio
    async def test_cancellable_sleep_without_token(self):
        await cancellable_sleep(0)

    @pytest.mark.asyncio
    async def test_cancellable_sleep_with_cancelled_token(self):
        token = CancellationToken()
        token.cancel()

        with pytest.raises(OperationCancelledError):
            await cancellable_sleep(10, token)
