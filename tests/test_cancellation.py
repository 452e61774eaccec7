"""
Tests for cancellation tokens and run_cancellable.
"""

import asyncio

import pytest

from shared.cancellation import CancellationToken, run_cancellable
from shared.errors import CollectionCancelledError


class TestCancellationToken:
    def test_new_token_is_not_cancelled(self):
        token = CancellationToken()
        assert not token.is_cancelled()
        assert token.remaining() is None

    def test_cancel(self):
        token = CancellationToken()
        token.cancel()
        assert token.is_cancelled()
        assert token.reason() == "Collection cancelled by caller"
        with pytest.raises(CollectionCancelledError):
            token.raise_if_cancelled()

    def test_deadline(self, fake_clock):
        token = CancellationToken(timeout=5.0, clock=fake_clock)
        assert token.remaining() == 5.0

        fake_clock.advance(5.0)

        assert token.is_cancelled()
        assert token.reason() == "Collection deadline exceeded"


class TestRunCancellable:
    @pytest.mark.asyncio
    async def test_without_token(self):
        async def work():
            return 42

        assert await run_cancellable(work(), None) == 42

    @pytest.mark.asyncio
    async def test_completes_before_cancellation(self):
        async def work():
            return "done"

        assert await run_cancellable(work(), CancellationToken()) == "done"

    @pytest.mark.asyncio
    async def test_already_cancelled_token_does_not_start_work(self):
        started = False

        async def work():
            nonlocal started
            started = True

        token = CancellationToken()
        token.cancel()

        with pytest.raises(CollectionCancelledError):
            await run_cancellable(work(), token)

        assert started is False

    @pytest.mark.asyncio
    async def test_cancel_interrupts_in_flight_work(self):
        token = CancellationToken()
        interrupted = asyncio.Event()

        async def work():
            try:
                await asyncio.sleep(60)
            except asyncio.CancelledError:
                interrupted.set()
                raise

        async def cancel_soon():
            await asyncio.sleep(0.01)
            token.cancel()

        canceller = asyncio.ensure_future(cancel_soon())
        with pytest.raises(CollectionCancelledError, match="cancelled by caller"):
            await run_cancellable(work(), token)
        await canceller

        assert interrupted.is_set()

    @pytest.mark.asyncio
    async def test_deadline_interrupts_in_flight_work(self):
        async def work():
            await asyncio.sleep(60)

        with pytest.raises(CollectionCancelledError, match="deadline"):
            await run_cancellable(work(), CancellationToken(timeout=0.05))

    @pytest.mark.asyncio
    async def test_work_errors_propagate(self):
        async def work():
            raise ValueError("boom")

        with pytest.raises(ValueError):
            await run_cancellable(work(), CancellationToken(timeout=10))
