"""Tests for the cancellation token."""

import asyncio

import pytest

from gameinsights.adapters.datasource.cancellation import CancellationToken
from gameinsights.adapters.datasource.errors import QueryCancelledError


class TestCancellationToken:
    """Tests for CancellationToken."""

    @pytest.mark.asyncio
    async def test_run_returns_result(self):
        """An uncancelled operation returns its result."""
        token = CancellationToken()

        async def work():
            return 42

        assert await token.run(work()) == 42

    @pytest.mark.asyncio
    async def test_cancel_aborts_pending_operation(self):
        """Cancelling while pending raises QueryCancelledError."""
        token = CancellationToken()
        started = asyncio.Event()

        async def slow():
            started.set()
            await asyncio.sleep(10)

        task = asyncio.create_task(token.run(slow()))
        await started.wait()
        token.cancel()

        with pytest.raises(QueryCancelledError):
            await task

    @pytest.mark.asyncio
    async def test_run_after_cancel_raises(self):
        """Running on a fired token raises without starting the work."""
        token = CancellationToken()
        token.cancel()
        ran = []

        async def work():
            ran.append(1)

        with pytest.raises(QueryCancelledError):
            await token.run(work())

        assert ran == []
        with pytest.raises(QueryCancelledError):
            token.raise_if_cancelled()

    @pytest.mark.asyncio
    async def test_cancel_after_completion_is_noop(self):
        """Cancelling after the result arrived changes nothing."""
        token = CancellationToken()

        async def work():
            return "done"

        result = await token.run(work())
        token.cancel()

        assert result == "done"
        assert token.cancelled is True

    @pytest.mark.asyncio
    async def test_caller_cancellation_propagates(self):
        """Cancelling the awaiting task is a plain CancelledError."""
        token = CancellationToken()
        started = asyncio.Event()

        async def slow():
            started.set()
            await asyncio.sleep(10)

        task = asyncio.create_task(token.run(slow()))
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert token.cancelled is False
