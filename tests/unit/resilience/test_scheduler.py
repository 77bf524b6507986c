"""
Unit tests for RetryScheduler.

Sleeps are injected so retries run instantly and their spacing can be checked.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from local_llm.resilience.scheduler import RetryScheduler


async def _block_forever(delay: float) -> None:
    await asyncio.Event().wait()


@pytest.fixture
def sleep() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def scheduler(sleep) -> RetryScheduler:
    return RetryScheduler(delay=5.0, max_attempts=3, backoff_multiplier=2.0, sleep=sleep)


class TestRetryScheduler:
    """Test keyed background retries."""

    @pytest.mark.asyncio
    async def test_success_on_first_attempt(self, scheduler, sleep):
        """Test the operation runs after the initial delay and leaves the queue."""
        operation = AsyncMock(return_value="ok")

        scheduler.schedule("models", operation)
        assert scheduler.is_scheduled("models") is True
        await scheduler.wait_idle()

        operation.assert_awaited_once()
        sleep.assert_awaited_once_with(5.0)
        assert scheduler.is_scheduled("models") is False

    @pytest.mark.asyncio
    async def test_exponential_spacing(self, scheduler, sleep):
        """Test waits grow by the backoff multiplier until success."""
        operation = AsyncMock(side_effect=[RuntimeError("1"), RuntimeError("2"), "ok"])

        scheduler.schedule("chat", operation)
        await scheduler.wait_idle()

        assert operation.await_count == 3
        assert [c.args[0] for c in sleep.await_args_list] == [5.0, 10.0, 20.0]
        assert scheduler.get_status() == {"queue": []}

    @pytest.mark.asyncio
    async def test_exhaustion(self, scheduler):
        """Test the operation is tried max_attempts times, then dropped."""
        operation = AsyncMock(side_effect=ConnectionError("down"))

        scheduler.schedule("chat", operation, max_attempts=2)
        await scheduler.wait_idle()

        assert operation.await_count == 2
        assert scheduler.is_scheduled("chat") is False

    @pytest.mark.asyncio
    async def test_per_call_options(self, scheduler, sleep):
        """Test delay and multiplier can be overridden per schedule."""
        operation = AsyncMock(side_effect=[RuntimeError("x"), "ok"])

        scheduler.schedule("k", operation, delay=0.5, backoff_multiplier=3.0)
        await scheduler.wait_idle()

        assert [c.args[0] for c in sleep.await_args_list] == [0.5, 1.5]

    @pytest.mark.asyncio
    async def test_reschedule_replaces_entry(self, scheduler):
        """Test scheduling a key again cancels the pending entry."""
        first = AsyncMock()
        second = AsyncMock()

        scheduler.schedule("k", first)
        scheduler.schedule("k", second)
        await scheduler.wait_idle()

        first.assert_not_called()
        second.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_cancel(self):
        """Test cancelling a pending retry."""
        scheduler = RetryScheduler(sleep=_block_forever)
        operation = AsyncMock()

        scheduler.schedule("k", operation)
        assert scheduler.cancel("k") is True
        assert scheduler.cancel("k") is False
        await asyncio.sleep(0)

        operation.assert_not_called()
        assert scheduler.is_scheduled("k") is False

    @pytest.mark.asyncio
    async def test_status_of_pending_retry(self):
        """Test the queue reports pending entries with their next run time."""
        scheduler = RetryScheduler(delay=2.0, max_attempts=4, sleep=_block_forever)
        scheduler.schedule("embeddings", AsyncMock())
        await asyncio.sleep(0)

        queue = scheduler.get_status()["queue"]

        assert len(queue) == 1
        assert queue[0]["key"] == "embeddings"
        assert queue[0]["attempts"] == 0
        assert queue[0]["max_attempts"] == 4
        assert queue[0]["scheduled_at"] is not None

        await scheduler.dispose()

    @pytest.mark.asyncio
    async def test_dispose_cancels_everything(self):
        """Test dispose cancels pending retries and empties the queue."""
        scheduler = RetryScheduler(sleep=_block_forever)
        operations = [AsyncMock(), AsyncMock()]
        scheduler.schedule("a", operations[0])
        scheduler.schedule("b", operations[1])
        await asyncio.sleep(0)

        await scheduler.dispose()

        assert scheduler.get_status() == {"queue": []}
        for operation in operations:
            operation.assert_not_called()
