"""
Background retry scheduling.

Keyed retries of arbitrary async operations with exponential spacing. One
pending retry per key: scheduling a key again replaces the old entry.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

import structlog

from local_llm.monitoring.metrics import scheduled_retries_total


logger = structlog.get_logger(__name__)

Operation = Callable[[], Awaitable[Any]]


class _ScheduledRetry:
    __slots__ = ("key", "operation", "attempts", "max_attempts", "delay", "backoff_multiplier", "scheduled_at", "task")

    def __init__(self, key: str, operation: Operation, max_attempts: int, delay: float, backoff_multiplier: float):
        self.key = key
        self.operation = operation
        self.attempts = 0
        self.max_attempts = max_attempts
        self.delay = delay
        self.backoff_multiplier = backoff_multiplier
        self.scheduled_at: Optional[datetime] = None
        self.task: Optional[asyncio.Task] = None


class RetryScheduler:
    """
    Runs an operation up to `max_attempts` times, waiting
    `delay * backoff_multiplier ** attempts` seconds before each try.

    Success or exhaustion removes the key from the queue. Requires a running
    event loop when scheduling.
    """

    def __init__(
        self,
        delay: float = 5.0,
        max_attempts: int = 3,
        backoff_multiplier: float = 2.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.default_delay = delay
        self.default_max_attempts = max_attempts
        self.default_backoff_multiplier = backoff_multiplier
        self._sleep = sleep
        self._queue: Dict[str, _ScheduledRetry] = {}

    def schedule(
        self,
        key: str,
        operation: Operation,
        delay: Optional[float] = None,
        max_attempts: Optional[int] = None,
        backoff_multiplier: Optional[float] = None,
    ) -> None:
        self.cancel(key)

        entry = _ScheduledRetry(
            key=key,
            operation=operation,
            max_attempts=self.default_max_attempts if max_attempts is None else max_attempts,
            delay=self.default_delay if delay is None else delay,
            backoff_multiplier=(
                self.default_backoff_multiplier if backoff_multiplier is None else backoff_multiplier
            ),
        )
        self._queue[key] = entry
        entry.task = asyncio.create_task(self._run(entry), name=f"retry:{key}")

        logger.info("Retry scheduled", key=key, max_attempts=entry.max_attempts, delay_s=entry.delay)

    def cancel(self, key: str) -> bool:
        entry = self._queue.pop(key, None)
        if entry is None:
            return False
        if entry.task is not None and not entry.task.done():
            entry.task.cancel()
        logger.debug("Retry cancelled", key=key)
        return True

    def is_scheduled(self, key: str) -> bool:
        return key in self._queue

    async def _run(self, entry: _ScheduledRetry) -> None:
        while entry.attempts < entry.max_attempts:
            wait = entry.delay * entry.backoff_multiplier ** entry.attempts
            entry.scheduled_at = datetime.now(timezone.utc) + timedelta(seconds=wait)
            await self._sleep(wait)
            entry.attempts += 1

            try:
                await entry.operation()
            except Exception as e:
                scheduled_retries_total.labels(outcome="failure").inc()
                logger.warning(
                    "Scheduled retry failed",
                    key=entry.key,
                    attempt=entry.attempts,
                    max_attempts=entry.max_attempts,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                continue

            scheduled_retries_total.labels(outcome="success").inc()
            logger.info("Scheduled retry succeeded", key=entry.key, attempt=entry.attempts)
            self._remove(entry)
            return

        scheduled_retries_total.labels(outcome="exhausted").inc()
        logger.error("Max retry attempts reached", key=entry.key, attempts=entry.attempts)
        self._remove(entry)

    def _remove(self, entry: _ScheduledRetry) -> None:
        if self._queue.get(entry.key) is entry:
            del self._queue[entry.key]

    def get_status(self) -> Dict[str, List[Dict[str, Any]]]:
        return {
            "queue": [
                {
                    "key": entry.key,
                    "attempts": entry.attempts,
                    "max_attempts": entry.max_attempts,
                    "scheduled_at": entry.scheduled_at.isoformat() if entry.scheduled_at else None,
                }
                for entry in self._queue.values()
            ]
        }

    async def wait_idle(self) -> None:
        """Wait until every scheduled retry has finished."""
        tasks = [entry.task for entry in list(self._queue.values()) if entry.task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def dispose(self) -> None:
        """Cancel every pending retry."""
        entries = list(self._queue.values())
        self._queue.clear()
        for entry in entries:
            if entry.task is not None and not entry.task.done():
                entry.task.cancel()
        tasks = [entry.task for entry in entries if entry.task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.debug("Retry scheduler disposed", cancelled=len(entries))
