"""
SingleFlight - Collapses concurrent identical loads into one in-flight task.

The catalog is expensive to build (one large upstream download), so every
caller that arrives while a load is running awaits that same task instead of
starting another one.
"""

import asyncio
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

T = TypeVar("T")


class SingleFlight:
    """
    Shares one in-flight task per key between concurrent callers.

    Usage:
        flight = SingleFlight()

        async def load_catalog():
            return await flight.do("catalog", adapter.fetch_display_names)

    A waiter that gets cancelled stops waiting but leaves the shared task
    running for the other waiters.
    """

    def __init__(self, debug: bool = False):
        self._in_flight: dict[str, asyncio.Task[Any]] = {}
        self._lock = asyncio.Lock()
        self._debug = debug
        self._stats = SingleFlightStats()

    async def do(
        self,
        key: str,
        fn: Callable[[], Awaitable[T]],
    ) -> T:
        """
        Run ``fn`` unless a call for ``key`` is already running, then share its result.

        Args:
            key: Identifier of the shared work
            fn: Async function to execute if nothing is in flight for ``key``

        Returns:
            Result of the (possibly shared) call. Exceptions propagate to every waiter.
        """
        async with self._lock:
            task = self._in_flight.get(key)
            if task is not None:
                self._stats.shared += 1
                self._log(f"JOIN: Waiting for in-flight call: {key}")
            else:
                self._stats.total += 1
                self._log(f"NEW: Starting call: {key}")
                task = asyncio.create_task(self._execute_and_cleanup(key, fn))
                self._in_flight[key] = task

        return await asyncio.shield(task)

    async def _execute_and_cleanup(
        self,
        key: str,
        fn: Callable[[], Awaitable[T]],
    ) -> T:
        try:
            return await fn()
        finally:
            async with self._lock:
                self._in_flight.pop(key, None)
                self._log(f"DONE: {key}")

    def is_in_flight(self, key: str) -> bool:
        return key in self._in_flight

    async def cancel_all(self) -> int:
        """Cancel every in-flight call."""
        async with self._lock:
            count = len(self._in_flight)
            for task in self._in_flight.values():
                task.cancel()
            self._in_flight.clear()
            if count:
                self._log(f"CANCEL_ALL: {count} calls cancelled")
            return count

    def get_stats(self) -> "SingleFlightStats":
        self._stats.in_flight = len(self._in_flight)
        return self._stats

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[SingleFlight] {message}")


class SingleFlightStats:
    """Statistics for shared calls."""

    def __init__(self):
        self.total: int = 0  # Calls actually executed
        self.shared: int = 0  # Callers that joined an in-flight call
        self.in_flight: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_calls": self.total,
            "shared": self.shared,
            "in_flight": self.in_flight,
        }
