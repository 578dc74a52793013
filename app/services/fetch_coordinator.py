"""
Fetch Coordination

Collapses concurrent cache misses for the same key into one in-flight merge
pipeline whose result is shared with every waiter.
"""
import asyncio
import logging
from collections.abc import Awaitable, Callable, Hashable
from typing import Any


logger = logging.getLogger(__name__)


class FetchCoordinator:
    """
    Single-flight coordination of merge pipeline runs.

    The first caller for a key starts the build; callers arriving while it is
    running await the same task. The slot is released as soon as the build
    settles, so the next miss after that starts a fresh run. Builds for
    different keys run independently.
    """

    def __init__(self):
        """Initialize the coordinator with no in-flight builds."""
        self._in_flight: dict[Hashable, asyncio.Task] = {}

    async def execute(self, key: Hashable, build: Callable[[], Awaitable[Any]]) -> Any:
        """
        Run ``build`` for ``key`` unless a run for that key is already in flight.

        The build runs in its own task, so a caller that goes away does not
        cancel the run other callers are waiting on.

        Args:
            key: Identity of the work (the cache key)
            build: Async callable producing the result

        Returns:
            Result of the build, shared across concurrent callers

        Raises:
            Any exception raised by build, delivered to every waiter
        """
        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.create_task(self._run(key, build))
            task.add_done_callback(_retrieve_exception)
            self._in_flight[key] = task
        else:
            logger.info("Joining in-flight merge for %s", key)

        return await asyncio.shield(task)

    async def _run(self, key: Hashable, build: Callable[[], Awaitable[Any]]) -> Any:
        try:
            return await build()
        finally:
            self._in_flight.pop(key, None)

    def is_fetching(self, key: Hashable | None = None) -> bool:
        """
        Check if a build is currently in progress.

        Args:
            key: Restrict the check to one key; any key when omitted
        """
        if key is None:
            return bool(self._in_flight)
        return key in self._in_flight


def _retrieve_exception(task: asyncio.Task) -> None:
    """Mark a failed build as seen even when every waiter was cancelled."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug("In-flight merge build failed: %r", exc)


# Global singleton instance
_coordinator: FetchCoordinator | None = None


def get_fetch_coordinator() -> FetchCoordinator:
    """
    Get or create the global fetch coordinator singleton.

    Returns:
        The global FetchCoordinator instance
    """
    global _coordinator
    if _coordinator is None:
        _coordinator = FetchCoordinator()
    return _coordinator


def reset_fetch_coordinator() -> None:
    """
    Reset the fetch coordinator (mainly for testing).

    WARNING: Only use this in test environments!
    """
    global _coordinator
    _coordinator = None
