"""
Result broker - per-tag notification of pending waiters.
"""

import asyncio
from typing import Any, Dict, List

import structlog

logger = structlog.get_logger(__name__)


class ResultBroker:
    """
    Maps normalised tags to the futures of callers waiting for them.

    Every future is removed from the broker exactly once: when it is
    resolved, rejected, or discarded by its waiter.
    """

    def __init__(self):
        self._waiters: Dict[str, List[asyncio.Future]] = {}

    def subscribe(self, key: str) -> asyncio.Future:
        """Create a future that completes when key is resolved or rejected."""
        future = asyncio.get_running_loop().create_future()
        self._waiters.setdefault(key, []).append(future)
        return future

    def discard(self, key: str, future: asyncio.Future) -> None:
        """Remove a waiter that is no longer interested."""
        waiters = self._waiters.get(key)
        if not waiters:
            return
        if future in waiters:
            waiters.remove(future)
        if not waiters:
            del self._waiters[key]

    def resolve(self, key: str, value: Any) -> int:
        """
        Complete every waiter of key with value.

        Returns:
            Number of waiters notified
        """
        waiters = self._waiters.pop(key, [])
        for future in waiters:
            if not future.done():
                future.set_result(value)
        return len(waiters)

    def reject(self, key: str, error: BaseException) -> int:
        """
        Fail every waiter of key with error.

        Returns:
            Number of waiters notified
        """
        waiters = self._waiters.pop(key, [])
        for future in waiters:
            if not future.done():
                future.set_exception(error)
        if waiters:
            logger.debug("waiters_rejected", tag=key, count=len(waiters), error=str(error))
        return len(waiters)

    def pending(self, key: str) -> int:
        """Get the number of waiters of key."""
        return len(self._waiters.get(key, []))

    def __len__(self) -> int:
        return sum(len(w) for w in self._waiters.values())
