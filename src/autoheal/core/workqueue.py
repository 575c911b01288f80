"""FIFO work queue with rate limited retries.

Workers take items with ``get``, process them, and then call ``done``. Items
that failed are put back with ``add_rate_limited``, which waits an exponentially
growing delay before the item is available again. ``forget`` resets that delay
once the item has been processed successfully.
"""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Any

from loguru import logger

# Backoff applied to items that are retried: 5ms, 10ms, 20ms ... up to 1000s.
DEFAULT_BASE_DELAY = 0.005
DEFAULT_MAX_DELAY = 1000.0


class WorkQueue:
    """Asyncio work queue shared by the HTTP handlers and the workers."""

    def __init__(
        self,
        name: str,
        base_delay: float = DEFAULT_BASE_DELAY,
        max_delay: float = DEFAULT_MAX_DELAY,
    ):
        self.name = name
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._items: deque[Any] = deque()
        # id(item) -> (item, consecutive failures), holding the item keeps its id unique
        self._failures: dict[int, tuple[Any, int]] = {}
        self._timers: set[asyncio.TimerHandle] = set()
        self._processing = 0
        self._available = asyncio.Event()
        self._shutting_down = False

    def add(self, item: Any) -> None:
        """Add an item to the end of the queue."""
        if self._shutting_down:
            logger.debug(f"Queue '{self.name}' is shutting down, discarding item")
            return
        self._items.append(item)
        self._available.set()

    def add_rate_limited(self, item: Any) -> float:
        """Add an item after the backoff delay that corresponds to it.

        Returns:
            The delay, in seconds.
        """
        failures = self.num_requeues(item)
        delay = min(self._base_delay * (2 ** failures), self._max_delay)

        if self._shutting_down:
            return delay
        self._failures[id(item)] = (item, failures + 1)

        loop = asyncio.get_running_loop()
        handle: asyncio.TimerHandle

        def fire() -> None:
            self._timers.discard(handle)
            self.add(item)

        handle = loop.call_later(delay, fire)
        self._timers.add(handle)
        logger.debug(f"Item will be retried in queue '{self.name}' after {delay:.3f}s")
        return delay

    def num_requeues(self, item: Any) -> int:
        """Number of times the item has been added with rate limiting."""
        entry = self._failures.get(id(item))
        return entry[1] if entry is not None else 0

    def forget(self, item: Any) -> None:
        """Stop tracking the retries of an item."""
        self._failures.pop(id(item), None)

    async def get(self) -> tuple[Any, bool]:
        """Wait for the next item.

        Returns:
            Tuple of (item, shutdown). When shutdown is True the queue has been
            shut down and drained, and the caller should stop.
        """
        while True:
            if self._items:
                item = self._items.popleft()
                self._processing += 1
                return item, False
            if self._shutting_down:
                return None, True
            self._available.clear()
            await self._available.wait()

    def done(self, item: Any) -> None:
        """Mark the processing of an item as finished."""
        self._processing = max(0, self._processing - 1)

    def shut_down(self) -> None:
        """Stop accepting items and wake up the waiting workers."""
        self._shutting_down = True
        for handle in self._timers:
            handle.cancel()
        self._timers.clear()
        self._failures.clear()
        self._available.set()
        logger.debug(f"Queue '{self.name}' shut down")

    @property
    def processing(self) -> int:
        """Number of items taken by workers and not yet done."""
        return self._processing

    def __len__(self) -> int:
        return len(self._items)
