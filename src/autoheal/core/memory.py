"""Short term memory of executed healing actions.

The healer stores every action it executes here, and consults the memory before
executing an action again. Actions are compared by value, so the same rule
triggered by alerts with different data produces different entries.
"""

from __future__ import annotations

import copy
import time
from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable

from loguru import logger


@dataclass
class MemoryCell:
    """An item stored in the memory and the time it was last added."""

    item: Any
    stamp: float


class ShortTermMemory:
    """Remembers items for a limited period of time.

    Cells are kept ordered from oldest to youngest, so purging stops at the
    first cell that hasn't expired yet. A duration of zero disables the memory.

    Usage:
        memory = ShortTermMemory(duration=3600)
        if not memory.has(action):
            run(action)
        memory.add(action)
    """

    def __init__(self, duration: float, clock: Callable[[], float] = time.monotonic):
        """Initialize the memory.

        Args:
            duration: How long items are remembered, in seconds.
            clock: Source of the current time, in seconds.
        """
        if duration < 0:
            raise ValueError(f"Memory duration can't be negative: {duration}")
        self._duration = duration
        self._clock = clock
        self._cells: list[MemoryCell] = []
        self._lock = Lock()

    @property
    def duration(self) -> float:
        return self._duration

    def add(self, item: Any) -> None:
        """Add an item, or refresh it if an equal item is already stored."""
        if self._duration == 0:
            return

        with self._lock:
            now = self._clock()
            index = self._find(item)
            if index is not None:
                cell = self._cells.pop(index)
                cell.stamp = now
            else:
                cell = MemoryCell(item=copy.deepcopy(item), stamp=now)
            # Moving the refreshed cell to the end keeps the cells sorted by stamp.
            self._cells.append(cell)

    def has(self, item: Any) -> bool:
        """Check if an equal item has been added and hasn't expired yet."""
        with self._lock:
            self._purge()
            return self._find(item) is not None

    def len(self) -> int:
        """Number of items currently remembered."""
        with self._lock:
            self._purge()
            return len(self._cells)

    def __len__(self) -> int:
        return self.len()

    def clean(self) -> None:
        """Remove the expired items."""
        with self._lock:
            self._purge()

    def _purge(self) -> None:
        # Must be called with the lock held.
        now = self._clock()
        expired = 0
        for cell in self._cells:
            if now - cell.stamp >= self._duration:
                expired += 1
            else:
                break
        if expired:
            del self._cells[:expired]
            logger.debug(f"Purged {expired} expired items from memory")

    def _find(self, item: Any) -> int | None:
        # Must be called with the lock held.
        for index, cell in enumerate(self._cells):
            if cell.item == item:
                return index
        return None
