"""
Bounded Memory — the agent's capacity-limited interaction log.

Every conversation turn, capability result and adaptation event the runtime
produces lands here as a ``MemoryRecord``. Capacity is fixed at construction.
When an append pushes the store past capacity the oldest record is dropped:
strict FIFO by insertion order, with no recency-of-access or relevance
weighting.

The store is a thin wrapper around ``collections.deque(maxlen=...)`` so the
capacity invariant is enforced by the container itself rather than by slicing
after the fact. Reads return copies and never mutate state.
"""

from __future__ import annotations

import threading
from collections import deque
from typing import Iterable, Optional

import structlog

from aria.types import MemoryKind, MemoryRecord

logger = structlog.get_logger(__name__)


class BoundedMemoryStore:
    """
    Append-only, FIFO-evicting log of ``MemoryRecord`` objects.

    Usage pattern:
        1. The dispatcher / runtime calls append() after each interaction
        2. The decision engine reads recent(n) for context
        3. Export reads all(); import calls load()
    """

    def __init__(self, capacity: int = 100):
        if capacity < 1:
            raise ValueError("Bounded memory capacity must be at least 1")
        self._capacity = int(capacity)
        self._records: deque[MemoryRecord] = deque(maxlen=self._capacity)
        self._lock = threading.Lock()
        self._evicted_total = 0

        logger.info("bounded_memory.initialized", capacity=self._capacity)

    def append(self, record: MemoryRecord) -> Optional[MemoryRecord]:
        """Add a record. Returns the evicted record if the store was full."""
        with self._lock:
            evicted = self._records[0] if len(self._records) == self._capacity else None
            self._records.append(record)
            if evicted is not None:
                self._evicted_total += 1

        if evicted is not None:
            logger.debug(
                "bounded_memory.evicted",
                evicted_id=evicted.id,
                evicted_kind=evicted.kind.value,
            )
        return evicted

    def recent(self, n: int) -> list[MemoryRecord]:
        """The last ``min(n, size)`` records, oldest first."""
        if n <= 0:
            return []
        with self._lock:
            size = len(self._records)
            start = max(0, size - n)
            return [self._records[i] for i in range(start, size)]

    def all(self) -> list[MemoryRecord]:
        with self._lock:
            return list(self._records)

    def by_kind(self, kind: MemoryKind) -> list[MemoryRecord]:
        with self._lock:
            return [r for r in self._records if r.kind == kind]

    def clear(self) -> int:
        """Drop every record. Returns how many were removed."""
        with self._lock:
            removed = len(self._records)
            self._records.clear()
        logger.info("bounded_memory.cleared", removed=removed)
        return removed

    def prune(self, keep: int) -> int:
        """Drop the oldest records until at most ``keep`` remain."""
        keep = max(0, int(keep))
        removed = 0
        with self._lock:
            while len(self._records) > keep:
                self._records.popleft()
                removed += 1
            self._evicted_total += removed
        if removed:
            logger.info("bounded_memory.pruned", removed=removed, kept=keep)
        return removed

    def load(self, records: Iterable[MemoryRecord]) -> None:
        """Replace contents with ``records``; only the newest ``capacity`` survive."""
        with self._lock:
            self._records = deque(records, maxlen=self._capacity)

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._records)

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def utilization(self) -> float:
        return self.size / self._capacity

    @property
    def evicted_total(self) -> int:
        """Records dropped by FIFO eviction or pruning since construction."""
        return self._evicted_total

    def __len__(self) -> int:
        return self.size
