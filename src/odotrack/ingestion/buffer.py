"""In-memory queue of enriched samples awaiting a durable write."""

from __future__ import annotations

import threading
from collections import deque

from odotrack.models.telemetry import EnrichedSample


class IngestionBuffer:
    """Unbounded FIFO drained wholesale by the flush cycle.

    There is no size cap: while the store is unavailable the buffer grows
    rather than silently dropping samples.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._items: deque[EnrichedSample] = deque()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def append(self, sample: EnrichedSample) -> None:
        with self._lock:
            self._items.append(sample)

    def drain_all(self) -> list[EnrichedSample]:
        """Remove and return every buffered sample in arrival order."""
        with self._lock:
            drained = list(self._items)
            self._items.clear()
        return drained
