"""Persistent store adapters.

The ingestion core only depends on :class:`TelemetryStore`; the concrete
backend is chosen at start-up.
"""

from __future__ import annotations

from odotrack.store.base import Record, TelemetryStore
from odotrack.store.memory import MemoryStore
from odotrack.store.sql import SqlStore


def create_store(kind: str, *, database_url: str) -> TelemetryStore:
    """Build a store by name (``"sql"`` or ``"memory"``)."""
    if kind == "memory":
        return MemoryStore()
    if kind == "sql":
        return SqlStore(database_url)
    raise ValueError(f"unknown store kind {kind!r}")


__all__ = ["MemoryStore", "Record", "SqlStore", "TelemetryStore", "create_store"]
