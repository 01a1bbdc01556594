"""Process-local store.

Keeps rows in plain lists; nothing survives a restart. Used by the test
suite and by ``odotrack --store memory`` for broker smoke tests.
"""

from __future__ import annotations

import copy
from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Any

from odotrack.store.base import Record


def _matches(row: Mapping[str, Any], where: Mapping[str, Any] | None) -> bool:
    if not where:
        return True
    return all(row.get(key) == value for key, value in where.items())


class MemoryStore:
    def __init__(self) -> None:
        self._tables: dict[str, list[Record]] = {}

    async def open(self) -> None:
        return None

    async def close(self) -> None:
        return None

    def rows(self, table: str) -> list[Record]:
        """Copy of every row in *table*, in insertion order."""
        return copy.deepcopy(self._tables.get(table, []))

    async def insert_many(self, table: str, records: Sequence[Mapping[str, Any]]) -> int:
        rows = self._tables.setdefault(table, [])
        rows.extend(copy.deepcopy(dict(record)) for record in records)
        return len(records)

    async def upsert(
        self,
        table: str,
        key: Mapping[str, Any],
        create: Mapping[str, Any],
        update: Mapping[str, Any],
    ) -> Record:
        rows = self._tables.setdefault(table, [])
        for row in rows:
            if _matches(row, key):
                row.update(copy.deepcopy(dict(update)))
                return copy.deepcopy(row)
        created = {**copy.deepcopy(dict(create)), **dict(key)}
        rows.append(created)
        return copy.deepcopy(created)

    async def find_latest(
        self,
        table: str,
        order_key: str,
        *,
        where: Mapping[str, Any] | None = None,
    ) -> Record | None:
        candidates = [
            row for row in self._tables.get(table, []) if _matches(row, where) and row.get(order_key) is not None
        ]
        if not candidates:
            return None
        # max() keeps the first of equal keys; prefer the most recently inserted one.
        latest = max(reversed(candidates), key=lambda row: row[order_key])
        return copy.deepcopy(latest)

    async def find(
        self,
        table: str,
        *,
        where: Mapping[str, Any] | None = None,
        since: datetime | None = None,
        order_key: str = "timestamp",
        descending: bool = False,
        limit: int | None = None,
        columns: Sequence[str] | None = None,
    ) -> list[Record]:
        rows = [
            row
            for row in self._tables.get(table, [])
            if _matches(row, where) and (since is None or (row.get(order_key) is not None and row[order_key] >= since))
        ]
        rows.sort(key=lambda row: (row.get(order_key) is None, row.get(order_key)), reverse=descending)
        if limit is not None:
            rows = rows[:limit]
        if columns is not None:
            return [{col: copy.deepcopy(row.get(col)) for col in columns} for row in rows]
        return copy.deepcopy(rows)
