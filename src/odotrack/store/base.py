"""Store interface required by the ingestion core and the read API."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

Record = dict[str, Any]


@runtime_checkable
class TelemetryStore(Protocol):
    """Async record store keyed by table name.

    Every method raises :class:`odotrack.exceptions.StoreError` on failure.
    """

    async def open(self) -> None: ...

    async def close(self) -> None: ...

    async def insert_many(self, table: str, records: Sequence[Mapping[str, Any]]) -> int:
        """Insert *records* in one write and return how many were written."""
        ...

    async def upsert(
        self,
        table: str,
        key: Mapping[str, Any],
        create: Mapping[str, Any],
        update: Mapping[str, Any],
    ) -> Record:
        """Create ``{**key, **create}`` if no row matches *key*, else apply *update*."""
        ...

    async def find_latest(
        self,
        table: str,
        order_key: str,
        *,
        where: Mapping[str, Any] | None = None,
    ) -> Record | None:
        """Return the row with the greatest *order_key*, or ``None``."""
        ...

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
        """Return matching rows ordered by *order_key*.

        *since* is an inclusive lower bound on *order_key*.
        """
        ...
