"""SQLAlchemy-backed telemetry store.

SQLAlchemy Core is synchronous; every operation runs in the loop's default
executor so a slow write never blocks MQTT message handling.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Callable, Mapping, Sequence
from datetime import datetime
from typing import Any, TypeVar

from sqlalchemy import (
    Column,
    DateTime,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    and_,
    create_engine,
    insert,
    select,
    update,
)
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from odotrack._constants import ODOMETER_TABLE, TELEMETRY_TABLE
from odotrack.exceptions import StoreError
from odotrack.models._base import ensure_utc
from odotrack.store.base import Record

_logger = logging.getLogger(__name__)

T = TypeVar("T")

metadata = MetaData()

telemetry_table = Table(
    TELEMETRY_TABLE,
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("vehicle_id", String(64), nullable=False, index=True),
    Column("timestamp", DateTime(timezone=True), nullable=False, index=True),
    Column("rpm", Float),
    Column("throttle", Float),
    Column("speed", Float),
    Column("gear", Float),
    Column("brake", Float),
    Column("engine_coolant_temp", Float),
    Column("air_intake_temp", Float),
    Column("odo_meter", Integer),
    Column("boot_id", String(64)),
    Column("steering_angle", Float),
    Column("total_odo_km", Float),
)

odometer_table = Table(
    ODOMETER_TABLE,
    metadata,
    Column("vehicle_id", String(64), primary_key=True),
    Column("total_odo_km", Float, nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False, index=True),
)


def _create_engine(url: str) -> Engine:
    parsed = make_url(url)
    if parsed.get_backend_name() == "sqlite" and parsed.database in (None, "", ":memory:"):
        # One shared connection, otherwise every executor thread sees its own empty database.
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(url, pool_pre_ping=True)


def _normalize_row(row: Mapping[str, Any]) -> Record:
    # SQLite drops tzinfo on DateTime(timezone=True) columns.
    return {key: ensure_utc(value) if isinstance(value, datetime) else value for key, value in row.items()}


class SqlStore:
    """Store backed by any SQLAlchemy URL (default SQLite file)."""

    def __init__(self, url: str, *, engine: Engine | None = None) -> None:
        self._url = url
        self._engine = engine
        self._tables: dict[str, Table] = dict(metadata.tables)

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise StoreError("store is not open", operation="engine")
        return self._engine

    async def _run(self, operation: str, table: str, fn: Callable[..., T], *args: Any) -> T:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, functools.partial(fn, *args))
        except SQLAlchemyError as exc:
            raise StoreError(f"{operation} on {table} failed: {exc}", table=table, operation=operation) from exc

    def _table(self, name: str) -> Table:
        table = self._tables.get(name)
        if table is None:
            raise StoreError(f"unknown table {name!r}", table=name)
        return table

    def _clause(self, table: Table, where: Mapping[str, Any] | None) -> Any:
        if not where:
            return None
        unknown = set(where) - set(table.c.keys())
        if unknown:
            raise StoreError(f"unknown columns {sorted(unknown)} on {table.name}", table=table.name)
        return and_(*(table.c[key] == value for key, value in where.items()))

    def _column(self, table: Table, name: str) -> Column[Any]:
        if name not in table.c:
            raise StoreError(f"unknown column {name!r} on {table.name}", table=table.name)
        return table.c[name]

    def _columns_only(self, table: Table, record: Mapping[str, Any]) -> dict[str, Any]:
        return {key: value for key, value in record.items() if key in table.c}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        if self._engine is None:
            self._engine = _create_engine(self._url)
        await self._run("create_all", "*", metadata.create_all, self._engine)
        _logger.info("SQL store ready url=%s", make_url(self._url).render_as_string(hide_password=True))

    async def close(self) -> None:
        engine = self._engine
        self._engine = None
        if engine is not None:
            engine.dispose()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _insert_many_sync(self, table: Table, records: list[dict[str, Any]]) -> int:
        with self.engine.begin() as conn:
            conn.execute(insert(table), records)
        return len(records)

    async def insert_many(self, table: str, records: Sequence[Mapping[str, Any]]) -> int:
        target = self._table(table)
        rows = [self._columns_only(target, record) for record in records]
        if not rows:
            return 0
        return await self._run("insert_many", table, self._insert_many_sync, target, rows)

    def _upsert_sync(
        self,
        table: Table,
        key: dict[str, Any],
        create: dict[str, Any],
        changes: dict[str, Any],
    ) -> Record:
        clause = self._clause(table, key)
        with self.engine.begin() as conn:
            existing = conn.execute(select(table).where(clause)).mappings().first()
            if existing is None:
                conn.execute(insert(table).values({**create, **key}))
            elif changes:
                conn.execute(update(table).where(clause).values(changes))
            row = conn.execute(select(table).where(clause)).mappings().one()
        return _normalize_row(row)

    async def upsert(
        self,
        table: str,
        key: Mapping[str, Any],
        create: Mapping[str, Any],
        update: Mapping[str, Any],
    ) -> Record:
        target = self._table(table)
        if not key:
            raise StoreError("upsert requires a non-empty key", table=table, operation="upsert")
        self._clause(target, key)
        return await self._run(
            "upsert",
            table,
            self._upsert_sync,
            target,
            dict(key),
            self._columns_only(target, create),
            self._columns_only(target, update),
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _find_sync(
        self,
        table: Table,
        where: Mapping[str, Any] | None,
        since: datetime | None,
        order_key: str,
        descending: bool,
        limit: int | None,
        columns: Sequence[str] | None,
    ) -> list[Record]:
        order_col = self._column(table, order_key)
        selected = [self._column(table, name) for name in columns] if columns is not None else [table]
        stmt = select(*selected)
        clause = self._clause(table, where)
        if clause is not None:
            stmt = stmt.where(clause)
        if since is not None:
            stmt = stmt.where(order_col >= since)
        stmt = stmt.order_by(order_col.desc() if descending else order_col.asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        with self.engine.connect() as conn:
            return [_normalize_row(row) for row in conn.execute(stmt).mappings()]

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
        target = self._table(table)
        return await self._run(
            "find",
            table,
            self._find_sync,
            target,
            where,
            since,
            order_key,
            descending,
            limit,
            columns,
        )

    async def find_latest(
        self,
        table: str,
        order_key: str,
        *,
        where: Mapping[str, Any] | None = None,
    ) -> Record | None:
        rows = await self.find(table, where=where, order_key=order_key, descending=True, limit=1)
        return rows[0] if rows else None
