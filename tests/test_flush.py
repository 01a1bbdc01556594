from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from odotrack._constants import ODOMETER_TABLE, TELEMETRY_TABLE
from odotrack.exceptions import StoreError
from odotrack.ingestion.buffer import IngestionBuffer
from odotrack.ingestion.flush import FlushResult, FlushScheduler, latest_summaries
from odotrack.models.telemetry import EnrichedSample
from odotrack.store.memory import MemoryStore

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def _sample(vehicle_id: str = "car", odo: int = 10, total: float = 0.0, seconds: int = 0) -> EnrichedSample:
    return EnrichedSample(
        vehicle_id=vehicle_id,
        rpm=1500.0,
        throttle=12.0,
        speed=40.0,
        gear=3.0,
        brake=0.0,
        engine_coolant_temp=85.0,
        air_intake_temp=25.0,
        odo_meter=odo,
        timestamp=NOW + timedelta(seconds=seconds),
        total_odo_km=total,
    )


class _RecordingStore(MemoryStore):
    """MemoryStore with switchable failures and a hook around inserts."""

    def __init__(self) -> None:
        super().__init__()
        self.fail_insert = False
        self.fail_upsert = False
        self.insert_calls = 0
        self.upsert_calls = 0
        self.gate: asyncio.Event | None = None
        self.active = 0
        self.max_active = 0

    async def insert_many(self, table: str, records: Sequence[Mapping[str, Any]]) -> int:
        self.insert_calls += 1
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.gate is not None:
                await self.gate.wait()
            if self.fail_insert:
                raise StoreError("database is locked", table=table, operation="insert_many")
            return await super().insert_many(table, records)
        finally:
            self.active -= 1

    async def upsert(
        self,
        table: str,
        key: Mapping[str, Any],
        create: Mapping[str, Any],
        update: Mapping[str, Any],
    ) -> dict[str, Any]:
        self.upsert_calls += 1
        if self.fail_upsert:
            raise StoreError("upsert failed", table=table, operation="upsert")
        return await super().upsert(table, key, create, update)


def test_latest_summaries_keeps_last_sample_per_device() -> None:
    batch = [
        _sample("a", total=1.0, seconds=0),
        _sample("b", total=7.0, seconds=1),
        _sample("a", total=1.5, seconds=2),
    ]

    summaries = {s.vehicle_id: s for s in latest_summaries(batch)}

    assert summaries["a"].total_odo_km == 1.5
    assert summaries["a"].updated_at == NOW + timedelta(seconds=2)
    assert summaries["b"].total_odo_km == 7.0


def test_interval_must_be_positive() -> None:
    with pytest.raises(ValueError):
        FlushScheduler(IngestionBuffer(), MemoryStore(), interval=0)


@pytest.mark.asyncio
async def test_empty_buffer_issues_no_writes() -> None:
    store = _RecordingStore()
    scheduler = FlushScheduler(IngestionBuffer(), store)

    result = await scheduler.flush_once()

    assert result == FlushResult()
    assert store.insert_calls == 0
    assert store.upsert_calls == 0


@pytest.mark.asyncio
async def test_flush_inserts_batch_and_upserts_summaries() -> None:
    buffer = IngestionBuffer()
    store = _RecordingStore()
    for sample in (_sample("a", 10, 0.0, 0), _sample("a", 20, 0.1, 1), _sample("b", 5, 3.0, 2)):
        buffer.append(sample)
    scheduler = FlushScheduler(buffer, store)

    result = await scheduler.flush_once()

    assert result.ok
    assert result.inserted == 3
    assert result.summaries_upserted == 2
    assert len(buffer) == 0
    assert [row["odo_meter"] for row in store.rows(TELEMETRY_TABLE)] == [10, 20, 5]
    summaries = {row["vehicle_id"]: row for row in store.rows(ODOMETER_TABLE)}
    assert summaries["a"]["total_odo_km"] == pytest.approx(0.1)
    assert summaries["a"]["updated_at"] == NOW + timedelta(seconds=1)
    assert summaries["b"]["total_odo_km"] == 3.0


@pytest.mark.asyncio
async def test_summary_is_overwritten_on_later_flush() -> None:
    buffer = IngestionBuffer()
    store = _RecordingStore()
    scheduler = FlushScheduler(buffer, store)

    buffer.append(_sample("a", total=1.0))
    await scheduler.flush_once()
    buffer.append(_sample("a", total=2.5, seconds=5))
    await scheduler.flush_once()

    rows = store.rows(ODOMETER_TABLE)
    assert len(rows) == 1
    assert rows[0]["total_odo_km"] == 2.5


@pytest.mark.asyncio
async def test_failed_insert_discards_batch() -> None:
    buffer = IngestionBuffer()
    store = _RecordingStore()
    store.fail_insert = True
    buffer.append(_sample("a"))
    buffer.append(_sample("a", 11))
    results: list[FlushResult] = []
    scheduler = FlushScheduler(buffer, store, on_result=results.append)

    result = await scheduler.flush_once()

    assert not result.ok
    assert result.dropped == 2
    assert result.insert_error is not None
    assert len(buffer) == 0
    assert store.upsert_calls == 0
    assert results == [result]

    store.fail_insert = False
    buffer.append(_sample("a", 12))
    retry = await scheduler.flush_once()
    assert retry.inserted == 1
    assert [row["odo_meter"] for row in store.rows(TELEMETRY_TABLE)] == [12]


@pytest.mark.asyncio
async def test_summary_failure_is_counted_but_batch_kept() -> None:
    buffer = IngestionBuffer()
    store = _RecordingStore()
    store.fail_upsert = True
    buffer.append(_sample("a"))
    scheduler = FlushScheduler(buffer, store)

    result = await scheduler.flush_once()

    assert result.inserted == 1
    assert result.summary_failures == 1
    assert result.dropped == 0
    assert not result.ok
    assert len(store.rows(TELEMETRY_TABLE)) == 1


@pytest.mark.asyncio
async def test_samples_arriving_during_write_wait_for_next_cycle() -> None:
    buffer = IngestionBuffer()
    store = _RecordingStore()
    store.gate = asyncio.Event()
    scheduler = FlushScheduler(buffer, store)
    buffer.append(_sample("a", 1))

    first = asyncio.create_task(scheduler.flush_once())
    await asyncio.sleep(0)
    buffer.append(_sample("a", 2))
    store.gate.set()
    result = await first

    assert result.drained == 1
    assert len(buffer) == 1


@pytest.mark.asyncio
async def test_flush_cycles_never_overlap() -> None:
    buffer = IngestionBuffer()
    store = _RecordingStore()
    store.gate = asyncio.Event()
    scheduler = FlushScheduler(buffer, store)
    buffer.append(_sample("a", 1))

    first = asyncio.create_task(scheduler.flush_once())
    await asyncio.sleep(0)
    buffer.append(_sample("a", 2))
    second = asyncio.create_task(scheduler.flush_once())
    await asyncio.sleep(0)

    assert store.insert_calls == 1
    store.gate.set()
    results = await asyncio.gather(first, second)

    assert [r.drained for r in results] == [1, 1]
    assert store.max_active == 1


class _FakeTime:
    def __init__(self, stop_after: int) -> None:
        self.now = 0.0
        self.delays: list[float] = []
        self._stop_after = stop_after
        self.blocked = asyncio.Event()

    def clock(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.delays.append(delay)
        if len(self.delays) > self._stop_after:
            self.blocked.set()
            await asyncio.Event().wait()
        self.now += delay


@pytest.mark.asyncio
async def test_run_keeps_fixed_cadence_net_of_flush_time() -> None:
    buffer = IngestionBuffer()
    fake = _FakeTime(stop_after=3)

    class _SlowStore(MemoryStore):
        async def insert_many(self, table: str, records: Sequence[Mapping[str, Any]]) -> int:
            fake.now += 0.25
            return await super().insert_many(table, records)

    store = _SlowStore()
    flushed: list[FlushResult] = []

    def on_result(result: FlushResult) -> None:
        flushed.append(result)
        buffer.append(_sample("a", len(flushed)))

    buffer.append(_sample("a", 0))
    scheduler = FlushScheduler(
        buffer,
        store,
        interval=1.0,
        clock=fake.clock,
        sleep=fake.sleep,
        on_result=on_result,
    )
    scheduler.start()
    await fake.blocked.wait()

    assert fake.delays[:4] == pytest.approx([1.0, 0.75, 0.75, 0.75])
    assert [r.inserted for r in flushed] == [1, 1, 1]

    final = await scheduler.stop()
    assert final is not None
    assert final.inserted == 1
    assert not scheduler.is_running
    assert len(store.rows(TELEMETRY_TABLE)) == 4


@pytest.mark.asyncio
async def test_stop_flushes_remaining_samples() -> None:
    buffer = IngestionBuffer()
    store = MemoryStore()
    scheduler = FlushScheduler(buffer, store, interval=60.0)
    scheduler.start()
    buffer.append(_sample("a", 42))

    result = await scheduler.stop()

    assert result is not None
    assert result.inserted == 1
    assert store.rows(TELEMETRY_TABLE)[0]["odo_meter"] == 42


@pytest.mark.asyncio
async def test_start_twice_raises() -> None:
    scheduler = FlushScheduler(IngestionBuffer(), MemoryStore(), interval=60.0)
    scheduler.start()
    try:
        with pytest.raises(RuntimeError):
            scheduler.start()
    finally:
        await scheduler.stop(final_flush=False)
