"""Fixed-cadence buffer flushing.

Each cycle drains the buffer *before* issuing any write, so samples that
arrive while a write is in flight accumulate for the next cycle. A failed
write is logged and its batch discarded; it is never re-buffered.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from odotrack._constants import ODOMETER_TABLE, TELEMETRY_TABLE
from odotrack.exceptions import StoreError
from odotrack.ingestion.buffer import IngestionBuffer
from odotrack.models.telemetry import EnrichedSample, OdometerSummary
from odotrack.store.base import TelemetryStore

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FlushResult:
    """Outcome of one flush cycle."""

    drained: int = 0
    inserted: int = 0
    summaries_upserted: int = 0
    summary_failures: int = 0
    insert_error: str | None = None

    @property
    def ok(self) -> bool:
        return self.insert_error is None and self.summary_failures == 0

    @property
    def dropped(self) -> int:
        """Samples lost because the batch insert failed."""
        return self.drained if self.insert_error is not None else 0


def latest_summaries(batch: list[EnrichedSample]) -> list[OdometerSummary]:
    """One summary per device, taken from its last sample in *batch*."""
    latest: dict[str, EnrichedSample] = {}
    for sample in batch:
        latest[sample.vehicle_id] = sample
    return [
        OdometerSummary(
            vehicle_id=sample.vehicle_id,
            total_odo_km=sample.total_odo_km,
            updated_at=sample.timestamp,
        )
        for sample in latest.values()
    ]


class FlushScheduler:
    """Drain the ingestion buffer into the store every *interval* seconds.

    *clock* and *sleep* are injectable so tests can drive the cadence
    without real waits.
    """

    def __init__(
        self,
        buffer: IngestionBuffer,
        store: TelemetryStore,
        *,
        interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_result: Callable[[FlushResult], None] | None = None,
    ) -> None:
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self._buffer = buffer
        self._store = store
        self._interval = interval
        self._clock = clock
        self._sleep = sleep
        self._on_result = on_result
        self._lock = asyncio.Lock()
        self._task: asyncio.Task[None] | None = None
        self._stopping = False
        self._in_flush = False

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def flush_once(self) -> FlushResult:
        """Run one complete cycle: drain, insert, then upsert summaries."""
        async with self._lock:
            self._in_flush = True
            try:
                result = await self._flush()
            finally:
                self._in_flush = False
        if self._on_result is not None:
            self._on_result(result)
        return result

    async def _flush(self) -> FlushResult:
        batch = self._buffer.drain_all()
        if not batch:
            return FlushResult()

        try:
            inserted = await self._store.insert_many(TELEMETRY_TABLE, [sample.to_record() for sample in batch])
        except StoreError as exc:
            _logger.warning("Failed to insert batch of %d telemetry records: %s", len(batch), exc)
            return FlushResult(drained=len(batch), insert_error=str(exc))
        _logger.info("Inserted %d telemetry records", inserted)

        upserted = 0
        failures = 0
        for summary in latest_summaries(batch):
            record = summary.to_record()
            fields = {"total_odo_km": record["total_odo_km"], "updated_at": record["updated_at"]}
            try:
                await self._store.upsert(ODOMETER_TABLE, {"vehicle_id": summary.vehicle_id}, fields, fields)
            except StoreError as exc:
                failures += 1
                _logger.warning("Failed to upsert odometer summary vehicle=%s: %s", summary.vehicle_id, exc)
                continue
            upserted += 1

        return FlushResult(
            drained=len(batch),
            inserted=inserted,
            summaries_upserted=upserted,
            summary_failures=failures,
        )

    async def run(self) -> None:
        """Flush on a fixed cadence until :meth:`stop` is called."""
        next_tick = self._clock() + self._interval
        while not self._stopping:
            await self._sleep(max(0.0, next_tick - self._clock()))
            if self._stopping:
                break
            try:
                await self.flush_once()
            except Exception:
                _logger.exception("Unexpected flush failure")
            next_tick += self._interval
            now = self._clock()
            if next_tick < now:
                # Cycle overran; start the next one now instead of bursting to catch up.
                next_tick = now

    def start(self) -> asyncio.Task[None]:
        if self.is_running:
            raise RuntimeError("flush scheduler already running")
        self._stopping = False
        self._task = asyncio.get_running_loop().create_task(self.run(), name="odotrack-flush")
        _logger.debug("Flush scheduler started interval=%.3fs", self._interval)
        return self._task

    async def stop(self, *, final_flush: bool = True) -> FlushResult | None:
        """Stop the timer, letting an in-flight cycle finish, then flush what is left."""
        self._stopping = True
        task = self._task
        self._task = None
        if task is not None:
            if not self._in_flush:
                task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        _logger.debug("Flush scheduler stopped")
        if final_flush:
            return await self.flush_once()
        return None
