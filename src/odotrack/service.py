"""Ingestion service: wires MQTT, router, odometer state, buffer, flush and API."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from typing import Any

from odotrack._constants import ODOMETER_TABLE
from odotrack._mqtt import MqttMessage, MqttRuntime
from odotrack._redact import redact_for_log
from odotrack.api import ApiServer, create_app
from odotrack.config import IngestConfig
from odotrack.exceptions import MqttTransportError
from odotrack.handshake import HandshakeResponder
from odotrack.ingestion.buffer import IngestionBuffer
from odotrack.ingestion.flush import FlushResult, FlushScheduler
from odotrack.router import MessageRouter
from odotrack.state.odometer import OdometerReconciler
from odotrack.store.base import TelemetryStore
from odotrack.store.sql import SqlStore

_logger = logging.getLogger(__name__)


class IngestService:
    """Long-running ingestion process.

    Usage::

        async with IngestService(config) as service:
            await service.wait_closed()
    """

    def __init__(
        self,
        config: IngestConfig,
        *,
        store: TelemetryStore | None = None,
        runtime_factory: Callable[..., MqttRuntime] = MqttRuntime,
    ) -> None:
        self._config = config
        self._store: TelemetryStore = store if store is not None else SqlStore(config.database_url)
        self._runtime_factory = runtime_factory
        self._runtime: MqttRuntime | None = None
        self._api: ApiServer | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._pending: set[asyncio.Task[Any]] = set()
        self._closed: asyncio.Event | None = None

        self.buffer = IngestionBuffer()
        self.reconciler = OdometerReconciler()
        self.responder = HandshakeResponder(self._store, self._publish, topics=config.topics)
        self.router = MessageRouter(
            reconciler=self.reconciler,
            buffer=self.buffer,
            responder=self.responder,
            topics=config.topics,
            default_device_id=config.default_device_id,
        )
        self.scheduler = FlushScheduler(
            self.buffer,
            self._store,
            interval=config.flush_interval,
            on_result=self._on_flush_result,
        )

        self._flushed = 0
        self._flush_failures = 0
        self._dropped = 0

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> IngestService:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()

    @property
    def store(self) -> TelemetryStore:
        return self._store

    @property
    def stats(self) -> dict[str, int]:
        router_stats = self.router.stats
        return {
            "received": router_stats.received,
            "accepted": router_stats.accepted,
            "rejected": router_stats.rejected,
            "flushed": self._flushed,
            "flush_failures": self._flush_failures,
            "dropped": self._dropped,
        }

    async def start(self) -> None:
        """Open the store, restore odometer state, connect MQTT and start flushing."""
        self._loop = asyncio.get_running_loop()
        self._closed = asyncio.Event()
        _logger.debug("Starting ingestion service config=%s", redact_for_log(vars(self._config)))

        try:
            await self._start(self._loop)
        except Exception:
            _logger.warning("Ingestion service start failed, rolling back", exc_info=True)
            await self.stop()
            raise

    async def _start(self, loop: asyncio.AbstractEventLoop) -> None:
        await self._store.open()
        # A device ingested without its restored distance would overwrite its summary from zero.
        if self._config.restore_odometer:
            await self.restore_odometer()

        runtime = self._runtime_factory(
            loop=loop,
            config=self._config,
            subscriptions=self.router.subscriptions,
            on_message=self._on_mqtt_message,
            logger=logging.getLogger("odotrack.mqtt"),
        )
        await loop.run_in_executor(None, runtime.start)
        self._runtime = runtime

        self.scheduler.start()

        if self._config.api_enabled:
            api = ApiServer(
                create_app(self._store, cors_origin=self._config.api_cors_origin),
                host=self._config.api_host,
                port=self._config.api_port,
            )
            await api.start()
            self._api = api

    async def restore_odometer(self) -> int:
        """Seed the reconciler from persisted summaries. Returns the number of devices seeded.

        Raises :class:`StoreError` if the summaries cannot be read.
        """
        rows = await self._store.find(ODOMETER_TABLE, order_key="updated_at")

        seeded = 0
        for row in rows:
            vehicle_id = row.get("vehicle_id")
            total = row.get("total_odo_km")
            if not isinstance(vehicle_id, str) or total is None:
                continue
            if self.reconciler.restore(vehicle_id, float(total)):
                seeded += 1
        _logger.info("Restored odometer state for %d devices", seeded)
        return seeded

    async def stop(self) -> None:
        """Disconnect MQTT, finish in-flight messages, flush the buffer, close the store."""
        runtime = self._runtime
        self._runtime = None
        if runtime is not None and self._loop is not None:
            try:
                await self._loop.run_in_executor(None, runtime.stop)
            except Exception:
                _logger.debug("MQTT runtime stop failed", exc_info=True)

        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

        await self.scheduler.stop(final_flush=True)

        api = self._api
        self._api = None
        if api is not None:
            await api.stop()

        await self._store.close()
        _logger.info("Ingestion service stopped stats=%s", self.stats)
        if self._closed is not None:
            self._closed.set()

    async def wait_closed(self) -> None:
        if self._closed is None:
            raise RuntimeError("service not started")
        await self._closed.wait()

    # ------------------------------------------------------------------
    # MQTT plumbing
    # ------------------------------------------------------------------

    def _on_mqtt_message(self, message: MqttMessage) -> None:
        # Tasks start in creation order and the telemetry path does not
        # suspend before buffering, so per-device arrival order is kept.
        loop = self._loop or asyncio.get_running_loop()
        task = loop.create_task(self.router.route(message.topic, message.payload))
        self._pending.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task[Any]) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            _logger.error("Unhandled error while routing MQTT message", exc_info=exc)

    def _publish(self, topic: str, payload: Mapping[str, Any]) -> None:
        runtime = self._runtime
        if runtime is None:
            raise MqttTransportError(f"cannot publish to {topic}: service not connected")
        runtime.publish(topic, payload)

    def _on_flush_result(self, result: FlushResult) -> None:
        self._flushed += result.inserted
        if not result.ok:
            self._flush_failures += 1
        self._dropped += result.dropped
