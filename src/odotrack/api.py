"""Read-only HTTP query API over persisted telemetry.

Serves the dashboard: latest rows, per-metric history, and time-bucketed
cumulative distance. Only reads from the store; ingestion never depends on it.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta
from typing import Any

from aiohttp import web
from pydantic.alias_generators import to_camel

from odotrack._constants import TELEMETRY_TABLE
from odotrack.exceptions import StoreError
from odotrack.store.base import Record, TelemetryStore

_logger = logging.getLogger(__name__)

STORE_KEY = web.AppKey("store", TelemetryStore)
CLOCK_KEY = web.AppKey("clock", Callable[[], datetime])

LATEST_LIMIT = 10
ODOMETER_BUCKET = timedelta(minutes=1)

# Wire metric name -> telemetry column.
ALLOWED_METRICS: dict[str, str] = {
    "speed": "speed",
    "rpm": "rpm",
    "throttle": "throttle",
    "gear": "gear",
    "brake": "brake",
    "engineCoolantTemp": "engine_coolant_temp",
    "airIntakeTemp": "air_intake_temp",
    "odoMeter": "odo_meter",
    "steeringAngle": "steering_angle",
    "totalOdoKm": "total_odo_km",
}

_RANGE_SPANS: dict[str, timedelta] = {
    "1h": timedelta(hours=1),
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
    "365d": timedelta(days=365),
}


def _utcnow() -> datetime:
    return datetime.now(UTC)


def range_start(range_name: str, now: datetime) -> datetime | None:
    """Lower time bound for a range name; ``None`` means unbounded (``all`` or unknown)."""
    span = _RANGE_SPANS.get(range_name)
    if span is not None:
        return now - span
    if range_name == "ytd":
        return datetime(now.year, 1, 1, tzinfo=now.tzinfo or UTC)
    return None


def bucket_start(timestamp: datetime, width: timedelta) -> datetime:
    width_ms = int(width.total_seconds() * 1000)
    epoch_ms = int(timestamp.timestamp() * 1000)
    return datetime.fromtimestamp(math.floor(epoch_ms / width_ms) * width_ms / 1000, tz=UTC)


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def to_wire_record(row: Record) -> dict[str, Any]:
    return {to_camel(key): _jsonable(value) for key, value in row.items() if key != "id"}


def _error(status: int, message: str) -> web.Response:
    return web.json_response({"error": message}, status=status)


@web.middleware
async def _store_errors(
    request: web.Request,
    handler: Callable[[web.Request], Awaitable[web.StreamResponse]],
) -> web.StreamResponse:
    try:
        return await handler(request)
    except StoreError as exc:
        _logger.warning("Query %s failed: %s", request.path, exc)
        return _error(503, "store unavailable")


async def get_latest(request: web.Request) -> web.Response:
    store = request.app[STORE_KEY]
    vehicle_id = request.query.get("vehicleId")
    rows = await store.find(
        TELEMETRY_TABLE,
        where={"vehicle_id": vehicle_id} if vehicle_id else None,
        order_key="timestamp",
        descending=True,
        limit=LATEST_LIMIT,
    )
    return web.json_response([to_wire_record(row) for row in rows])


async def get_history(request: web.Request) -> web.Response:
    vehicle_id = request.query.get("vehicleId")
    metric = request.query.get("metric")
    range_name = request.query.get("range", "24h")
    if not vehicle_id:
        return _error(400, "vehicleId required")
    if not metric or metric not in ALLOWED_METRICS:
        return _error(400, "Invalid or missing metric")

    column = ALLOWED_METRICS[metric]
    rows = await request.app[STORE_KEY].find(
        TELEMETRY_TABLE,
        where={"vehicle_id": vehicle_id},
        since=range_start(range_name, request.app[CLOCK_KEY]()),
        order_key="timestamp",
        columns=["timestamp", column],
    )
    data = [{"timestamp": _jsonable(row["timestamp"]), metric: row[column]} for row in rows]
    return web.json_response(
        {"vehicleId": vehicle_id, "metric": metric, "range": range_name, "count": len(data), "data": data}
    )


async def get_odometer(request: web.Request) -> web.Response:
    vehicle_id = request.query.get("vehicleId")
    range_name = request.query.get("range", "30d")
    if not vehicle_id:
        return _error(400, "vehicleId is required")

    rows = await request.app[STORE_KEY].find(
        TELEMETRY_TABLE,
        where={"vehicle_id": vehicle_id},
        since=range_start(range_name, request.app[CLOCK_KEY]()),
        order_key="timestamp",
        columns=["timestamp", "total_odo_km"],
    )

    # Cumulative value, so the bucket maximum is its most recent reading.
    buckets: dict[datetime, float] = {}
    for row in rows:
        odo = row.get("total_odo_km")
        if odo is None:
            continue
        bucket = bucket_start(row["timestamp"], ODOMETER_BUCKET)
        buckets[bucket] = max(odo, buckets.get(bucket, odo))

    data = [{"bucket": bucket.isoformat(), "odo": odo} for bucket, odo in sorted(buckets.items())]
    return web.json_response(
        {
            "vehicleId": vehicle_id,
            "range": range_name,
            "intervalMinutes": int(ODOMETER_BUCKET.total_seconds() // 60),
            "count": len(data),
            "data": data,
        }
    )


def create_app(
    store: TelemetryStore,
    *,
    cors_origin: str = "http://localhost:3000",
    clock: Callable[[], datetime] = _utcnow,
) -> web.Application:
    """Build the query API application around *store*."""

    @web.middleware
    async def cors(
        request: web.Request,
        handler: Callable[[web.Request], Awaitable[web.StreamResponse]],
    ) -> web.StreamResponse:
        response = await handler(request)
        response.headers["Access-Control-Allow-Origin"] = cors_origin
        response.headers["Access-Control-Allow-Credentials"] = "true"
        return response

    app = web.Application(middlewares=[cors, _store_errors])
    app[STORE_KEY] = store
    app[CLOCK_KEY] = clock
    app.router.add_get("/api/telemetry/latest", get_latest)
    app.router.add_get("/api/telemetry/history", get_history)
    app.router.add_get("/api/telemetry/odometer", get_odometer)
    return app


class ApiServer:
    """Start/stop wrapper so the API can share the ingestion event loop."""

    def __init__(self, app: web.Application, *, host: str, port: int) -> None:
        self._app = app
        self._host = host
        self._port = port
        self._runner: web.AppRunner | None = None

    async def start(self) -> None:
        runner = web.AppRunner(self._app)
        await runner.setup()
        site = web.TCPSite(runner, self._host, self._port)
        try:
            await site.start()
        except Exception:
            await runner.cleanup()
            raise
        self._runner = runner
        _logger.info("Query API listening on http://%s:%s", self._host, self._port)

    async def stop(self) -> None:
        runner = self._runner
        self._runner = None
        if runner is not None:
            await runner.cleanup()
