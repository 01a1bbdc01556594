from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
from aiohttp import test_utils

from odotrack._constants import TELEMETRY_TABLE
from odotrack.api import bucket_start, create_app, range_start
from odotrack.exceptions import StoreError
from odotrack.store.memory import MemoryStore

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def _row(vehicle_id: str, at: datetime, speed: float, total: float) -> dict[str, Any]:
    return {
        "id": 1,
        "vehicle_id": vehicle_id,
        "timestamp": at,
        "rpm": 1200.0,
        "throttle": 10.0,
        "speed": speed,
        "gear": 2.0,
        "brake": 0.0,
        "engine_coolant_temp": 82.0,
        "air_intake_temp": 24.0,
        "odo_meter": 10,
        "boot_id": None,
        "steering_angle": None,
        "total_odo_km": total,
    }


async def _seeded_store() -> MemoryStore:
    store = MemoryStore()
    rows = [_row("car", NOW - timedelta(minutes=i), speed=float(i), total=10.0 - i * 0.1) for i in range(15)]
    rows.append(_row("car", NOW - timedelta(days=3), speed=99.0, total=1.0))
    rows.append(_row("other", NOW, speed=5.0, total=2.0))
    await store.insert_many(TELEMETRY_TABLE, rows)
    return store


def test_range_start() -> None:
    assert range_start("1h", NOW) == NOW - timedelta(hours=1)
    assert range_start("7d", NOW) == NOW - timedelta(days=7)
    assert range_start("ytd", NOW) == datetime(2026, 1, 1, tzinfo=UTC)
    assert range_start("all", NOW) is None


def test_bucket_start_floors_to_width() -> None:
    at = datetime(2026, 3, 1, 12, 7, 42, 500000, tzinfo=UTC)

    assert bucket_start(at, timedelta(minutes=1)) == datetime(2026, 3, 1, 12, 7, tzinfo=UTC)


@pytest.mark.asyncio
async def test_latest_returns_ten_newest_camel_case() -> None:
    store = await _seeded_store()
    async with test_utils.TestClient(test_utils.TestServer(create_app(store, clock=lambda: NOW))) as client:
        resp = await client.get("/api/telemetry/latest", params={"vehicleId": "car"})
        body = await resp.json()

    assert resp.status == 200
    assert resp.headers["Access-Control-Allow-Origin"] == "http://localhost:3000"
    assert len(body) == 10
    assert body[0]["timestamp"] == NOW.isoformat()
    assert body[0]["vehicleId"] == "car"
    assert "engineCoolantTemp" in body[0]
    assert "id" not in body[0]


@pytest.mark.asyncio
async def test_history_filters_range_and_metric() -> None:
    store = await _seeded_store()
    async with test_utils.TestClient(test_utils.TestServer(create_app(store, clock=lambda: NOW))) as client:
        resp = await client.get(
            "/api/telemetry/history", params={"vehicleId": "car", "metric": "speed", "range": "1h"}
        )
        body = await resp.json()

    assert resp.status == 200
    assert body["vehicleId"] == "car"
    assert body["metric"] == "speed"
    assert body["count"] == 15
    assert body["data"][0] == {"timestamp": (NOW - timedelta(minutes=14)).isoformat(), "speed": 14.0}
    assert body["data"][-1]["speed"] == 0.0


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("params", "message"),
    [
        ({"metric": "speed"}, "vehicleId required"),
        ({"vehicleId": "car"}, "Invalid or missing metric"),
        ({"vehicleId": "car", "metric": "boot_id"}, "Invalid or missing metric"),
    ],
)
async def test_history_rejects_bad_queries(params: dict[str, str], message: str) -> None:
    async with test_utils.TestClient(test_utils.TestServer(create_app(MemoryStore(), clock=lambda: NOW))) as client:
        resp = await client.get("/api/telemetry/history", params=params)
        body = await resp.json()

    assert resp.status == 400
    assert body == {"error": message}


@pytest.mark.asyncio
async def test_odometer_buckets_by_minute() -> None:
    store = MemoryStore()
    base = datetime(2026, 3, 1, 11, 58, tzinfo=UTC)
    await store.insert_many(
        TELEMETRY_TABLE,
        [
            _row("car", base + timedelta(seconds=5), speed=0.0, total=4.0),
            _row("car", base + timedelta(seconds=40), speed=0.0, total=4.2),
            _row("car", base + timedelta(seconds=65), speed=0.0, total=4.5),
        ],
    )
    async with test_utils.TestClient(test_utils.TestServer(create_app(store, clock=lambda: NOW))) as client:
        resp = await client.get("/api/telemetry/odometer", params={"vehicleId": "car", "range": "24h"})
        body = await resp.json()
        missing = await client.get("/api/telemetry/odometer")

    assert resp.status == 200
    assert body["intervalMinutes"] == 1
    assert body["count"] == 2
    assert body["data"] == [
        {"bucket": base.isoformat(), "odo": 4.2},
        {"bucket": (base + timedelta(minutes=1)).isoformat(), "odo": 4.5},
    ]
    assert missing.status == 400


class _DownStore(MemoryStore):
    async def find(self, table: str, **_kwargs: Any) -> list[dict[str, Any]]:
        raise StoreError("connection refused", table=table, operation="find")


@pytest.mark.asyncio
async def test_store_failure_maps_to_503() -> None:
    app = create_app(_DownStore(), cors_origin="https://dash.example", clock=lambda: NOW)
    async with test_utils.TestClient(test_utils.TestServer(app)) as client:
        resp = await client.get("/api/telemetry/latest")
        body = await resp.json()

    assert resp.status == 503
    assert body == {"error": "store unavailable"}
    assert resp.headers["Access-Control-Allow-Origin"] == "https://dash.example"
