"""Handshake and odometer-sync responder.

Devices use two fire-and-forget exchanges, each over a request/response
topic pair:

- liveness: ``{"status": "ping"}`` is answered with ``{"status": "ack"}``
- odometer sync: any request is answered with ``{"totalOdoKm": <km>}`` so a
  restarted device can resume counting from the last known distance

There is no correlation id and no timeout on our side; a device that gets
no answer retries.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any

from pydantic import ValidationError

from odotrack._constants import ACK_STATUS, ODOMETER_TABLE, PING_STATUS, TELEMETRY_TABLE
from odotrack.config import TopicConfig
from odotrack.exceptions import MalformedPayloadError, StoreError
from odotrack.ingestion.normalize import decode_json_object, is_blank_body
from odotrack.models.handshake import HandshakeMessage, OdometerSyncRequest, OdometerSyncResponse
from odotrack.store.base import TelemetryStore

_logger = logging.getLogger(__name__)

Publisher = Callable[[str, Mapping[str, Any]], None]
Body = bytes | bytearray | str | Mapping[str, Any] | None


class HandshakeResponder:
    def __init__(self, store: TelemetryStore, publish: Publisher, *, topics: TopicConfig | None = None) -> None:
        self._store = store
        self._publish = publish
        self._topics = topics or TopicConfig()

    def handle_ping(self, body: Body) -> bool:
        """Publish one ack for a ping body. Returns whether an ack was sent."""
        if is_blank_body(body):
            return False
        try:
            message = HandshakeMessage.model_validate(decode_json_object(body))  # type: ignore[arg-type]
        except (MalformedPayloadError, ValidationError):
            _logger.debug("Ignoring non-ping handshake body=%r", body)
            return False
        if message.status != PING_STATUS:
            _logger.debug("Ignoring handshake status=%s", message.status)
            return False

        ack = HandshakeMessage(status=ACK_STATUS)
        self._publish(self._topics.handshake_response, ack.to_wire())
        _logger.debug("Handshake ack published topic=%s", self._topics.handshake_response)
        return True

    @staticmethod
    def _requested_vehicle(body: Body) -> str | None:
        if is_blank_body(body):
            return None
        try:
            request = OdometerSyncRequest.model_validate(decode_json_object(body))  # type: ignore[arg-type]
        except (MalformedPayloadError, ValidationError):
            return None
        if request.vehicle_id is None or not request.vehicle_id.strip():
            return None
        return request.vehicle_id.strip()

    async def lookup_total_odo_km(self, vehicle_id: str | None = None) -> float:
        """Last known cumulative distance, optionally for one device.

        Falls back to the raw ``odo_meter`` byte of the latest telemetry row
        when no summary exists, and to ``0`` when nothing is stored at all.
        Raises :class:`StoreError` if a lookup fails.
        """
        where = {"vehicle_id": vehicle_id} if vehicle_id is not None else None

        summary = await self._store.find_latest(ODOMETER_TABLE, "updated_at", where=where)
        if summary is not None and summary.get("total_odo_km") is not None:
            return float(summary["total_odo_km"])

        # Kept as observed: a raw counter byte reported as if it were kilometres.
        latest = await self._store.find_latest(TELEMETRY_TABLE, "timestamp", where=where)
        if latest is not None and latest.get("odo_meter") is not None:
            return float(latest["odo_meter"])
        return 0.0

    async def handle_odometer_sync(self, body: Body = None) -> OdometerSyncResponse | None:
        """Answer a sync request; returns the published response, or None on lookup failure."""
        vehicle_id = self._requested_vehicle(body)
        try:
            total = await self.lookup_total_odo_km(vehicle_id)
        except StoreError as exc:
            _logger.warning("Odometer sync lookup failed vehicle=%s: %s", vehicle_id, exc)
            return None

        response = OdometerSyncResponse(total_odo_km=total)
        self._publish(self._topics.odometer_response, response.to_wire())
        _logger.info("Odometer sync answered vehicle=%s totalOdoKm=%s", vehicle_id or "*", total)
        return response
