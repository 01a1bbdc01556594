"""Data models for device payloads and persisted records."""

from odotrack.models._base import OdotrackBaseModel, UtcDatetime, ensure_utc
from odotrack.models.handshake import HandshakeMessage, OdometerSyncRequest, OdometerSyncResponse
from odotrack.models.telemetry import EnrichedSample, OdometerSummary, TelemetrySample

__all__ = [
    "EnrichedSample",
    "HandshakeMessage",
    "OdometerSummary",
    "OdometerSyncRequest",
    "OdometerSyncResponse",
    "OdotrackBaseModel",
    "TelemetrySample",
    "UtcDatetime",
    "ensure_utc",
]
