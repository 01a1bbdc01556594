"""odotrack - MQTT vehicle telemetry ingestion with odometer reconciliation."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("odotrack")
except PackageNotFoundError:
    __version__ = "0+local"
from odotrack.config import IngestConfig, TopicConfig
from odotrack.exceptions import (
    ConfigError,
    MalformedPayloadError,
    MqttTransportError,
    OdotrackError,
    PayloadError,
    StoreError,
)
from odotrack.handshake import HandshakeResponder
from odotrack.ingestion import (
    FlushResult,
    FlushScheduler,
    IngestionBuffer,
    Rejection,
    RejectionKind,
    validate_payload,
)
from odotrack.models import EnrichedSample, OdometerSummary, TelemetrySample
from odotrack.router import MessageRouter, RouteOutcome, RouteResult
from odotrack.service import IngestService
from odotrack.state.odometer import OdometerReconciler, OdometerState
from odotrack.store import MemoryStore, SqlStore, TelemetryStore

__all__ = [
    "__version__",
    "ConfigError",
    "EnrichedSample",
    "FlushResult",
    "FlushScheduler",
    "HandshakeResponder",
    "IngestConfig",
    "IngestService",
    "IngestionBuffer",
    "MalformedPayloadError",
    "MemoryStore",
    "MessageRouter",
    "MqttTransportError",
    "OdometerReconciler",
    "OdometerState",
    "OdometerSummary",
    "OdotrackError",
    "PayloadError",
    "Rejection",
    "RejectionKind",
    "RouteOutcome",
    "RouteResult",
    "SqlStore",
    "StoreError",
    "TelemetrySample",
    "TelemetryStore",
    "TopicConfig",
    "validate_payload",
]
