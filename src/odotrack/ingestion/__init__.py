"""Ingestion layer.

This package turns raw MQTT telemetry bodies into validated samples,
buffers them and flushes them to the store on a fixed cadence.
"""

from odotrack.ingestion.buffer import IngestionBuffer
from odotrack.ingestion.flush import FlushResult, FlushScheduler
from odotrack.ingestion.validate import Rejection, RejectionKind, validate_payload

__all__ = [
    "FlushResult",
    "FlushScheduler",
    "IngestionBuffer",
    "Rejection",
    "RejectionKind",
    "validate_payload",
]
