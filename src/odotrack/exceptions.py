"""Custom exception hierarchy for odotrack."""

from __future__ import annotations


class OdotrackError(Exception):
    """Base exception for all odotrack errors."""


class ConfigError(OdotrackError):
    """Invalid or missing configuration."""


class PayloadError(OdotrackError):
    """An inbound MQTT payload could not be turned into a usable message."""


class MalformedPayloadError(PayloadError):
    """Payload is not parseable as a JSON object."""


class StoreError(OdotrackError):
    """A persistent store operation failed."""

    def __init__(
        self,
        message: str,
        *,
        table: str = "",
        operation: str = "",
    ) -> None:
        self.table = table
        self.operation = operation
        super().__init__(message)


class MqttTransportError(OdotrackError):
    """Broker connection could not be established or used."""
