"""Telemetry payload validation.

:func:`validate_payload` is pure: it never logs, never touches odometer
state and never raises for bad input. Callers decide how to report a
:class:`Rejection`.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from pydantic import ValidationError

from odotrack._constants import DEFAULT_DEVICE_ID
from odotrack.exceptions import MalformedPayloadError
from odotrack.ingestion.normalize import decode_json_object
from odotrack.models.telemetry import TelemetrySample


class RejectionKind(StrEnum):
    MALFORMED = "malformed"
    INVALID = "invalid"


@dataclass(frozen=True)
class Rejection:
    """Why a payload was not accepted."""

    kind: RejectionKind
    reason: str
    errors: list[dict[str, Any]] = field(default_factory=list)
    body: Any = None


def _summarize_errors(exc: ValidationError) -> list[dict[str, Any]]:
    return [
        {
            "field": ".".join(str(part) for part in err.get("loc", ())),
            "type": err.get("type", ""),
            "message": err.get("msg", ""),
        }
        for err in exc.errors()
    ]


def validate_payload(
    body: bytes | bytearray | str | Mapping[str, Any],
    *,
    default_device_id: str = DEFAULT_DEVICE_ID,
) -> TelemetrySample | Rejection:
    """Turn a raw telemetry body into a :class:`TelemetrySample`.

    Returns a :class:`Rejection` with kind ``MALFORMED`` when the body is not
    a JSON object, and ``INVALID`` when a required numeric field is missing or
    not a number. An absent, ``null`` or blank ``vehicleId`` is replaced by
    *default_device_id*.
    """
    try:
        data = decode_json_object(body)
    except MalformedPayloadError as exc:
        return Rejection(kind=RejectionKind.MALFORMED, reason=str(exc), body=body)

    vehicle_id = data.get("vehicleId", data.get("vehicle_id"))
    if vehicle_id is None or (isinstance(vehicle_id, str) and not vehicle_id.strip()):
        data.pop("vehicle_id", None)
        data["vehicleId"] = default_device_id
    elif isinstance(vehicle_id, str):
        data["vehicleId"] = vehicle_id.strip()

    try:
        return TelemetrySample.model_validate(data)
    except ValidationError as exc:
        errors = _summarize_errors(exc)
        fields = ", ".join(sorted({err["field"] for err in errors}))
        return Rejection(
            kind=RejectionKind.INVALID,
            reason=f"invalid telemetry fields: {fields}",
            errors=errors,
            body=data,
        )
