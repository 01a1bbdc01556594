"""Handshake and odometer-sync message models."""

from __future__ import annotations

from pydantic import StrictStr

from odotrack.models._base import OdotrackBaseModel


class HandshakeMessage(OdotrackBaseModel):
    """``{"status": ...}`` body used for both ping and ack."""

    status: StrictStr


class OdometerSyncRequest(OdotrackBaseModel):
    """Optional body of an odometer sync request.

    Firmware sends an empty body; ``vehicleId`` narrows the lookup to one device.
    """

    vehicle_id: StrictStr | None = None


class OdometerSyncResponse(OdotrackBaseModel):
    """``{"totalOdoKm": ...}`` published back to the device."""

    total_odo_km: float
