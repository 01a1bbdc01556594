"""Telemetry sample and odometer summary models."""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any

from pydantic import Field, StrictFloat, StrictInt, StrictStr

from odotrack._constants import COUNTER_MAX, DEFAULT_DEVICE_ID
from odotrack.models._base import OdotrackBaseModel, UtcDatetime

# Strict: JSON strings, booleans and nulls are not accepted as numbers.
# StrictFloat still accepts ints, which is what the firmware sends for most signals.
Signal = StrictFloat
OdometerCounter = Annotated[StrictInt, Field(ge=0, le=COUNTER_MAX)]


class TelemetrySample(OdotrackBaseModel):
    """One validated telemetry message as published by a vehicle controller.

    Parameters
    ----------
    vehicle_id : str
        Device identifier (``vehicleId``). Defaults to ``"ESP32"``.
    rpm, throttle, speed, gear, brake : float
        Engine and vehicle signals.
    engine_coolant_temp, air_intake_temp : float
        Temperatures in °C.
    odo_meter : int
        Raw odometer byte (0-255). Wraps around; 100 units per km.
    boot_id : str or None
        Opaque identifier of the device's current power-on session.
    steering_angle : float or None
        Optional steering angle, sent by newer firmware only.
    """

    vehicle_id: StrictStr = DEFAULT_DEVICE_ID
    rpm: Signal
    throttle: Signal
    speed: Signal
    gear: Signal
    brake: Signal
    engine_coolant_temp: Signal
    air_intake_temp: Signal
    odo_meter: OdometerCounter
    boot_id: StrictStr | None = None
    steering_angle: Signal | None = None


class EnrichedSample(TelemetrySample):
    """A telemetry sample stamped with receipt time and cumulative distance."""

    timestamp: UtcDatetime
    total_odo_km: float = Field(ge=0)

    @classmethod
    def from_sample(cls, sample: TelemetrySample, *, timestamp: datetime, total_odo_km: float) -> EnrichedSample:
        return cls(**sample.model_dump(), timestamp=timestamp, total_odo_km=total_odo_km)

    def to_record(self) -> dict[str, Any]:
        """Row persisted in the telemetry table (snake_case columns)."""
        return self.model_dump()


class OdometerSummary(OdotrackBaseModel):
    """Latest cumulative distance per device, upserted on every flush."""

    vehicle_id: str
    total_odo_km: float = Field(ge=0)
    updated_at: UtcDatetime

    def to_record(self) -> dict[str, Any]:
        return self.model_dump()
