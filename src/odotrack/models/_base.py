"""Base model for device payloads and persisted records.

Every wire-facing model inherits from :class:`OdotrackBaseModel` which
provides:

* ``alias_generator=to_camel`` so the camelCase keys published by the
  device firmware map automatically to snake_case fields.
* ``allow_inf_nan=False`` so ``NaN``/``Infinity`` literals (which Python's
  ``json`` module accepts) are rejected rather than persisted.
* ``to_wire()`` for publishing/serving camelCase JSON.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated, Any

from pydantic import AfterValidator, BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


UtcDatetime = Annotated[datetime, AfterValidator(ensure_utc)]
"""Annotated type that always holds a timezone-aware UTC datetime."""


class OdotrackBaseModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
        allow_inf_nan=False,
    )

    def to_wire(self, *, exclude_none: bool = False) -> dict[str, Any]:
        """Dump with camelCase keys, JSON-compatible values."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=exclude_none)
