"""Per-device odometer reconciliation.

Devices publish a one-byte odometer counter that wraps at 256 and restarts
from an unrelated value after a power cycle. The reconciler turns that
stream into a cumulative distance that never decreases.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass

from odotrack._constants import COUNTER_MAX, COUNTER_MODULUS, counter_delta_to_km

_logger = logging.getLogger(__name__)


@dataclass
class OdometerState:
    """Reconciliation state for one device.

    ``last_counter`` is ``None`` only for a state restored from the store
    that has not yet seen a sample in this process.
    """

    last_counter: int | None
    accumulated_km: float = 0.0
    boot_id: str | None = None


class OdometerReconciler:
    """Keyed store of :class:`OdometerState`, one entry per device.

    Calls for the same device must arrive in order; the service guarantees
    this by running every reconcile on the event loop thread.
    """

    def __init__(self) -> None:
        self._devices: dict[str, OdometerState] = {}

    def __len__(self) -> int:
        return len(self._devices)

    def __contains__(self, device_id: object) -> bool:
        return device_id in self._devices

    def get(self, device_id: str) -> OdometerState | None:
        state = self._devices.get(device_id)
        return copy.copy(state) if state is not None else None

    def snapshot(self) -> dict[str, OdometerState]:
        return {device_id: copy.copy(state) for device_id, state in self._devices.items()}

    def restore(self, device_id: str, accumulated_km: float) -> bool:
        """Seed a device with a previously persisted distance.

        The first sample seen afterwards only establishes the counter
        baseline. Devices already tracked in this process are left alone.
        Returns whether the state was seeded.
        """
        if device_id in self._devices:
            return False
        if accumulated_km < 0:
            raise ValueError(f"accumulated_km must be non-negative, got {accumulated_km}")
        self._devices[device_id] = OdometerState(last_counter=None, accumulated_km=float(accumulated_km))
        return True

    def reconcile(self, device_id: str, raw_counter: int, boot_id: str | None = None) -> float:
        """Apply one raw counter reading and return the cumulative distance in km."""
        if not 0 <= raw_counter <= COUNTER_MAX:
            raise ValueError(f"raw_counter must be between 0 and {COUNTER_MAX}, got {raw_counter}")

        state = self._devices.get(device_id)
        if state is None:
            self._devices[device_id] = OdometerState(last_counter=raw_counter, boot_id=boot_id)
            _logger.debug("Odometer state created device=%s counter=%s boot=%s", device_id, raw_counter, boot_id)
            return 0.0

        if state.last_counter is None:
            state.last_counter = raw_counter
            if boot_id is not None:
                state.boot_id = boot_id
            _logger.debug(
                "Odometer baseline set for restored device=%s counter=%s km=%.2f",
                device_id,
                raw_counter,
                state.accumulated_km,
            )
            return state.accumulated_km

        if boot_id is not None and boot_id != state.boot_id:
            # Counter restarts from an unrelated value after a reboot; only the baseline moves.
            _logger.info(
                "Device reboot detected device=%s boot=%s->%s counter=%s->%s",
                device_id,
                state.boot_id,
                boot_id,
                state.last_counter,
                raw_counter,
            )
            state.last_counter = raw_counter
            state.boot_id = boot_id
            return state.accumulated_km

        delta = raw_counter - state.last_counter
        if delta < 0:
            delta += COUNTER_MODULUS
        state.accumulated_km += counter_delta_to_km(delta)
        state.last_counter = raw_counter
        if boot_id is not None:
            state.boot_id = boot_id
        return state.accumulated_km
