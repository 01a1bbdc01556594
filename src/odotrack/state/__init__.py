"""Per-device state layer.

The odometer reconciler in this package is the only component allowed to
mutate per-device odometer state.
"""
