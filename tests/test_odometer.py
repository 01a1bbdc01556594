from __future__ import annotations

import pytest

from odotrack.state.odometer import OdometerReconciler


def test_first_sample_returns_zero_regardless_of_counter() -> None:
    reconciler = OdometerReconciler()

    assert reconciler.reconcile("car", 173) == 0.0
    state = reconciler.get("car")
    assert state is not None
    assert state.last_counter == 173
    assert state.accumulated_km == 0.0


def test_forward_steps_accumulate_at_100_units_per_km() -> None:
    reconciler = OdometerReconciler()
    reconciler.reconcile("car", 10)

    assert reconciler.reconcile("car", 60) == pytest.approx(0.5)
    assert reconciler.reconcile("car", 110) == pytest.approx(1.0)


def test_wraparound_counts_forward() -> None:
    reconciler = OdometerReconciler()
    reconciler.reconcile("car", 250)

    assert reconciler.reconcile("car", 5) == pytest.approx(0.11)


def test_255_to_0_is_one_unit() -> None:
    reconciler = OdometerReconciler()
    reconciler.reconcile("car", 255)

    assert reconciler.reconcile("car", 0) == pytest.approx(0.01)


def test_repeated_counter_adds_nothing() -> None:
    reconciler = OdometerReconciler()
    reconciler.reconcile("car", 42)
    reconciler.reconcile("car", 50)

    assert reconciler.reconcile("car", 50) == pytest.approx(0.08)


def test_distance_is_non_decreasing_without_reboot() -> None:
    reconciler = OdometerReconciler()
    counters = [200, 230, 255, 3, 40, 40, 120, 250, 10, 90]

    previous = -1.0
    for counter in counters:
        total = reconciler.reconcile("car", counter, "boot-1")
        assert total >= previous
        previous = total
    # 30 + 25 + 4 + 37 + 0 + 80 + 130 + 16 + 80 units
    assert previous == pytest.approx(4.02)


def test_reboot_resets_baseline_without_wrap_math() -> None:
    reconciler = OdometerReconciler()
    reconciler.reconcile("car", 150, "A")
    before = reconciler.reconcile("car", 200, "A")

    after_reboot = reconciler.reconcile("car", 3, "B")

    assert before == pytest.approx(0.5)
    assert after_reboot == pytest.approx(0.5)
    state = reconciler.get("car")
    assert state is not None
    assert state.boot_id == "B"
    assert state.last_counter == 3
    assert reconciler.reconcile("car", 13, "B") == pytest.approx(0.6)


def test_missing_boot_id_keeps_stored_boot() -> None:
    reconciler = OdometerReconciler()
    reconciler.reconcile("car", 0, "A")
    reconciler.reconcile("car", 20)

    state = reconciler.get("car")
    assert state is not None
    assert state.boot_id == "A"
    assert state.accumulated_km == pytest.approx(0.2)


def test_first_boot_id_after_anonymous_samples_counts_as_reboot() -> None:
    reconciler = OdometerReconciler()
    reconciler.reconcile("car", 100)
    reconciler.reconcile("car", 120)

    assert reconciler.reconcile("car", 7, "A") == pytest.approx(0.2)


def test_devices_are_independent() -> None:
    reconciler = OdometerReconciler()
    reconciler.reconcile("a", 0)
    reconciler.reconcile("b", 100)

    assert reconciler.reconcile("a", 50) == pytest.approx(0.5)
    assert reconciler.reconcile("b", 110) == pytest.approx(0.1)
    assert len(reconciler) == 2


def test_restore_seeds_distance_and_first_sample_sets_baseline() -> None:
    reconciler = OdometerReconciler()
    assert reconciler.restore("car", 812.4)

    assert reconciler.reconcile("car", 77) == pytest.approx(812.4)
    assert reconciler.reconcile("car", 87) == pytest.approx(812.5)


def test_restore_does_not_override_live_state() -> None:
    reconciler = OdometerReconciler()
    reconciler.reconcile("car", 10)

    assert not reconciler.restore("car", 999.0)
    assert reconciler.reconcile("car", 20) == pytest.approx(0.1)


def test_out_of_range_counter_raises() -> None:
    reconciler = OdometerReconciler()

    with pytest.raises(ValueError):
        reconciler.reconcile("car", 256)
    assert "car" not in reconciler


def test_snapshot_is_a_copy() -> None:
    reconciler = OdometerReconciler()
    reconciler.reconcile("car", 10)

    snapshot = reconciler.snapshot()
    snapshot["car"].accumulated_km = 500.0

    assert reconciler.reconcile("car", 20) == pytest.approx(0.1)
