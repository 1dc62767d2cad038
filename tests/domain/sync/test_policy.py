from __future__ import annotations

from datetime import timedelta

import pytest

from cohortsync.domain.sync import SyncMode, Trigger, TriggerReason, TriggerThrottle, select_mode
from cohortsync.domain.watermark import SyncCursor
from tests.helpers.cohort import T0, FakeMonotonic, fast_config

FULL_AFTER = timedelta(minutes=5)


def _mode(reason: TriggerReason, cursor: SyncCursor, *, minutes_later: float = 0) -> SyncMode:
    return select_mode(
        reason,
        cursor=cursor,
        now=T0 + timedelta(minutes=minutes_later),
        full_after=FULL_AFTER,
    )


@pytest.mark.parametrize("reason", [TriggerReason.INITIAL, TriggerReason.RECONCILE])
def test_initial_and_reconcile_always_run_full(reason: TriggerReason) -> None:
    assert _mode(reason, SyncCursor().after_full(T0)) is SyncMode.FULL


@pytest.mark.parametrize("reason", [TriggerReason.POLL, TriggerReason.APP_ACTIVATED])
def test_poll_upgrades_to_full_when_last_full_is_stale(reason: TriggerReason) -> None:
    cursor = SyncCursor().after_full(T0)

    assert _mode(reason, cursor, minutes_later=1) is SyncMode.INCREMENTAL
    assert _mode(reason, cursor, minutes_later=6) is SyncMode.FULL


@pytest.mark.parametrize(
    "reason",
    [TriggerReason.LOCAL_WRITE, TriggerReason.PUSH, TriggerReason.WINDOW_FOCUSED],
)
def test_other_reasons_are_incremental_once_a_watermark_exists(reason: TriggerReason) -> None:
    assert _mode(reason, SyncCursor()) is SyncMode.FULL
    assert _mode(reason, SyncCursor().after_full(T0), minutes_later=60) is SyncMode.INCREMENTAL


def test_initial_and_immediate_triggers_bypass_debounce() -> None:
    assert Trigger(TriggerReason.INITIAL).bypasses_debounce
    assert Trigger(TriggerReason.LOCAL_WRITE, immediate=True).bypasses_debounce
    assert not Trigger(TriggerReason.LOCAL_WRITE).bypasses_debounce


def test_throttle_enforces_minimum_interval_per_reason() -> None:
    clock = FakeMonotonic()
    throttle = TriggerThrottle.from_config(fast_config(), clock=clock)

    assert throttle.allow(TriggerReason.WINDOW_FOCUSED)
    assert not throttle.allow(TriggerReason.WINDOW_FOCUSED)
    assert throttle.allow(TriggerReason.APP_ACTIVATED)

    clock.value = 5.0
    assert throttle.allow(TriggerReason.WINDOW_FOCUSED)


def test_throttle_ignores_reasons_without_interval() -> None:
    throttle = TriggerThrottle({}, clock=FakeMonotonic())

    assert all(throttle.allow(TriggerReason.LOCAL_WRITE) for _ in range(5))
