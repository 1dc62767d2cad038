"""Trigger reasons, sync mode selection and per-reason throttling."""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from collections.abc import Mapping
    from datetime import datetime, timedelta

    from cohortsync.config import SyncConfig
    from cohortsync.domain.records import PushEvent
    from cohortsync.domain.watermark import SyncCursor


class MonotonicClock(Protocol):
    def __call__(self) -> float: ...


class TriggerReason(StrEnum):
    INITIAL = "initial"
    LOCAL_WRITE = "local-write"
    PUSH = "push"
    POLL = "poll"
    APP_ACTIVATED = "app-activated"
    WINDOW_FOCUSED = "window-focused"
    RECONCILE = "reconcile"


class SyncMode(StrEnum):
    FULL = "full"
    INCREMENTAL = "incremental"


@dataclass(frozen=True, slots=True)
class Trigger:
    reason: TriggerReason
    immediate: bool = False
    push: PushEvent | None = None

    @property
    def bypasses_debounce(self) -> bool:
        return self.immediate or self.reason is TriggerReason.INITIAL


def select_mode(
    reason: TriggerReason,
    *,
    cursor: SyncCursor,
    now: datetime,
    full_after: timedelta,
) -> SyncMode:
    """Pick full or incremental reconciliation for a trigger."""

    match reason:
        case TriggerReason.INITIAL | TriggerReason.RECONCILE:
            return SyncMode.FULL
        case TriggerReason.POLL | TriggerReason.APP_ACTIVATED:
            if cursor.full_reconcile_due(now, full_after):
                return SyncMode.FULL
            return SyncMode.INCREMENTAL
        case _:
            if cursor.watermark is None:
                return SyncMode.FULL
            return SyncMode.INCREMENTAL


class TriggerThrottle:
    """Minimum inter-arrival interval per trigger reason.

    Reasons without an interval are never throttled.
    """

    def __init__(
        self,
        intervals: Mapping[TriggerReason, float],
        *,
        clock: MonotonicClock = time.monotonic,
    ) -> None:
        self._intervals = dict(intervals)
        self._clock = clock
        self._last_accepted: dict[TriggerReason, float] = {}

    @classmethod
    def from_config(
        cls, config: SyncConfig, *, clock: MonotonicClock = time.monotonic
    ) -> TriggerThrottle:
        return cls(
            {
                TriggerReason.WINDOW_FOCUSED: config.focus_throttle_seconds,
                TriggerReason.APP_ACTIVATED: config.activation_throttle_seconds,
                TriggerReason.POLL: config.poll_throttle_seconds,
            },
            clock=clock,
        )

    def allow(self, reason: TriggerReason) -> bool:
        interval = self._intervals.get(reason)
        if not interval:
            return True
        now = self._clock()
        last = self._last_accepted.get(reason)
        if last is not None and now - last < interval:
            return False
        self._last_accepted[reason] = now
        return True
