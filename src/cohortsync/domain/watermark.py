"""Clock abstraction and the persisted sync cursor (watermark)."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import UTC, datetime, timedelta
from typing import Protocol


class Clock(Protocol):
    def __call__(self) -> datetime: ...


def utc_clock() -> datetime:
    return datetime.now(UTC)


def _ensure_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        raise ValueError("Sync cursor timestamps must include timezone information")
    return value.astimezone(UTC)


@dataclass(frozen=True, slots=True)
class SyncCursor:
    """Boundaries of what the local mirror has already absorbed.

    ``watermark`` is the start of the last successful sync window: every remote change
    stamped at or before it has been applied. ``last_full_reconcile`` is the start of the
    last successful full reconciliation.
    """

    watermark: datetime | None = None
    last_full_reconcile: datetime | None = None

    def advanced(self, window_start: datetime) -> SyncCursor:
        """Move the watermark to ``window_start``; the watermark never moves backwards."""

        window_start = _ensure_aware(window_start)
        if self.watermark is not None and self.watermark >= window_start:
            return self
        return replace(self, watermark=window_start)

    def after_full(self, window_start: datetime) -> SyncCursor:
        window_start = _ensure_aware(window_start)
        advanced = self.advanced(window_start)
        previous = advanced.last_full_reconcile
        if previous is not None and previous >= window_start:
            return advanced
        return replace(advanced, last_full_reconcile=window_start)

    def full_reconcile_due(self, now: datetime, interval: timedelta) -> bool:
        if self.last_full_reconcile is None:
            return True
        return now - self.last_full_reconcile > interval


__all__ = ["Clock", "SyncCursor", "utc_clock"]
