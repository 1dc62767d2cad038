"""Sync triggering and coordination."""

from __future__ import annotations

from .coordinator import CoordinatorState, SyncCoordinator
from .policy import MonotonicClock, SyncMode, Trigger, TriggerReason, TriggerThrottle, select_mode

__all__ = [
    "CoordinatorState",
    "MonotonicClock",
    "SyncCoordinator",
    "SyncMode",
    "Trigger",
    "TriggerReason",
    "TriggerThrottle",
    "select_mode",
]
