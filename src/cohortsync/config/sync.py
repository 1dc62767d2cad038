"""Synchronization timing defaults and environment overrides."""

from __future__ import annotations

import getpass
from dataclasses import dataclass

from .env import float_env_var, int_env_var, optional_env_var

DEFAULT_COHORT_ID = "main"
DEFAULT_DEBOUNCE_SECONDS = 0.8
DEFAULT_POLL_INTERVAL_SECONDS = 45.0
DEFAULT_RECONCILE_INTERVAL_SECONDS = 600.0
DEFAULT_FULL_RECONCILE_AFTER_SECONDS = 300.0
DEFAULT_FOCUS_THROTTLE_SECONDS = 5.0
DEFAULT_ACTIVATION_THROTTLE_SECONDS = 5.0
DEFAULT_POLL_THROTTLE_SECONDS = 20.0
DEFAULT_TRIGGER_QUEUE_SIZE = 32


@dataclass(frozen=True, slots=True)
class SyncConfig:
    cohort_id: str = DEFAULT_COHORT_ID
    editor_name: str = "Unknown"
    debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS
    reconcile_interval_seconds: float = DEFAULT_RECONCILE_INTERVAL_SECONDS
    # poll / app-activated triggers upgrade to a full pass once the last one is this old
    full_reconcile_after_seconds: float = DEFAULT_FULL_RECONCILE_AFTER_SECONDS
    focus_throttle_seconds: float = DEFAULT_FOCUS_THROTTLE_SECONDS
    activation_throttle_seconds: float = DEFAULT_ACTIVATION_THROTTLE_SECONDS
    poll_throttle_seconds: float = DEFAULT_POLL_THROTTLE_SECONDS
    trigger_queue_size: int = DEFAULT_TRIGGER_QUEUE_SIZE


def _default_editor_name() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "Unknown"


def get_sync_config(*, cohort_id: str | None = None) -> SyncConfig:
    return SyncConfig(
        cohort_id=cohort_id or optional_env_var("COHORTSYNC_COHORT_ID") or DEFAULT_COHORT_ID,
        editor_name=optional_env_var("COHORTSYNC_EDITOR_NAME") or _default_editor_name(),
        debounce_seconds=float_env_var("COHORTSYNC_DEBOUNCE_SECONDS", DEFAULT_DEBOUNCE_SECONDS),
        poll_interval_seconds=float_env_var(
            "COHORTSYNC_POLL_SECONDS", DEFAULT_POLL_INTERVAL_SECONDS, minimum=1.0
        ),
        reconcile_interval_seconds=float_env_var(
            "COHORTSYNC_RECONCILE_SECONDS", DEFAULT_RECONCILE_INTERVAL_SECONDS, minimum=1.0
        ),
        full_reconcile_after_seconds=float_env_var(
            "COHORTSYNC_FULL_AFTER_SECONDS", DEFAULT_FULL_RECONCILE_AFTER_SECONDS
        ),
        trigger_queue_size=int_env_var("COHORTSYNC_TRIGGER_QUEUE_SIZE", DEFAULT_TRIGGER_QUEUE_SIZE),
    )
