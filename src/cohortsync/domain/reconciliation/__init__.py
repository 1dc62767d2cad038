"""Reconciliation of the local mirror with the remote store."""

from __future__ import annotations

from .guard import UnconfirmedRegistry
from .reconciler import FULL_STAGES, PassKind, Reconciler, ReconcileReport

__all__ = ["FULL_STAGES", "PassKind", "ReconcileReport", "Reconciler", "UnconfirmedRegistry"]
