"""Sync engine service: owns the local mirror and every sync component around it."""

from __future__ import annotations

import time
from datetime import timedelta
from logging import getLogger
from typing import TYPE_CHECKING, Final, Self

from cohortsync.domain.graph import EntityGraph
from cohortsync.domain.identity import IdentityMap
from cohortsync.domain.mapper import RecordMapper
from cohortsync.domain.model import RecordType
from cohortsync.domain.reconciliation import FULL_STAGES, Reconciler
from cohortsync.domain.records import Predicate, subscription_id_for
from cohortsync.domain.state import SyncStateStore, capture_snapshot
from cohortsync.domain.store import CohortStore
from cohortsync.domain.sync import (
    SyncCoordinator,
    SyncMode,
    TriggerReason,
    TriggerThrottle,
    select_mode,
)
from cohortsync.domain.watermark import utc_clock

if TYPE_CHECKING:
    from collections.abc import Callable
    from types import TracebackType

    from cohortsync.config import SyncConfig
    from cohortsync.domain.ports import RemoteRecordStore, SyncStateUnitOfWork
    from cohortsync.domain.reconciliation import ReconcileReport
    from cohortsync.domain.records import PushEvent, Record
    from cohortsync.domain.state import StoreSnapshot
    from cohortsync.domain.sync import MonotonicClock
    from cohortsync.domain.watermark import Clock

log = getLogger(__name__)

SUBSCRIBED_TYPES: Final[tuple[RecordType, ...]] = tuple(
    record_type for record_type in RecordType if record_type is not RecordType.COHORT
)
_RESTORE_ORDER: Final[dict[RecordType, int]] = {
    record_type: index
    for index, record_type in enumerate(
        [
            *(record_type for stage in FULL_STAGES for record_type in stage),
            RecordType.PROGRESS,
            RecordType.CUSTOM_PROPERTY,
        ]
    )
}


class SyncEngine:
    """A single owned service with explicit start and stop.

    Constructing the engine wires the entity graph, identity map, mapper, reconciler,
    coordinator and caller-facing store together; nothing runs until ``start``. When a
    unit-of-work factory is given, the sync cursor, identity table and a snapshot of
    the mirror are restored on start and saved after every sync and on stop.
    """

    def __init__(
        self,
        remote: RemoteRecordStore,
        *,
        config: SyncConfig,
        unit_of_work_factory: Callable[[], SyncStateUnitOfWork] | None = None,
        clock: Clock = utc_clock,
        monotonic: MonotonicClock = time.monotonic,
    ) -> None:
        self.config = config
        self.remote = remote
        self._clock = clock
        self._state = (
            SyncStateStore(unit_of_work_factory, cohort_id=config.cohort_id)
            if unit_of_work_factory is not None
            else None
        )
        self.graph = EntityGraph()
        self.identity = IdentityMap()
        self.mapper = RecordMapper(
            self.identity,
            self.graph,
            cohort_id=config.cohort_id,
            editor_name=config.editor_name,
            clock=clock,
        )
        self.reconciler = Reconciler(
            remote,
            self.graph,
            self.identity,
            self.mapper,
            cohort_id=config.cohort_id,
            clock=clock,
        )
        self.coordinator = SyncCoordinator(
            self.run_sync,
            config=config,
            mode_selector=self._select_mode,
            push_applier=self.reconciler.apply_push,
            setup_subscriptions=self._subscribe,
            throttle=TriggerThrottle.from_config(config, clock=monotonic),
        )
        self.store = CohortStore(
            remote,
            self.graph,
            self.identity,
            self.mapper,
            self.reconciler,
            cohort_id=config.cohort_id,
            clock=clock,
            sync=self.coordinator.run_now,
            on_local_write=self._local_write,
        )

    async def __aenter__(self) -> Self:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        await self.stop()

    # Lifecycle ---------------------------------------------------------------

    async def start(self, *, initial_sync: bool = True) -> None:
        log.info("Starting sync engine for cohort %s", self.config.cohort_id)
        self.restore()
        await self.coordinator.start(initial=initial_sync)

    async def stop(self) -> None:
        await self.coordinator.stop()
        self.persist()
        log.info("Sync engine for cohort %s stopped", self.config.cohort_id)

    async def wait_idle(self) -> None:
        await self.coordinator.wait_idle()

    # Triggers ------------------------------------------------------------------

    def notify(self, reason: TriggerReason, *, immediate: bool = False) -> bool:
        """Forward an outside trigger (app activation, window focus, ...) to the coordinator."""

        return self.coordinator.trigger(reason, immediate=immediate)

    def receive_push(self, event: PushEvent) -> bool:
        return self.coordinator.notify_push(event)

    def _local_write(self) -> None:
        self.coordinator.trigger(TriggerReason.LOCAL_WRITE)

    def _select_mode(self, reason: TriggerReason) -> SyncMode:
        return select_mode(
            reason,
            cursor=self.reconciler.cursor,
            now=self._clock(),
            full_after=timedelta(seconds=self.config.full_reconcile_after_seconds),
        )

    async def _subscribe(self) -> None:
        predicate = Predicate(cohort=self.config.cohort_id)
        for record_type in SUBSCRIBED_TYPES:
            await self.remote.subscribe(
                record_type, predicate, subscription_id=subscription_id_for(record_type)
            )
        log.debug("Subscribed to changes for %s record types", len(SUBSCRIBED_TYPES))

    # Sync ------------------------------------------------------------------------

    async def run_sync(self, mode: SyncMode) -> ReconcileReport:
        if mode is SyncMode.FULL:
            report = await self.reconciler.full()
        else:
            report = await self.reconciler.incremental()
        self.store.is_loaded = True
        self.persist()
        return report

    # Persistence ---------------------------------------------------------------

    def restore(self) -> None:
        """Restore the cursor, identities and mirror snapshot saved by an earlier run."""

        if self._state is None:
            return
        state = self._state.load()
        self.identity.load(state.identities)
        self.identity.dirty = False
        self.reconciler.cursor = state.cursor
        if state.snapshot is not None:
            self._apply_snapshot(state.snapshot)

    def _apply_snapshot(self, snapshot: StoreSnapshot) -> None:
        records = sorted(snapshot.records, key=_restore_rank)
        structural = [r for r in records if r.record_type not in _DETAIL_TYPES]
        detail = [r for r in records if r.record_type in _DETAIL_TYPES]
        self.reconciler.apply_records(structural)
        for student_id in snapshot.detail_loaded:
            if student_id in self.graph.students:
                self.graph.mark_detail_loaded(student_id)
        self.reconciler.apply_records(detail)
        log.info(
            "Restored %s record(s) from the snapshot saved at %s",
            len(records),
            snapshot.saved_at,
        )

    def persist(self) -> None:
        if self._state is None:
            return
        snapshot = capture_snapshot(self.graph, self.mapper, saved_at=self._clock())
        identities = self.identity.entries() if self.identity.dirty else None
        self._state.save(self.reconciler.cursor, identities, snapshot)
        self.identity.dirty = False


_DETAIL_TYPES: Final = frozenset({RecordType.PROGRESS, RecordType.CUSTOM_PROPERTY})


def _restore_rank(record: Record) -> int:
    return _RESTORE_ORDER.get(record.record_type, len(_RESTORE_ORDER))
