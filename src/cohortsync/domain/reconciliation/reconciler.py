"""Full, incremental and per-student reconciliation against the remote store."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import StrEnum
from logging import getLogger
from typing import TYPE_CHECKING

from cohortsync.domain.model import (
    CustomProperty,
    ExpertiseCheckProgress,
    Membership,
    ObjectiveProgress,
    RecordType,
)
from cohortsync.domain.records import FieldName, Predicate, PushReason, RecordReference
from cohortsync.domain.watermark import SyncCursor, utc_clock

from .guard import UnconfirmedRegistry

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime
    from uuid import UUID

    from cohortsync.domain.graph import EntityGraph
    from cohortsync.domain.identity import IdentityMap
    from cohortsync.domain.mapper import RecordMapper
    from cohortsync.domain.model import CohortEntity
    from cohortsync.domain.ports import RemoteRecordStore
    from cohortsync.domain.records import PushEvent, Record, RecordLocator
    from cohortsync.domain.watermark import Clock

log = getLogger(__name__)

# Parents before dependents: students and expertise checks reference groups, domains
# and objectives; memberships reference students and groups.
FULL_STAGES: tuple[tuple[RecordType, ...], ...] = (
    (RecordType.GROUP, RecordType.DOMAIN),
    (RecordType.OBJECTIVE, RecordType.LABEL),
    (RecordType.STUDENT, RecordType.EXPERTISE_CHECK),
    (RecordType.MEMBERSHIP,),
)
DETAIL_TYPES: tuple[RecordType, ...] = (RecordType.PROGRESS, RecordType.CUSTOM_PROPERTY)


class PassKind(StrEnum):
    FULL = "full"
    INCREMENTAL = "incremental"
    DETAIL = "detail"
    PUSH = "push"


@dataclass(slots=True)
class ReconcileReport:
    kind: PassKind
    window_start: datetime | None = None
    upserted: int = 0
    removed: int = 0
    skipped: int = 0


class Reconciler:
    """Make the entity graph consistent with the remote store.

    A full pass lists every record of the cohort and deletes local entities whose record
    is gone; an incremental pass only applies records modified after the watermark and
    never deletes. Progress and custom properties are only reconciled for students
    whose detail has been loaded.
    """

    def __init__(
        self,
        remote: RemoteRecordStore,
        graph: EntityGraph,
        identity: IdentityMap,
        mapper: RecordMapper,
        *,
        cohort_id: str,
        clock: Clock = utc_clock,
        cursor: SyncCursor | None = None,
    ) -> None:
        self._remote = remote
        self._graph = graph
        self._identity = identity
        self._mapper = mapper
        self._cohort_id = cohort_id
        self._clock = clock
        self.cursor = cursor or SyncCursor()
        self.unconfirmed = UnconfirmedRegistry()

    def _scope(
        self,
        *,
        modified_after: datetime | None = None,
        student: RecordLocator | None = None,
    ) -> Predicate:
        equals = {FieldName.STUDENT: RecordReference(student.name)} if student else {}
        return Predicate(cohort=self._cohort_id, modified_after=modified_after, equals=equals)

    # Full ------------------------------------------------------------------

    async def full(self) -> ReconcileReport:
        window_start = self._clock()
        report = ReconcileReport(PassKind.FULL, window_start=window_start)
        with self.unconfirmed.pass_guard() as guard:
            for stage in FULL_STAGES:
                batches = await asyncio.gather(
                    *(self._remote.query(record_type, self._scope()) for record_type in stage)
                )
                for record_type, records in zip(stage, batches, strict=True):
                    self._replace_type(record_type, records, guard, report)
            for student_id in sorted(self._graph.detail_loaded):
                await self._reconcile_detail(student_id, guard, report)
        self.cursor = self.cursor.after_full(window_start)
        log.info(
            "Full reconciliation finished: upserted=%s, removed=%s, skipped=%s",
            report.upserted,
            report.removed,
            report.skipped,
        )
        return report

    async def reconcile_student_detail(self, student_id: UUID) -> ReconcileReport:
        """Fetch one student's progress and custom properties and mark them loaded."""

        report = ReconcileReport(PassKind.DETAIL, window_start=self._clock())
        with self.unconfirmed.pass_guard() as guard:
            await self._reconcile_detail(student_id, guard, report)
        if student_id in self._graph.students:
            self._graph.mark_detail_loaded(student_id)
        return report

    async def _reconcile_detail(
        self,
        student_id: UUID,
        guard: set[RecordLocator],
        report: ReconcileReport,
    ) -> None:
        predicate = self._scope(student=self._identity.locator_for(RecordType.STUDENT, student_id))
        progress, properties = await asyncio.gather(
            *(self._remote.query(record_type, predicate) for record_type in DETAIL_TYPES)
        )
        if student_id not in self._graph.students:
            return
        self._replace_type(
            RecordType.PROGRESS,
            progress,
            guard,
            report,
            scope={entry.id for entry in self._graph.progress_for(student_id)},
            allow_detail=True,
        )
        self._replace_type(
            RecordType.CUSTOM_PROPERTY,
            properties,
            guard,
            report,
            scope={prop.id for prop in self._graph.custom_properties_for(student_id)},
            allow_detail=True,
        )

    def _replace_type(
        self,
        record_type: RecordType,
        records: Iterable[Record],
        guard: set[RecordLocator],
        report: ReconcileReport,
        *,
        scope: set[UUID] | None = None,
        allow_detail: bool = False,
    ) -> None:
        seen: set[RecordLocator] = set()
        for record in records:
            seen.add(record.locator)
            self._apply(record, report, allow_detail=allow_detail)

        local_ids = scope if scope is not None else self._graph.ids(record_type)
        for local_id in local_ids:
            locator = self._identity.locator_for(record_type, local_id)
            if locator in seen or locator in guard or self.unconfirmed.is_unconfirmed(locator):
                continue
            log.debug("Removing %s: no longer present remotely", locator)
            self._forget(self._graph.remove(record_type, local_id))
            report.removed += 1

    # Incremental -------------------------------------------------------------

    async def incremental(self) -> ReconcileReport:
        since = self.cursor.watermark
        if since is None:
            return await self.full()

        # capture before querying so writes racing the queries are seen next time
        window_start = self._clock()
        report = ReconcileReport(PassKind.INCREMENTAL, window_start=window_start)
        predicate = self._scope(modified_after=since)
        for stage in (*FULL_STAGES, DETAIL_TYPES):
            batches = await asyncio.gather(
                *(self._remote.query(record_type, predicate) for record_type in stage)
            )
            for records in batches:
                for record in records:
                    self._apply(record, report)
        self.cursor = self.cursor.advanced(window_start)
        if report.upserted or report.skipped:
            log.info(
                "Incremental sync applied %s change(s) since %s (skipped %s)",
                report.upserted,
                since.isoformat(),
                report.skipped,
            )
        return report

    # Direct application ----------------------------------------------------

    def apply_records(self, records: Iterable[Record]) -> ReconcileReport:
        """Upsert ``records`` without deleting anything (snapshot restore, push)."""

        report = ReconcileReport(PassKind.PUSH)
        for record in records:
            self._apply(record, report)
        return report

    async def apply_push(self, event: PushEvent) -> bool:
        """Apply a single-record change notification directly.

        Returns whether the graph changed.
        """

        if event.reason is not PushReason.DELETED:
            record = await self._remote.fetch_record(event.locator)
            if record is not None:
                return self.apply_records([record]).upserted > 0
            log.debug("Pushed record %s is already gone; treating as deleted", event.locator)

        if self.unconfirmed.is_unconfirmed(event.locator):
            return False
        local_id = self._identity.local_for(event.locator)
        if local_id is None:
            return False
        removed = self._graph.remove(event.record_type, local_id)
        self._forget(removed)
        return bool(removed)

    def _apply(
        self, record: Record, report: ReconcileReport, *, allow_detail: bool = False
    ) -> None:
        if self.unconfirmed.is_deleting(record.locator):
            return
        entity = self._mapper.to_entity(record)
        if entity is None:
            report.skipped += 1
            return
        match entity:
            case ObjectiveProgress() | CustomProperty():
                if not allow_detail and entity.student_id not in self._graph.detail_loaded:
                    return
            case Membership() if entity.student_id not in self._graph.students:
                log.debug("Skipping membership %s of unknown student", record.locator)
                report.skipped += 1
                return
            case ExpertiseCheckProgress() if entity.domain_id not in self._graph.domains:
                log.debug("Skipping expertise check %s of unknown domain", record.locator)
                report.skipped += 1
                return
            case _:
                pass
        self._graph.upsert(entity)
        report.upserted += 1

    def _forget(self, removed: Iterable[CohortEntity]) -> None:
        for entity in removed:
            locator = self._identity.lookup(entity.RECORD_TYPE, entity.id)
            if locator is not None:
                self._mapper.forget(locator)
            self._identity.forget(entity.RECORD_TYPE, entity.id)
