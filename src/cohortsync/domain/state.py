"""Persisted sync state: cursor, identity table and a snapshot of the local mirror."""

from __future__ import annotations

from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING, Final, cast

from cohortsync.domain.watermark import SyncCursor

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime
    from uuid import UUID

    from cohortsync.domain.graph import EntityGraph
    from cohortsync.domain.identity import IdentityEntry
    from cohortsync.domain.mapper import RecordMapper
    from cohortsync.domain.model import CohortEntity
    from cohortsync.domain.ports import SyncStateUnitOfWork
    from cohortsync.domain.records import Record

log = getLogger(__name__)

SNAPSHOT_SCHEMA_VERSION: Final = 1


@dataclass(frozen=True, slots=True)
class StoreSnapshot:
    """The local mirror as records, so a restart can show data before the first sync."""

    records: list[Record] = field(default_factory=list)
    detail_loaded: list[UUID] = field(default_factory=list)
    saved_at: datetime | None = None
    schema_version: int = SNAPSHOT_SCHEMA_VERSION


@dataclass(frozen=True, slots=True)
class RestoredState:
    cursor: SyncCursor
    identities: list[IdentityEntry]
    snapshot: StoreSnapshot | None


def capture_snapshot(
    graph: EntityGraph, mapper: RecordMapper, *, saved_at: datetime
) -> StoreSnapshot:
    records = [
        mapper.to_record(cast("CohortEntity", entity), stamp=False)
        for table in graph.export().values()
        for entity in table.values()
    ]
    return StoreSnapshot(
        records=records,
        detail_loaded=sorted(graph.detail_loaded),
        saved_at=saved_at,
    )


class SyncStateStore:
    """Load and save one cohort's sync state through a unit of work."""

    def __init__(
        self,
        unit_of_work_factory: Callable[[], SyncStateUnitOfWork],
        *,
        cohort_id: str,
    ) -> None:
        self._unit_of_work_factory = unit_of_work_factory
        self._cohort_id = cohort_id

    def load(self) -> RestoredState:
        with self._unit_of_work_factory() as uow:
            repositories = uow.repositories
            cursor = repositories.cursors.get(self._cohort_id) or SyncCursor()
            identities = repositories.identities.load(self._cohort_id)
            snapshot = repositories.snapshots.get(self._cohort_id)
        if snapshot is not None and snapshot.schema_version != SNAPSHOT_SCHEMA_VERSION:
            log.info(
                "Discarding snapshot with schema version %s (expected %s)",
                snapshot.schema_version,
                SNAPSHOT_SCHEMA_VERSION,
            )
            snapshot = None
        log.debug(
            "Restored sync state for %s: watermark=%s, identities=%s, snapshot=%s",
            self._cohort_id,
            cursor.watermark,
            len(identities),
            snapshot is not None,
        )
        return RestoredState(cursor=cursor, identities=identities, snapshot=snapshot)

    def save(
        self,
        cursor: SyncCursor,
        identities: list[IdentityEntry] | None,
        snapshot: StoreSnapshot | None = None,
    ) -> None:
        """Persist the cursor, plus the identity table and snapshot when given."""

        with self._unit_of_work_factory() as uow:
            repositories = uow.repositories
            repositories.cursors.put(self._cohort_id, cursor)
            if identities is not None:
                repositories.identities.replace(self._cohort_id, identities)
            if snapshot is not None:
                repositories.snapshots.put(self._cohort_id, snapshot)
            uow.commit()
