"""Repository implementations backed by SQLAlchemy sessions."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import delete, select

from cohortsync.adapters.sqlalchemy.mappings import (
    identity_mapping_table,
    store_snapshot_table,
    sync_cursor_table,
)
from cohortsync.domain.identity import IdentityEntry
from cohortsync.domain.ports import (
    IdentityMappingRepository,
    SnapshotRepository,
    SyncCursorRepository,
)
from cohortsync.domain.state import StoreSnapshot
from cohortsync.domain.watermark import SyncCursor

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


class SqlAlchemySyncCursorRepository(SyncCursorRepository):
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, cohort_id: str) -> SyncCursor | None:
        stmt = select(
            sync_cursor_table.c.watermark,
            sync_cursor_table.c.last_full_reconcile,
        ).where(sync_cursor_table.c.cohort_id == cohort_id)
        row = self.session.execute(stmt).one_or_none()
        if row is None:
            return None
        return SyncCursor(watermark=row.watermark, last_full_reconcile=row.last_full_reconcile)

    def put(self, cohort_id: str, cursor: SyncCursor) -> None:
        self.session.execute(
            delete(sync_cursor_table).where(sync_cursor_table.c.cohort_id == cohort_id)
        )
        self.session.execute(
            sync_cursor_table.insert().values(
                cohort_id=cohort_id,
                watermark=cursor.watermark,
                last_full_reconcile=cursor.last_full_reconcile,
            )
        )


class SqlAlchemyIdentityMappingRepository(IdentityMappingRepository):
    """Persist the identity table so minted local identities survive restarts."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def load(self, cohort_id: str) -> list[IdentityEntry]:
        stmt = (
            select(
                identity_mapping_table.c.record_type,
                identity_mapping_table.c.record_name,
                identity_mapping_table.c.local_id,
            )
            .where(identity_mapping_table.c.cohort_id == cohort_id)
            .order_by(identity_mapping_table.c.id)
        )
        return [
            IdentityEntry(record_type, record_name, local_id)
            for record_type, record_name, local_id in self.session.execute(stmt).all()
        ]

    def replace(self, cohort_id: str, entries: list[IdentityEntry]) -> None:
        self.session.execute(
            delete(identity_mapping_table).where(identity_mapping_table.c.cohort_id == cohort_id)
        )
        if not entries:
            return
        self.session.execute(
            identity_mapping_table.insert(),
            [
                {
                    "cohort_id": cohort_id,
                    "record_type": entry.record_type,
                    "record_name": entry.record_name,
                    "local_id": entry.local_id,
                }
                for entry in entries
            ],
        )


class SqlAlchemySnapshotRepository(SnapshotRepository):
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, cohort_id: str) -> StoreSnapshot | None:
        stmt = select(
            store_snapshot_table.c.schema_version,
            store_snapshot_table.c.saved_at,
            store_snapshot_table.c.records,
            store_snapshot_table.c.detail_loaded,
        ).where(store_snapshot_table.c.cohort_id == cohort_id)
        row = self.session.execute(stmt).one_or_none()
        if row is None:
            return None
        return StoreSnapshot(
            records=row.records,
            detail_loaded=row.detail_loaded,
            saved_at=row.saved_at,
            schema_version=row.schema_version,
        )

    def put(self, cohort_id: str, snapshot: StoreSnapshot) -> None:
        self.session.execute(
            delete(store_snapshot_table).where(store_snapshot_table.c.cohort_id == cohort_id)
        )
        self.session.execute(
            store_snapshot_table.insert().values(
                cohort_id=cohort_id,
                schema_version=snapshot.schema_version,
                saved_at=snapshot.saved_at,
                records=snapshot.records,
                detail_loaded=snapshot.detail_loaded,
            )
        )
