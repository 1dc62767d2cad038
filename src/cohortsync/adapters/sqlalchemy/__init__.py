"""SQLAlchemy adapter package for the persisted sync state."""

from __future__ import annotations

from .mappings import (
    create_all_tables,
    identity_mapping_table,
    metadata,
    store_snapshot_table,
    sync_cursor_table,
)
from .repositories import (
    SqlAlchemyIdentityMappingRepository,
    SqlAlchemySnapshotRepository,
    SqlAlchemySyncCursorRepository,
)
from .unit_of_work import (
    SqlAlchemySyncStateUnitOfWork,
    StartupError,
    shutdown,
    startup,
)

__all__ = [
    "SqlAlchemyIdentityMappingRepository",
    "SqlAlchemySnapshotRepository",
    "SqlAlchemySyncCursorRepository",
    "SqlAlchemySyncStateUnitOfWork",
    "StartupError",
    "create_all_tables",
    "identity_mapping_table",
    "metadata",
    "shutdown",
    "startup",
    "store_snapshot_table",
    "sync_cursor_table",
]
