"""Domain ports."""

from __future__ import annotations

from .persistence import IdentityMappingRepository, SnapshotRepository, SyncCursorRepository
from .remote import (
    RecordConflictError,
    RemoteRecordStore,
    RemoteStoreError,
    RemoteUnavailableError,
)
from .unit_of_work import (
    RepositoryCollection,
    SyncStateRepositories,
    SyncStateUnitOfWork,
    UnitOfWork,
)

__all__ = [
    "IdentityMappingRepository",
    "RecordConflictError",
    "RemoteRecordStore",
    "RemoteStoreError",
    "RemoteUnavailableError",
    "RepositoryCollection",
    "SnapshotRepository",
    "SyncCursorRepository",
    "SyncStateRepositories",
    "SyncStateUnitOfWork",
    "UnitOfWork",
]
