"""Ports for persisting local sync state between runs."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from cohortsync.domain.identity import IdentityEntry
    from cohortsync.domain.state import StoreSnapshot
    from cohortsync.domain.watermark import SyncCursor


@runtime_checkable
class SyncCursorRepository(Protocol):
    def get(self, cohort_id: str) -> SyncCursor | None: ...

    def put(self, cohort_id: str, cursor: SyncCursor) -> None: ...


@runtime_checkable
class IdentityMappingRepository(Protocol):
    def load(self, cohort_id: str) -> list[IdentityEntry]: ...

    def replace(self, cohort_id: str, entries: list[IdentityEntry]) -> None: ...


@runtime_checkable
class SnapshotRepository(Protocol):
    def get(self, cohort_id: str) -> StoreSnapshot | None: ...

    def put(self, cohort_id: str, snapshot: StoreSnapshot) -> None: ...
