"""Port for the remote, multi-writer record store."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from cohortsync.domain.model import RecordType
    from cohortsync.domain.records import (
        AccountStatus,
        Predicate,
        Record,
        RecordLocator,
        SubscriptionHandle,
    )


class RemoteStoreError(RuntimeError):
    """Raised when the remote record store rejects or fails a request."""

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code


class RemoteUnavailableError(RemoteStoreError):
    """Raised when the remote store cannot be reached or the account is not signed in."""


class RecordConflictError(RemoteStoreError):
    """Raised when a save still conflicts after merging onto the server's version."""


@runtime_checkable
class RemoteRecordStore(Protocol):
    """Typed CRUD, predicate query and change subscriptions scoped by cohort."""

    async def account_status(self) -> AccountStatus: ...

    async def fetch_record(self, locator: RecordLocator) -> Record | None: ...

    async def save(self, record: Record) -> Record:
        """Persist ``record``; a conflicting concurrent write is merged and retried once."""
        ...

    async def delete(self, locator: RecordLocator) -> None: ...

    async def query(
        self,
        record_type: RecordType,
        predicate: Predicate,
        *,
        sort_by: str | None = None,
    ) -> list[Record]:
        """Return every matching record, following pagination internally."""
        ...

    async def subscribe(
        self,
        record_type: RecordType,
        predicate: Predicate,
        *,
        subscription_id: str,
    ) -> SubscriptionHandle: ...
