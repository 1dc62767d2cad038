"""In-process remote record store for local runs and tests."""

from __future__ import annotations

import itertools
from collections import defaultdict, deque
from dataclasses import replace
from datetime import timedelta
from logging import getLogger
from typing import TYPE_CHECKING

from cohortsync.domain.ports import RemoteRecordStore, RemoteStoreError, RemoteUnavailableError
from cohortsync.domain.records import (
    AccountStatus,
    PushEvent,
    PushReason,
    Record,
    SubscriptionHandle,
)
from cohortsync.domain.watermark import utc_clock

if TYPE_CHECKING:
    import asyncio
    from collections.abc import Awaitable, Callable
    from datetime import datetime

    from cohortsync.domain.model import RecordType
    from cohortsync.domain.records import Predicate, RecordLocator
    from cohortsync.domain.watermark import Clock

    PushListener = Callable[[PushEvent], object]
    QueryHook = Callable[[RecordType], Awaitable[None]]

log = getLogger(__name__)

_TICK = timedelta(microseconds=1)


def _copy(record: Record) -> Record:
    return replace(record, fields=dict(record.fields))


class InMemoryRecordStore:
    """A ``RemoteRecordStore`` holding records in a dict.

    It behaves like the shared store as seen by one client: every write is stamped with a
    strictly increasing modification time and a fresh change tag, a save carrying a stale
    change tag is merged onto the stored version, and subscribers are notified of
    matching changes. Failures can be injected per operation.
    """

    def __init__(
        self,
        *,
        clock: Clock = utc_clock,
        account: AccountStatus = AccountStatus.AVAILABLE,
    ) -> None:
        self._clock = clock
        self.account = account
        self._records: dict[RecordLocator, Record] = {}
        self._last_stamp: datetime | None = None
        self._tags = itertools.count(1)
        self._failures: defaultdict[str, deque[RemoteStoreError]] = defaultdict(deque)
        self._listeners: list[PushListener] = []
        self.subscriptions: dict[str, tuple[RecordType, Predicate]] = {}
        self.calls: defaultdict[str, int] = defaultdict(int)
        # when set, saves wait for the event; lets tests observe a write in flight
        self.save_gate: asyncio.Event | None = None
        # awaited after each query has been answered
        self.after_query: QueryHook | None = None

    # Test and tooling helpers ------------------------------------------------

    def fail_next(
        self, operation: str, error: RemoteStoreError | None = None, *, times: int = 1
    ) -> None:
        """Make the next ``times`` calls of ``operation`` raise ``error``."""

        for _ in range(times):
            self._failures[operation].append(
                error or RemoteUnavailableError(f"Injected {operation} failure")
            )

    def add_listener(self, listener: PushListener) -> None:
        self._listeners.append(listener)

    def put(self, record: Record) -> Record:
        """Store ``record`` as another client would, bypassing failure injection."""

        return self._store(record)

    def remove(self, locator: RecordLocator) -> None:
        self._discard(locator)

    def get(self, locator: RecordLocator) -> Record | None:
        record = self._records.get(locator)
        return _copy(record) if record is not None else None

    def records_of(self, record_type: RecordType) -> list[Record]:
        return [_copy(r) for r in self._records.values() if r.record_type == record_type]

    def __len__(self) -> int:
        return len(self._records)

    # RemoteRecordStore -------------------------------------------------------------

    async def account_status(self) -> AccountStatus:
        self._enter("account_status")
        return self.account

    async def fetch_record(self, locator: RecordLocator) -> Record | None:
        self._enter("fetch_record")
        return self.get(locator)

    async def save(self, record: Record) -> Record:
        self._enter("save")
        if self.save_gate is not None:
            await self.save_gate.wait()
        return self._store(record)

    async def delete(self, locator: RecordLocator) -> None:
        self._enter("delete")
        self._discard(locator)

    async def query(
        self,
        record_type: RecordType,
        predicate: Predicate,
        *,
        sort_by: str | None = None,
    ) -> list[Record]:
        self._enter("query")
        matches = [
            _copy(record)
            for record in self._records.values()
            if record.record_type == record_type and predicate.matches(record)
        ]
        if sort_by is not None:
            matches.sort(key=lambda record: str(record.fields.get(sort_by, "")))
        if self.after_query is not None:
            await self.after_query(record_type)
        return matches

    async def subscribe(
        self,
        record_type: RecordType,
        predicate: Predicate,
        *,
        subscription_id: str,
    ) -> SubscriptionHandle:
        self._enter("subscribe")
        self.subscriptions[subscription_id] = (record_type, predicate)
        return SubscriptionHandle(subscription_id=subscription_id, record_type=record_type)

    # Internals -----------------------------------------------------------------------

    def _enter(self, operation: str) -> None:
        self.calls[operation] += 1
        pending = self._failures.get(operation)
        if pending:
            raise pending.popleft()

    def _stamp(self) -> datetime:
        now = self._clock()
        if self._last_stamp is not None and now <= self._last_stamp:
            now = self._last_stamp + _TICK
        self._last_stamp = now
        return now

    def _store(self, record: Record) -> Record:
        existing = self._records.get(record.locator)
        if existing is not None and record.change_tag != existing.change_tag:
            log.debug("Merging stale write of %s onto the stored version", record.locator)
            record = record.merged_onto(existing)
        now = self._stamp()
        stored = Record(
            locator=record.locator,
            fields=dict(record.fields),
            created_at=existing.created_at if existing is not None else now,
            modified_at=now,
            change_tag=f"tag-{next(self._tags)}",
        )
        self._records[record.locator] = stored
        reason = PushReason.UPDATED if existing is not None else PushReason.CREATED
        self._notify(stored, reason)
        return _copy(stored)

    def _discard(self, locator: RecordLocator) -> None:
        existing = self._records.pop(locator, None)
        if existing is not None:
            self._notify(existing, PushReason.DELETED)

    def _notify(self, record: Record, reason: PushReason) -> None:
        for record_type, predicate in self.subscriptions.values():
            if record_type == record.record_type and predicate.matches(record):
                event = PushEvent(locator=record.locator, reason=reason)
                for listener in self._listeners:
                    listener(event)
                return


if TYPE_CHECKING:
    _store_check: RemoteRecordStore = InMemoryRecordStore()
