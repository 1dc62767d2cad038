"""Local identity <-> remote locator mapping."""

from __future__ import annotations

from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from cohortsync.domain.records import RecordLocator

if TYPE_CHECKING:
    from collections.abc import Iterable

    from cohortsync.domain.model import RecordType

log = getLogger(__name__)


@dataclass(frozen=True, slots=True)
class IdentityEntry:
    record_type: RecordType
    record_name: str
    local_id: UUID

    @property
    def locator(self) -> RecordLocator:
        return RecordLocator(self.record_type, self.record_name)


def parse_identity(name: str) -> UUID | None:
    """Return the UUID a record name encodes, if it is identity-shaped."""

    try:
        return UUID(name)
    except ValueError:
        return None


class IdentityMap:
    """Two-tier identity resolution for remote records.

    A record name that is itself a UUID becomes the local identity; any other name gets
    a freshly minted identity, remembered for as long as the mapping lives. The table is
    persisted with the sync state so minted identities survive restarts.
    """

    def __init__(self, entries: Iterable[IdentityEntry] = ()) -> None:
        self._local_by_locator: dict[RecordLocator, UUID] = {}
        self._locator_by_local: dict[tuple[RecordType, UUID], RecordLocator] = {}
        self.dirty = False
        self.load(entries)

    def __len__(self) -> int:
        return len(self._local_by_locator)

    def load(self, entries: Iterable[IdentityEntry]) -> None:
        for entry in entries:
            self._store(entry.locator, entry.local_id)

    def resolve(self, locator: RecordLocator) -> UUID:
        """Return the local identity for ``locator``, minting one on first sight."""

        known = self._local_by_locator.get(locator)
        if known is not None:
            return known
        local_id = parse_identity(locator.name)
        if local_id is None:
            local_id = uuid4()
            log.debug("Minted identity %s for %s", local_id, locator)
        self._store(locator, local_id)
        self.dirty = True
        return local_id

    def bind(self, local_id: UUID, locator: RecordLocator) -> None:
        """Record that ``local_id`` is stored remotely under ``locator``."""

        if self._local_by_locator.get(locator) == local_id:
            return
        previous = self._locator_by_local.get((locator.record_type, local_id))
        if previous is not None and previous != locator:
            self._local_by_locator.pop(previous, None)
        self._store(locator, local_id)
        self.dirty = True

    def lookup(self, record_type: RecordType, local_id: UUID) -> RecordLocator | None:
        return self._locator_by_local.get((record_type, local_id))

    def locator_for(self, record_type: RecordType, local_id: UUID) -> RecordLocator:
        """Return the known locator, or the one a first write will create."""

        known = self.lookup(record_type, local_id)
        if known is not None:
            return known
        return RecordLocator(record_type, str(local_id))

    def local_for(self, locator: RecordLocator) -> UUID | None:
        """Return the local identity for ``locator`` without minting."""

        known = self._local_by_locator.get(locator)
        if known is not None:
            return known
        return parse_identity(locator.name)

    def forget(self, record_type: RecordType, local_id: UUID) -> None:
        locator = self._locator_by_local.pop((record_type, local_id), None)
        if locator is not None:
            self._local_by_locator.pop(locator, None)
            self.dirty = True

    def clear(self) -> None:
        self._local_by_locator.clear()
        self._locator_by_local.clear()
        self.dirty = True

    def entries(self) -> list[IdentityEntry]:
        return [
            IdentityEntry(locator.record_type, locator.name, local_id)
            for locator, local_id in sorted(self._local_by_locator.items())
        ]

    def _store(self, locator: RecordLocator, local_id: UUID) -> None:
        self._local_by_locator[locator] = local_id
        self._locator_by_local[(locator.record_type, local_id)] = locator
