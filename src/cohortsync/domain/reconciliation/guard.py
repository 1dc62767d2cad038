"""Protection for locally created records whose remote write is still in flight."""

from __future__ import annotations

from contextlib import contextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator

    from cohortsync.domain.records import RecordLocator


class UnconfirmedRegistry:
    """Tracks unconfirmed creates and in-flight deletes.

    A reconciliation pass opens a guard; every locator marked unconfirmed at any point
    while the guard is open stays protected for that pass, even if its write is
    acknowledged before the pass finishes, because the pass may have listed the remote
    store before the record existed there.
    """

    def __init__(self) -> None:
        self._pending: set[RecordLocator] = set()
        self._deleting: set[RecordLocator] = set()
        self._open_guards: list[set[RecordLocator]] = []

    def mark(self, locator: RecordLocator) -> None:
        self._pending.add(locator)
        for guard in self._open_guards:
            guard.add(locator)

    def clear(self, locator: RecordLocator) -> None:
        self._pending.discard(locator)

    def is_unconfirmed(self, locator: RecordLocator) -> bool:
        return locator in self._pending

    def mark_deleting(self, locator: RecordLocator) -> None:
        self._deleting.add(locator)

    def clear_deleting(self, locator: RecordLocator) -> None:
        self._deleting.discard(locator)

    def is_deleting(self, locator: RecordLocator) -> bool:
        return locator in self._deleting

    @contextmanager
    def pass_guard(self) -> Iterator[set[RecordLocator]]:
        guard = set(self._pending)
        self._open_guards.append(guard)
        try:
            yield guard
        finally:
            self._open_guards = [other for other in self._open_guards if other is not guard]
