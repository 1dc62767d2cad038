from __future__ import annotations

from uuid import UUID, uuid4

from cohortsync.domain.identity import IdentityEntry, IdentityMap, parse_identity
from cohortsync.domain.model import RecordType
from cohortsync.domain.records import RecordLocator


def test_identity_shaped_names_become_the_local_identity() -> None:
    local_id = uuid4()
    identity = IdentityMap()

    resolved = identity.resolve(RecordLocator(RecordType.GROUP, str(local_id)))

    assert resolved == local_id


def test_other_names_get_a_stable_minted_identity() -> None:
    identity = IdentityMap()
    locator = RecordLocator(RecordType.STUDENT, "legacy-student-7")

    first = identity.resolve(locator)
    second = identity.resolve(locator)

    assert first == second
    assert isinstance(first, UUID)
    assert identity.lookup(RecordType.STUDENT, first) == locator
    assert identity.dirty


def test_same_name_under_different_types_is_distinct() -> None:
    identity = IdentityMap()

    group = identity.resolve(RecordLocator(RecordType.GROUP, "shared"))
    domain = identity.resolve(RecordLocator(RecordType.DOMAIN, "shared"))

    assert group != domain


def test_locator_for_unknown_identity_uses_the_identity_as_name() -> None:
    identity = IdentityMap()
    local_id = uuid4()

    assert identity.locator_for(RecordType.GROUP, local_id) == RecordLocator(
        RecordType.GROUP, str(local_id)
    )


def test_local_for_does_not_mint() -> None:
    identity = IdentityMap()

    assert identity.local_for(RecordLocator(RecordType.GROUP, "not-a-uuid")) is None
    assert len(identity) == 0


def test_entries_round_trip_through_a_new_map() -> None:
    identity = IdentityMap()
    minted = identity.resolve(RecordLocator(RecordType.STUDENT, "legacy"))

    restored = IdentityMap(identity.entries())

    assert restored.resolve(RecordLocator(RecordType.STUDENT, "legacy")) == minted
    assert not restored.dirty


def test_forget_drops_both_directions() -> None:
    local_id = uuid4()
    identity = IdentityMap([IdentityEntry(RecordType.GROUP, "g-1", local_id)])

    identity.forget(RecordType.GROUP, local_id)

    assert identity.lookup(RecordType.GROUP, local_id) is None
    assert identity.local_for(RecordLocator(RecordType.GROUP, "g-1")) is None
    assert identity.dirty


def test_bind_moves_an_identity_to_its_saved_locator() -> None:
    local_id = uuid4()
    identity = IdentityMap([IdentityEntry(RecordType.GROUP, "old", local_id)])

    identity.bind(local_id, RecordLocator(RecordType.GROUP, "new"))

    assert identity.lookup(RecordType.GROUP, local_id) == RecordLocator(RecordType.GROUP, "new")
    assert identity.local_for(RecordLocator(RecordType.GROUP, "old")) is None


def test_parse_identity() -> None:
    value = uuid4()

    assert parse_identity(str(value)) == value
    assert parse_identity("abc") is None
