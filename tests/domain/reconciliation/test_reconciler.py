from __future__ import annotations

import asyncio
import math
from typing import TYPE_CHECKING

from cohortsync.adapters.memory import InMemoryRecordStore
from cohortsync.domain.model import Group, RecordType
from cohortsync.domain.reconciliation import PassKind
from cohortsync.domain.records import PushEvent, PushReason, RecordLocator
from tests.helpers.cohort import (
    FakeClock,
    custom_property_record,
    domain_record,
    expertise_check_record,
    group_record,
    make_engine,
    membership_record,
    objective_record,
    progress_record,
    student_record,
)

if TYPE_CHECKING:
    from uuid import UUID

    from cohortsync.domain.engine import SyncEngine


def _seed(remote: InMemoryRecordStore) -> None:
    remote.put(group_record("Red"))
    remote.put(group_record("Blue"))
    remote.put(student_record("Ada"))
    remote.put(membership_record("student-ada", "group-red"))
    remote.put(objective_record("A", "Root"))
    remote.put(objective_record("A.1", "Child", parent="objective-A", parent_code="A"))


def _local_id(engine: SyncEngine, record_type: RecordType, name: str) -> UUID | None:
    return engine.identity.local_for(RecordLocator(record_type, name))


def test_full_pass_mirrors_remote(engine: SyncEngine, remote: InMemoryRecordStore) -> None:
    _seed(remote)

    report = asyncio.run(engine.reconciler.full())

    graph = engine.graph
    assert report.kind is PassKind.FULL
    assert {group.name for group in graph.groups.values()} == {"Red", "Blue"}
    ada = _local_id(engine, RecordType.STUDENT, "student-ada")
    red = _local_id(engine, RecordType.GROUP, "group-red")
    assert ada is not None
    assert graph.students[ada].group_id == red
    child = graph.objective_by_code("A.1")
    assert child is not None
    parent = graph.parent_of(child)
    assert parent is not None
    assert parent.code == "A"
    assert engine.reconciler.cursor.last_full_reconcile is not None


def test_full_pass_is_idempotent(engine: SyncEngine, remote: InMemoryRecordStore) -> None:
    _seed(remote)

    async def scenario() -> tuple[object, object]:
        await engine.reconciler.full()
        first = engine.graph.export()
        await engine.reconciler.full()
        return first, engine.graph.export()

    first, second = asyncio.run(scenario())

    assert first == second


def test_full_pass_removes_records_deleted_remotely(
    engine: SyncEngine, remote: InMemoryRecordStore
) -> None:
    _seed(remote)

    async def scenario() -> int:
        await engine.reconciler.full()
        remote.remove(RecordLocator(RecordType.GROUP, "group-blue"))
        report = await engine.reconciler.full()
        return report.removed

    removed = asyncio.run(scenario())

    assert removed == 1
    assert {group.name for group in engine.graph.groups.values()} == {"Red"}
    assert _local_id(engine, RecordType.GROUP, "group-blue") is None


def test_full_pass_keeps_unconfirmed_creates(
    engine: SyncEngine, remote: InMemoryRecordStore
) -> None:
    _seed(remote)
    pending = Group(name="Pending")
    engine.graph.upsert(pending)
    engine.reconciler.unconfirmed.mark(RecordLocator(RecordType.GROUP, str(pending.id)))

    asyncio.run(engine.reconciler.full())

    assert pending.id in engine.graph.groups


def test_create_confirmed_during_pass_survives_the_pass(
    engine: SyncEngine, remote: InMemoryRecordStore
) -> None:
    _seed(remote)
    created = Group(name="Racing")
    locator = RecordLocator(RecordType.GROUP, str(created.id))

    async def create_while_listing(record_type: RecordType) -> None:
        if record_type is not RecordType.GROUP or created.id in engine.graph.groups:
            return
        # the listing has been answered; the create lands and is acknowledged now
        engine.reconciler.unconfirmed.mark(locator)
        engine.graph.upsert(created)
        remote.put(engine.mapper.to_record(created))
        engine.reconciler.unconfirmed.clear(locator)

    remote.after_query = create_while_listing

    async def scenario() -> None:
        await engine.reconciler.full()
        remote.after_query = None

    asyncio.run(scenario())

    assert created.id in engine.graph.groups


def test_incremental_applies_changes_without_deleting(
    engine: SyncEngine, remote: InMemoryRecordStore
) -> None:
    _seed(remote)

    async def scenario() -> None:
        await engine.reconciler.full()
        remote.remove(RecordLocator(RecordType.GROUP, "group-blue"))
        remote.put(group_record("Green"))
        report = await engine.reconciler.incremental()
        assert report.kind is PassKind.INCREMENTAL
        assert report.removed == 0

    asyncio.run(scenario())

    assert {group.name for group in engine.graph.groups.values()} == {"Red", "Blue", "Green"}


def test_incremental_without_watermark_runs_full(
    engine: SyncEngine, remote: InMemoryRecordStore
) -> None:
    _seed(remote)

    report = asyncio.run(engine.reconciler.incremental())

    assert report.kind is PassKind.FULL


def test_write_racing_incremental_is_picked_up_next_time() -> None:
    clock = FakeClock()
    remote = InMemoryRecordStore(clock=clock)
    engine = make_engine(remote, clock=clock)
    _seed(remote)
    raced = False

    async def write_after_listing(record_type: RecordType) -> None:
        nonlocal raced
        if record_type is RecordType.GROUP and not raced:
            raced = True
            clock.advance(0.5)
            remote.put(group_record("Late"))

    async def scenario() -> set[str]:
        await engine.reconciler.full()
        clock.advance(1)
        remote.after_query = write_after_listing
        await engine.reconciler.incremental()
        remote.after_query = None
        missed = {group.name for group in engine.graph.groups.values()}
        assert "Late" not in missed
        clock.advance(1)
        await engine.reconciler.incremental()
        return {group.name for group in engine.graph.groups.values()}

    names = asyncio.run(scenario())

    assert "Late" in names


def test_detail_is_only_reconciled_for_loaded_students(
    engine: SyncEngine, remote: InMemoryRecordStore
) -> None:
    _seed(remote)
    remote.put(progress_record("student-ada", "objective-A.1", code="A.1", value=40))
    remote.put(custom_property_record("student-ada", "Mentor", "Grace"))

    async def scenario() -> None:
        await engine.reconciler.full()
        assert engine.graph.progress == {}
        ada = _local_id(engine, RecordType.STUDENT, "student-ada")
        assert ada is not None
        report = await engine.reconciler.reconcile_student_detail(ada)
        assert report.kind is PassKind.DETAIL
        assert ada in engine.graph.detail_loaded

    asyncio.run(scenario())

    assert [entry.value for entry in engine.graph.progress.values()] == [40]
    assert [prop.key for prop in engine.graph.custom_properties.values()] == ["Mentor"]


def test_full_pass_reconciles_loaded_detail(
    engine: SyncEngine, remote: InMemoryRecordStore
) -> None:
    _seed(remote)
    remote.put(progress_record("student-ada", "objective-A.1", code="A.1", value=40))

    async def scenario() -> None:
        await engine.reconciler.full()
        ada = _local_id(engine, RecordType.STUDENT, "student-ada")
        assert ada is not None
        await engine.reconciler.reconcile_student_detail(ada)
        remote.remove(RecordLocator(RecordType.PROGRESS, "progress-student-ada-A.1"))
        await engine.reconciler.full()

    asyncio.run(scenario())

    assert engine.graph.progress == {}


def test_membership_of_unknown_student_is_skipped(
    engine: SyncEngine, remote: InMemoryRecordStore
) -> None:
    remote.put(group_record("Red"))
    remote.put(membership_record("student-ghost", "group-red"))

    report = asyncio.run(engine.reconciler.full())

    assert engine.graph.memberships == {}
    assert report.skipped == 1


def test_non_finite_numbers_do_not_abort_reconciliation(
    engine: SyncEngine, remote: InMemoryRecordStore
) -> None:
    _seed(remote)
    remote.put(objective_record("B", "Broken", sort_order=math.inf))
    remote.put(progress_record("student-ada", "objective-A.1", code="A.1", value=math.nan))

    async def scenario() -> None:
        await engine.reconciler.full()
        ada = _local_id(engine, RecordType.STUDENT, "student-ada")
        assert ada is not None
        await engine.reconciler.reconcile_student_detail(ada)

    asyncio.run(scenario())

    broken = engine.graph.objective_by_code("B")
    assert broken is not None
    assert broken.sort_order == 0
    assert [entry.value for entry in engine.graph.progress.values()] == [0]


def test_full_pass_mirrors_expertise_checks(
    engine: SyncEngine, remote: InMemoryRecordStore
) -> None:
    _seed(remote)
    remote.put(domain_record("Data"))
    remote.put(expertise_check_record("domain-data", "objective-A.1", code="A.1", value=75))
    remote.put(expertise_check_record("domain-ghost", "objective-A.1", code="A.1", value=10))

    report = asyncio.run(engine.reconciler.full())

    data = _local_id(engine, RecordType.DOMAIN, "domain-data")
    assert data is not None
    checks = engine.graph.expertise_checks_for(data)
    assert [check.value for check in checks] == [75]
    assert len(engine.graph.expertise_checks) == 1
    assert report.skipped == 1


def test_records_being_deleted_are_not_reapplied(
    engine: SyncEngine, remote: InMemoryRecordStore
) -> None:
    _seed(remote)
    engine.reconciler.unconfirmed.mark_deleting(RecordLocator(RecordType.GROUP, "group-blue"))

    asyncio.run(engine.reconciler.full())

    assert {group.name for group in engine.graph.groups.values()} == {"Red"}


def test_push_applies_single_record_changes(
    engine: SyncEngine, remote: InMemoryRecordStore
) -> None:
    _seed(remote)
    blue = RecordLocator(RecordType.GROUP, "group-blue")

    async def scenario() -> tuple[bool, bool]:
        await engine.reconciler.full()
        remote.put(group_record("Teal", record_name="group-blue"))
        updated = await engine.reconciler.apply_push(PushEvent(blue, PushReason.UPDATED))
        remote.remove(blue)
        deleted = await engine.reconciler.apply_push(PushEvent(blue, PushReason.DELETED))
        return updated, deleted

    updated, deleted = asyncio.run(scenario())

    assert updated
    assert deleted
    assert {group.name for group in engine.graph.groups.values()} == {"Red"}


def test_push_for_vanished_record_removes_it(
    engine: SyncEngine, remote: InMemoryRecordStore
) -> None:
    _seed(remote)
    blue = RecordLocator(RecordType.GROUP, "group-blue")

    async def scenario() -> bool:
        await engine.reconciler.full()
        remote.remove(blue)
        return await engine.reconciler.apply_push(PushEvent(blue, PushReason.UPDATED))

    assert asyncio.run(scenario())
    assert _local_id(engine, RecordType.GROUP, "group-blue") is None
