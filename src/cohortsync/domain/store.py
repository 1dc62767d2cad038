"""Caller-facing store: reads from the entity graph, optimistic writes to the remote store."""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from logging import getLogger
from typing import TYPE_CHECKING, Final, cast

from cohortsync.domain.catalog import default_objectives
from cohortsync.domain.model import (
    DEFAULT_COLOR_HEX,
    CategoryLabel,
    CustomProperty,
    Domain,
    ExpertiseCheckProgress,
    Group,
    Membership,
    ObjectiveDefinition,
    ObjectiveProgress,
    ProgressMode,
    RecordType,
    Session,
    Student,
    clamp_percentage,
)
from cohortsync.domain.ports import RemoteStoreError
from cohortsync.domain.records import (
    AccountStatus,
    FieldName,
    Predicate,
    Record,
    RecordLocator,
    RecordReference,
)
from cohortsync.domain.sync import SyncMode
from cohortsync.domain.watermark import SyncCursor, utc_clock

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence
    from uuid import UUID

    from cohortsync.domain.graph import ChangeLog, EntityGraph
    from cohortsync.domain.identity import IdentityMap
    from cohortsync.domain.mapper import RecordMapper
    from cohortsync.domain.model import CohortEntity
    from cohortsync.domain.ports import RemoteRecordStore
    from cohortsync.domain.reconciliation import Reconciler
    from cohortsync.domain.watermark import Clock

    SyncRequest = Callable[[SyncMode], Awaitable[object]]

log = getLogger(__name__)

REMOTE_ACCESS_REQUIRED: Final = (
    "Editing requires access to the shared record store. "
    "Check your connection and account, then try again."
)
DEFAULT_COHORT_NAME: Final = "Main Cohort"

# Children first so no record is left pointing at a deleted parent mid-reset.
RESET_ORDER: Final[tuple[RecordType, ...]] = (
    RecordType.PROGRESS,
    RecordType.EXPERTISE_CHECK,
    RecordType.CUSTOM_PROPERTY,
    RecordType.MEMBERSHIP,
    RecordType.STUDENT,
    RecordType.LABEL,
    RecordType.GROUP,
    RecordType.DOMAIN,
    RecordType.OBJECTIVE,
)


class _Unset(Enum):
    TOKEN = "unset"


UNSET: Final = _Unset.TOKEN


@dataclass(frozen=True, slots=True)
class WriteResult[T]:
    """Outcome of a store operation: a value on success or a human-readable error."""

    value: T | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class CohortStore:
    """The operations callers use to read and edit a cohort.

    Every write checks that the remote store is reachable, applies the change to the
    entity graph straight away, then persists it. A failed write is undone locally and
    reported; composite writes that fail partway reload everything from the server
    instead of unwinding step by step. No operation raises for remote failures.
    """

    def __init__(
        self,
        remote: RemoteRecordStore,
        graph: EntityGraph,
        identity: IdentityMap,
        mapper: RecordMapper,
        reconciler: Reconciler,
        *,
        cohort_id: str,
        clock: Clock = utc_clock,
        sync: SyncRequest | None = None,
        on_local_write: Callable[[], object] | None = None,
    ) -> None:
        self._remote = remote
        self._graph = graph
        self._identity = identity
        self._mapper = mapper
        self._reconciler = reconciler
        self._cohort_id = cohort_id
        self._clock = clock
        self._sync = sync or self._sync_directly
        self._on_local_write = on_local_write
        self._cohort_ready = False
        self.is_loaded = False
        self.requires_remote_access = False
        self.last_error_message: str | None = None

    # Reads -----------------------------------------------------------------

    @property
    def graph(self) -> EntityGraph:
        return self._graph

    @property
    def groups(self) -> list[Group]:
        return self._graph.sorted_groups()

    @property
    def domains(self) -> list[Domain]:
        return self._graph.sorted_domains()

    @property
    def objectives(self) -> list[ObjectiveDefinition]:
        return self._graph.sorted_objectives()

    @property
    def students(self) -> list[Student]:
        return self._graph.sorted_students()

    def take_error_message(self) -> str | None:
        """Return the last write error once, clearing it."""

        message, self.last_error_message = self.last_error_message, None
        return message

    # Loading and syncing -------------------------------------------------------

    async def _sync_directly(self, mode: SyncMode) -> None:
        if mode is SyncMode.FULL:
            await self._reconciler.full()
        else:
            await self._reconciler.incremental()

    async def load_if_needed(self) -> WriteResult[None]:
        if self.is_loaded:
            return WriteResult()
        result = await self.reload_all_data()
        if result.ok:
            await self.seed_defaults_if_needed()
        return result

    async def reload_all_data(self, *, force: bool = False) -> WriteResult[None]:
        """Run a full reconciliation; ``force`` first discards the local mirror."""

        if force:
            log.info("Discarding local mirror before reload")
            self._graph.clear()
            self._reconciler.cursor = SyncCursor()
        try:
            await self._sync(SyncMode.FULL)
        except RemoteStoreError as exc:
            log.warning("Reload failed: %s", exc)
            return WriteResult(error=f"Could not load data: {exc}")
        self.is_loaded = True
        return WriteResult()

    async def reconcile_all(self) -> None:
        try:
            await self._sync(SyncMode.FULL)
        except RemoteStoreError:
            log.exception("Full reconciliation failed")

    async def sync_incremental(self) -> None:
        try:
            await self._sync(SyncMode.INCREMENTAL)
        except RemoteStoreError:
            log.exception("Incremental sync failed")

    async def load_student_detail(self, student_id: UUID) -> WriteResult[None]:
        if student_id in self._graph.detail_loaded:
            return WriteResult()
        if student_id not in self._graph.students:
            return WriteResult(error="Student not found")
        try:
            await self._reconciler.reconcile_student_detail(student_id)
        except RemoteStoreError as exc:
            log.warning("Loading detail for student %s failed: %s", student_id, exc)
            return WriteResult(error=f"Could not load student details: {exc}")
        return WriteResult()

    async def seed_defaults_if_needed(self) -> WriteResult[int]:
        """Seed the default objective catalog into a cohort that has none."""

        if self._graph.objectives:
            return WriteResult(value=0)
        if (error := await self._require_write_access()) is not None:
            return WriteResult(error=error)
        return await self._seed_catalog()

    # Write plumbing --------------------------------------------------------------

    async def _require_write_access(self) -> str | None:
        try:
            status = await self._remote.account_status()
        except RemoteStoreError:
            log.warning("Account status check failed", exc_info=True)
            status = AccountStatus.UNKNOWN
        if status is not AccountStatus.AVAILABLE:
            if not self.requires_remote_access:
                log.warning("Remote store unavailable (%s); writes disabled", status)
            self.requires_remote_access = True
            return REMOTE_ACCESS_REQUIRED
        self.requires_remote_access = False
        if not self._cohort_ready:
            try:
                await self._ensure_cohort()
            except RemoteStoreError as exc:
                return self._fail(f"Could not prepare the cohort: {exc}").error
        return None

    async def _ensure_cohort(self) -> None:
        locator = RecordLocator(RecordType.COHORT, self._cohort_id)
        if await self._remote.fetch_record(locator) is None:
            log.info("Creating cohort record %s", locator)
            await self._remote.save(
                Record(
                    locator=locator,
                    fields={
                        FieldName.COHORT_ID: self._cohort_id,
                        FieldName.NAME: DEFAULT_COHORT_NAME,
                        FieldName.CREATED_AT: self._clock(),
                    },
                )
            )
        self._cohort_ready = True

    def _fail[T](self, message: str) -> WriteResult[T]:
        self.last_error_message = message
        return WriteResult(error=message)

    def _notify_local_write(self) -> None:
        if self._on_local_write is not None:
            self._on_local_write()

    async def _write[TEntity: CohortEntity](
        self, entity: TEntity, *, created: bool
    ) -> WriteResult[TEntity]:
        """Apply ``entity`` optimistically, save it, and undo the change if the save fails."""

        with self._graph.track() as change:
            self._graph.upsert(entity)
        if (error := await self._persist(entity, change, created=created)) is not None:
            return self._fail(error)
        self._notify_local_write()
        stored = self._graph.get(entity.RECORD_TYPE, entity.id)
        return WriteResult(value=cast("TEntity", stored or entity))

    async def _persist(
        self, entity: CohortEntity, change: ChangeLog, *, created: bool
    ) -> str | None:
        record = self._mapper.to_record(entity)
        unconfirmed = self._reconciler.unconfirmed
        if created:
            unconfirmed.mark(record.locator)
        try:
            saved = await self._remote.save(record)
        except RemoteStoreError as exc:
            change.undo()
            log.warning("Saving %s failed; local change reverted: %s", record.locator, exc)
            return f"Could not save {_noun(entity.RECORD_TYPE)}: {exc}"
        finally:
            if created:
                unconfirmed.clear(record.locator)
        self._identity.bind(entity.id, saved.locator)
        self._mapper.remember(saved)
        return None

    async def _delete(
        self, record_type: RecordType, local_id: UUID
    ) -> WriteResult[list[RecordLocator]]:
        """Remove an entity (with its local cascade) and delete its record.

        On success the value holds the locators of the cascaded entities, whose records
        the caller still has to delete remotely.
        """

        locator = self._identity.locator_for(record_type, local_id)
        with self._graph.track() as change:
            removed = self._graph.remove(record_type, local_id)
        if not removed:
            return self._fail(f"{_noun(record_type).capitalize()} not found")
        cascaded = self._locators(removed[1:])
        unconfirmed = self._reconciler.unconfirmed
        unconfirmed.mark_deleting(locator)
        try:
            await self._remote.delete(locator)
        except RemoteStoreError as exc:
            change.undo()
            log.warning("Deleting %s failed; local change reverted: %s", locator, exc)
            return self._fail(f"Could not delete {_noun(record_type)}: {exc}")
        finally:
            unconfirmed.clear_deleting(locator)
        for entity in removed:
            self._identity.forget(entity.RECORD_TYPE, entity.id)
        self._mapper.forget(locator)
        self._notify_local_write()
        return WriteResult(value=cascaded)

    async def _delete_remote(self, locators: Sequence[RecordLocator]) -> int:
        """Delete records whose local entities are already gone; returns the failure count."""

        failures = 0
        for locator in locators:
            try:
                await self._remote.delete(locator)
            except RemoteStoreError as exc:
                log.warning("Deleting %s failed: %s", locator, exc)
                failures += 1
            else:
                self._mapper.forget(locator)
        return failures

    async def _resave_students(self, student_ids: Iterable[UUID]) -> int:
        """Save students whose record changed as a side effect; returns the failure count."""

        failures = 0
        for student_id in student_ids:
            student = self._graph.students.get(student_id)
            if student is None:
                continue
            try:
                saved = await self._remote.save(self._mapper.to_record(student))
            except RemoteStoreError as exc:
                log.warning("Updating student %s failed: %s", student_id, exc)
                failures += 1
            else:
                self._mapper.remember(saved)
        return failures

    def _legacy_groups(self, student_ids: Iterable[UUID]) -> dict[UUID, UUID | None]:
        return {
            student_id: student.group_id
            for student_id in student_ids
            if (student := self._graph.students.get(student_id)) is not None
        }

    async def _save_legacy_groups(self, before: Mapping[UUID, UUID | None]) -> bool:
        """Re-save students whose derived single group moved; older clients read it."""

        changed = [
            student_id
            for student_id, group_id in before.items()
            if (student := self._graph.students.get(student_id)) is not None
            and student.group_id != group_id
        ]
        return not await self._resave_students(changed)

    async def _resync_after_partial_failure[T](self, message: str) -> WriteResult[T]:
        log.warning("%s; reloading from the server", message)
        self.last_error_message = message
        await self.reload_all_data()
        return WriteResult(error=message)

    def _locators(self, entities: Sequence[CohortEntity]) -> list[RecordLocator]:
        return [self._identity.locator_for(entity.RECORD_TYPE, entity.id) for entity in entities]

    # Groups ------------------------------------------------------------------------

    def _group_named(self, name: str, *, excluding: UUID | None = None) -> Group | None:
        folded = name.casefold()
        for group in self._graph.groups.values():
            if group.name.casefold() == folded and group.id != excluding:
                return group
        return None

    async def create_group(
        self, name: str, color_hex: str = DEFAULT_COLOR_HEX
    ) -> WriteResult[Group]:
        name = name.strip()
        if not name:
            return self._fail("Group name cannot be empty")
        if self._group_named(name) is not None:
            return self._fail(f'A group named "{name}" already exists')
        if (error := await self._require_write_access()) is not None:
            return WriteResult(error=error)
        return await self._write(Group(name=name, color_hex=color_hex), created=True)

    async def rename_group(self, group_id: UUID, name: str) -> WriteResult[Group]:
        name = name.strip()
        group = self._graph.groups.get(group_id)
        if group is None:
            return self._fail("Group not found")
        if not name:
            return self._fail("Group name cannot be empty")
        if self._group_named(name, excluding=group_id) is not None:
            return self._fail(f'A group named "{name}" already exists')
        if (error := await self._require_write_access()) is not None:
            return WriteResult(error=error)
        return await self._write(replace(group, name=name), created=False)

    async def recolor_group(self, group_id: UUID, color_hex: str) -> WriteResult[Group]:
        group = self._graph.groups.get(group_id)
        if group is None:
            return self._fail("Group not found")
        if (error := await self._require_write_access()) is not None:
            return WriteResult(error=error)
        return await self._write(replace(group, color_hex=color_hex), created=False)

    async def delete_group(self, group_id: UUID) -> WriteResult[None]:
        if (error := await self._require_write_access()) is not None:
            return WriteResult(error=error)
        before = self._legacy_groups(
            {m.student_id for m in self._graph.memberships.values() if m.group_id == group_id}
            | {s.id for s in self._graph.students.values() if s.group_id == group_id}
        )
        result = await self._delete(RecordType.GROUP, group_id)
        if not result.ok:
            return WriteResult(error=result.error)
        if await self._delete_remote(result.value or []):
            return await self._resync_after_partial_failure(
                "The group was deleted but some memberships could not be removed"
            )
        if not await self._save_legacy_groups(before):
            return await self._resync_after_partial_failure(
                "The group was deleted but some students could not be updated"
            )
        return WriteResult()

    # Domains -------------------------------------------------------------------------

    def _domain_named(self, name: str, *, excluding: UUID | None = None) -> Domain | None:
        folded = name.casefold()
        for domain in self._graph.domains.values():
            if domain.name.casefold() == folded and domain.id != excluding:
                return domain
        return None

    async def create_domain(
        self,
        name: str,
        color_hex: str = DEFAULT_COLOR_HEX,
        progress_mode: ProgressMode = ProgressMode.COMPUTED,
    ) -> WriteResult[Domain]:
        name = name.strip()
        if not name:
            return self._fail("Domain name cannot be empty")
        if self._domain_named(name) is not None:
            return self._fail(f'A domain named "{name}" already exists')
        if (error := await self._require_write_access()) is not None:
            return WriteResult(error=error)
        domain = Domain(name=name, color_hex=color_hex, progress_mode=progress_mode)
        return await self._write(domain, created=True)

    async def rename_domain(self, domain_id: UUID, name: str) -> WriteResult[Domain]:
        name = name.strip()
        domain = self._graph.domains.get(domain_id)
        if domain is None:
            return self._fail("Domain not found")
        if not name:
            return self._fail("Domain name cannot be empty")
        if self._domain_named(name, excluding=domain_id) is not None:
            return self._fail(f'A domain named "{name}" already exists')
        if (error := await self._require_write_access()) is not None:
            return WriteResult(error=error)
        return await self._write(replace(domain, name=name), created=False)

    async def set_domain_progress_mode(
        self, domain_id: UUID, progress_mode: ProgressMode
    ) -> WriteResult[Domain]:
        domain = self._graph.domains.get(domain_id)
        if domain is None:
            return self._fail("Domain not found")
        if (error := await self._require_write_access()) is not None:
            return WriteResult(error=error)
        return await self._write(replace(domain, progress_mode=progress_mode), created=False)

    async def delete_domain(self, domain_id: UUID) -> WriteResult[None]:
        if (error := await self._require_write_access()) is not None:
            return WriteResult(error=error)
        affected = [s.id for s in self._graph.students.values() if s.domain_id == domain_id]
        result = await self._delete(RecordType.DOMAIN, domain_id)
        if not result.ok:
            return WriteResult(error=result.error)
        if await self._delete_remote(result.value or []):
            return await self._resync_after_partial_failure(
                "The domain was deleted but some expertise checks could not be removed"
            )
        if await self._resave_students(affected):
            return await self._resync_after_partial_failure(
                "The domain was deleted but some students could not be updated"
            )
        return WriteResult()

    # Objectives ------------------------------------------------------------------

    async def create_objective(
        self,
        code: str,
        title: str,
        *,
        parent_id: UUID | None = None,
        description: str = "",
        is_quantitative: bool = False,
    ) -> WriteResult[ObjectiveDefinition]:
        code = code.strip()
        if not code:
            return self._fail("Objective code cannot be empty")
        if self._graph.objective_by_code(code) is not None:
            return self._fail(f'An objective with code "{code}" already exists')
        parent = self._graph.objectives.get(parent_id) if parent_id is not None else None
        if parent_id is not None and parent is None:
            return self._fail("Parent objective not found")
        if (error := await self._require_write_access()) is not None:
            return WriteResult(error=error)
        sort_order = max((o.sort_order for o in self._graph.objectives.values()), default=-1) + 1
        objective = ObjectiveDefinition(
            code=code,
            title=title.strip() or code,
            description=description,
            is_quantitative=is_quantitative,
            parent_id=parent.id if parent else None,
            parent_code=parent.code if parent else None,
            sort_order=sort_order,
        )
        return await self._write(objective, created=True)

    async def update_objective(
        self,
        objective_id: UUID,
        *,
        title: str | None = None,
        description: str | None = None,
        is_quantitative: bool | None = None,
    ) -> WriteResult[ObjectiveDefinition]:
        objective = self._graph.objectives.get(objective_id)
        if objective is None:
            return self._fail("Objective not found")
        if (error := await self._require_write_access()) is not None:
            return WriteResult(error=error)
        updated = replace(
            objective,
            title=objective.title if title is None else title,
            description=objective.description if description is None else description,
            is_quantitative=(
                objective.is_quantitative if is_quantitative is None else is_quantitative
            ),
        )
        return await self._write(updated, created=False)

    async def move_objective(
        self,
        objective_id: UUID,
        *,
        parent_id: UUID | None,
        sort_order: int | None = None,
    ) -> WriteResult[ObjectiveDefinition]:
        objective = self._graph.objectives.get(objective_id)
        if objective is None:
            return self._fail("Objective not found")
        parent = None
        if parent_id is not None:
            parent = self._graph.objectives.get(parent_id)
            if parent is None:
                return self._fail("Parent objective not found")
            ancestor: ObjectiveDefinition | None = parent
            while ancestor is not None:
                if ancestor.id == objective_id:
                    return self._fail("An objective cannot be moved under its own descendant")
                ancestor = self._graph.parent_of(ancestor)
        if (error := await self._require_write_access()) is not None:
            return WriteResult(error=error)
        moved = replace(
            objective,
            parent_id=parent.id if parent else None,
            parent_code=parent.code if parent else None,
            sort_order=objective.sort_order if sort_order is None else sort_order,
        )
        return await self._write(moved, created=False)

    async def archive_objective(
        self, objective_id: UUID, *, archived: bool = True
    ) -> WriteResult[ObjectiveDefinition]:
        objective = self._graph.objectives.get(objective_id)
        if objective is None:
            return self._fail("Objective not found")
        if (error := await self._require_write_access()) is not None:
            return WriteResult(error=error)
        return await self._write(replace(objective, is_archived=archived), created=False)

    async def delete_objective(self, objective_id: UUID) -> WriteResult[None]:
        objective = self._graph.objectives.get(objective_id)
        if objective is None:
            return self._fail("Objective not found")
        if self._graph.children_of(objective_id):
            return self._fail(
                f'Objective "{objective.code}" has sub-objectives; archive it or delete them first'
            )
        if (error := await self._require_write_access()) is not None:
            return WriteResult(error=error)
        result = await self._delete(RecordType.OBJECTIVE, objective_id)
        return WriteResult(error=result.error)

    # Students --------------------------------------------------------------------

    async def create_student(
        self,
        name: str,
        *,
        session: Session = Session.MORNING,
        domain_id: UUID | None = None,
        group_ids: Sequence[UUID] = (),
    ) -> WriteResult[Student]:
        name = name.strip()
        if not name:
            return self._fail("Student name cannot be empty")
        if any(group_id not in self._graph.groups for group_id in group_ids):
            return self._fail("Group not found")
        if (error := await self._require_write_access()) is not None:
            return WriteResult(error=error)
        student = Student(
            name=name, created_at=self._clock(), session=session, domain_id=domain_id
        )
        created = await self._write(student, created=True)
        if not created.ok:
            return created
        for group_id in dict.fromkeys(group_ids):
            added = await self._add_membership(student.id, group_id)
            if not added.ok:
                return await self._resync_after_partial_failure(
                    f'"{name}" was created but could not be added to every group'
                )
        if not await self._save_legacy_groups({student.id: None}):
            return await self._resync_after_partial_failure(
                f'"{name}" was created but their group could not be recorded'
            )
        return WriteResult(value=self._graph.students.get(student.id, student))

    async def rename_student(self, student_id: UUID, name: str) -> WriteResult[Student]:
        return await self.update_student(student_id, name=name)

    async def update_student(
        self,
        student_id: UUID,
        *,
        name: str | None = None,
        session: Session | None = None,
        domain_id: UUID | None | _Unset = UNSET,
        group_ids: Sequence[UUID] | None = None,
        custom_properties: Sequence[tuple[str, str]] | None = None,
    ) -> WriteResult[Student]:
        """Update a student's fields, group memberships and custom properties together."""

        student = self._graph.students.get(student_id)
        if student is None:
            return self._fail("Student not found")
        if name is not None and not name.strip():
            return self._fail("Student name cannot be empty")
        if group_ids is not None and any(g not in self._graph.groups for g in group_ids):
            return self._fail("Group not found")
        if (error := await self._require_write_access()) is not None:
            return WriteResult(error=error)

        updated = replace(
            student,
            name=student.name if name is None else name.strip(),
            session=student.session if session is None else session,
            domain_id=student.domain_id if isinstance(domain_id, _Unset) else domain_id,
        )
        if updated != student:
            result = await self._write(updated, created=False)
            if not result.ok:
                return result
        if group_ids is not None:
            before = self._legacy_groups([student_id])
            if not (
                await self._set_memberships(student_id, group_ids)
                and await self._save_legacy_groups(before)
            ):
                return await self._resync_after_partial_failure(
                    f'Groups for "{updated.name}" could not be fully updated'
                )
        if custom_properties is not None:
            replaced = await self._replace_custom_properties(student_id, custom_properties)
            if not replaced:
                return await self._resync_after_partial_failure(
                    f'Custom properties for "{updated.name}" could not be fully updated'
                )
        return WriteResult(value=self._graph.students.get(student_id, updated))

    async def move_student(self, student_id: UUID, group_id: UUID | None) -> WriteResult[Student]:
        """Make ``group_id`` the student's only group, or remove them from every group."""

        return await self.update_student(
            student_id, group_ids=[] if group_id is None else [group_id]
        )

    async def delete_student(self, student_id: UUID) -> WriteResult[None]:
        if (error := await self._require_write_access()) is not None:
            return WriteResult(error=error)
        student_locator = self._identity.locator_for(RecordType.STUDENT, student_id)
        result = await self._delete(RecordType.STUDENT, student_id)
        if not result.ok:
            return WriteResult(error=result.error)
        # children of a student whose detail was never loaded only exist remotely
        children: set[RecordLocator] = set(result.value or [])
        predicate = Predicate(
            cohort=self._cohort_id,
            equals={FieldName.STUDENT: RecordReference(student_locator.name)},
        )
        try:
            for record_type in (
                RecordType.PROGRESS,
                RecordType.CUSTOM_PROPERTY,
                RecordType.MEMBERSHIP,
            ):
                records = await self._remote.query(record_type, predicate)
                children.update(record.locator for record in records)
        except RemoteStoreError as exc:
            return await self._resync_after_partial_failure(
                f"The student was deleted but their records could not be listed: {exc}"
            )
        if await self._delete_remote(sorted(children)):
            return await self._resync_after_partial_failure(
                "The student was deleted but some of their records could not be removed"
            )
        return WriteResult()

    # Memberships ---------------------------------------------------------------------

    async def add_membership(self, student_id: UUID, group_id: UUID) -> WriteResult[Membership]:
        if student_id not in self._graph.students:
            return self._fail("Student not found")
        if group_id not in self._graph.groups:
            return self._fail("Group not found")
        if (error := await self._require_write_access()) is not None:
            return WriteResult(error=error)
        before = self._legacy_groups([student_id])
        result = await self._add_membership(student_id, group_id)
        if result.ok and not await self._save_legacy_groups(before):
            return await self._resync_after_partial_failure(
                "The membership was added but the student could not be updated"
            )
        return result

    async def remove_membership(self, student_id: UUID, group_id: UUID) -> WriteResult[None]:
        membership = self._graph.membership(student_id, group_id)
        if membership is None:
            return self._fail("Membership not found")
        if (error := await self._require_write_access()) is not None:
            return WriteResult(error=error)
        before = self._legacy_groups([student_id])
        result = await self._delete(RecordType.MEMBERSHIP, membership.id)
        if result.ok and not await self._save_legacy_groups(before):
            return await self._resync_after_partial_failure(
                "The membership was removed but the student could not be updated"
            )
        return WriteResult(error=result.error)

    async def _add_membership(self, student_id: UUID, group_id: UUID) -> WriteResult[Membership]:
        existing = self._graph.membership(student_id, group_id)
        if existing is not None:
            return WriteResult(value=existing)
        now = self._clock()
        membership = Membership(
            student_id=student_id, group_id=group_id, created_at=now, updated_at=now
        )
        return await self._write(membership, created=True)

    async def _set_memberships(self, student_id: UUID, group_ids: Sequence[UUID]) -> bool:
        wanted = list(dict.fromkeys(group_ids))
        ok = True
        for membership in self._graph.memberships_for(student_id):
            if membership.group_id not in wanted:
                ok = (await self._delete(RecordType.MEMBERSHIP, membership.id)).ok and ok
        for group_id in wanted:
            ok = (await self._add_membership(student_id, group_id)).ok and ok
        return ok

    # Custom properties -----------------------------------------------------------

    async def replace_custom_properties(
        self, student_id: UUID, properties: Sequence[tuple[str, str]]
    ) -> WriteResult[list[CustomProperty]]:
        if student_id not in self._graph.students:
            return self._fail("Student not found")
        if (error := await self._require_write_access()) is not None:
            return WriteResult(error=error)
        if not await self._replace_custom_properties(student_id, properties):
            return await self._resync_after_partial_failure(
                "Custom properties could not be fully updated"
            )
        return WriteResult(value=self._graph.custom_properties_for(student_id))

    async def _replace_custom_properties(
        self, student_id: UUID, properties: Sequence[tuple[str, str]]
    ) -> bool:
        loaded = await self.load_student_detail(student_id)
        if not loaded.ok:
            return False
        existing = {prop.key: prop for prop in self._graph.custom_properties_for(student_id)}
        wanted = [(key.strip(), value) for key, value in properties if key.strip()]
        wanted_keys = {key for key, _ in wanted}
        ok = True
        for key, prop in existing.items():
            if key not in wanted_keys:
                ok = (await self._delete(RecordType.CUSTOM_PROPERTY, prop.id)).ok and ok
        for sort_order, (key, value) in enumerate(wanted):
            current = existing.get(key)
            if current is None:
                prop = CustomProperty(
                    student_id=student_id, key=key, value=value, sort_order=sort_order
                )
                ok = (await self._write(prop, created=True)).ok and ok
            elif current.value != value or current.sort_order != sort_order:
                changed = replace(current, value=value, sort_order=sort_order)
                ok = (await self._write(changed, created=False)).ok and ok
        return ok

    # Progress ----------------------------------------------------------------------

    async def set_progress(
        self,
        student_id: UUID,
        objective_id: UUID,
        value: float,
        *,
        notes: str | None = None,
    ) -> WriteResult[ObjectiveProgress]:
        """Record a completion percentage; values outside 0-100 are clamped."""

        if student_id not in self._graph.students:
            return self._fail("Student not found")
        objective = self._graph.objectives.get(objective_id)
        if objective is None:
            return self._fail("Objective not found")
        if (error := await self._require_write_access()) is not None:
            return WriteResult(error=error)
        # load first so an existing remote entry is updated rather than duplicated
        loaded = await self.load_student_detail(student_id)
        if not loaded.ok:
            return self._fail(loaded.error or "Could not load student details")

        now = self._clock()
        existing = self._graph.progress_entry(student_id, objective_id)
        if existing is not None:
            progress = replace(
                existing,
                value=clamp_percentage(value),
                notes=existing.notes if notes is None else notes,
                last_updated=now,
            )
        else:
            progress = ObjectiveProgress(
                student_id=student_id,
                objective_id=objective_id,
                objective_code=objective.code,
                value=clamp_percentage(value),
                notes=notes or "",
                last_updated=now,
            )
        return await self._write(progress, created=existing is None)

    # Expert review ---------------------------------------------------------------

    async def set_expertise_check_progress(
        self, domain_id: UUID, objective_id: UUID, value: float
    ) -> WriteResult[ExpertiseCheckProgress]:
        """Record an expert reviewer's score for one objective across a domain.

        The domain is stamped with the time and editor of the latest review.
        """

        if domain_id not in self._graph.domains:
            return self._fail("Domain not found")
        objective = self._graph.objectives.get(objective_id)
        if objective is None:
            return self._fail("Objective not found")
        if (error := await self._require_write_access()) is not None:
            return WriteResult(error=error)

        now = self._clock()
        editor = self._mapper.editor_name
        existing = self._graph.expertise_check(domain_id, objective_id)
        if existing is not None:
            check = replace(
                existing, value=clamp_percentage(value), updated_at=now, edited_by=editor
            )
        else:
            check = ExpertiseCheckProgress(
                domain_id=domain_id,
                objective_id=objective_id,
                objective_code=objective.code,
                value=clamp_percentage(value),
                updated_at=now,
                edited_by=editor,
            )
        result = await self._write(check, created=existing is None)
        domain = self._graph.domains.get(domain_id)
        if not result.ok or domain is None:
            return result
        stamped = replace(
            domain, criteria_progress_updated_at=now, criteria_progress_edited_by=editor
        )
        if not (await self._write(stamped, created=False)).ok:
            return await self._resync_after_partial_failure(
                f'The score was saved but "{domain.name}" could not be updated'
            )
        return result

    async def set_student_overall_progress(
        self,
        student_id: UUID,
        mode: ProgressMode,
        *,
        manual_progress: float | None = None,
    ) -> WriteResult[Student]:
        """Choose how a student's overall progress is determined.

        In expert review the manual percentage replaces the roll-up of the student's
        objective progress. Switching back to computed keeps the manual value on record.
        """

        student = self._graph.students.get(student_id)
        if student is None:
            return self._fail("Student not found")
        if (
            mode is ProgressMode.EXPERT_REVIEW
            and manual_progress is None
            and student.overall_manual_progress is None
        ):
            return self._fail("Expert review needs a manual progress value")
        if (error := await self._require_write_access()) is not None:
            return WriteResult(error=error)
        updated = replace(student, overall_progress_mode=mode)
        if manual_progress is not None:
            updated = replace(
                updated,
                overall_manual_progress=clamp_percentage(manual_progress),
                overall_manual_progress_updated_at=self._clock(),
                overall_manual_progress_edited_by=self._mapper.editor_name,
            )
        return await self._write(updated, created=False)

    # Category labels -------------------------------------------------------------

    async def update_category_label(self, code: str, title: str) -> WriteResult[CategoryLabel]:
        title = title.strip()
        if not title:
            return self._fail("Label title cannot be empty")
        if (error := await self._require_write_access()) is not None:
            return WriteResult(error=error)
        existing = self._graph.label_for(code)
        if existing is not None:
            return await self._write(replace(existing, title=title), created=False)
        return await self._write(CategoryLabel(code=code, title=title), created=True)

    async def delete_category_label(self, code: str) -> WriteResult[None]:
        label = self._graph.label_for(code)
        if label is None:
            return self._fail("Label not found")
        if (error := await self._require_write_access()) is not None:
            return WriteResult(error=error)
        result = await self._delete(RecordType.LABEL, label.id)
        return WriteResult(error=result.error)

    # Reset -------------------------------------------------------------------------

    async def reset_all_data(self) -> WriteResult[None]:
        """Delete every record in the cohort, then re-seed the default catalog."""

        if (error := await self._require_write_access()) is not None:
            return WriteResult(error=error)
        failures = 0
        scope = Predicate(cohort=self._cohort_id)
        for record_type in RESET_ORDER:
            try:
                records = await self._remote.query(record_type, scope)
            except RemoteStoreError as exc:
                log.warning("Listing %s records for reset failed: %s", record_type, exc)
                failures += 1
                continue
            failures += await self._delete_remote([record.locator for record in records])
        log.info("Reset deleted cohort records (%s failure(s))", failures)

        self._graph.clear()
        self._identity.clear()
        seeded = await self._seed_catalog()
        reloaded = await self.reload_all_data()
        if failures or not seeded.ok or not reloaded.ok:
            return self._fail("Reset did not complete; some records could not be changed")
        return WriteResult()

    async def _seed_catalog(self) -> WriteResult[int]:
        written = 0
        failed = 0
        for objective in default_objectives(self._cohort_id):
            if self._graph.objective_by_code(objective.code) is not None:
                continue
            result = await self._write(objective, created=True)
            if result.ok:
                written += 1
            else:
                failed += 1
        log.info("Seeded %s default objective(s)", written)
        if failed:
            return self._fail(f"{failed} default objective(s) could not be created")
        return WriteResult(value=written)


def _noun(record_type: RecordType) -> str:
    return {
        RecordType.COHORT: "cohort",
        RecordType.GROUP: "group",
        RecordType.DOMAIN: "domain",
        RecordType.OBJECTIVE: "objective",
        RecordType.LABEL: "label",
        RecordType.STUDENT: "student",
        RecordType.MEMBERSHIP: "membership",
        RecordType.PROGRESS: "progress",
        RecordType.EXPERTISE_CHECK: "expertise check",
        RecordType.CUSTOM_PROPERTY: "custom property",
    }[record_type]
