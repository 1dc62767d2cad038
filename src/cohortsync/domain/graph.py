"""In-memory entity graph holding the local mirror of a cohort."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from logging import getLogger
from typing import TYPE_CHECKING, assert_never, cast

from cohortsync.domain.model import (
    CategoryLabel,
    CustomProperty,
    Domain,
    ExpertiseCheckProgress,
    Group,
    Membership,
    ObjectiveDefinition,
    ObjectiveProgress,
    RecordType,
    Student,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator
    from uuid import UUID

    from cohortsync.domain.model import CohortEntity, Entity

log = getLogger(__name__)


@dataclass(slots=True)
class ChangeLog:
    """Undo journal for the graph mutations made inside one ``track()`` block."""

    _undo: list[Callable[[], None]] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self._undo)

    def record(self, undo: Callable[[], None]) -> None:
        self._undo.append(undo)

    def undo(self) -> None:
        """Restore every key touched by the tracked mutations to its prior value."""

        while self._undo:
            self._undo.pop()()


class EntityGraph:
    """Ordered collections of every cohort entity type, keyed by local identity.

    All mutation goes through ``upsert``/``remove`` so the graph can keep derived fields
    (a student's legacy group, objective parent links) consistent and journal changes
    for rollback.
    """

    def __init__(self) -> None:
        self.groups: dict[UUID, Group] = {}
        self.domains: dict[UUID, Domain] = {}
        self.objectives: dict[UUID, ObjectiveDefinition] = {}
        self.labels: dict[UUID, CategoryLabel] = {}
        self.students: dict[UUID, Student] = {}
        self.memberships: dict[UUID, Membership] = {}
        self.progress: dict[UUID, ObjectiveProgress] = {}
        self.expertise_checks: dict[UUID, ExpertiseCheckProgress] = {}
        self.custom_properties: dict[UUID, CustomProperty] = {}
        self.detail_loaded: set[UUID] = set()
        self._parent_cache: dict[UUID, UUID] = {}
        self._journal: ChangeLog | None = None

    # Journaling ------------------------------------------------------------

    @contextmanager
    def track(self) -> Iterator[ChangeLog]:
        """Journal the mutations made inside the block so they can be undone later."""

        if self._journal is not None:
            raise RuntimeError("EntityGraph.track() blocks cannot be nested")
        journal = ChangeLog()
        self._journal = journal
        try:
            yield journal
        finally:
            self._journal = None

    def _put[TEntity: Entity](self, table: dict[UUID, TEntity], entity: TEntity) -> None:
        if self._journal is not None:
            previous = table.get(entity.id)
            key = entity.id
            if previous is None:
                self._journal.record(lambda: table.pop(key, None))
            else:
                self._journal.record(lambda: table.__setitem__(key, previous))
        table[entity.id] = entity

    def _pop[TEntity: Entity](self, table: dict[UUID, TEntity], key: UUID) -> TEntity | None:
        previous = table.pop(key, None)
        if previous is not None and self._journal is not None:
            self._journal.record(lambda: table.__setitem__(key, previous))
        return previous

    def _set_detail_loaded(self, student_id: UUID, *, loaded: bool) -> None:
        if (student_id in self.detail_loaded) == loaded:
            return
        if loaded:
            self.detail_loaded.add(student_id)
            undo = self.detail_loaded.discard
        else:
            self.detail_loaded.discard(student_id)
            undo = self.detail_loaded.add
        if self._journal is not None:
            self._journal.record(lambda: undo(student_id))

    # Mutation ------------------------------------------------------------------

    def upsert(self, entity: CohortEntity) -> None:
        match entity:
            case Group():
                self._put(self.groups, entity)
            case Domain():
                self._put(self.domains, entity)
            case ObjectiveDefinition():
                self._parent_cache.pop(entity.id, None)
                self._put(self.objectives, entity)
            case CategoryLabel():
                for other in [
                    label
                    for label in self.labels.values()
                    if label.code == entity.code and label.id != entity.id
                ]:
                    self._pop(self.labels, other.id)
                self._put(self.labels, entity)
            case Student():
                self._put(self.students, replace(entity, group_id=self._legacy_group(entity.id)))
            case Membership():
                previous = self.memberships.get(entity.id)
                self._put(self.memberships, entity)
                if previous is not None and previous.student_id != entity.student_id:
                    self._refresh_legacy_group(previous.student_id)
                self._refresh_legacy_group(entity.student_id)
            case ObjectiveProgress():
                self._put(self.progress, entity)
            case ExpertiseCheckProgress():
                self._put(self.expertise_checks, entity)
            case CustomProperty():
                self._put(self.custom_properties, entity)
            case _:
                assert_never(entity)

    def remove(self, record_type: RecordType, local_id: UUID) -> list[CohortEntity]:
        """Remove an entity and everything that cascades from it.

        Returns the removed entities, the requested one first.
        """

        removed: list[CohortEntity] = []
        match record_type:
            case RecordType.GROUP:
                if (group := self._pop(self.groups, local_id)) is None:
                    return removed
                removed.append(group)
                affected = {
                    student.id
                    for student in self.students.values()
                    if student.group_id == local_id
                }
                for membership in self._memberships_where(group_id=local_id):
                    self._pop(self.memberships, membership.id)
                    removed.append(membership)
                    affected.add(membership.student_id)
                for student_id in affected:
                    self._refresh_legacy_group(student_id)
            case RecordType.DOMAIN:
                if (domain := self._pop(self.domains, local_id)) is None:
                    return removed
                removed.append(domain)
                for student in list(self.students.values()):
                    if student.domain_id == local_id:
                        self._put(self.students, replace(student, domain_id=None))
                for check in self.expertise_checks_for(local_id):
                    removed.append(
                        cast("ExpertiseCheckProgress", self._pop(self.expertise_checks, check.id))
                    )
            case RecordType.STUDENT:
                if (student := self._pop(self.students, local_id)) is None:
                    return removed
                removed.append(student)
                removed.extend(self._pop_children(local_id))
                self._set_detail_loaded(local_id, loaded=False)
            case RecordType.MEMBERSHIP:
                if (membership := self._pop(self.memberships, local_id)) is None:
                    return removed
                removed.append(membership)
                self._refresh_legacy_group(membership.student_id)
            case RecordType.OBJECTIVE:
                if (objective := self._pop(self.objectives, local_id)) is None:
                    return removed
                removed.append(objective)
                self._parent_cache = {
                    child: parent
                    for child, parent in self._parent_cache.items()
                    if local_id not in (child, parent)
                }
            case RecordType.LABEL:
                if (label := self._pop(self.labels, local_id)) is not None:
                    removed.append(label)
            case RecordType.PROGRESS:
                if (progress := self._pop(self.progress, local_id)) is not None:
                    removed.append(progress)
            case RecordType.EXPERTISE_CHECK:
                if (check := self._pop(self.expertise_checks, local_id)) is not None:
                    removed.append(check)
            case RecordType.CUSTOM_PROPERTY:
                if (prop := self._pop(self.custom_properties, local_id)) is not None:
                    removed.append(prop)
            case RecordType.COHORT:
                pass
            case _:
                assert_never(record_type)
        return removed

    def mark_detail_loaded(self, student_id: UUID) -> None:
        self._set_detail_loaded(student_id, loaded=True)

    def clear(self) -> None:
        for table in self._tables().values():
            table.clear()
        self.detail_loaded.clear()
        self._parent_cache.clear()

    def _pop_children(self, student_id: UUID) -> list[CohortEntity]:
        removed: list[CohortEntity] = []
        for membership in self._memberships_where(student_id=student_id):
            removed.append(cast("Membership", self._pop(self.memberships, membership.id)))
        for progress in self.progress_for(student_id):
            removed.append(cast("ObjectiveProgress", self._pop(self.progress, progress.id)))
        for prop in self.custom_properties_for(student_id):
            removed.append(cast("CustomProperty", self._pop(self.custom_properties, prop.id)))
        return removed

    def _legacy_group(self, student_id: UUID) -> UUID | None:
        group_ids = {m.group_id for m in self._memberships_where(student_id=student_id)}
        if len(group_ids) == 1:
            return next(iter(group_ids))
        return None

    def _refresh_legacy_group(self, student_id: UUID) -> None:
        student = self.students.get(student_id)
        if student is None:
            return
        group_id = self._legacy_group(student_id)
        if student.group_id != group_id:
            self._put(self.students, replace(student, group_id=group_id))

    def _memberships_where(
        self, *, student_id: UUID | None = None, group_id: UUID | None = None
    ) -> list[Membership]:
        return [
            membership
            for membership in self.memberships.values()
            if (student_id is None or membership.student_id == student_id)
            and (group_id is None or membership.group_id == group_id)
        ]

    # Lookup ----------------------------------------------------------------------

    def _tables(self) -> dict[RecordType, dict[UUID, Entity]]:
        return {
            RecordType.GROUP: self.groups,
            RecordType.DOMAIN: self.domains,
            RecordType.OBJECTIVE: self.objectives,
            RecordType.LABEL: self.labels,
            RecordType.STUDENT: self.students,
            RecordType.MEMBERSHIP: self.memberships,
            RecordType.PROGRESS: self.progress,
            RecordType.EXPERTISE_CHECK: self.expertise_checks,
            RecordType.CUSTOM_PROPERTY: self.custom_properties,
        }  # pyright: ignore[reportReturnType]

    def get(self, record_type: RecordType, local_id: UUID) -> CohortEntity | None:
        table = self._tables().get(record_type)
        if table is None:
            return None
        return cast("CohortEntity | None", table.get(local_id))

    def ids(self, record_type: RecordType) -> set[UUID]:
        return set(self._tables().get(record_type, {}))

    def is_empty(self) -> bool:
        return not any(self._tables().values())

    def export(self) -> dict[RecordType, dict[UUID, Entity]]:
        """Return a detached copy of every collection, for comparison and snapshots."""

        return {record_type: dict(table) for record_type, table in self._tables().items()}

    def sorted_groups(self) -> list[Group]:
        return sorted(self.groups.values(), key=lambda group: group.name.casefold())

    def sorted_domains(self) -> list[Domain]:
        return sorted(self.domains.values(), key=lambda domain: domain.name.casefold())

    def sorted_students(self) -> list[Student]:
        return sorted(self.students.values(), key=lambda student: student.name.casefold())

    def sorted_objectives(self, *, include_archived: bool = False) -> list[ObjectiveDefinition]:
        return sorted(
            (o for o in self.objectives.values() if include_archived or not o.is_archived),
            key=lambda objective: (objective.sort_order, objective.code),
        )

    def memberships_for(self, student_id: UUID) -> list[Membership]:
        return sorted(
            self._memberships_where(student_id=student_id),
            key=lambda membership: membership.created_at,
        )

    def group_ids_for(self, student_id: UUID) -> list[UUID]:
        return [membership.group_id for membership in self.memberships_for(student_id)]

    def membership(self, student_id: UUID, group_id: UUID) -> Membership | None:
        matches = self._memberships_where(student_id=student_id, group_id=group_id)
        return matches[0] if matches else None

    def students_in_group(self, group_id: UUID) -> list[Student]:
        member_ids = {m.student_id for m in self._memberships_where(group_id=group_id)}
        return [student for student in self.sorted_students() if student.id in member_ids]

    def progress_for(self, student_id: UUID) -> list[ObjectiveProgress]:
        return [p for p in self.progress.values() if p.student_id == student_id]

    def progress_entry(self, student_id: UUID, objective_id: UUID) -> ObjectiveProgress | None:
        candidates = [
            progress
            for progress in self.progress_for(student_id)
            if progress.objective_id == objective_id
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda progress: progress.last_updated)

    def expertise_checks_for(self, domain_id: UUID) -> list[ExpertiseCheckProgress]:
        return [c for c in self.expertise_checks.values() if c.domain_id == domain_id]

    def expertise_check(
        self, domain_id: UUID, objective_id: UUID
    ) -> ExpertiseCheckProgress | None:
        candidates = [
            check
            for check in self.expertise_checks_for(domain_id)
            if check.objective_id == objective_id
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda check: check.updated_at)

    def custom_properties_for(self, student_id: UUID) -> list[CustomProperty]:
        return sorted(
            (prop for prop in self.custom_properties.values() if prop.student_id == student_id),
            key=lambda prop: (prop.sort_order, prop.key),
        )

    def objective_by_code(self, code: str) -> ObjectiveDefinition | None:
        for objective in self.objectives.values():
            if objective.code == code:
                return objective
        return None

    def label_for(self, code: str) -> CategoryLabel | None:
        for label in self.labels.values():
            if label.code == code:
                return label
        return None

    def parent_of(self, objective: ObjectiveDefinition) -> ObjectiveDefinition | None:
        """Resolve an objective's parent, by identity first and by code as a fallback.

        A parent found by code is cached by identity for later lookups.
        """

        if objective.parent_id is not None:
            return self.objectives.get(objective.parent_id)
        cached = self._parent_cache.get(objective.id)
        if cached is not None and cached in self.objectives:
            return self.objectives[cached]
        if objective.parent_code is None:
            return None
        parent = self.objective_by_code(objective.parent_code)
        if parent is not None:
            self._parent_cache[objective.id] = parent.id
        return parent

    def children_of(self, objective_id: UUID) -> list[ObjectiveDefinition]:
        return [
            objective
            for objective in self.sorted_objectives(include_archived=True)
            if (parent := self.parent_of(objective)) is not None and parent.id == objective_id
        ]

    def display_title(self, objective: ObjectiveDefinition) -> str:
        """Root objectives may have their title overridden by a category label."""

        if objective.is_root and (label := self.label_for(objective.code)) is not None:
            return label.title
        return objective.title
