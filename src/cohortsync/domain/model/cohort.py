"""Cohort entities: the groups, domains, objectives and students a cohort tracks."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, ClassVar
from uuid import UUID

from cohortsync.domain.model.entity import Entity, utcnow
from cohortsync.domain.model.enums import ProgressMode, ProgressStatus, RecordType, Session

if TYPE_CHECKING:
    from datetime import datetime

DEFAULT_COLOR_HEX = "#8E8E93"
MIN_PERCENTAGE = 0
MAX_PERCENTAGE = 100


def clamp_percentage(value: float) -> int:
    """Round and clamp a completion percentage into ``[0, 100]``.

    Infinities clamp to the nearest bound; NaN counts as not started.
    """

    if math.isnan(value):
        return MIN_PERCENTAGE
    return int(round(min(max(value, MIN_PERCENTAGE), MAX_PERCENTAGE)))


@dataclass(frozen=True, slots=True, kw_only=True)
class Group(Entity):
    RECORD_TYPE: ClassVar[RecordType] = RecordType.GROUP

    name: str
    color_hex: str = DEFAULT_COLOR_HEX


@dataclass(frozen=True, slots=True, kw_only=True)
class Domain(Entity):
    """An expertise track students are assigned to."""

    RECORD_TYPE: ClassVar[RecordType] = RecordType.DOMAIN

    name: str
    color_hex: str = DEFAULT_COLOR_HEX
    progress_mode: ProgressMode = ProgressMode.COMPUTED
    # last expert-review edit of the domain's criteria
    criteria_progress_updated_at: datetime | None = None
    criteria_progress_edited_by: str | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class ObjectiveDefinition(Entity):
    """A node in the learning objective forest.

    ``parent_id`` is authoritative once known; ``parent_code`` links to the parent by its
    human code for records written before the parent's identity was available.
    """

    RECORD_TYPE: ClassVar[RecordType] = RecordType.OBJECTIVE

    code: str
    title: str
    description: str = ""
    is_quantitative: bool = False
    parent_id: UUID | None = None
    parent_code: str | None = None
    sort_order: int = 0
    is_archived: bool = False

    @property
    def is_root(self) -> bool:
        return self.parent_id is None and self.parent_code is None


@dataclass(frozen=True, slots=True, kw_only=True)
class CategoryLabel(Entity):
    """Display title override for a root objective, keyed by the objective code."""

    RECORD_TYPE: ClassVar[RecordType] = RecordType.LABEL

    code: str
    title: str


@dataclass(frozen=True, slots=True, kw_only=True)
class Student(Entity):
    RECORD_TYPE: ClassVar[RecordType] = RecordType.STUDENT

    name: str
    created_at: datetime = field(default_factory=utcnow)
    session: Session = Session.MORNING
    # legacy single-group field, derived from memberships by the entity graph
    group_id: UUID | None = None
    domain_id: UUID | None = None
    overall_progress_mode: ProgressMode = ProgressMode.COMPUTED
    overall_manual_progress: int | None = None
    overall_manual_progress_updated_at: datetime | None = None
    overall_manual_progress_edited_by: str | None = None

    def __post_init__(self) -> None:
        if self.overall_manual_progress is not None:
            manual = clamp_percentage(self.overall_manual_progress)
            object.__setattr__(self, "overall_manual_progress", manual)

    @property
    def uses_manual_progress(self) -> bool:
        return (
            self.overall_progress_mode is ProgressMode.EXPERT_REVIEW
            and self.overall_manual_progress is not None
        )


@dataclass(frozen=True, slots=True, kw_only=True)
class Membership(Entity):
    RECORD_TYPE: ClassVar[RecordType] = RecordType.MEMBERSHIP

    student_id: UUID
    group_id: UUID
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True, slots=True, kw_only=True)
class ObjectiveProgress(Entity):
    RECORD_TYPE: ClassVar[RecordType] = RecordType.PROGRESS

    student_id: UUID
    objective_id: UUID
    objective_code: str
    value: int = 0
    notes: str = ""
    last_updated: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        object.__setattr__(self, "value", clamp_percentage(self.value))

    @property
    def status(self) -> ProgressStatus:
        return ProgressStatus.for_value(self.value)


@dataclass(frozen=True, slots=True, kw_only=True)
class ExpertiseCheckProgress(Entity):
    """An expert reviewer's score for one objective across a whole domain.

    Only consulted when the domain's progress mode is expert review.
    """

    RECORD_TYPE: ClassVar[RecordType] = RecordType.EXPERTISE_CHECK

    domain_id: UUID
    objective_id: UUID
    objective_code: str
    value: int = 0
    updated_at: datetime = field(default_factory=utcnow)
    edited_by: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "value", clamp_percentage(self.value))

    @property
    def status(self) -> ProgressStatus:
        return ProgressStatus.for_value(self.value)


@dataclass(frozen=True, slots=True, kw_only=True)
class CustomProperty(Entity):
    RECORD_TYPE: ClassVar[RecordType] = RecordType.CUSTOM_PROPERTY

    student_id: UUID
    key: str
    value: str = ""
    sort_order: int = 0


type CohortEntity = (
    Group
    | Domain
    | ObjectiveDefinition
    | CategoryLabel
    | Student
    | Membership
    | ObjectiveProgress
    | ExpertiseCheckProgress
    | CustomProperty
)

ENTITY_CLASS_BY_RECORD_TYPE: dict[RecordType, type[Entity]] = {
    RecordType.GROUP: Group,
    RecordType.DOMAIN: Domain,
    RecordType.OBJECTIVE: ObjectiveDefinition,
    RecordType.LABEL: CategoryLabel,
    RecordType.STUDENT: Student,
    RecordType.MEMBERSHIP: Membership,
    RecordType.PROGRESS: ObjectiveProgress,
    RecordType.EXPERTISE_CHECK: ExpertiseCheckProgress,
    RecordType.CUSTOM_PROPERTY: CustomProperty,
}

# Child records written most often; push notifications for these skip the direct apply.
HIGH_CHURN_TYPES: frozenset[RecordType] = frozenset(
    {RecordType.PROGRESS, RecordType.CUSTOM_PROPERTY}
)
