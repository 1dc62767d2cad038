"""Translate remote records to entities and back."""

from __future__ import annotations

import math
from datetime import UTC, datetime
from logging import getLogger
from typing import TYPE_CHECKING, assert_never
from uuid import UUID

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
from cohortsync.domain.records import FieldName, Record, RecordLocator, RecordReference
from cohortsync.domain.watermark import utc_clock

if TYPE_CHECKING:
    from cohortsync.domain.graph import EntityGraph
    from cohortsync.domain.identity import IdentityMap
    from cohortsync.domain.model import CohortEntity
    from cohortsync.domain.records import FieldValue
    from cohortsync.domain.watermark import Clock

log = getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)
UNTITLED = "Untitled"
UNNAMED = "Unnamed"


class _Fields:
    """Typed, defaulting accessors over a record's raw fields."""

    def __init__(self, record: Record) -> None:
        self.record = record
        self.values = record.fields

    def text(self, name: str, default: str = "") -> str:
        value = self.values.get(name)
        if isinstance(value, str):
            return value
        if value is None or isinstance(value, RecordReference | datetime):
            return default
        return str(value)

    def optional_text(self, name: str) -> str | None:
        value = self.values.get(name)
        if isinstance(value, str) and value.strip():
            return value
        return None

    def number(self, name: str, default: float = 0) -> float:
        value = self.values.get(name)
        if isinstance(value, bool | int | float):
            number = float(value)
        elif isinstance(value, str):
            try:
                number = float(value)
            except ValueError:
                return default
        else:
            return default
        # NaN and infinities have no integer form
        return number if math.isfinite(number) else default

    def integer(self, name: str, default: int = 0) -> int:
        return int(round(self.number(name, default)))

    def optional_number(self, name: str) -> float | None:
        if self.values.get(name) is None:
            return None
        number = self.number(name, math.nan)
        return None if math.isnan(number) else number

    def flag(self, name: str, *, default: bool = False) -> bool:
        value = self.values.get(name)
        if isinstance(value, bool):
            return value
        if isinstance(value, int | float):
            return value != 0
        return default

    def timestamp(self, name: str, default: datetime | None = None) -> datetime:
        value = self.values.get(name)
        if isinstance(value, datetime):
            return value if value.tzinfo else value.replace(tzinfo=UTC)
        return default or self.record.modified_at or self.record.created_at or EPOCH

    def optional_timestamp(self, name: str) -> datetime | None:
        value = self.values.get(name)
        if isinstance(value, datetime):
            return value if value.tzinfo else value.replace(tzinfo=UTC)
        return None

    def created(self, name: str = FieldName.CREATED_AT) -> datetime:
        return self.timestamp(name, self.record.created_at)

    def reference(self, name: str) -> RecordReference | None:
        value = self.values.get(name)
        if isinstance(value, RecordReference):
            return value
        return None


class RecordMapper:
    """Translate between wire records and entities.

    Reading is side-effect free apart from identity minting: every field has a default,
    so a partially populated record still yields an entity. Only a record missing a
    mandatory parent (the student a progress entry belongs to, say) is skipped.
    """

    def __init__(
        self,
        identity: IdentityMap,
        graph: EntityGraph,
        *,
        cohort_id: str,
        editor_name: str,
        clock: Clock = utc_clock,
    ) -> None:
        self.identity = identity
        self.graph = graph
        self.cohort_id = cohort_id
        self.editor_name = editor_name
        self._clock = clock
        self._change_tags: dict[RecordLocator, str] = {}

    # Reading ---------------------------------------------------------------

    def to_entity(self, record: Record) -> CohortEntity | None:
        self.remember(record)
        fields = _Fields(record)
        local_id = self.identity.resolve(record.locator)
        match record.record_type:
            case RecordType.GROUP:
                return Group(
                    id=local_id,
                    name=fields.text(FieldName.NAME, UNNAMED),
                    color_hex=fields.text(FieldName.COLOR_HEX, DEFAULT_COLOR_HEX),
                )
            case RecordType.DOMAIN:
                return Domain(
                    id=local_id,
                    name=fields.text(FieldName.NAME, UNNAMED),
                    color_hex=fields.text(FieldName.COLOR_HEX, DEFAULT_COLOR_HEX),
                    progress_mode=_enum_or_default(
                        ProgressMode, fields.text(FieldName.PROGRESS_MODE), ProgressMode.COMPUTED
                    ),
                    criteria_progress_updated_at=fields.optional_timestamp(
                        FieldName.CRITERIA_UPDATED_AT
                    ),
                    criteria_progress_edited_by=fields.optional_text(
                        FieldName.CRITERIA_EDITED_BY
                    ),
                )
            case RecordType.OBJECTIVE:
                return self._objective(local_id, fields)
            case RecordType.LABEL:
                code = fields.optional_text(FieldName.CODE)
                if code is None:
                    return self._skip(record, "missing code")
                return CategoryLabel(
                    id=local_id, code=code, title=fields.text(FieldName.TITLE, UNTITLED)
                )
            case RecordType.STUDENT:
                return self._student(local_id, fields)
            case RecordType.MEMBERSHIP:
                student_id = self._resolve(fields.reference(FieldName.STUDENT), RecordType.STUDENT)
                group_id = self._resolve(fields.reference(FieldName.GROUP), RecordType.GROUP)
                if student_id is None or group_id is None:
                    return self._skip(record, "missing student or group reference")
                return Membership(
                    id=local_id,
                    student_id=student_id,
                    group_id=group_id,
                    created_at=fields.created(),
                    updated_at=fields.timestamp(FieldName.UPDATED_AT),
                )
            case RecordType.PROGRESS:
                return self._progress(local_id, fields)
            case RecordType.EXPERTISE_CHECK:
                return self._expertise_check(local_id, fields)
            case RecordType.CUSTOM_PROPERTY:
                student_id = self._resolve(fields.reference(FieldName.STUDENT), RecordType.STUDENT)
                if student_id is None:
                    return self._skip(record, "missing student reference")
                return CustomProperty(
                    id=local_id,
                    student_id=student_id,
                    key=fields.text(FieldName.KEY),
                    value=fields.text(FieldName.VALUE),
                    sort_order=fields.integer(FieldName.SORT_ORDER),
                )
            case RecordType.COHORT:
                return None
            case _:
                assert_never(record.record_type)

    def _objective(self, local_id: UUID, fields: _Fields) -> ObjectiveDefinition:
        parent_code = fields.optional_text(FieldName.PARENT_CODE)
        parent_id = self._resolve(fields.reference(FieldName.PARENT), RecordType.OBJECTIVE)
        return ObjectiveDefinition(
            id=local_id,
            code=fields.text(FieldName.CODE),
            title=fields.text(FieldName.TITLE, UNTITLED),
            description=fields.text(FieldName.DESCRIPTION),
            is_quantitative=fields.flag(FieldName.IS_QUANTITATIVE),
            parent_id=parent_id,
            parent_code=parent_code,
            sort_order=fields.integer(FieldName.SORT_ORDER),
            is_archived=fields.flag(FieldName.IS_ARCHIVED),
        )

    def _progress(self, local_id: UUID, fields: _Fields) -> ObjectiveProgress | None:
        record = fields.record
        student_id = self._resolve(fields.reference(FieldName.STUDENT), RecordType.STUDENT)
        if student_id is None:
            return self._skip(record, "missing student reference")
        objective_id, code = self._scored_objective(fields)
        if objective_id is None:
            return self._skip(record, "objective could not be resolved")
        if FieldName.VALUE in record.fields:
            value = fields.number(FieldName.VALUE)
        else:
            value = fields.number(FieldName.COMPLETION_PERCENTAGE)
        return ObjectiveProgress(
            id=local_id,
            student_id=student_id,
            objective_id=objective_id,
            objective_code=code,
            value=clamp_percentage(value),
            notes=fields.text(FieldName.NOTES),
            last_updated=fields.timestamp(FieldName.LAST_UPDATED),
        )

    def _expertise_check(
        self, local_id: UUID, fields: _Fields
    ) -> ExpertiseCheckProgress | None:
        record = fields.record
        domain_id = self._resolve(fields.reference(FieldName.DOMAIN), RecordType.DOMAIN)
        if domain_id is None:
            return self._skip(record, "missing domain reference")
        objective_id, code = self._scored_objective(fields)
        if objective_id is None:
            return self._skip(record, "objective could not be resolved")
        return ExpertiseCheckProgress(
            id=local_id,
            domain_id=domain_id,
            objective_id=objective_id,
            objective_code=code,
            value=clamp_percentage(fields.number(FieldName.VALUE)),
            updated_at=fields.timestamp(FieldName.UPDATED_AT),
            edited_by=fields.optional_text(FieldName.EDITED_BY),
        )

    def _scored_objective(self, fields: _Fields) -> tuple[UUID | None, str]:
        """Resolve the objective a score refers to, by reference and then by code."""

        code = fields.text(FieldName.OBJECTIVE_CODE)
        objective_id = self._resolve(fields.reference(FieldName.OBJECTIVE), RecordType.OBJECTIVE)
        if objective_id is None and code:
            by_code = self.graph.objective_by_code(code)
            objective_id = by_code.id if by_code is not None else None
        if objective_id is not None and not code:
            objective = self.graph.objectives.get(objective_id)
            code = objective.code if objective is not None else code
        return objective_id, code

    def _student(self, local_id: UUID, fields: _Fields) -> Student:
        manual = fields.optional_number(FieldName.OVERALL_MANUAL)
        return Student(
            id=local_id,
            name=fields.text(FieldName.NAME, UNNAMED),
            created_at=fields.created(),
            session=_enum_or_default(Session, fields.text(FieldName.SESSION), Session.MORNING),
            domain_id=self._resolve(fields.reference(FieldName.DOMAIN), RecordType.DOMAIN),
            overall_progress_mode=_enum_or_default(
                ProgressMode, fields.text(FieldName.OVERALL_MODE), ProgressMode.COMPUTED
            ),
            overall_manual_progress=None if manual is None else clamp_percentage(manual),
            overall_manual_progress_updated_at=fields.optional_timestamp(
                FieldName.OVERALL_MANUAL_UPDATED_AT
            ),
            overall_manual_progress_edited_by=fields.optional_text(
                FieldName.OVERALL_MANUAL_EDITED_BY
            ),
        )

    def _resolve(self, reference: RecordReference | None, record_type: RecordType) -> UUID | None:
        if reference is None:
            return None
        return self.identity.resolve(RecordLocator(record_type, reference.name))

    def _skip(self, record: Record, reason: str) -> None:
        log.warning("Skipping record %s: %s", record.locator, reason)

    def remember(self, record: Record) -> None:
        """Track the server's change tag so later saves address the current version."""

        if record.change_tag is not None:
            self._change_tags[record.locator] = record.change_tag

    def forget(self, locator: RecordLocator) -> None:
        self._change_tags.pop(locator, None)

    # Writing ---------------------------------------------------------------

    def locator_for(self, entity: CohortEntity) -> RecordLocator:
        return self.identity.locator_for(entity.RECORD_TYPE, entity.id)

    def to_record(self, entity: CohortEntity, *, stamp: bool = True) -> Record:
        """Build the wire record for ``entity``.

        ``stamp`` adds the update timestamp and editor label every write carries;
        snapshots leave it off so they reproduce the entity exactly.
        """

        locator = self.locator_for(entity)
        fields: dict[str, FieldValue] = {FieldName.COHORT_REF: RecordReference(self.cohort_id)}
        match entity:
            case Group():
                fields[FieldName.NAME] = entity.name
                fields[FieldName.COLOR_HEX] = entity.color_hex
            case Domain():
                fields[FieldName.NAME] = entity.name
                fields[FieldName.COLOR_HEX] = entity.color_hex
                fields[FieldName.PROGRESS_MODE] = entity.progress_mode.value
                fields[FieldName.CRITERIA_UPDATED_AT] = entity.criteria_progress_updated_at
                fields[FieldName.CRITERIA_EDITED_BY] = entity.criteria_progress_edited_by
            case ObjectiveDefinition():
                fields[FieldName.CODE] = entity.code
                fields[FieldName.TITLE] = entity.title
                fields[FieldName.DESCRIPTION] = entity.description
                fields[FieldName.IS_QUANTITATIVE] = entity.is_quantitative
                fields[FieldName.SORT_ORDER] = entity.sort_order
                fields[FieldName.IS_ARCHIVED] = entity.is_archived
                parent = self.graph.parent_of(entity)
                parent_id = parent.id if parent is not None else entity.parent_id
                fields[FieldName.PARENT] = self._reference(RecordType.OBJECTIVE, parent_id)
                fields[FieldName.PARENT_CODE] = parent.code if parent else entity.parent_code
            case CategoryLabel():
                fields[FieldName.CODE] = entity.code
                fields[FieldName.TITLE] = entity.title
            case Student():
                fields[FieldName.NAME] = entity.name
                fields[FieldName.CREATED_AT] = entity.created_at
                fields[FieldName.SESSION] = entity.session.value
                fields[FieldName.GROUP] = self._reference(RecordType.GROUP, entity.group_id)
                fields[FieldName.DOMAIN] = self._reference(RecordType.DOMAIN, entity.domain_id)
                fields[FieldName.OVERALL_MODE] = entity.overall_progress_mode.value
                fields[FieldName.OVERALL_MANUAL] = entity.overall_manual_progress
                fields[FieldName.OVERALL_MANUAL_UPDATED_AT] = (
                    entity.overall_manual_progress_updated_at
                )
                fields[FieldName.OVERALL_MANUAL_EDITED_BY] = (
                    entity.overall_manual_progress_edited_by
                )
            case Membership():
                fields[FieldName.STUDENT] = self._reference(RecordType.STUDENT, entity.student_id)
                fields[FieldName.GROUP] = self._reference(RecordType.GROUP, entity.group_id)
                fields[FieldName.CREATED_AT] = entity.created_at
                fields[FieldName.UPDATED_AT] = entity.updated_at
            case ObjectiveProgress():
                fields[FieldName.STUDENT] = self._reference(RecordType.STUDENT, entity.student_id)
                fields[FieldName.OBJECTIVE] = self._reference(
                    RecordType.OBJECTIVE, entity.objective_id
                )
                fields[FieldName.OBJECTIVE_CODE] = entity.objective_code
                fields[FieldName.VALUE] = entity.value
                # older clients read the percentage and status fields
                fields[FieldName.COMPLETION_PERCENTAGE] = entity.value
                fields[FieldName.STATUS] = entity.status.value
                fields[FieldName.NOTES] = entity.notes
                fields[FieldName.LAST_UPDATED] = entity.last_updated
            case ExpertiseCheckProgress():
                fields[FieldName.DOMAIN] = self._reference(RecordType.DOMAIN, entity.domain_id)
                fields[FieldName.OBJECTIVE] = self._reference(
                    RecordType.OBJECTIVE, entity.objective_id
                )
                fields[FieldName.OBJECTIVE_CODE] = entity.objective_code
                fields[FieldName.VALUE] = entity.value
                fields[FieldName.STATUS] = entity.status.value
                fields[FieldName.UPDATED_AT] = entity.updated_at
                fields[FieldName.EDITED_BY] = entity.edited_by
            case CustomProperty():
                fields[FieldName.STUDENT] = self._reference(RecordType.STUDENT, entity.student_id)
                fields[FieldName.KEY] = entity.key
                fields[FieldName.VALUE] = entity.value
                fields[FieldName.SORT_ORDER] = entity.sort_order
            case _:
                assert_never(entity)
        if stamp:
            fields[FieldName.UPDATED_AT] = self._clock()
            fields[FieldName.EDITED_BY] = self.editor_name
        return Record(locator=locator, fields=fields, change_tag=self._change_tags.get(locator))

    def _reference(self, record_type: RecordType, local_id: UUID | None) -> RecordReference | None:
        if local_id is None:
            return None
        return RecordReference(self.identity.locator_for(record_type, local_id).name)


def _enum_or_default[TEnum: (ProgressMode, Session)](
    enum_cls: type[TEnum], raw: str, default: TEnum
) -> TEnum:
    try:
        return enum_cls(raw)
    except ValueError:
        return default
