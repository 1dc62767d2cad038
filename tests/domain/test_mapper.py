from __future__ import annotations

import math
from uuid import uuid4

import pytest

from cohortsync.domain.graph import EntityGraph
from cohortsync.domain.identity import IdentityMap
from cohortsync.domain.mapper import UNNAMED, RecordMapper
from cohortsync.domain.model import (
    DEFAULT_COLOR_HEX,
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
)
from cohortsync.domain.records import FieldName, Record, RecordLocator, RecordReference
from tests.helpers.cohort import (
    COHORT,
    T0,
    FakeClock,
    domain_record,
    expertise_check_record,
    membership_record,
    objective_record,
    progress_record,
    student_record,
)


def _mapper() -> RecordMapper:
    graph = EntityGraph()
    return RecordMapper(
        IdentityMap(), graph, cohort_id=COHORT, editor_name="Tester", clock=FakeClock()
    )


def test_partial_record_falls_back_to_defaults() -> None:
    mapper = _mapper()
    record = Record(locator=RecordLocator(RecordType.GROUP, "bare"), change_tag="tag-1")

    group = mapper.to_entity(record)

    assert isinstance(group, Group)
    assert group.name == UNNAMED
    assert group.color_hex == DEFAULT_COLOR_HEX


def test_unknown_enum_values_fall_back() -> None:
    mapper = _mapper()
    domain = domain_record("Data")
    domain.fields[FieldName.PROGRESS_MODE] = "mystery"
    student = student_record("Ada", session="Evening")

    mapped_domain = mapper.to_entity(domain)
    mapped_student = mapper.to_entity(student)

    assert isinstance(mapped_domain, Domain)
    assert mapped_domain.progress_mode is ProgressMode.COMPUTED
    assert isinstance(mapped_student, Student)
    assert mapped_student.session is Session.MORNING


def test_student_resolves_domain_reference() -> None:
    mapper = _mapper()
    domain = mapper.to_entity(domain_record("Data"))
    student = mapper.to_entity(student_record("Ada", domain="domain-data"))

    assert isinstance(student, Student)
    assert domain is not None
    assert student.domain_id == domain.id
    assert student.created_at == T0


def test_membership_without_group_is_skipped() -> None:
    mapper = _mapper()
    record = membership_record("student-ada", "group-red")
    del record.fields[FieldName.GROUP]

    assert mapper.to_entity(record) is None


def test_progress_falls_back_to_completion_percentage() -> None:
    mapper = _mapper()
    objective = mapper.to_entity(objective_record("A.1", "Expose"))
    assert isinstance(objective, ObjectiveDefinition)
    mapper.graph.upsert(objective)

    progress = mapper.to_entity(
        progress_record("student-ada", "objective-A.1", completion=64.6)
    )

    assert isinstance(progress, ObjectiveProgress)
    assert progress.value == 65
    assert progress.objective_code == "A.1"


def test_progress_prefers_value_over_completion_percentage() -> None:
    mapper = _mapper()

    progress = mapper.to_entity(
        progress_record("student-ada", "objective-A.1", code="A.1", value=20, completion=90)
    )

    assert isinstance(progress, ObjectiveProgress)
    assert progress.value == 20


def test_progress_resolves_objective_by_code() -> None:
    mapper = _mapper()
    objective = ObjectiveDefinition(code="B.L", title="Learn")
    mapper.graph.upsert(objective)

    progress = mapper.to_entity(progress_record("student-ada", None, code="B.L", value=100))

    assert isinstance(progress, ObjectiveProgress)
    assert progress.objective_id == objective.id


def test_progress_without_resolvable_objective_is_skipped() -> None:
    mapper = _mapper()

    assert mapper.to_entity(progress_record("student-ada", None, code="Z.9", value=5)) is None


def test_to_record_writes_cohort_reference_and_editor() -> None:
    mapper = _mapper()
    group = Group(name="Red", color_hex="#FF0000")

    record = mapper.to_record(group)

    assert record.locator == RecordLocator(RecordType.GROUP, str(group.id))
    assert record.fields[FieldName.COHORT_REF] == RecordReference(COHORT)
    assert record.fields[FieldName.NAME] == "Red"
    assert record.fields[FieldName.EDITED_BY] == "Tester"
    assert record.fields[FieldName.UPDATED_AT] == T0
    assert record.change_tag is None


def test_to_record_without_stamp_omits_editor_fields() -> None:
    mapper = _mapper()

    record = mapper.to_record(Group(name="Red"), stamp=False)

    assert FieldName.EDITED_BY not in record.fields
    assert FieldName.UPDATED_AT not in record.fields


def test_to_record_addresses_remembered_change_tag() -> None:
    mapper = _mapper()
    group = mapper.to_entity(
        Record(
            locator=RecordLocator(RecordType.GROUP, "legacy-group"),
            fields={FieldName.NAME: "Red"},
            change_tag="tag-7",
        )
    )
    assert isinstance(group, Group)

    record = mapper.to_record(group)

    assert record.locator.name == "legacy-group"
    assert record.change_tag == "tag-7"


def test_progress_record_writes_compatibility_fields() -> None:
    mapper = _mapper()
    progress = ObjectiveProgress(
        student_id=uuid4(), objective_id=uuid4(), objective_code="A.1", value=100
    )

    record = mapper.to_record(progress)

    assert record.fields[FieldName.VALUE] == 100
    assert record.fields[FieldName.COMPLETION_PERCENTAGE] == 100
    assert record.fields[FieldName.STATUS] == "Complete"


def test_student_record_writes_derived_legacy_group() -> None:
    mapper = _mapper()
    group = Group(name="Red")
    student = Student(name="Ada")
    mapper.graph.upsert(group)
    mapper.graph.upsert(student)
    mapper.graph.upsert(Membership(student_id=student.id, group_id=group.id))

    record = mapper.to_record(mapper.graph.students[student.id])

    assert record.fields[FieldName.GROUP] == RecordReference(str(group.id))


@pytest.mark.parametrize("value", [math.nan, math.inf, -math.inf, "nan"])
def test_non_finite_progress_value_counts_as_not_started(value: float | str) -> None:
    mapper = _mapper()
    record = progress_record("student-ada", "objective-A.1", code="A.1")
    record.fields[FieldName.VALUE] = value

    progress = mapper.to_entity(record)

    assert isinstance(progress, ObjectiveProgress)
    assert progress.value == 0


def test_non_finite_sort_order_falls_back_to_zero() -> None:
    mapper = _mapper()

    objective = mapper.to_entity(objective_record("A.1", "Expose", sort_order=math.inf))
    nan_objective = mapper.to_entity(objective_record("A.2", "Explore", sort_order=math.nan))

    assert isinstance(objective, ObjectiveDefinition)
    assert isinstance(nan_objective, ObjectiveDefinition)
    assert objective.sort_order == 0
    assert nan_objective.sort_order == 0


def test_expertise_check_resolves_domain_and_objective_code() -> None:
    mapper = _mapper()
    domain = mapper.to_entity(domain_record("Data"))
    assert isinstance(domain, Domain)
    objective = ObjectiveDefinition(code="A.1", title="Expose")
    mapper.graph.upsert(objective)

    check = mapper.to_entity(expertise_check_record("domain-data", None, code="A.1", value=140))

    assert isinstance(check, ExpertiseCheckProgress)
    assert check.domain_id == domain.id
    assert check.objective_id == objective.id
    assert check.value == 100
    assert check.edited_by == "Reviewer"


def test_expertise_check_without_domain_is_skipped() -> None:
    mapper = _mapper()
    record = expertise_check_record("domain-data", "objective-A.1", code="A.1", value=50)
    del record.fields[FieldName.DOMAIN]

    assert mapper.to_entity(record) is None


def test_expertise_check_record_writes_score_fields() -> None:
    mapper = _mapper()
    domain = Domain(name="Data")
    objective = ObjectiveDefinition(code="A.1", title="Expose")
    mapper.graph.upsert(domain)
    mapper.graph.upsert(objective)
    check = ExpertiseCheckProgress(
        domain_id=domain.id, objective_id=objective.id, objective_code="A.1", value=40
    )

    record = mapper.to_record(check)

    assert record.fields[FieldName.DOMAIN] == RecordReference(str(domain.id))
    assert record.fields[FieldName.OBJECTIVE] == RecordReference(str(objective.id))
    assert record.fields[FieldName.VALUE] == 40
    assert record.fields[FieldName.STATUS] == "In Progress"
    assert record.fields[FieldName.EDITED_BY] == "Tester"


def test_student_overall_progress_fields_are_read_and_clamped() -> None:
    mapper = _mapper()
    record = student_record("Ada")
    record.fields[FieldName.OVERALL_MODE] = "expertReview"
    record.fields[FieldName.OVERALL_MANUAL] = 120.4
    record.fields[FieldName.OVERALL_MANUAL_EDITED_BY] = "Ms Rivera"

    student = mapper.to_entity(record)

    assert isinstance(student, Student)
    assert student.overall_progress_mode is ProgressMode.EXPERT_REVIEW
    assert student.overall_manual_progress == 100
    assert student.overall_manual_progress_edited_by == "Ms Rivera"
    assert student.uses_manual_progress


def test_student_without_manual_progress_keeps_computed_mode() -> None:
    mapper = _mapper()
    record = student_record("Ada")
    record.fields[FieldName.OVERALL_MANUAL] = math.nan

    student = mapper.to_entity(record)

    assert isinstance(student, Student)
    assert student.overall_progress_mode is ProgressMode.COMPUTED
    assert student.overall_manual_progress is None


def test_domain_record_round_trips_criteria_stamp() -> None:
    mapper = _mapper()
    domain = Domain(name="Data", criteria_progress_updated_at=T0, criteria_progress_edited_by="R")

    record = mapper.to_record(domain)
    mapped = mapper.to_entity(record)

    assert isinstance(mapped, Domain)
    assert mapped.criteria_progress_updated_at == T0
    assert mapped.criteria_progress_edited_by == "R"
