"""Reusable builders and fakes for cohort sync tests."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from cohortsync.config import SyncConfig
from cohortsync.domain.engine import SyncEngine
from cohortsync.domain.model import RecordType
from cohortsync.domain.records import FieldName, Record, RecordLocator, RecordReference
from cohortsync.domain.watermark import utc_clock

if TYPE_CHECKING:
    from collections.abc import Callable

    from cohortsync.domain.ports import RemoteRecordStore, SyncStateUnitOfWork
    from cohortsync.domain.records import FieldValue

COHORT = "main"
T0 = datetime(2025, 3, 1, 9, 0, tzinfo=UTC)


@dataclass
class FakeClock:
    """Wall clock that only moves when told to."""

    now: datetime = T0

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


@dataclass
class FakeMonotonic:
    value: float = 0.0

    def __call__(self) -> float:
        return self.value


def fast_config(**overrides: object) -> SyncConfig:
    values: dict[str, object] = {
        "cohort_id": COHORT,
        "editor_name": "Tester",
        "debounce_seconds": 0.01,
        "poll_interval_seconds": 3600.0,
        "reconcile_interval_seconds": 3600.0,
        "focus_throttle_seconds": 5.0,
        "activation_throttle_seconds": 5.0,
        "poll_throttle_seconds": 20.0,
    }
    values.update(overrides)
    return SyncConfig(**values)  # type: ignore[arg-type]


def make_engine(
    remote: RemoteRecordStore,
    *,
    config: SyncConfig | None = None,
    unit_of_work_factory: Callable[[], SyncStateUnitOfWork] | None = None,
    clock: Callable[[], datetime] | None = None,
) -> SyncEngine:
    return SyncEngine(
        remote,
        config=config or fast_config(),
        unit_of_work_factory=unit_of_work_factory,
        clock=clock or utc_clock,
    )


# Record builders -------------------------------------------------------------------


def _record(
    record_type: RecordType, name: str, fields: dict[str, FieldValue], cohort: str
) -> Record:
    return Record(
        locator=RecordLocator(record_type, name),
        fields={FieldName.COHORT_REF: RecordReference(cohort), **fields},
    )


def group_record(
    name: str, *, record_name: str | None = None, color: str = "#FF0000", cohort: str = COHORT
) -> Record:
    return _record(
        RecordType.GROUP,
        record_name or f"group-{name.lower()}",
        {FieldName.NAME: name, FieldName.COLOR_HEX: color},
        cohort,
    )


def domain_record(name: str, *, record_name: str | None = None, cohort: str = COHORT) -> Record:
    return _record(
        RecordType.DOMAIN,
        record_name or f"domain-{name.lower()}",
        {FieldName.NAME: name, FieldName.PROGRESS_MODE: "computed"},
        cohort,
    )


def student_record(
    name: str,
    *,
    record_name: str | None = None,
    domain: str | None = None,
    session: str = "Morning",
    cohort: str = COHORT,
) -> Record:
    fields: dict[str, FieldValue] = {
        FieldName.NAME: name,
        FieldName.SESSION: session,
        FieldName.CREATED_AT: T0,
    }
    if domain is not None:
        fields[FieldName.DOMAIN] = RecordReference(domain)
    return _record(RecordType.STUDENT, record_name or f"student-{name.lower()}", fields, cohort)


def membership_record(
    student: str, group: str, *, record_name: str | None = None, cohort: str = COHORT
) -> Record:
    return _record(
        RecordType.MEMBERSHIP,
        record_name or f"membership-{student}-{group}",
        {
            FieldName.STUDENT: RecordReference(student),
            FieldName.GROUP: RecordReference(group),
            FieldName.CREATED_AT: T0,
            FieldName.UPDATED_AT: T0,
        },
        cohort,
    )


def objective_record(
    code: str,
    title: str,
    *,
    record_name: str | None = None,
    parent: str | None = None,
    parent_code: str | None = None,
    sort_order: float = 0,
    cohort: str = COHORT,
) -> Record:
    fields: dict[str, FieldValue] = {
        FieldName.CODE: code,
        FieldName.TITLE: title,
        FieldName.SORT_ORDER: sort_order,
    }
    if parent is not None:
        fields[FieldName.PARENT] = RecordReference(parent)
    if parent_code is not None:
        fields[FieldName.PARENT_CODE] = parent_code
    return _record(RecordType.OBJECTIVE, record_name or f"objective-{code}", fields, cohort)


def progress_record(
    student: str,
    objective: str | None,
    *,
    code: str = "",
    value: float | None = None,
    completion: float | None = None,
    record_name: str | None = None,
    last_updated: datetime = T0,
    cohort: str = COHORT,
) -> Record:
    fields: dict[str, FieldValue] = {
        FieldName.STUDENT: RecordReference(student),
        FieldName.OBJECTIVE_CODE: code,
        FieldName.LAST_UPDATED: last_updated,
    }
    if objective is not None:
        fields[FieldName.OBJECTIVE] = RecordReference(objective)
    if value is not None:
        fields[FieldName.VALUE] = value
    if completion is not None:
        fields[FieldName.COMPLETION_PERCENTAGE] = completion
    return _record(
        RecordType.PROGRESS, record_name or f"progress-{student}-{code}", fields, cohort
    )


def expertise_check_record(
    domain: str,
    objective: str | None,
    *,
    code: str = "",
    value: float = 0,
    record_name: str | None = None,
    cohort: str = COHORT,
) -> Record:
    fields: dict[str, FieldValue] = {
        FieldName.DOMAIN: RecordReference(domain),
        FieldName.OBJECTIVE_CODE: code,
        FieldName.VALUE: value,
        FieldName.UPDATED_AT: T0,
        FieldName.EDITED_BY: "Reviewer",
    }
    if objective is not None:
        fields[FieldName.OBJECTIVE] = RecordReference(objective)
    return _record(
        RecordType.EXPERTISE_CHECK, record_name or f"check-{domain}-{code}", fields, cohort
    )


def custom_property_record(
    student: str, key: str, value: str, *, record_name: str | None = None, cohort: str = COHORT
) -> Record:
    return _record(
        RecordType.CUSTOM_PROPERTY,
        record_name or f"property-{student}-{key}",
        {
            FieldName.STUDENT: RecordReference(student),
            FieldName.KEY: key,
            FieldName.VALUE: value,
        },
        cohort,
    )
