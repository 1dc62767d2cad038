"""Wire-level records exchanged with the remote record store."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Final

from cohortsync.domain.model import RecordType

if TYPE_CHECKING:
    from collections.abc import Mapping


class FieldName:
    """Field names used by every client writing to the shared store."""

    COHORT_REF: Final = "cohortRef"
    COHORT_ID: Final = "cohortId"
    NAME: Final = "name"
    COLOR_HEX: Final = "colorHex"
    PROGRESS_MODE: Final = "progressMode"
    CODE: Final = "code"
    TITLE: Final = "title"
    DESCRIPTION: Final = "description"
    IS_QUANTITATIVE: Final = "isQuantitative"
    PARENT: Final = "parent"
    PARENT_CODE: Final = "parentCode"
    SORT_ORDER: Final = "sortOrder"
    IS_ARCHIVED: Final = "isArchived"
    GROUP: Final = "group"
    DOMAIN: Final = "domain"
    SESSION: Final = "session"
    STUDENT: Final = "student"
    OBJECTIVE: Final = "objective"
    OBJECTIVE_CODE: Final = "objectiveCode"
    VALUE: Final = "value"
    COMPLETION_PERCENTAGE: Final = "completionPercentage"
    STATUS: Final = "status"
    NOTES: Final = "notes"
    KEY: Final = "key"
    LAST_UPDATED: Final = "lastUpdated"
    CREATED_AT: Final = "createdAt"
    UPDATED_AT: Final = "updatedAt"
    EDITED_BY: Final = "lastEditedByDisplayName"
    CRITERIA_UPDATED_AT: Final = "criteriaProgressUpdatedAt"
    CRITERIA_EDITED_BY: Final = "criteriaProgressEditedByDisplayName"
    OVERALL_MODE: Final = "overallProgressMode"
    OVERALL_MANUAL: Final = "overallManualProgress"
    OVERALL_MANUAL_UPDATED_AT: Final = "overallManualProgressUpdatedAt"
    OVERALL_MANUAL_EDITED_BY: Final = "overallManualProgressEditedByDisplayName"


@dataclass(frozen=True, slots=True, order=True)
class RecordLocator:
    """Addressable identity of a remote record: its type plus unique record name."""

    record_type: RecordType
    name: str

    def __str__(self) -> str:
        return f"{self.record_type}/{self.name}"


@dataclass(frozen=True, slots=True)
class RecordReference:
    """A field value pointing at another record by name."""

    name: str


type FieldValue = str | int | float | bool | datetime | RecordReference | None


@dataclass(slots=True)
class Record:
    locator: RecordLocator
    fields: dict[str, FieldValue] = field(default_factory=dict)
    created_at: datetime | None = None
    modified_at: datetime | None = None
    change_tag: str | None = None

    @property
    def record_type(self) -> RecordType:
        return self.locator.record_type

    @property
    def name(self) -> str:
        return self.locator.name

    def merged_onto(self, server: Record) -> Record:
        """Return ``server`` with this record's fields written over it."""

        return Record(
            locator=server.locator,
            fields={**server.fields, **self.fields},
            created_at=server.created_at,
            modified_at=server.modified_at,
            change_tag=server.change_tag,
        )


@dataclass(frozen=True, slots=True)
class Predicate:
    """Query filter: cohort scope, modified-after range and field equality.

    ``modified_after`` is inclusive. Timestamps travel in whole milliseconds, so a record
    modified in the watermark's own millisecond is re-read rather than skipped; applying
    it twice is harmless.
    """

    cohort: str | None = None
    modified_after: datetime | None = None
    equals: Mapping[str, FieldValue] = field(default_factory=dict)

    def matches(self, record: Record) -> bool:
        if self.cohort is not None:
            if record.fields.get(FieldName.COHORT_REF) != RecordReference(self.cohort):
                return False
        if self.modified_after is not None:
            if record.modified_at is None or record.modified_at < self.modified_after:
                return False
        return all(record.fields.get(name) == value for name, value in self.equals.items())


class AccountStatus(StrEnum):
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"
    UNKNOWN = "unknown"


class PushReason(StrEnum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


@dataclass(frozen=True, slots=True)
class PushEvent:
    """A change notification for a single record delivered out of band."""

    locator: RecordLocator
    reason: PushReason

    @property
    def record_type(self) -> RecordType:
        return self.locator.record_type


@dataclass(frozen=True, slots=True)
class SubscriptionHandle:
    subscription_id: str
    record_type: RecordType


SUBSCRIPTION_PREFIX: Final = "cohortsync_sub_"


def subscription_id_for(record_type: RecordType) -> str:
    return f"{SUBSCRIPTION_PREFIX}{record_type}"


def record_type_for_subscription(subscription_id: str) -> RecordType | None:
    if not subscription_id.startswith(SUBSCRIPTION_PREFIX):
        return None
    try:
        return RecordType(subscription_id.removeprefix(SUBSCRIPTION_PREFIX))
    except ValueError:
        return None
