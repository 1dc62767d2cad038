"""Translate between records API payloads and wire records."""

from __future__ import annotations

from datetime import UTC, datetime
from logging import getLogger
from typing import TYPE_CHECKING, Any

from cohortsync.domain.model import RecordType
from cohortsync.domain.records import FieldName, Record, RecordLocator, RecordReference

from .schema import FieldPayload, RecordPayload, ReferenceValue

if TYPE_CHECKING:
    from cohortsync.domain.records import FieldValue, Predicate

log = getLogger(__name__)

JsonObject = dict[str, Any]


def datetime_to_millis(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return int(value.astimezone(UTC).timestamp() * 1000)


def millis_to_datetime(value: int | float) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=UTC)


# Field values ------------------------------------------------------------------


def encode_value(value: FieldValue) -> JsonObject:
    match value:
        case None:
            return {"value": None}
        case bool():
            return {"value": int(value), "type": "INT64"}
        case int():
            return {"value": value, "type": "INT64"}
        case float():
            return {"value": value, "type": "DOUBLE"}
        case datetime():
            return {"value": datetime_to_millis(value), "type": "TIMESTAMP"}
        case RecordReference():
            return {
                "value": ReferenceValue(record_name=value.name).model_dump(by_alias=True),
                "type": "REFERENCE",
            }
        case str():
            return {"value": value, "type": "STRING"}


def decode_value(payload: FieldPayload) -> FieldValue:
    value = payload.value
    match payload.type:
        case "TIMESTAMP" if isinstance(value, int | float):
            return millis_to_datetime(value)
        case "REFERENCE" if isinstance(value, dict):
            return RecordReference(ReferenceValue.model_validate(value).record_name)
        case "INT64" if isinstance(value, int | float):
            return int(value)
        case "DOUBLE" if isinstance(value, int | float):
            return float(value)
        case _:
            pass
    if isinstance(value, dict) and "recordName" in value:
        return RecordReference(ReferenceValue.model_validate(value).record_name)
    if isinstance(value, str | int | float | bool) or value is None:
        return value
    log.debug("Dropping field value of unsupported shape: %r", value)
    return None


# Records -------------------------------------------------------------------------


def parse_record(payload: RecordPayload, *, record_type: RecordType | None = None) -> Record:
    """Build a ``Record``; ``record_type`` is the fallback when the payload omits it."""

    resolved_type = record_type
    if payload.record_type is not None:
        try:
            resolved_type = RecordType(payload.record_type)
        except ValueError:
            log.debug("Unknown record type %r for %s", payload.record_type, payload.record_name)
    if resolved_type is None:
        msg = f"Record {payload.record_name} has no recognised record type"
        raise ValueError(msg)
    return Record(
        locator=RecordLocator(resolved_type, payload.record_name),
        fields={name: decode_value(field) for name, field in payload.fields.items()},
        created_at=millis_to_datetime(payload.created.timestamp) if payload.created else None,
        modified_at=millis_to_datetime(payload.modified.timestamp) if payload.modified else None,
        change_tag=payload.record_change_tag,
    )


def record_to_payload(record: Record) -> JsonObject:
    payload: JsonObject = {
        "recordName": record.name,
        "recordType": str(record.record_type),
        "fields": {name: encode_value(value) for name, value in record.fields.items()},
    }
    if record.change_tag is not None:
        payload["recordChangeTag"] = record.change_tag
    return payload


# Queries ---------------------------------------------------------------------------


def _filter(field_name: str, value: FieldValue, comparator: str = "EQUALS") -> JsonObject:
    return {"comparator": comparator, "fieldName": field_name, "fieldValue": encode_value(value)}


def build_query(
    record_type: RecordType,
    predicate: Predicate,
    *,
    sort_by: str | None = None,
) -> JsonObject:
    filters: list[JsonObject] = []
    if predicate.cohort is not None:
        filters.append(_filter(FieldName.COHORT_REF, RecordReference(predicate.cohort)))
    if predicate.modified_after is not None:
        # timestamps travel in whole milliseconds; inclusive so the boundary millisecond
        # is re-read rather than skipped
        filters.append(
            {
                "comparator": "GREATER_THAN_OR_EQUALS",
                "systemFieldName": "modifiedTimestamp",
                "fieldValue": encode_value(predicate.modified_after),
            }
        )
    filters.extend(_filter(name, value) for name, value in predicate.equals.items())
    query: JsonObject = {"recordType": str(record_type), "filterBy": filters}
    if sort_by is not None:
        query["sortBy"] = [{"fieldName": sort_by, "ascending": True}]
    return query
