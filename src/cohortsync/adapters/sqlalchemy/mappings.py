"""SQLAlchemy table metadata for the persisted sync state."""

from __future__ import annotations

import json
import logging
import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, cast

from sqlalchemy import (
    Column,
    DateTime,
    Dialect,
    Enum,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    TypeDecorator,
    UniqueConstraint,
    Uuid,
)

from cohortsync.domain.model import RecordType
from cohortsync.domain.records import Record, RecordLocator, RecordReference

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine

    from cohortsync.domain.records import FieldValue

log = logging.getLogger(__name__)

UUIDColumnType = Uuid[uuid.UUID]


class UTCDateTime(TypeDecorator[datetime]):
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        return value if value.tzinfo else value.replace(tzinfo=UTC)


def _encode_value(value: FieldValue) -> dict[str, Any]:
    match value:
        case None:
            return {"t": "null"}
        case bool():
            return {"t": "bool", "v": value}
        case int():
            return {"t": "int", "v": value}
        case float():
            return {"t": "float", "v": value}
        case datetime():
            return {"t": "time", "v": value.astimezone(UTC).isoformat()}
        case RecordReference():
            return {"t": "ref", "v": value.name}
        case str():
            return {"t": "str", "v": value}


def _decode_value(payload: dict[str, Any]) -> FieldValue:
    kind = payload.get("t")
    value = payload.get("v")
    match kind:
        case "time" if isinstance(value, str):
            return datetime.fromisoformat(value)
        case "ref" if isinstance(value, str):
            return RecordReference(value)
        case "bool" | "int" | "float" | "str":
            return cast("FieldValue", value)
        case _:
            return None


def _encode_time(value: datetime | None) -> str | None:
    return value.astimezone(UTC).isoformat() if value is not None else None


def _decode_time(value: object) -> datetime | None:
    return datetime.fromisoformat(value) if isinstance(value, str) else None


class RecordListType(TypeDecorator[list[Record]]):
    """A list of wire records stored as JSON with tagged field values."""

    impl = Text
    cache_ok = True

    def process_bind_param(self, value: list[Record] | None, dialect: Dialect) -> str | None:
        _ = dialect
        if value is None:
            return None
        payload = [
            {
                "type": str(record.record_type),
                "name": record.name,
                "fields": {name: _encode_value(v) for name, v in record.fields.items()},
                "created": _encode_time(record.created_at),
                "modified": _encode_time(record.modified_at),
                "tag": record.change_tag,
            }
            for record in value
        ]
        return json.dumps(payload)

    def process_result_value(self, value: str | None, dialect: Dialect) -> list[Record]:
        _ = dialect
        if value is None:
            return []
        loaded = json.loads(value)
        if not isinstance(loaded, list):
            return []
        records: list[Record] = []
        for item in cast("list[dict[str, Any]]", loaded):
            try:
                record_type = RecordType(item["type"])
            except (KeyError, ValueError):
                log.debug("Skipping stored record of unknown type: %r", item.get("type"))
                continue
            fields = cast("dict[str, dict[str, Any]]", item.get("fields") or {})
            records.append(
                Record(
                    locator=RecordLocator(record_type, str(item.get("name", ""))),
                    fields={name: _decode_value(v) for name, v in fields.items()},
                    created_at=_decode_time(item.get("created")),
                    modified_at=_decode_time(item.get("modified")),
                    change_tag=item.get("tag"),
                )
            )
        return records


class UUIDListType(TypeDecorator[list[uuid.UUID]]):
    impl = Text
    cache_ok = True

    def process_bind_param(self, value: list[uuid.UUID] | None, dialect: Dialect) -> str | None:
        _ = dialect
        if value is None:
            return None
        return json.dumps(sorted(str(item) for item in value))

    def process_result_value(self, value: str | None, dialect: Dialect) -> list[uuid.UUID]:
        _ = dialect
        if value is None:
            return []
        loaded = json.loads(value)
        if not isinstance(loaded, list):
            return []
        return [uuid.UUID(item) for item in cast("list[Any]", loaded) if isinstance(item, str)]


metadata = MetaData(
    naming_convention={
        "ix": "ix_%(column_0_label)s",
        "uq": "uq_%(table_name)s_%(column_0_label)s",
        "ck": "ck_%(table_name)s_%(constraint_name)s",
        "fk": "fk_%(table_name)s_%(column_0_label)s_%(referred_table_name)s",
        "pk": "pk_%(table_name)s",
    }
)

sync_cursor_table = Table(
    "sync_cursor",
    metadata,
    Column("cohort_id", String, primary_key=True),
    Column("watermark", UTCDateTime(), nullable=True),
    Column("last_full_reconcile", UTCDateTime(), nullable=True),
)

identity_mapping_table = Table(
    "identity_mapping",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("cohort_id", String, nullable=False),
    Column("record_type", Enum(RecordType, native_enum=False, length=64), nullable=False),
    Column("record_name", String, nullable=False),
    Column("local_id", UUIDColumnType, nullable=False),
    UniqueConstraint("cohort_id", "record_type", "record_name"),
    Index("ix_identity_mapping_cohort", "cohort_id"),
)

store_snapshot_table = Table(
    "store_snapshot",
    metadata,
    Column("cohort_id", String, primary_key=True),
    Column("schema_version", Integer, nullable=False),
    Column("saved_at", UTCDateTime(), nullable=True),
    Column("records", RecordListType(), nullable=False),
    Column("detail_loaded", UUIDListType(), nullable=False),
)


def create_all_tables(engine: Engine) -> None:
    """Create database tables for the sync state metadata."""

    log.info("Creating all tables")
    metadata.create_all(engine)
