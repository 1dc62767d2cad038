"""Pydantic models describing the records API payloads."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

FieldType = Literal["STRING", "INT64", "DOUBLE", "TIMESTAMP", "REFERENCE"]


class RecordsBaseModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class ReferenceValue(RecordsBaseModel):
    record_name: str = Field(alias="recordName")
    action: str = "NONE"


class FieldPayload(RecordsBaseModel):
    value: object = None
    type: str | None = None


class TimestampPayload(RecordsBaseModel):
    timestamp: int


class RecordPayload(RecordsBaseModel):
    record_name: str = Field(alias="recordName")
    record_type: str | None = Field(default=None, alias="recordType")
    record_change_tag: str | None = Field(default=None, alias="recordChangeTag")
    fields: dict[str, FieldPayload] = Field(default_factory=dict)
    created: TimestampPayload | None = None
    modified: TimestampPayload | None = None
    deleted: bool = False
    server_error_code: str | None = Field(default=None, alias="serverErrorCode")
    reason: str | None = None


class RecordsResponse(RecordsBaseModel):
    records: list[RecordPayload] = Field(default_factory=list)
    continuation_marker: str | None = Field(default=None, alias="continuationMarker")


class CallerResponse(RecordsBaseModel):
    user_record_name: str | None = Field(default=None, alias="userRecordName")


class SubscriptionPayload(RecordsBaseModel):
    subscription_id: str = Field(alias="subscriptionID")
    server_error_code: str | None = Field(default=None, alias="serverErrorCode")
    reason: str | None = None


class SubscriptionsResponse(RecordsBaseModel):
    subscriptions: list[SubscriptionPayload] = Field(default_factory=list)


class ErrorResponse(RecordsBaseModel):
    server_error_code: str | None = Field(default=None, alias="serverErrorCode")
    reason: str | None = None
    uuid: str | None = None


class QueryNotification(RecordsBaseModel):
    record_name: str = Field(alias="rid")
    subscription_id: str = Field(alias="sid")
    fires_on: int = Field(alias="fo")


class CloudNotification(RecordsBaseModel):
    query: QueryNotification | None = Field(default=None, alias="qry")


class PushPayload(RecordsBaseModel):
    ck: CloudNotification
