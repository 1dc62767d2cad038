"""Public interface for the records API adapter."""

from __future__ import annotations

from .client import HttpRecordStore
from .notifications import parse_push_payload
from .schema import RecordPayload, RecordsResponse
from .translator import build_query, decode_value, encode_value, parse_record, record_to_payload

__all__ = [
    "HttpRecordStore",
    "RecordPayload",
    "RecordsResponse",
    "build_query",
    "decode_value",
    "encode_value",
    "parse_push_payload",
    "parse_record",
    "record_to_payload",
]
