"""HTTP adapter for the remote records API."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from logging import getLogger
from typing import TYPE_CHECKING, Any, Final

import httpx
from pydantic import ValidationError

from cohortsync.adapters.http_resilience import ResilientClient
from cohortsync.config import RecordsApiConfig, get_records_api_config
from cohortsync.domain.ports import (
    RecordConflictError,
    RemoteRecordStore,
    RemoteStoreError,
    RemoteUnavailableError,
)
from cohortsync.domain.records import AccountStatus, SubscriptionHandle

from .schema import (
    CallerResponse,
    ErrorResponse,
    RecordPayload,
    RecordsResponse,
    SubscriptionsResponse,
)
from .translator import build_query, parse_record, record_to_payload

if TYPE_CHECKING:
    from collections.abc import Callable

    from cohortsync.config import ResilienceConfig
    from cohortsync.domain.model import RecordType
    from cohortsync.domain.records import Predicate, Record, RecordLocator

log = getLogger(__name__)

NOT_FOUND: Final = "NOT_FOUND"
AUTHENTICATION_REQUIRED: Final = "AUTHENTICATION_REQUIRED"
CONFLICT_CODES: Final = frozenset({"CONFLICT", "EXISTS"})
UNAVAILABLE_STATUS: Final = frozenset({401, 421})
QUERY_PAGE_SIZE: Final = 200


def _default_client_factory(config: ResilienceConfig) -> ResilientClient:
    return ResilientClient(config)


@dataclass(slots=True)
class HttpRecordStore:
    """``RemoteRecordStore`` speaking the records API over HTTP."""

    config: RecordsApiConfig = field(default_factory=get_records_api_config)
    client_factory: Callable[[ResilienceConfig], ResilientClient] = field(
        default=_default_client_factory
    )
    _client: ResilientClient | None = field(default=None, init=False, repr=False)

    async def __aenter__(self) -> HttpRecordStore:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the shared HTTP client; the next request opens a fresh one."""

        client, self._client = self._client, None
        if client is not None:
            await client.aclose()

    async def account_status(self) -> AccountStatus:
        try:
            payload = await self._call(self._session(), "GET", "users/caller")
        except RemoteUnavailableError as exc:
            log.info("Records API account unavailable: %s", exc)
            return AccountStatus.UNAVAILABLE
        except RemoteStoreError:
            log.warning("Records API account status unknown", exc_info=True)
            return AccountStatus.UNKNOWN
        caller = CallerResponse.model_validate(payload)
        if caller.user_record_name is None:
            return AccountStatus.UNAVAILABLE
        return AccountStatus.AVAILABLE

    async def fetch_record(self, locator: RecordLocator) -> Record | None:
        return await self._lookup(self._session(), locator)

    async def save(self, record: Record) -> Record:
        client = self._session()
        item = await self._modify(client, record)
        if item.server_error_code is None:
            return parse_record(item, record_type=record.record_type)
        if item.server_error_code not in CONFLICT_CODES:
            raise RemoteStoreError(_item_message(item), code=item.server_error_code)

        log.info("Save of %s conflicted; merging onto the server version", record.locator)
        server = await self._lookup(client, record.locator)
        if server is None:
            merged = replace(record, change_tag=None)
        else:
            merged = record.merged_onto(server)
        retry = await self._modify(client, merged)
        if retry.server_error_code is not None:
            raise RecordConflictError(_item_message(retry), code=retry.server_error_code)
        return parse_record(retry, record_type=record.record_type)

    async def delete(self, locator: RecordLocator) -> None:
        operation = {"operationType": "forceDelete", "record": {"recordName": locator.name}}
        payload = await self._call(
            self._session(), "POST", "records/modify", json={"operations": [operation]}
        )
        for item in self._records(payload).records:
            if item.server_error_code in (None, NOT_FOUND):
                continue
            raise RemoteStoreError(_item_message(item), code=item.server_error_code)

    async def query(
        self,
        record_type: RecordType,
        predicate: Predicate,
        *,
        sort_by: str | None = None,
    ) -> list[Record]:
        body: dict[str, Any] = {
            "query": build_query(record_type, predicate, sort_by=sort_by),
            "resultsLimit": QUERY_PAGE_SIZE,
        }
        records: list[Record] = []
        client = self._session()
        while True:
            page = self._records(await self._call(client, "POST", "records/query", json=body))
            for item in page.records:
                if item.server_error_code is not None:
                    raise RemoteStoreError(_item_message(item), code=item.server_error_code)
                if not item.deleted:
                    records.append(parse_record(item, record_type=record_type))
            if page.continuation_marker is None:
                break
            body["continuationMarker"] = page.continuation_marker
        log.debug("Query for %s returned %s record(s)", record_type, len(records))
        return records

    async def subscribe(
        self,
        record_type: RecordType,
        predicate: Predicate,
        *,
        subscription_id: str,
    ) -> SubscriptionHandle:
        query = build_query(record_type, predicate)
        operation = {
            "operationType": "create",
            "subscription": {
                "subscriptionID": subscription_id,
                "subscriptionType": "query",
                "query": query,
                "firesOn": ["create", "update", "delete"],
            },
        }
        payload = await self._call(
            self._session(), "POST", "subscriptions/modify", json={"operations": [operation]}
        )
        for item in SubscriptionsResponse.model_validate(payload).subscriptions:
            # an existing subscription under the same deterministic id is already what we want
            if item.server_error_code is not None and item.server_error_code not in CONFLICT_CODES:
                message = item.reason or item.server_error_code
                raise RemoteStoreError(
                    f"Subscription {item.subscription_id} failed: {message}",
                    code=item.server_error_code,
                )
        return SubscriptionHandle(subscription_id=subscription_id, record_type=record_type)

    # Requests ------------------------------------------------------------------

    def _session(self) -> ResilientClient:
        if self._client is None:
            self._client = self.client_factory(self.config.resilience)
        return self._client

    async def _lookup(self, client: ResilientClient, locator: RecordLocator) -> Record | None:
        payload = await self._call(
            client,
            "POST",
            "records/lookup",
            json={"records": [{"recordName": locator.name}]},
        )
        for item in self._records(payload).records:
            if item.server_error_code == NOT_FOUND or item.deleted:
                return None
            if item.server_error_code is not None:
                raise RemoteStoreError(_item_message(item), code=item.server_error_code)
            return parse_record(item, record_type=locator.record_type)
        return None

    async def _modify(self, client: ResilientClient, record: Record) -> RecordPayload:
        operation_type = "update" if record.change_tag is not None else "create"
        operation = {"operationType": operation_type, "record": record_to_payload(record)}
        payload = await self._call(
            client, "POST", "records/modify", json={"operations": [operation]}
        )
        records = self._records(payload).records
        if not records:
            raise RemoteStoreError(f"Records API returned no result for {record.locator}")
        return records[0]

    async def _call(
        self,
        client: ResilientClient,
        method: str,
        path: str,
        *,
        json: object | None = None,
    ) -> dict[str, Any]:
        try:
            response = await client.request(
                method, path, params=self.config.auth_params(), json=json
            )
        except httpx.HTTPError as exc:
            raise RemoteUnavailableError(f"Records API request failed: {exc}") from exc

        if response.is_success:
            try:
                payload = response.json()
            except ValueError as exc:
                raise RemoteStoreError("Records API returned invalid JSON") from exc
            if not isinstance(payload, dict):
                raise RemoteStoreError("Unexpected records API response payload")
            return payload

        error = _parse_error(response)
        message = f"Records API error {response.status_code}: {error.reason or 'no reason given'}"
        log.error(message)
        code = error.server_error_code
        if code == AUTHENTICATION_REQUIRED or response.status_code in UNAVAILABLE_STATUS:
            raise RemoteUnavailableError(message, code=code or AUTHENTICATION_REQUIRED)
        raise RemoteStoreError(message, code=code)

    @staticmethod
    def _records(payload: dict[str, Any]) -> RecordsResponse:
        try:
            return RecordsResponse.model_validate(payload)
        except ValidationError as exc:
            raise RemoteStoreError(f"Malformed records API payload: {exc}") from exc


def _parse_error(response: httpx.Response) -> ErrorResponse:
    try:
        return ErrorResponse.model_validate(response.json())
    except (ValueError, ValidationError):
        return ErrorResponse(reason=response.text or response.reason_phrase)


def _item_message(item: RecordPayload) -> str:
    return f"{item.record_name}: {item.reason or item.server_error_code}"


if TYPE_CHECKING:
    _store_check: RemoteRecordStore = HttpRecordStore()
