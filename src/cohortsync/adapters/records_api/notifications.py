"""Parse change notifications pushed by the records service."""

from __future__ import annotations

from logging import getLogger
from typing import TYPE_CHECKING, Final

from pydantic import ValidationError

from cohortsync.domain.records import (
    PushEvent,
    PushReason,
    RecordLocator,
    record_type_for_subscription,
)

from .schema import PushPayload

if TYPE_CHECKING:
    from collections.abc import Mapping

log = getLogger(__name__)

# "fo" (fires on) codes of a query notification
REASON_BY_FIRES_ON: Final[dict[int, PushReason]] = {
    1: PushReason.CREATED,
    2: PushReason.UPDATED,
    3: PushReason.DELETED,
}


def parse_push_payload(payload: Mapping[str, object]) -> PushEvent | None:
    """Return the change a notification describes, or None when it is not one of ours."""

    try:
        notification = PushPayload.model_validate(payload)
    except ValidationError:
        log.debug("Ignoring malformed push payload")
        return None
    query = notification.ck.query
    if query is None:
        return None
    record_type = record_type_for_subscription(query.subscription_id)
    if record_type is None:
        log.debug("Ignoring push for foreign subscription %s", query.subscription_id)
        return None
    reason = REASON_BY_FIRES_ON.get(query.fires_on, PushReason.UPDATED)
    return PushEvent(locator=RecordLocator(record_type, query.record_name), reason=reason)
