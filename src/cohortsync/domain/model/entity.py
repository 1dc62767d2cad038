"""
Base building blocks:
process-stable identity and the record type discriminator.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, ClassVar
from uuid import UUID, uuid4

if TYPE_CHECKING:
    from cohortsync.domain.model.enums import RecordType


def new_id() -> UUID:
    return uuid4()


def utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True, slots=True, kw_only=True)
class Entity:
    """Immutable value carrying a local identity.

    Entities are replaced wholesale (``dataclasses.replace``) rather than mutated, which
    lets the entity graph journal and undo changes by swapping values back in.
    """

    id: UUID = field(default_factory=new_id)

    # class-level discriminator; subclasses must override
    RECORD_TYPE: ClassVar[RecordType]

    @property
    def record_type(self) -> RecordType:
        return self.RECORD_TYPE
