"""Domain model exports."""

from __future__ import annotations

from .cohort import (
    DEFAULT_COLOR_HEX,
    ENTITY_CLASS_BY_RECORD_TYPE,
    HIGH_CHURN_TYPES,
    CategoryLabel,
    CohortEntity,
    CustomProperty,
    Domain,
    ExpertiseCheckProgress,
    Group,
    Membership,
    ObjectiveDefinition,
    ObjectiveProgress,
    Student,
    clamp_percentage,
)
from .entity import Entity, new_id, utcnow
from .enums import ProgressMode, ProgressStatus, RecordType, Session

__all__ = [
    "DEFAULT_COLOR_HEX",
    "ENTITY_CLASS_BY_RECORD_TYPE",
    "HIGH_CHURN_TYPES",
    "CategoryLabel",
    "CohortEntity",
    "CustomProperty",
    "Domain",
    "Entity",
    "ExpertiseCheckProgress",
    "Group",
    "Membership",
    "ObjectiveDefinition",
    "ObjectiveProgress",
    "ProgressMode",
    "ProgressStatus",
    "RecordType",
    "Session",
    "Student",
    "clamp_percentage",
    "new_id",
    "utcnow",
]
