"""Domain enums (pure, dependency-light)."""

from __future__ import annotations

from enum import StrEnum


class RecordType(StrEnum):
    """Discriminator shared by entities and the remote records that carry them."""

    COHORT = "Cohort"
    GROUP = "CohortGroup"
    DOMAIN = "Domain"
    OBJECTIVE = "LearningObjective"
    LABEL = "CategoryLabel"
    STUDENT = "Student"
    MEMBERSHIP = "StudentGroupMembership"
    PROGRESS = "ObjectiveProgress"
    CUSTOM_PROPERTY = "StudentCustomProperty"
    EXPERTISE_CHECK = "ExpertiseCheckProgress"


class ProgressStatus(StrEnum):
    NOT_STARTED = "Not Started"
    IN_PROGRESS = "In Progress"
    COMPLETE = "Complete"

    @classmethod
    def for_value(cls, value: int) -> ProgressStatus:
        if value <= 0:
            return cls.NOT_STARTED
        if value >= 100:  # noqa: PLR2004
            return cls.COMPLETE
        return cls.IN_PROGRESS


class ProgressMode(StrEnum):
    """How a domain's overall progress is determined."""

    COMPUTED = "computed"
    EXPERT_REVIEW = "expertReview"


class Session(StrEnum):
    MORNING = "Morning"
    AFTERNOON = "Afternoon"
