"""Default learning objective catalog seeded into an empty cohort."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final
from uuid import NAMESPACE_URL, UUID, uuid5

from cohortsync.domain.model import ObjectiveDefinition

CATALOG_NAMESPACE: Final = uuid5(NAMESPACE_URL, "cohortsync:objective-catalog")


@dataclass(frozen=True, slots=True)
class CatalogEntry:
    code: str
    title: str
    description: str = ""
    is_quantitative: bool = False

    @property
    def parent_code(self) -> str | None:
        head, _, _ = self.code.rpartition(".")
        return head or None


DEFAULT_CATALOG: Final[tuple[CatalogEntry, ...]] = (
    CatalogEntry(
        "A",
        "Able to apply 100% of core LOs for chosen path",
        "Quantitative - average of A.1, A.2, A.3",
        is_quantitative=True,
    ),
    CatalogEntry("A.1", "Expose core LOs for all", "0-100%", is_quantitative=True),
    CatalogEntry("A.2", "Understand core LOs for all", "0-100%", is_quantitative=True),
    CatalogEntry(
        "A.3", "Apply domain core LOs for their chosen path", "0-100%", is_quantitative=True
    ),
    CatalogEntry("B", "Able to LUR - Learn Unlearn Relearn", "Qualitative checkboxes"),
    CatalogEntry("B.L", "Have a positive attitude for learning"),
    CatalogEntry("B.U", "Be okay/comfortable to have existing knowledge challenged"),
    CatalogEntry("B.R", "Adapt to newly acquired knowledge"),
    CatalogEntry("C", "Able to analyze and create solutions based on data", "Nested hierarchy"),
    CatalogEntry("C.1", "Data Gathering & Understanding"),
    CatalogEntry("C.1.1", "Understand the importance of data"),
    CatalogEntry("C.1.2", "Understand how to gather & understand data"),
    CatalogEntry("C.1.3", "Apply gathering & understanding of data"),
    CatalogEntry("C.2", "Data Synthesis & Analysis"),
    CatalogEntry("C.2.1", "Exposure to synthesize & analyze data"),
    CatalogEntry("C.2.2", "Understand how to synthesize & analyze data"),
    CatalogEntry("C.2.3", "Apply synthesis & analysis of data"),
    CatalogEntry("C.3", "Data-Driven Decision Making"),
    CatalogEntry("C.3.1", "Understand how to make data-driven decisions"),
    CatalogEntry("C.3.2", "Apply making data-driven decisions"),
    CatalogEntry("C.4", "Data-Based Argumentation"),
    CatalogEntry("C.4.1", "Understand how to argue/defend/enrich decisions based on data"),
    CatalogEntry("C.4.2", "Apply argumentation/defense/enrichment based on data"),
    CatalogEntry("D", "Able to create positive influence and empower each other", "Qualitative"),
    CatalogEntry("D.1", "Self-Leadership"),
    CatalogEntry("D.2", "Share Responsibility"),
    CatalogEntry("D.3", "Inspire Others"),
    CatalogEntry(
        "E", "Able to identify pathways & requirements toward career aspiration", "Qualitative"
    ),
    CatalogEntry("E.1", "Self-Discovery"),
    CatalogEntry("E.2", "Knowing Your Options"),
    CatalogEntry("E.3", "Decide the Area of Exploration"),
    CatalogEntry("E.4", "Planning Actions in Decided Path"),
)


def catalog_objective_id(cohort_id: str, code: str) -> UUID:
    """Deterministic identity, so clients seeding concurrently write the same records."""

    return uuid5(CATALOG_NAMESPACE, f"{cohort_id}:{code}")


def default_objectives(cohort_id: str) -> list[ObjectiveDefinition]:
    """Build the default catalog, parents before children."""

    return [
        ObjectiveDefinition(
            id=catalog_objective_id(cohort_id, entry.code),
            code=entry.code,
            title=entry.title,
            description=entry.description,
            is_quantitative=entry.is_quantitative,
            parent_id=(
                catalog_objective_id(cohort_id, entry.parent_code) if entry.parent_code else None
            ),
            parent_code=entry.parent_code,
            sort_order=sort_order,
        )
        for sort_order, entry in enumerate(DEFAULT_CATALOG)
    ]
