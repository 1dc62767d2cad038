"""Application orchestration entry points."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING

from cohortsync.adapters.records_api import HttpRecordStore
from cohortsync.adapters.sqlalchemy.unit_of_work import (
    SqlAlchemySyncStateUnitOfWork,
    is_started,
    startup,
)
from cohortsync.config import get_sync_config
from cohortsync.domain.engine import SyncEngine
from cohortsync.domain.ports import RemoteStoreError, SyncStateUnitOfWork

if TYPE_CHECKING:
    from datetime import datetime

    from cohortsync.config import SyncConfig
    from cohortsync.domain.ports import RemoteRecordStore

UnitOfWorkFactory = Callable[[], SyncStateUnitOfWork]


log = getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SyncSummary:
    cohort_id: str
    groups: int
    domains: int
    objectives: int
    students: int
    memberships: int
    watermark: datetime | None


def build_sync_engine(
    *,
    config: SyncConfig | None = None,
    remote: RemoteRecordStore | None = None,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
) -> SyncEngine:
    """Wire a sync engine against the configured adapters."""

    if unit_of_work_factory is None:
        if not is_started():
            startup()
        unit_of_work_factory = SqlAlchemySyncStateUnitOfWork
    return SyncEngine(
        remote or HttpRecordStore(),
        config=config or get_sync_config(),
        unit_of_work_factory=unit_of_work_factory,
    )


def summarize(engine: SyncEngine) -> SyncSummary:
    graph = engine.graph
    return SyncSummary(
        cohort_id=engine.config.cohort_id,
        groups=len(graph.groups),
        domains=len(graph.domains),
        objectives=len(graph.objectives),
        students=len(graph.students),
        memberships=len(graph.memberships),
        watermark=engine.reconciler.cursor.watermark,
    )


async def sync_once(engine: SyncEngine) -> SyncSummary:
    """Restore local state, run one full reconciliation and persist the result."""

    engine.restore()
    result = await engine.store.load_if_needed()
    if not result.ok:
        raise RemoteStoreError(result.error or "Reconciliation failed")
    # seeding may have written records after the sync persisted
    engine.persist()
    return summarize(engine)


async def run_live(engine: SyncEngine, *, stop: asyncio.Event | None = None) -> SyncSummary:
    """Run the coordinator (timers, triggers, subscriptions) until ``stop`` is set."""

    async with engine:
        await (stop or asyncio.Event()).wait()
    return summarize(engine)


def sync_cohort(*, cohort_id: str | None = None, watch: bool = False) -> SyncSummary:
    """Synchronise the local mirror of a cohort using the configured adapters."""

    config = get_sync_config(cohort_id=cohort_id)
    remote = HttpRecordStore()
    engine = build_sync_engine(config=config, remote=remote)
    log.info(
        "Starting cohort sync: cohort=%s, watch=%s, debounce=%ss, poll=%ss",
        config.cohort_id,
        watch,
        config.debounce_seconds,
        config.poll_interval_seconds,
    )

    async def run() -> SyncSummary:
        async with remote:
            return await (run_live(engine) if watch else sync_once(engine))

    summary = asyncio.run(run())
    log.info(
        f"Finished cohort sync: students={summary.students}, groups={summary.groups}, "
        f"objectives={summary.objectives}, watermark={summary.watermark}"
    )
    return summary
