from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine  # noqa: TC002

from cohortsync.adapters.memory import InMemoryRecordStore
from cohortsync.adapters.sqlalchemy.unit_of_work import (
    SqlAlchemySyncStateUnitOfWork,
    shutdown,
    startup,
)
from cohortsync.config import SyncConfig  # noqa: TC001
from tests.helpers.cohort import fast_config, make_engine

os.environ.setdefault("COHORTSYNC_DATABASE_URI", "sqlite+pysqlite:///:memory:")

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

    from cohortsync.domain.engine import SyncEngine


@pytest.fixture
def sqlite_engine() -> Iterator[Engine]:
    engine = create_engine("sqlite+pysqlite:///:memory:", future=True)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def sqlite_unit_of_work(
    sqlite_engine: Engine,
) -> Iterator[Callable[[], SqlAlchemySyncStateUnitOfWork]]:
    startup(engine=sqlite_engine, force=True)

    def factory() -> SqlAlchemySyncStateUnitOfWork:
        return SqlAlchemySyncStateUnitOfWork()

    try:
        yield factory
    finally:
        shutdown()


@pytest.fixture
def remote() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def sync_config() -> SyncConfig:
    return fast_config()


@pytest.fixture
def engine(remote: InMemoryRecordStore, sync_config: SyncConfig) -> SyncEngine:
    return make_engine(remote, config=sync_config)
