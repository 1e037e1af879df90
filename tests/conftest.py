from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine  # noqa: TC002

from licensesync.adapters.memory_cache import InMemoryCache
from licensesync.adapters.sqlalchemy.unit_of_work import (
    SqlAlchemyLicenseUnitOfWork,
    shutdown,
    startup,
)
from licensesync.domain.monitoring import Monitor
from tests.helpers.licenses import FixedClock

os.environ.setdefault("DATABASE_URI", "sqlite+pysqlite:///:memory:")

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator


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
) -> Iterator[Callable[[], SqlAlchemyLicenseUnitOfWork]]:
    startup(engine=sqlite_engine, force=True)
    try:
        yield SqlAlchemyLicenseUnitOfWork
    finally:
        shutdown()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def monitor(clock: FixedClock) -> Monitor:
    return Monitor(memory_probe=lambda: 0, wall_clock=clock)


@pytest.fixture
def cache() -> InMemoryCache:
    return InMemoryCache()
