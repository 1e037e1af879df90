from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError

from licensesync.adapters.sqlalchemy.unit_of_work import (
    SqlAlchemyLicenseUnitOfWork,
    StartupError,
    is_started,
    shutdown,
    startup,
)
from licensesync.domain.model import LicenseStatus
from tests.helpers.licenses import make_license

if TYPE_CHECKING:
    from collections.abc import Iterator

    from sqlalchemy.engine import Engine


@pytest.fixture(autouse=True)
def reset_unit_of_work_state() -> Iterator[None]:
    shutdown()
    yield
    shutdown()


def test_unit_of_work_requires_startup() -> None:
    with pytest.raises(StartupError):
        SqlAlchemyLicenseUnitOfWork()


def test_startup_requires_force_for_reconfiguration() -> None:
    engine_a = create_engine("sqlite+pysqlite:///:memory:", future=True)
    engine_b = create_engine("sqlite+pysqlite:///:memory:", future=True)

    startup(engine=engine_a, force=True)

    with pytest.raises(StartupError):
        startup(engine=engine_b)

    startup(engine=engine_b, force=True)
    assert is_started()

    shutdown()
    assert not is_started()


def test_repositories_unavailable_outside_context(sqlite_engine: Engine) -> None:
    startup(engine=sqlite_engine, force=True)
    uow = SqlAlchemyLicenseUnitOfWork()

    with pytest.raises(StartupError):
        _ = uow.repositories


def test_commit_persists_license(sqlite_engine: Engine) -> None:
    startup(engine=sqlite_engine, force=True)
    license_ = make_license(key="LIC-1", appid="APP-1", dba="Persisted")

    with SqlAlchemyLicenseUnitOfWork() as uow:
        uow.repositories.licenses.add(license_)
        uow.commit()

    with SqlAlchemyLicenseUnitOfWork() as uow:
        stored = uow.repositories.licenses.get(license_.id)
        assert stored is not None
        assert stored.dba == "Persisted"
        assert stored.status is LicenseStatus.ACTIVE


def test_leaving_without_commit_discards_changes(sqlite_engine: Engine) -> None:
    startup(engine=sqlite_engine, force=True)
    license_ = make_license(key="LIC-1")

    with SqlAlchemyLicenseUnitOfWork() as uow:
        uow.repositories.licenses.add(license_)

    with SqlAlchemyLicenseUnitOfWork() as uow:
        assert uow.repositories.licenses.get(license_.id) is None


def test_exception_rolls_back_and_propagates(sqlite_engine: Engine) -> None:
    startup(engine=sqlite_engine, force=True)
    license_ = make_license(key="LIC-1")

    with pytest.raises(RuntimeError), SqlAlchemyLicenseUnitOfWork() as uow:
        uow.repositories.licenses.add(license_)
        uow.session.flush()
        raise RuntimeError("boom")

    with SqlAlchemyLicenseUnitOfWork() as uow:
        assert uow.repositories.licenses.list_all() == []


def test_failed_savepoint_keeps_earlier_writes(sqlite_engine: Engine) -> None:
    startup(engine=sqlite_engine, force=True)
    first = make_license(key="LIC-1", countid=1)
    clash = make_license(key="LIC-1", countid=2)
    second = make_license(key="LIC-2", countid=3)

    with SqlAlchemyLicenseUnitOfWork() as uow:
        repository = uow.repositories.licenses
        with uow.savepoint():
            repository.add(first)
        with pytest.raises(IntegrityError), uow.savepoint():
            repository.add(clash)
        with uow.savepoint():
            repository.add(second)
        uow.commit()

    with SqlAlchemyLicenseUnitOfWork() as uow:
        stored = uow.repositories.licenses.list_all()
        assert sorted(license_.key for license_ in stored) == ["LIC-1", "LIC-2"]
        assert {license_.countid for license_ in stored} == {1, 3}
