"""SQLAlchemy-backed unit of work for the license store."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal

from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from licensesync.adapters.sqlalchemy.mappings import create_all_tables, start_mappers
from licensesync.adapters.sqlalchemy.repositories import SqlAlchemyLicenseRepository
from licensesync.config.storage import get_database_config
from licensesync.domain.ports.unit_of_work import LicenseRepositories, RepositoryCollection

if TYPE_CHECKING:
    from sqlite3 import Connection as SQLiteConnection
    from types import TracebackType

    from sqlalchemy.engine import Connection, Engine
    from sqlalchemy.orm import SessionTransaction


class StartupError(RuntimeError):
    """Raised when a SQLAlchemy unit of work is used before initialisation."""


@dataclass(slots=True)
class _AdapterState:
    _engine: Engine | None = None
    _session_factory: sessionmaker[Session] | None = None

    @property
    def engine(self) -> Engine | None:
        return self._engine

    @engine.setter
    def engine(self, value: Engine | None) -> None:
        self._session_factory = None
        self._engine = value

    @property
    def session_factory(self) -> sessionmaker[Session]:
        if self._engine is None:
            raise StartupError(
                "SQLAlchemy adapter not initialised. Call licensesync.adapters.sqlalchemy."
                "unit_of_work.startup() before requesting a unit of work."
            )
        if self._session_factory is None:
            self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)
        return self._session_factory


_STATE = _AdapterState()


def _sqlite_connect(dbapi_connection: SQLiteConnection, connection_record: object) -> None:
    _ = connection_record
    # let SQLAlchemy emit BEGIN itself so SAVEPOINT nests inside it
    dbapi_connection.isolation_level = None


def _sqlite_begin(connection: Connection) -> None:
    connection.exec_driver_sql("BEGIN")


def _enable_sqlite_savepoints(engine: Engine) -> None:
    if engine.dialect.name != "sqlite" or event.contains(engine, "begin", _sqlite_begin):
        return
    event.listen(engine, "connect", _sqlite_connect)
    event.listen(engine, "begin", _sqlite_begin)


def startup(
    *,
    engine: Engine | None = None,
    database_uri: str | None = None,
    force: bool = False,
) -> None:
    """Initialise the engine, the mappers and the schema."""

    if _STATE.engine is not None and not force:
        raise StartupError(
            "SQLAlchemy adapter already initialised. Pass force=True to reconfigure."
        )

    if engine is None:
        config = get_database_config()
        engine = create_engine(database_uri or config.uri, echo=config.echo, future=True)
    _enable_sqlite_savepoints(engine)
    start_mappers()
    create_all_tables(engine)
    _STATE.engine = engine


def is_started() -> bool:
    return _STATE.engine is not None


def shutdown() -> None:
    """Dispose the managed engine and reset state (primarily for tests)."""

    if _STATE.engine is not None:
        _STATE.engine.dispose()
    _STATE.engine = None


class BaseSqlAlchemyUnitOfWork[TRepositories: RepositoryCollection](ABC):
    """Generic SQLAlchemy unit of work with pluggable repository collections."""

    def __init__(self) -> None:
        self.session_factory: sessionmaker[Session] = _STATE.session_factory
        self._session: Session | None = None
        self._repositories: TRepositories | None = None

    @abstractmethod
    def _build_repositories(self, session: Session) -> TRepositories: ...

    def __enter__(self) -> BaseSqlAlchemyUnitOfWork[TRepositories]:
        self.session = self.session_factory()
        self._repositories = self._build_repositories(self.session)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> Literal[False]:
        if exc_type is not None:
            self.rollback()
        self.session.close()
        self.session = None
        self._repositories = None
        return False

    def savepoint(self) -> SessionTransaction:
        return self.session.begin_nested()

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()

    @property
    def repositories(self) -> TRepositories:
        if self._repositories is None:
            raise StartupError("Unit of work session not initialised")
        return self._repositories

    @property
    def session(self) -> Session:
        if self._session is None:
            raise StartupError("Unit of work session not initialised")
        return self._session

    @session.setter
    def session(self, session: Session | None) -> None:
        if self._session is not None and session is not None:
            raise StartupError("Unit of work session already initialised")
        self._session = session


class SqlAlchemyLicenseUnitOfWork(BaseSqlAlchemyUnitOfWork[LicenseRepositories]):
    """Unit of work over the license table."""

    def _build_repositories(self, session: Session) -> LicenseRepositories:
        return LicenseRepositories(licenses=SqlAlchemyLicenseRepository(session))


if TYPE_CHECKING:
    from licensesync.domain.ports.unit_of_work import LicenseUnitOfWork

    _uow_check: LicenseUnitOfWork = SqlAlchemyLicenseUnitOfWork()
