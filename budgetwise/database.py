"""Database configuration for the BudgetWise backend."""
from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from fastapi import Request
from sqlalchemy import Engine, create_engine, event
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .errors import InternalError

Base = declarative_base()


def _configure_sqlite(engine: Engine) -> None:
    """Enable foreign keys and let SQLAlchemy own transaction boundaries.

    pysqlite defers ``BEGIN`` until the first DML statement, which breaks
    savepoints; disabling its implicit handling and emitting ``BEGIN``
    ourselves keeps ``Session.begin_nested`` reliable.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, _record) -> None:  # pragma: no cover - driver hook
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(connection) -> None:  # pragma: no cover - driver hook
        connection.exec_driver_sql("BEGIN")


class Database:
    """Explicitly constructed store handle shared by one application instance."""

    def __init__(self, url: str, *, echo: bool = False) -> None:
        self.url = url
        kwargs: dict = {"echo": echo, "future": True}
        if url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            if url in {"sqlite://", "sqlite:///:memory:"}:
                kwargs["poolclass"] = StaticPool
        self.engine = create_engine(url, **kwargs)
        if url.startswith("sqlite"):
            _configure_sqlite(self.engine)
        self.session_factory = sessionmaker(bind=self.engine, autocommit=False, autoflush=False, future=True)

    def init_db(self) -> None:
        """Create database tables if they do not already exist."""
        from . import models  # noqa: F401  # Import models for metadata registration

        Base.metadata.create_all(bind=self.engine)

    def dispose(self) -> None:
        self.engine.dispose()

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """Provide a transactional scope around a series of operations."""
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


def get_db(request: Request) -> Iterator[Session]:
    """FastAPI dependency that provides a database session."""
    database: Database = request.app.state.database
    try:
        with database.session_scope() as session:
            yield session
    except OperationalError as exc:
        raise InternalError("Database unavailable.") from exc
