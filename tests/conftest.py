"""Shared pytest fixtures for BudgetWise: in-memory store, rolled-back sessions and an API client."""

from __future__ import annotations

import pathlib
import sys
from collections.abc import Iterator
from contextlib import contextmanager

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session, sessionmaker

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from budgetwise import crud, schemas  # noqa: E402
from budgetwise.config import Settings  # noqa: E402
from budgetwise.database import Base, Database, get_db  # noqa: E402
from budgetwise.server import create_app  # noqa: E402

TEST_SECRET = "budgetwise-test-secret-0123456789"
TEST_PASSWORD = "correct-horse"


@pytest.fixture(autouse=True)
def _quiet_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep developer shells from leaking settings into the tests."""

    for name in (
        "BUDGETWISE_CONFIG",
        "BUDGETWISE_DB_PATH",
        "BUDGETWISE_DATABASE_URL",
        "BUDGETWISE_SECRET_KEY",
        "BUDGETWISE_TOKEN_EXPIRY_DAYS",
        "BUDGETWISE_LOG_LEVEL",
        "BUDGETWISE_JSON_LOGS",
        "BUDGETWISE_CORS_ORIGINS",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(scope="session")
def settings() -> Settings:
    return Settings(database_url="sqlite://", secret_key=TEST_SECRET)


@pytest.fixture(scope="session")
def database() -> Iterator[Database]:
    test_database = Database("sqlite://")
    test_database.init_db()
    yield test_database
    Base.metadata.drop_all(bind=test_database.engine)
    test_database.dispose()


@pytest.fixture(scope="session")
def isolated_session(database: Database):
    """Factory for sessions whose work is rolled back when the block exits.

    Hypothesis tests open one per generated example; regular tests use
    :func:`db_session`.
    """

    @contextmanager
    def _open() -> Iterator[Session]:
        connection = database.engine.connect()
        transaction = connection.begin()
        TestingSessionLocal = sessionmaker(bind=connection, autoflush=False, autocommit=False, future=True)
        session: Session = TestingSessionLocal()
        try:
            yield session
        finally:
            session.close()
            transaction.rollback()
            connection.close()

    return _open


@pytest.fixture()
def db_session(isolated_session) -> Iterator[Session]:
    with isolated_session() as session:
        yield session


@pytest.fixture()
def user(db_session: Session):
    return crud.register_user(db_session, schemas.Credentials(username="alice", password=TEST_PASSWORD))


@pytest.fixture()
def other_user(db_session: Session):
    return crud.register_user(db_session, schemas.Credentials(username="bob", password=TEST_PASSWORD))


@pytest.fixture()
def app(settings: Settings, database: Database):
    return create_app(settings, database=database)


@pytest.fixture()
def client(app, db_session: Session) -> Iterator[TestClient]:
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    # No context manager: the lifespan would run DDL on the connection held by db_session.
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture()
def register(client: TestClient):
    """Register a user through the API and return its bearer headers."""

    def _register(username: str = "alice", password: str = TEST_PASSWORD) -> dict[str, str]:
        response = client.post("/users/register", json={"username": username, "password": password})
        assert response.status_code == 201, response.text
        return {"Authorization": f"Bearer {response.json()['token']}"}

    return _register


@pytest.fixture()
def auth_headers(register) -> dict[str, str]:
    return register()
