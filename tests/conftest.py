# tests/conftest.py

import os

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from starlette.testclient import TestClient

from app.api import deps
from app.core.config import settings
from app.core.limiter import limiter
from app.core.seed import SeedData, compute_seed, derive_coefficients
from app.db.session import get_db
from app.main import app
from app.models import Base
from app.schemas.token import TokenPayload

TEST_REMOTE_URL = "https://github.com/dropspot/dropspot-service.git"
TEST_FIRST_COMMIT_EPOCH = "1704067200"
TEST_PROJECT_START_TIME = "202401011200"


def _make_engine(url: str):
    if not url.startswith("sqlite"):
        return create_engine(url, pool_pre_ping=True)

    engine = create_engine(url, connect_args={"check_same_thread": False, "timeout": 30})

    # pysqlite's own transaction handling breaks SAVEPOINT and defers locking;
    # take it over so each transaction holds the write lock from its BEGIN.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


@pytest.fixture(scope="session")
def engine(tmp_path_factory):
    url = os.environ.get("TEST_DATABASE_URL") or (
        f"sqlite:///{tmp_path_factory.mktemp('db') / 'dropspot_test.db'}"
    )
    engine = _make_engine(url)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="session")
def session_factory(engine):
    # Objects stay readable after commit without reopening a transaction,
    # which on SQLite would hold the write lock against other sessions.
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


@pytest.fixture(scope="function")
def db_session(engine, session_factory):
    """
    A session on the test database. The services commit, so tables are
    emptied after each test instead of rolling back.
    """
    session = session_factory()
    yield session
    session.rollback()
    session.close()
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture(scope="session")
def seed() -> SeedData:
    value = compute_seed(TEST_REMOTE_URL, TEST_FIRST_COMMIT_EPOCH, TEST_PROJECT_START_TIME)
    return SeedData(
        seed=value,
        coefficients=derive_coefficients(value),
        project_start_time=TEST_PROJECT_START_TIME,
        remote_url=TEST_REMOTE_URL,
        first_commit_epoch=TEST_FIRST_COMMIT_EPOCH,
    )


# --- Mock Dependencies Setup ---
def make_token(sub: str, role: str = "USER") -> TokenPayload:
    return TokenPayload(sub=sub, role=role, exp=9999999999)


class AuthSwitch:
    """Lets a test choose which user the API sees as authenticated."""

    def __init__(self):
        self.current = make_token("usr_anonymous0")

    def login(self, user_id: str, role: str = "USER"):
        self.current = make_token(user_id, role)

    def __call__(self) -> TokenPayload:
        return self.current


@pytest.fixture(scope="function")
def auth() -> AuthSwitch:
    return AuthSwitch()


# --- Test Client Fixtures ---
@pytest.fixture(scope="function")
def test_client(monkeypatch, db_session, session_factory, seed, auth):
    """
    TestClient backed by the test database, with authentication, the
    fairness seed, the scheduler and rate limits taken out of the picture.
    """
    monkeypatch.setattr(settings, "SCHEDULER_ENABLED", False)
    monkeypatch.setattr(limiter, "enabled", False)

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[deps.get_current_user] = auth
    app.dependency_overrides[deps.get_seed] = lambda: seed

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()
