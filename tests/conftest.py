"""
Shared pytest fixtures.

Uses a SQLite database so no Postgres is required for tests. DATABASE_URL is
pointed at it before the application is imported.
"""
import os

SQLITE_URL = "sqlite:///./test_cadence.db"
os.environ["DATABASE_URL"] = SQLITE_URL

from datetime import datetime  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from cadence.core.clock import fixed, get_clock  # noqa: E402
from cadence.db.base import Base, get_db  # noqa: E402
from cadence.main import app  # noqa: E402
import cadence.models  # noqa: E402,F401

engine = create_engine(SQLITE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(scope="session", autouse=True)
def create_tables():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clean_tables():
    yield
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture()
def db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def client(db):
    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture()
def freeze(client):
    """freeze(datetime) pins the clock every endpoint sees."""
    def _freeze(moment: datetime) -> None:
        app.dependency_overrides[get_clock] = lambda: fixed(moment)
    return _freeze
