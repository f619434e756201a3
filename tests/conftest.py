import os
import tempfile

# Settings are read at import time; point them somewhere disposable first.
os.environ.setdefault("PATIENT_NOTES_DATA_DIR", tempfile.mkdtemp(prefix="patient-notes-"))
os.environ.setdefault("GROUP_DB_URL", "sqlite://")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app import app
from db import Base, get_db
from local_store import LocalStore
from records import add_note, add_patient, default_dataset, new_note, new_patient
from sync_client import SyncClient


@pytest.fixture
def db_session():
    """Fresh in-memory group database per test."""
    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    Base.metadata.create_all(engine)
    TestingSession = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def client(db_session):
    """TestClient whose requests all share the per-test database."""
    app.dependency_overrides[get_db] = lambda: db_session
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def sync_client(client):
    return SyncClient(base_url="http://testserver", session=client, timeout=None)


@pytest.fixture
def store(tmp_path):
    return LocalStore(directory=tmp_path)


@pytest.fixture
def dataset():
    """Two patients with one note each."""
    ds = default_dataset()
    alice = new_patient("Alice", id="p1", hn="HN-1", updatedAt="2024-01-01T00:00:00.000Z")
    bob = new_patient("Bob", id="p2", hn="HN-2", updatedAt="2024-01-01T00:00:00.000Z")
    ds = add_patient(add_patient(ds, alice), bob)
    ds = add_note(ds, new_note("p1", id="n1", author="dr-a", timestamp="2024-01-02T08:00:00.000Z"))
    ds = add_note(ds, new_note("p2", id="n2", author="dr-b", timestamp="2024-01-02T09:00:00.000Z"))
    return ds
