"""
Shared test fixtures for MRP Engine tests

Provides database setup, a fake Redis backed cache, client creation and
tenant headers
"""
import os

# Settings are read once at import time; point them at test backends first
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ["MRP_QUEUE_ENABLED"] = "false"

import fakeredis
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.api.v1.deps import get_cache
from app.db.base import Base
from app.db.session import get_db
from app.main import app
from app.services.mrp_cache import MRPCacheService
from tests.factories import reset_sequences

COMPANY_ID = 1


# Create in-memory SQLite database for testing
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"
engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def create_tables(engine):
    """Create all tables for testing using SQLAlchemy metadata"""
    # Import all models to ensure they're registered with Base
    import app.models  # noqa: F401

    Base.metadata.create_all(bind=engine)


def drop_tables(engine):
    """Drop all tables after testing"""
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session():
    """Create a fresh database session for each test"""
    create_tables(engine)
    reset_sequences()

    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        drop_tables(engine)


@pytest.fixture
def redis_client():
    """In-process Redis; the client decodes responses like the real one"""
    server = fakeredis.FakeServer()
    client = fakeredis.FakeRedis(server=server, decode_responses=True)
    yield client
    client.flushall()


@pytest.fixture
def cache(redis_client):
    return MRPCacheService(client=redis_client)


@pytest.fixture
def client(db_session, cache):
    """Create a test client with database and cache overrides"""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_cache] = lambda: cache
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def company_headers():
    return {"X-Company-ID": str(COMPANY_ID), "X-User-ID": "7"}


class RecordingQueue:
    """Stands in for an rq Queue; keeps enqueued calls instead of running them"""

    def __init__(self):
        self.jobs = []

    def enqueue(self, func, *args, **kwargs):
        self.jobs.append({"func": func, "args": args, "kwargs": kwargs})
        return type("Job", (), {"id": f"job-{len(self.jobs)}"})()


@pytest.fixture
def recording_queue():
    return RecordingQueue()
