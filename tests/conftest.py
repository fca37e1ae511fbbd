"""
Test configuration and fixtures for pytest.

This module provides shared fixtures used across all tests:
- Test database (SQLite in-memory for speed)
- Test client (FastAPI TestClient)
- Orchestrator wired to fakes (no network, no real sleeps)
"""

import uuid
from typing import Generator, Optional
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from bwork.db.base import Base
from bwork.db.session import get_db
from bwork.main import app
from bwork.routers.sandbox import get_pipeline_orchestrator
from bwork.sandbox.cancellation import CancellationRegistry
from bwork.sandbox.orchestrator import PipelineOrchestrator
from bwork.sandbox.store import SandboxStore
from bwork.sandbox.validation.health_checker import HealthChecker

from sandbox_fakes import SIMPLE_APP, FakeProvider, StubFactory, healthy_transport


# ---------------------------------------------------------------------------
# TEST DATABASE SETUP
# ---------------------------------------------------------------------------
# Use SQLite in-memory for fast tests (no PostgreSQL dependency)
# StaticPool keeps the same connection across all operations

SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},  # Required for SQLite
    poolclass=StaticPool,
)

TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


# ---------------------------------------------------------------------------
# DATABASE FIXTURES
# ---------------------------------------------------------------------------

@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """
    Create a fresh database for each test function.

    - Creates all tables
    - Yields a session for the test
    - Drops all tables after test (clean slate)
    """
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def store(db: Session) -> SandboxStore:
    """SandboxStore bound to the test database."""
    return SandboxStore(TestingSessionLocal)


@pytest.fixture
def tool_id(store: SandboxStore) -> uuid.UUID:
    """A stored tool with a trivial component."""
    tid = uuid.uuid4()
    store.save_tool_code(tid, SIMPLE_APP, name="Greeting")
    return tid


# ---------------------------------------------------------------------------
# PIPELINE FIXTURES
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def no_dev_server_settle():
    """Dev-server launches wait for Vite to come up; skip that in tests."""
    with patch("bwork.sandbox.providers.base.cancellable_sleep", new_callable=AsyncMock):
        yield


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def ai_repairer() -> MagicMock:
    """AI repairer double that is unavailable unless a test says otherwise."""
    repairer = MagicMock()
    repairer.is_ai_repair_available.return_value = False
    repairer.apply_ai_repair = AsyncMock()
    repairer.repair_code = AsyncMock()
    return repairer


@pytest.fixture
def make_orchestrator(store: SandboxStore, ai_repairer: MagicMock):
    """Build an orchestrator around a provider, with fast health checks."""
    def _make(
        provider: Optional[FakeProvider] = None,
        transport: Optional[httpx.MockTransport] = None,
        factory=None,
        **kwargs,
    ) -> PipelineOrchestrator:
        return PipelineOrchestrator(
            store=store,
            provider_factory=factory or StubFactory(provider or FakeProvider()),
            ai_repairer=ai_repairer,
            health_checker=HealthChecker(transport=transport or healthy_transport()),
            registry=kwargs.pop("registry", CancellationRegistry()),
            health_attempts=kwargs.pop("health_attempts", 2),
            health_interval_ms=kwargs.pop("health_interval_ms", 0),
            health_timeout_ms=kwargs.pop("health_timeout_ms", 500),
            **kwargs,
        )
    return _make


# ---------------------------------------------------------------------------
# API FIXTURES
# ---------------------------------------------------------------------------

@pytest.fixture(scope="function")
def client(db: Session) -> Generator[TestClient, None, None]:
    """
    Create a test client with the test database.

    Each request gets its own session so reads see the pipeline's writes.
    """
    def override_get_db():
        session = TestingSessionLocal()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def use_orchestrator():
    """Route the API through the given orchestrator."""
    def _use(orchestrator: PipelineOrchestrator) -> PipelineOrchestrator:
        app.dependency_overrides[get_pipeline_orchestrator] = lambda: orchestrator
        return orchestrator
    return _use
