"""
Root conftest.py — Shared fixtures for ALL tests (unit + integration)

Fixture hierarchy:
  function-scoped : test_settings, stub_provider, gateway, db_engine,
                    session_factory, repository, memory_store, sql_store

Environment strategy:
  - Every test uses the deterministic StubProvider (no network, no API keys).
  - SQL-backed components run on a throwaway SQLite file per test
    (sqlite+aiosqlite), created with Base.metadata.create_all.
  - The gateway's backoff sleep is replaced with a recorder, so retry tests
    run instantly and can assert the delays.

How to run:
  pytest                          # all tests
  pytest -m unit                  # unit tests only (fast, no I/O beyond SQLite)
  pytest -m integration           # API tests through httpx.ASGITransport
  pytest tests/unit/test_pipeline.py
"""

from __future__ import annotations

import os
import uuid
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

# ─────────────────────────────────────────────────────────────────────────────
# Patch settings BEFORE any app imports so modules read test config
# ─────────────────────────────────────────────────────────────────────────────

os.environ.setdefault("AI_PROVIDER",           "stub")
os.environ.setdefault("DATABASE_URL",          "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("CELERY_BROKER_URL",     "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")
os.environ.setdefault("APP_ENV",               "development")
os.environ.setdefault("DEBUG",                 "true")

from docintel.core.config import Settings  # noqa: E402
from docintel.db.session import create_session_factory, create_tables  # noqa: E402
from docintel.llm.gateway import ProviderGateway  # noqa: E402
from docintel.llm.stub_provider import StubProvider  # noqa: E402
from docintel.services.documents import SQLDocumentRepository  # noqa: E402
from docintel.vectorstore.memory_store import InMemoryChunkStore  # noqa: E402
from docintel.vectorstore.sql_store import SQLChunkStore  # noqa: E402

TEST_DIMENSIONS = 64


# ─────────────────────────────────────────────────────────────────────────────
# Tenant and document fixtures
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def test_tenant_id() -> uuid.UUID:
    """A stable UUID used as tenant_id across all tests."""
    return uuid.UUID("aaaaaaaa-aaaa-aaaa-aaaa-aaaaaaaaaaaa")


@pytest.fixture
def other_tenant_id() -> uuid.UUID:
    """A second tenant whose data must never leak into test_tenant_id results."""
    return uuid.UUID("bbbbbbbb-bbbb-bbbb-bbbb-bbbbbbbbbbbb")


@pytest.fixture
def test_document_id() -> uuid.UUID:
    """A stable UUID for document references."""
    return uuid.UUID("cccccccc-cccc-cccc-cccc-cccccccccccc")


# ─────────────────────────────────────────────────────────────────────────────
# Settings + AI provider
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def storage_root(tmp_path):
    root = tmp_path / "storage"
    root.mkdir()
    return root


@pytest.fixture
def test_settings(tmp_path, storage_root) -> Settings:
    return Settings(
        _env_file=None,
        ai_provider="stub",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'docintel-test.db'}",
        db_create_tables=True,
        stub_embedding_dimensions=TEST_DIMENSIONS,
        provider_retry_base_delay=0.0,
        chunk_store_backend="sql",
        pipeline_scheduler="local",
        pipeline_max_concurrency=2,
        pipeline_retry_delay=0.01,
        pipeline_max_deferrals=3,
        storage_root=str(storage_root),
        search_index_url="",
    )


@pytest.fixture
def stub_provider() -> StubProvider:
    return StubProvider(dimensions=TEST_DIMENSIONS)


@pytest.fixture
def sleep_calls() -> list[float]:
    return []


@pytest.fixture
def fake_sleep(sleep_calls):
    """Replacement for asyncio.sleep that records the requested delay."""
    async def _sleep(delay: float) -> None:
        sleep_calls.append(delay)
    return _sleep


@pytest.fixture
def gateway(stub_provider, fake_sleep) -> ProviderGateway:
    return ProviderGateway(stub_provider, max_retries=2, retry_base_delay=0.3, sleep=fake_sleep)


# ─────────────────────────────────────────────────────────────────────────────
# Database
# ─────────────────────────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def db_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Fresh SQLite database file with all tables created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'unit.db'}")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest.fixture
def repository(session_factory) -> SQLDocumentRepository:
    return SQLDocumentRepository(session_factory)


# ─────────────────────────────────────────────────────────────────────────────
# Chunk stores
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def memory_store() -> InMemoryChunkStore:
    return InMemoryChunkStore()


@pytest.fixture
def sql_store(session_factory) -> SQLChunkStore:
    return SQLChunkStore(session_factory)


@pytest.fixture(params=["memory", "sql"])
def chunk_store(request):
    """Runs a test once per chunk store backend."""
    return request.getfixturevalue(f"{request.param}_store")


# ─────────────────────────────────────────────────────────────────────────────
# Scheduler double
# ─────────────────────────────────────────────────────────────────────────────

class RecordingScheduler:
    """PipelineScheduler that only records submissions."""

    def __init__(self) -> None:
        self.submitted: list[uuid.UUID] = []

    async def submit(self, document_id: uuid.UUID) -> None:
        self.submitted.append(document_id)

    async def aclose(self) -> None:
        return None


@pytest.fixture
def recording_scheduler() -> RecordingScheduler:
    return RecordingScheduler()
