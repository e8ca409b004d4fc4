"""Pytest configuration and fixtures for the tenant deletion tests.

This module provides centralized test fixtures for:
- Per-test SQLite databases with foreign keys enforced
- Session factories handed to the deletion services
- A minimal three-table schema (``a``, ``b``, ``c``) for orchestration tests
- Service instances wired with a mocked notifier
- FastAPI async client with dependency overrides
- Test data factories
"""

import os

# Settings are read at import time; provide test values before importing the app.
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-tenant-deletion-suite-0001")
os.environ.setdefault("POSTGRES_PASSWORD", "test-password")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./.pytest-tenant-deletion.db")
os.environ.setdefault("JSON_LOGS", "false")

from collections.abc import AsyncGenerator, Iterable  # noqa: E402
from pathlib import Path  # noqa: E402
from unittest.mock import AsyncMock  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy import MetaData, Table, event  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool  # noqa: E402

from app.core.database import Base  # noqa: E402
from app.models import business, deletion, tenant  # noqa: E402, F401
from app.services.deletion.approval import ApprovalGate  # noqa: E402
from app.services.deletion.audit import AuditTrailRecorder  # noqa: E402
from app.services.deletion.emergency_stop import EmergencyStopController  # noqa: E402
from app.services.deletion.estimator import DryRunEstimator  # noqa: E402
from app.services.deletion.notifications import DeletionNotifier  # noqa: E402
from app.services.deletion.orchestrator import DeletionOrchestrator  # noqa: E402
from app.services.deletion.plan import DeletionPlan, build_default_plan  # noqa: E402
from tests import factories as test_factories  # noqa: E402
from tests.minimal_schema import CORE_TABLES, MINIMAL_METADATA, minimal_plan  # noqa: E402

# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests (fast, no external dependencies)")
    config.addinivalue_line("markers", "integration: Integration tests (HTTP API end to end)")


# ============================================================================
# Database Helpers
# ============================================================================


def _enable_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


async def create_test_engine(
    path: Path,
    schemas: Iterable[tuple[MetaData, list[Table] | None]] = ((Base.metadata, None),),
) -> AsyncEngine:
    """
    Create a file-backed SQLite engine and build the given schemas.

    A file (rather than ``:memory:``) lets every session get its own
    connection, so concurrent claims really do race on the database.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{path}", poolclass=NullPool)
    event.listen(engine.sync_engine, "connect", _enable_foreign_keys)
    async with engine.begin() as conn:
        for metadata, tables in schemas:
            await conn.run_sync(metadata.create_all, tables=tables)
    return engine


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest_asyncio.fixture
async def db_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Full application schema, fresh for every test."""
    engine = await create_test_engine(tmp_path / "deletion.db")
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return make_session_factory(db_engine)


@pytest_asyncio.fixture
async def minimal_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Core tables plus the three bare tables ``a``, ``b`` and ``c``."""
    engine = await create_test_engine(
        tmp_path / "minimal.db",
        schemas=(
            (Base.metadata, [Base.metadata.tables[name] for name in CORE_TABLES]),
            (MINIMAL_METADATA, None),
        ),
    )
    yield engine
    await engine.dispose()


@pytest.fixture
def minimal_session_factory(minimal_engine) -> async_sessionmaker[AsyncSession]:
    return make_session_factory(minimal_engine)


@pytest.fixture
def minimal_tables() -> dict[str, Table]:
    return {name: MINIMAL_METADATA.tables[name] for name in ("a", "b", "c")}


# ============================================================================
# Service Fixtures
# ============================================================================


@pytest.fixture
def notifier() -> AsyncMock:
    """Notifier double; webhook delivery and cache purge are asserted, not performed."""
    mock = AsyncMock(spec=DeletionNotifier)
    mock.notify.return_value = False
    mock.purge_tenant_cache.return_value = 0
    return mock


@pytest.fixture
def sleep() -> AsyncMock:
    """Backoff sleep that returns immediately and records requested delays."""
    return AsyncMock()


@pytest.fixture
def default_plan() -> DeletionPlan:
    return build_default_plan()


@pytest.fixture
def gate(session_factory, notifier) -> ApprovalGate:
    return ApprovalGate(session_factory, notifier=notifier, min_root_users=2, grace_period_days=0)


@pytest.fixture
def estimator(session_factory, default_plan) -> DryRunEstimator:
    return DryRunEstimator(session_factory, default_plan, min_root_users=2)


@pytest.fixture
def recorder(session_factory) -> AuditTrailRecorder:
    return AuditTrailRecorder(session_factory)


@pytest.fixture
def orchestrator(session_factory, default_plan, notifier, sleep) -> DeletionOrchestrator:
    return DeletionOrchestrator(
        session_factory,
        default_plan,
        notifier=notifier,
        max_retries=3,
        backoff_base_seconds=1,
        backoff_max_seconds=30,
        heartbeat_timeout_seconds=300,
        sleep=sleep,
    )


@pytest.fixture
def minimal_gate(minimal_session_factory, notifier) -> ApprovalGate:
    return ApprovalGate(
        minimal_session_factory, notifier=notifier, min_root_users=2, grace_period_days=0
    )


@pytest.fixture
def minimal_stop(minimal_session_factory) -> EmergencyStopController:
    return EmergencyStopController(minimal_session_factory)


@pytest.fixture
def minimal_recorder(minimal_session_factory) -> AuditTrailRecorder:
    return AuditTrailRecorder(minimal_session_factory)


@pytest.fixture
def make_orchestrator(minimal_session_factory, notifier, sleep):
    """Build an orchestrator over the minimal schema for a custom plan."""

    def _make(plan: DeletionPlan | None = None, **kwargs) -> DeletionOrchestrator:
        options = {
            "notifier": notifier,
            "max_retries": 3,
            "backoff_base_seconds": 1,
            "backoff_max_seconds": 30,
            "heartbeat_timeout_seconds": 300,
            "sleep": sleep,
        }
        options.update(kwargs)
        return DeletionOrchestrator(minimal_session_factory, plan or minimal_plan(), **options)

    return _make


# ============================================================================
# Factory Fixtures
# ============================================================================


class FactoriesWrapper:
    """
    Wrapper that runs each factory in its own committed session.

    The deletion services open their own sessions, so test data has to be
    committed before they can see it.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def _run(self, factory, *args, **kwargs):
        async with self.session_factory() as session:
            result = await factory(session, *args, **kwargs)
            await session.commit()
            return result

    async def create_tenant(self, **kwargs):
        return await self._run(test_factories.create_tenant_async, **kwargs)

    async def create_user(self, tenant=None, **kwargs):
        return await self._run(test_factories.create_user_async, tenant, **kwargs)

    async def create_root_user(self, tenant=None, **kwargs):
        return await self._run(test_factories.create_user_async, tenant, role="root", **kwargs)

    async def create_tenant_with_roots(self, root_count=2, **tenant_kwargs):
        return await self._run(test_factories.create_tenant_with_roots, root_count, **tenant_kwargs)

    async def create_legal_hold(self, tenant, **kwargs):
        return await self._run(test_factories.create_legal_hold_async, tenant, **kwargs)

    async def populate_tenant(self, tenant, owner, **counts):
        return await self._run(test_factories.populate_tenant, tenant, owner, **counts)

    async def insert_rows(self, table, tenant, count):
        return await self._run(test_factories.insert_rows, table, tenant, count)


@pytest.fixture
def factories(session_factory) -> FactoriesWrapper:
    return FactoriesWrapper(session_factory)


@pytest.fixture
def minimal_factories(minimal_session_factory) -> FactoriesWrapper:
    return FactoriesWrapper(minimal_session_factory)


# ============================================================================
# FastAPI Client Fixtures
# ============================================================================


@pytest_asyncio.fixture
async def async_client(session_factory, notifier) -> AsyncGenerator:
    """
    Provide an async HTTP client bound to the per-test database.

    Lifespan events are not run, so startup never touches the configured
    database or Redis. Dependency overrides are cleared after the test.
    """
    from httpx import ASGITransport, AsyncClient

    from app.api.deps import get_notifier
    from app.core.database import get_db, get_session_factory
    from app.main import app

    async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_notifier] = lambda: notifier

    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac
    finally:
        app.dependency_overrides.clear()
