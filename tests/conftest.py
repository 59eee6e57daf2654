"""pytest fixtures for mediaflow tests.

Provides:
- database_url: Session-scoped PostgreSQL testcontainer with migrations applied
  (temporary SQLite database when Docker is unavailable)
- utc_timezone: Autouse fixture enforcing UTC timezone
- session_factory / session: Function-scoped database access with table cleanup
- uow_factory: Function-scoped UnitOfWork factory
- clock / job_store / queue: In-memory job store with a controllable clock
"""

import os
import subprocess
import sys
from pathlib import Path
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import SQLModel

os.environ.setdefault("APP_ENV", "test")

import mediaflow.models  # noqa: E402,F401
from mediaflow.core.database import setup_db_session  # noqa: E402
from mediaflow.services.billing import BillingService  # noqa: E402
from mediaflow.services.queue import QueueService  # noqa: E402
from mediaflow.store import MemoryJobStore  # noqa: E402
from mediaflow.uow import create_uow_factory  # noqa: E402

PROJECT_ROOT = Path(__file__).resolve().parent.parent

# Dependent tables first
LEDGER_TABLES = ("voucher_usage", "vouchers", "wallet_transactions", "wallets")


@pytest.fixture(scope="session")
def database_url(tmp_path_factory):
    """Provide session-scoped database URL with the schema in place.

    Prefers a PostgreSQL container (migrations applied with alembic in a
    subprocess to avoid asyncio event loop conflicts). Falls back to a
    temporary SQLite file when Docker is not reachable; its tables are
    created from SQLModel metadata by ``session_factory``.
    """
    try:
        from testcontainers.postgres import PostgresContainer

        container = PostgresContainer(
            image="postgres:17",
            username="test",
            password="test",
            dbname="test_mediaflow",
        ).with_bind_ports(5432, None)
        container.start()
    except Exception:
        db_path = tmp_path_factory.mktemp("ledger") / "ledger.sqlite3"
        yield f"sqlite+aiosqlite:///{db_path}"
        return

    try:
        db_url = container.get_connection_url(driver="psycopg")

        env = os.environ.copy()
        env["DATABASE_URL"] = db_url
        subprocess.run(
            [sys.executable, "-m", "alembic", "upgrade", "head"],
            check=True,
            capture_output=True,
            text=True,
            env=env,
            cwd=PROJECT_ROOT,
        )

        yield db_url
    finally:
        container.stop()


@pytest.fixture(scope="session", autouse=True)
def utc_timezone():
    """Enforce UTC timezone for all tests."""
    os.environ["TZ"] = "UTC"
    yield


@pytest_asyncio.fixture(scope="function")
async def session_factory(database_url):
    """Provide function-scoped session factory with table cleanup after each test."""
    factory = setup_db_session(database_url, pool_size=5)
    engine = factory.kw["bind"]

    if database_url.startswith("sqlite"):
        async with engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)

    yield factory

    async with engine.begin() as conn:
        for table in LEDGER_TABLES:
            await conn.execute(text(f"DELETE FROM {table}"))
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Provide function-scoped database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture(scope="function")
async def uow_factory(session_factory):
    """Provide function-scoped UnitOfWork factory."""
    return create_uow_factory(session_factory)


@pytest_asyncio.fixture(scope="function")
async def billing(uow_factory) -> BillingService:
    return BillingService(uow_factory)


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def job_store(clock) -> MemoryJobStore:
    return MemoryJobStore(clock=clock)


@pytest.fixture
def queue(job_store) -> QueueService:
    return QueueService(job_store)
