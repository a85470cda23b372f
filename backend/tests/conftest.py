# Test Configuration
import asyncio
import os
import sys
import time
from pathlib import Path

import pytest

# Add backend directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

# Test settings, applied before sqlbroker reads its configuration
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ENCRYPTION_KEY", "YWFhYWFhYWFhYWFhYWFhYWFhYWFhYWFhYWFhYWFhYWE=")
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-testing-only")
os.environ.setdefault("LOG_JSON", "false")

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import sqlbroker.models  # noqa: F401
from sqlbroker.connections.pool import StatementOutcome
from sqlbroker.connections.pool_registry import PoolRegistry
from sqlbroker.connections.vault import CredentialVault
from sqlbroker.database import Base
from sqlbroker.models.history import QueryExecution
from sqlbroker.services.execution_tracker import ExecutionTracker
from sqlbroker.services.history_ledger import HistoryLedger
from sqlbroker.services.query_broker import QueryBroker


class FakeTarget:
    """Behaviour shared by every FakePool built through its factory."""

    def __init__(self):
        self.connect_delay = 0.0
        self.connect_error = None
        self.run_delay = 0.0
        self.run_error = None
        self.rows = 0
        self.rows_affected = None
        self.pools = []
        self.statements = []

    def factory(self, descriptor, min_size=2, max_size=10, idle_timeout_seconds=30):
        pool = FakePool(self, descriptor, min_size=min_size, max_size=max_size)
        self.pools.append(pool)
        return pool


class FakePool:
    """In-memory stand-in for TargetPool with controllable latency and results."""

    def __init__(self, target, descriptor, min_size=2, max_size=10):
        self.target = target
        self.key = descriptor.pool_key
        self.name = descriptor.name
        self.min_size = min_size
        self.max_size = max_size
        self.in_flight = 0
        self.last_used = time.monotonic()
        self.connected = False
        self.closed = False

    @property
    def idle_seconds(self):
        if self.in_flight:
            return 0.0
        return time.monotonic() - self.last_used

    async def connect(self):
        await asyncio.sleep(self.target.connect_delay)
        if self.target.connect_error is not None:
            raise self.target.connect_error
        self.connected = True

    async def run(self, statement, max_rows):
        self.in_flight += 1
        self.target.statements.append(statement)
        try:
            await asyncio.sleep(self.target.run_delay)
            if self.target.run_error is not None:
                raise self.target.run_error
            if self.target.rows_affected is not None:
                return StatementOutcome(rows_affected=self.target.rows_affected)
            kept = min(self.target.rows, max_rows)
            return StatementOutcome(
                columns=["id"],
                rows=[{"id": i} for i in range(kept)],
                total_rows=self.target.rows,
                returns_rows=True
            )
        finally:
            self.in_flight -= 1
            self.last_used = time.monotonic()

    async def close(self):
        self.connected = False
        self.closed = True


@pytest.fixture
def engine():
    """In-memory metadata store shared across threads."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


@pytest.fixture
def vault(session_factory):
    return CredentialVault(session_factory)


@pytest.fixture
def ledger(session_factory):
    return HistoryLedger(session_factory)


@pytest.fixture
def tracker():
    return ExecutionTracker()


@pytest.fixture
def fake_target():
    return FakeTarget()


@pytest.fixture
def registry(vault, fake_target):
    return PoolRegistry(vault, pool_factory=fake_target.factory, min_size=2, max_size=10)


@pytest.fixture
def broker(registry, tracker, ledger):
    return QueryBroker(registry, tracker, ledger)


@pytest.fixture
def connection_id(vault):
    """Active MSSQL-style connection profile."""
    return vault.store(
        name="Sales reporting",
        config={"host": "sql01", "database": "Sales", "user": "broker"},
        password="s3cret",
        db_type="mssql",
        created_by="admin"
    )


@pytest.fixture
def backdate(session_factory):
    """Move a history record's created_at into the past."""
    def _backdate(execution_id, when):
        db = session_factory()
        try:
            db.query(QueryExecution).filter(QueryExecution.id == execution_id).update(
                {QueryExecution.created_at: when}, synchronize_session=False
            )
            db.commit()
        finally:
            db.close()
    return _backdate
