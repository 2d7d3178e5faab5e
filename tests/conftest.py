"""Pytest configuration and fixtures."""

import os

import pytest
import pytest_asyncio
import structlog

from relata import QueryResult, StatementError, get_dialect


class FakeExecutor:
    """Records every statement and replays scripted results.

    ``results`` are returned in order, one per statement; once exhausted an
    empty QueryResult is returned. Statements containing ``fail_on`` raise
    StatementError.
    """

    def __init__(self, dialect, results=None, *, in_transaction=False, fail_on=None):
        self._dialect = dialect
        self.in_transaction = in_transaction
        self.results = list(results or [])
        self.calls = []
        self.fail_on = fail_on
        self.rollback_error = None
        self.transactions = []

    @property
    def dialect(self):
        return self._dialect

    @property
    def statements(self):
        return [sql for sql, _ in self.calls]

    async def execute(self, sql, params=None):
        self.calls.append((sql, list(params or [])))
        if self.fail_on and self.fail_on in sql:
            raise StatementError("driver error: boom", sql=sql, params=params)
        if self.results:
            return self.results.pop(0)
        return QueryResult()

    async def begin(self):
        tx = FakeTransaction(self)
        self.transactions.append(tx)
        return tx


class FakeTransaction:
    in_transaction = True

    def __init__(self, parent):
        self._parent = parent
        self.committed = False
        self.rolled_back = False

    @property
    def dialect(self):
        return self._parent.dialect

    async def execute(self, sql, params=None):
        return await self._parent.execute(sql, params)

    async def commit(self):
        self.committed = True

    async def rollback(self):
        if self._parent.rollback_error is not None:
            raise self._parent.rollback_error
        self.rolled_back = True


@pytest.fixture(autouse=True)
def reset_structlog():
    """Undo any logging configuration a test applied."""
    yield
    structlog.reset_defaults()


@pytest.fixture
def make_executor():
    """Factory for recording executors on a named dialect."""

    def make(driver="postgres", results=None, **kwargs):
        return FakeExecutor(get_dialect(driver), results, **kwargs)

    return make


@pytest_asyncio.fixture
async def sqlite_pool():
    """Create an in-memory SQLite connection pool."""
    from relata import create_engine

    pool = await create_engine("sqlite::memory:")
    yield pool
    await pool.close()


@pytest_asyncio.fixture
async def postgres_pool():
    """Create a PostgreSQL connection pool.

    Set DATABASE_URL environment variable to use a real PostgreSQL database.
    Otherwise, this fixture is skipped.
    """
    from relata import create_engine

    url = os.environ.get("DATABASE_URL")
    if not url or not url.startswith(("postgres", "postgresql")):
        pytest.skip("DATABASE_URL not set to a PostgreSQL database")

    pool = await create_engine(url)
    yield pool
    await pool.close()
