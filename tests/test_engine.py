"""Tests for query results, pools and transactions."""

import pytest

from relata import (
    ConfigurationError,
    QueryResult,
    SQLitePool,
    StatementError,
    TransactionError,
    create_engine,
)
from relata.engine import sqlite_path


class TestQueryResult:
    """Tests for QueryResult accessors."""

    def test_accessors(self):
        result = QueryResult(["id", "name"], [(1, "Ann"), (2, "Bob")])
        assert result.all() == [{"id": 1, "name": "Ann"}, {"id": 2, "name": "Bob"}]
        assert result.first() == {"id": 1, "name": "Ann"}
        assert result.column("name") == ["Ann", "Bob"]
        assert result.tuples() == [(1, "Ann"), (2, "Bob")]
        assert len(result) == 2
        assert [row["id"] for row in result] == [1, 2]

    def test_empty(self):
        result = QueryResult()
        assert result.first() is None
        assert result.all() == []
        assert result.rowcount == -1

    def test_one(self):
        assert QueryResult(["n"], [(1,)]).one() == {"n": 1}
        with pytest.raises(ValueError):
            QueryResult(["n"], [(1,), (2,)]).one()

    def test_duplicate_columns(self):
        """Later duplicate column names win in dictionaries."""
        result = QueryResult(["id", "id"], [(1, 2)])
        assert result.first() == {"id": 2}


class TestCreateEngine:
    """Tests for engine creation."""

    @pytest.mark.parametrize(
        ("url", "path"),
        [
            ("sqlite::memory:", ":memory:"),
            ("sqlite:///app.db", "app.db"),
            ("sqlite:////tmp/app.db", "/tmp/app.db"),
            ("sqlite://", ":memory:"),
        ],
    )
    def test_sqlite_path(self, url, path):
        assert sqlite_path(url) == path

    async def test_unsupported_url(self):
        with pytest.raises(ConfigurationError):
            await create_engine("oracle://localhost/db")

    async def test_sqlite(self, sqlite_pool):
        assert isinstance(sqlite_pool, SQLitePool)
        assert sqlite_pool.dialect.placeholder(1) == "?"
        assert sqlite_pool.in_transaction is False

    async def test_sqlite_file(self, tmp_path):
        pool = await create_engine(f"sqlite:///{tmp_path}/app.db")
        try:
            await pool.execute("CREATE TABLE t (n INTEGER)")
            result = await pool.execute("INSERT INTO t (n) VALUES (?)", [5])
            assert result.rowcount == 1
        finally:
            await pool.close()
        assert (tmp_path / "app.db").exists()


class TestSQLitePool:
    """Tests for statements and transactions on SQLite."""

    @pytest.fixture
    async def pool(self, sqlite_pool):
        await sqlite_pool.execute("CREATE TABLE items (id INTEGER PRIMARY KEY, name TEXT)")
        return sqlite_pool

    async def test_execute(self, pool):
        insert = await pool.execute("INSERT INTO items (name) VALUES (?)", ["a"])
        assert insert.lastrowid == 1
        rows = await pool.execute("SELECT id, name FROM items")
        assert rows.columns == ["id", "name"]
        assert rows.rows == [(1, "a")]

    async def test_statement_error(self, pool):
        with pytest.raises(StatementError) as exc_info:
            await pool.execute("SELECT nope FROM items WHERE id = ?", [1])
        assert exc_info.value.sql == "SELECT nope FROM items WHERE id = ?"
        assert exc_info.value.params == [1]

    async def test_transaction_commit(self, pool):
        async with pool.transaction() as tx:
            assert tx.in_transaction is True
            await tx.execute("INSERT INTO items (name) VALUES (?)", ["a"])
        assert not tx.is_active
        assert (await pool.execute("SELECT COUNT(*) FROM items")).rows == [(1,)]

    async def test_transaction_rollback(self, pool):
        with pytest.raises(RuntimeError):
            async with pool.transaction() as tx:
                await tx.execute("INSERT INTO items (name) VALUES (?)", ["a"])
                raise RuntimeError("abort")
        assert (await pool.execute("SELECT COUNT(*) FROM items")).rows == [(0,)]

    async def test_explicit_rollback(self, pool):
        tx = await pool.begin()
        await tx.execute("INSERT INTO items (name) VALUES (?)", ["a"])
        await tx.rollback()
        assert (await pool.execute("SELECT COUNT(*) FROM items")).rows == [(0,)]

    async def test_finished_transaction(self, pool):
        """A committed transaction refuses further use."""
        tx = await pool.begin()
        await tx.commit()
        with pytest.raises(TransactionError):
            await tx.execute("SELECT 1")
        with pytest.raises(TransactionError):
            await tx.commit()
