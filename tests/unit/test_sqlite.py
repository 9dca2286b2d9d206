"""Unit tests for SQLite storage."""

import tempfile
from pathlib import Path

import pytest

from chronomem.core.exceptions import DatabaseError
from chronomem.storage.sqlite import SQLiteStorage


@pytest.fixture
async def temp_db():
    """Create a temporary database for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "test.db"
        storage = SQLiteStorage(db_path)
        await storage.initialize()
        yield storage
        await storage.disconnect()


@pytest.mark.asyncio
class TestSQLiteStorage:
    """Test suite for SQLiteStorage."""

    async def test_initialization(self):
        """Test database initialization creates file and runs migrations."""
        with tempfile.TemporaryDirectory() as tmpdir:
            db_path = Path(tmpdir) / "nested" / "test.db"
            storage = SQLiteStorage(db_path)

            assert not db_path.exists()
            await storage.initialize()
            assert db_path.exists()

    async def test_migrations_create_tables(self, temp_db):
        """Test that migrations create all required tables."""
        for table in [
            "workspaces",
            "credit_reservations",
            "credit_transactions",
            "workspace_api_keys",
        ]:
            assert await temp_db.table_exists(table), f"Table {table} was not created"

    async def test_migrations_are_idempotent(self, temp_db):
        """Test that initializing twice does not fail."""
        await temp_db.initialize()
        assert await temp_db.table_exists("workspaces")

    async def test_execute_returns_rowcount(self, temp_db):
        """Test executing writes and reading them back."""
        await temp_db.execute(
            "INSERT INTO workspaces (id, credit_balance) VALUES (?, ?)", ("ws-1", 100)
        )
        changed = await temp_db.execute(
            "UPDATE workspaces SET credit_balance = credit_balance - ? WHERE id = ?",
            (40, "ws-1"),
        )
        assert changed == 1

        row = await temp_db.fetch_one("SELECT * FROM workspaces WHERE id = ?", ("ws-1",))
        assert row["credit_balance"] == 60

    async def test_fetch_one_missing(self, temp_db):
        assert await temp_db.fetch_one("SELECT * FROM workspaces WHERE id = ?", ("x",)) is None

    async def test_fetch_all(self, temp_db):
        for ws in ("ws-1", "ws-2"):
            await temp_db.execute("INSERT INTO workspaces (id) VALUES (?)", (ws,))
        rows = await temp_db.fetch_all("SELECT id FROM workspaces ORDER BY id")
        assert [row["id"] for row in rows] == ["ws-1", "ws-2"]

    async def test_transaction_rollback(self, temp_db):
        """Test that a failing transaction leaves no trace."""
        await temp_db.connect()
        with pytest.raises(RuntimeError):
            async with temp_db.transaction() as conn:
                await conn.execute("INSERT INTO workspaces (id) VALUES (?)", ("ws-1",))
                raise RuntimeError("boom")

        assert await temp_db.fetch_one("SELECT * FROM workspaces WHERE id = ?", ("ws-1",)) is None

    async def test_invalid_query_raises(self, temp_db):
        with pytest.raises(DatabaseError):
            await temp_db.execute("INSERT INTO nowhere VALUES (1)")
