"""SQLite storage for the credit ledger and workspace credentials.

Provides async SQLite operations with migration support and transaction management.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import aiosqlite

from chronomem.core.exceptions import (
    DatabaseConnectionError,
    DatabaseError,
    MigrationError,
)

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"


class SQLiteStorage:
    """Async SQLite storage with migration support.

    Holds workspace balances, credit reservations, settled credit
    transactions and bring-your-own-key credentials.

    Attributes:
        db_path: Path to the SQLite database file.
        _conn: Active database connection (when connected).
    """

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)
        self._conn: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Create the database file if needed and apply all migrations.

        Raises:
            MigrationError: If a migration fails to apply.
            DatabaseError: If the database cannot be created.
        """
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise DatabaseError(f"Failed to initialize database: {e}") from e

        await self._run_migrations()
        logger.info(f"Database initialized at {self.db_path}")

    async def _run_migrations(self) -> None:
        """Run every ``*.sql`` file in the migrations directory, in name order.

        Migrations must be idempotent (``IF NOT EXISTS``).

        Raises:
            MigrationError: If the directory is missing or a migration fails.
        """
        if not MIGRATIONS_DIR.exists():
            raise MigrationError(f"Migrations directory not found: {MIGRATIONS_DIR}")

        migration_files = sorted(MIGRATIONS_DIR.glob("*.sql"))
        if not migration_files:
            logger.warning("No migration files found")
            return

        try:
            async with aiosqlite.connect(self.db_path) as conn:
                for migration_file in migration_files:
                    logger.debug(f"Running migration: {migration_file.name}")
                    await conn.executescript(migration_file.read_text())
                    await conn.commit()
        except Exception as e:
            raise MigrationError(f"Migration failed: {e}") from e

    async def connect(self) -> None:
        """Open a long-lived connection reused by subsequent calls.

        Raises:
            DatabaseConnectionError: If connection fails.
        """
        if self._conn is not None:
            logger.warning("Already connected to database")
            return

        try:
            self._conn = await aiosqlite.connect(self.db_path)
            self._conn.row_factory = aiosqlite.Row
            logger.debug("Connected to database")
        except Exception as e:
            raise DatabaseConnectionError(f"Failed to connect to database: {e}") from e

    async def disconnect(self) -> None:
        """Close the long-lived connection, if any."""
        if self._conn is not None:
            await self._conn.close()
            self._conn = None
            logger.debug("Disconnected from database")

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """Yield the shared connection, or a temporary one closed on exit."""
        if self._conn is not None:
            yield self._conn
        else:
            async with aiosqlite.connect(self.db_path) as conn:
                conn.row_factory = aiosqlite.Row
                yield conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Context manager that commits on success and rolls back on error.

        Example:
            async with storage.transaction() as conn:
                await conn.execute("UPDATE workspaces ...")
                await conn.execute("INSERT INTO credit_transactions ...")
        """
        async with self.connection() as conn:
            try:
                yield conn
                await conn.commit()
            except Exception:
                await conn.rollback()
                raise

    async def execute(self, query: str, params: tuple[Any, ...] = ()) -> int:
        """Execute a write query and return the number of affected rows.

        Raises:
            DatabaseError: If query execution fails.
        """
        try:
            async with self.connection() as conn:
                cursor = await conn.execute(query, params)
                await conn.commit()
                return cursor.rowcount
        except Exception as e:
            raise DatabaseError(f"Query execution failed: {e}") from e

    async def fetch_one(
        self, query: str, params: tuple[Any, ...] = ()
    ) -> dict[str, Any] | None:
        """Fetch a single row as a dictionary, or None if no row matches.

        Raises:
            DatabaseError: If query execution fails.
        """
        try:
            async with self.connection() as conn:
                cursor = await conn.execute(query, params)
                row = await cursor.fetchone()
                return dict(row) if row is not None else None
        except Exception as e:
            raise DatabaseError(f"Query failed: {e}") from e

    async def fetch_all(
        self, query: str, params: tuple[Any, ...] = ()
    ) -> list[dict[str, Any]]:
        """Fetch all matching rows as dictionaries.

        Raises:
            DatabaseError: If query execution fails.
        """
        try:
            async with self.connection() as conn:
                cursor = await conn.execute(query, params)
                rows = await cursor.fetchall()
                return [dict(row) for row in rows]
        except Exception as e:
            raise DatabaseError(f"Query failed: {e}") from e

    async def table_exists(self, table_name: str) -> bool:
        """Check if a table exists in the database."""
        result = await self.fetch_one(
            "SELECT name FROM sqlite_master WHERE type='table' AND name=?",
            (table_name,),
        )
        return result is not None
