"""Property-graph fact store backed by DuckDB and an object-storage snapshot.

Each session is an in-memory DuckDB database holding one ``facts`` table for a
(workspace, agent) pair. The table is loaded from a Parquet snapshot in object
storage when one exists and written back only by ``save()``; mutations that
are never saved are lost when the session closes.

Sessions are never cached. Always acquire them through ``FactStore.open``::

    async with FactStore.open(workspace_id, agent_id, settings=settings) as store:
        await store.insert_facts([...])
        await store.save()
"""

import asyncio
import json
import logging
import tempfile
import uuid
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import duckdb

from chronomem.core.config import Settings
from chronomem.core.exceptions import GraphStoreError, SnapshotNotFoundError
from chronomem.core.sql import (
    build_set_clause,
    build_where_clause,
    format_sql_value,
    quote_string,
)
from chronomem.core.types import FACT_COLUMNS, FactRow, FactUpdate, FactWhere
from chronomem.storage.object_store import ObjectStore

logger = logging.getLogger(__name__)

GRAPH_TEMP_FILE_PREFIX = "chronomem-graph"
PARQUET_CONTENT_TYPE = "application/vnd.apache.parquet"
PROPERTY_GRAPH_NAME = "facts_graph"

_CREATE_FACTS_TABLE = (
    "CREATE TABLE facts (id VARCHAR PRIMARY KEY, source_id VARCHAR, "
    "target_id VARCHAR, label VARCHAR, properties JSON);"
)
_CREATE_NODES_VIEW = (
    "CREATE OR REPLACE VIEW nodes AS "
    "SELECT DISTINCT source_id AS id FROM facts "
    "UNION SELECT DISTINCT target_id AS id FROM facts;"
)
_CREATE_PROPERTY_GRAPH = (
    f"CREATE PROPERTY GRAPH {PROPERTY_GRAPH_NAME} VERTEX TABLES ( nodes ) "
    "EDGE TABLES ( facts SOURCE KEY ( source_id ) REFERENCES nodes ( id ) "
    "DESTINATION KEY ( target_id ) REFERENCES nodes ( id ) LABEL label );"
)


def snapshot_key(workspace_id: str, agent_id: str) -> str:
    """Object key of the graph snapshot for a (workspace, agent) pair."""
    return f"graphs/{workspace_id}/{agent_id}/facts.parquet"


def _temp_parquet_path(purpose: str) -> Path:
    return Path(tempfile.gettempdir()) / (
        f"{GRAPH_TEMP_FILE_PREFIX}-{purpose}-{uuid.uuid4().hex}.parquet"
    )


def _as_mapping(value: FactWhere | FactUpdate | Mapping[str, Any]) -> dict[str, Any]:
    if isinstance(value, FactWhere | FactUpdate):
        return value.model_dump(exclude_none=True)
    return dict(value)


def _decode_row(row: dict[str, Any]) -> dict[str, Any]:
    properties = row.get("properties")
    if isinstance(properties, str):
        row["properties"] = json.loads(properties)
    return row


class FactStore:
    """One DuckDB session over the facts of a (workspace, agent) pair.

    Attributes:
        workspace_id: Owning workspace.
        agent_id: Owning agent.
        key: Snapshot object key.
        read_only: When True, ``save()`` is refused.
        property_graph_enabled: Whether the property-graph extension loaded.
    """

    def __init__(
        self,
        workspace_id: str,
        agent_id: str,
        object_store: ObjectStore,
        settings: Settings,
        read_only: bool = False,
    ):
        self.workspace_id = workspace_id
        self.agent_id = agent_id
        self.key = snapshot_key(workspace_id, agent_id)
        self.object_store = object_store
        self.settings = settings
        self.read_only = read_only
        self.property_graph_enabled = False
        self._conn: duckdb.DuckDBPyConnection | None = None
        self._etag: str | None = None
        self._snapshot_loaded = False

    # ========== Session lifecycle ==========

    @classmethod
    async def connect(
        cls,
        workspace_id: str,
        agent_id: str,
        *,
        settings: Settings,
        object_store: ObjectStore | None = None,
        read_only: bool = False,
    ) -> "FactStore":
        """Start a session and load the current snapshot.

        The caller owns the returned store and must ``close()`` it.

        Raises:
            GraphStoreError: If the engine cannot be initialized.
            ObjectStorageError: If the snapshot probe or download fails for a
                reason other than absence.
        """
        store = cls(
            workspace_id,
            agent_id,
            object_store or ObjectStore(settings.s3),
            settings,
            read_only=read_only,
        )
        try:
            await store._initialize()
        except BaseException:
            await store.close()
            raise
        return store

    @classmethod
    @asynccontextmanager
    async def open(
        cls,
        workspace_id: str,
        agent_id: str,
        *,
        settings: Settings,
        object_store: ObjectStore | None = None,
        read_only: bool = False,
    ) -> AsyncIterator["FactStore"]:
        """Scoped session: the store is closed on every exit path."""
        store = await cls.connect(
            workspace_id,
            agent_id,
            settings=settings,
            object_store=object_store,
            read_only=read_only,
        )
        try:
            yield store
        finally:
            await store.close()

    async def close(self) -> None:
        """Release the DuckDB handle. Safe to call more than once."""
        if self._conn is None:
            return
        conn, self._conn = self._conn, None
        await asyncio.to_thread(conn.close)
        logger.debug(f"Closed graph session for {self.workspace_id}/{self.agent_id}")

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    async def _initialize(self) -> None:
        self._conn = await asyncio.to_thread(duckdb.connect, ":memory:")

        home = Path(self.settings.duckdb_home)
        home.mkdir(parents=True, exist_ok=True)
        await self._run(f"SET home_directory={quote_string(str(home))};")

        if self.settings.graph_extensions:
            await self._load_extensions()

        await self._load_facts_table()

        await self._run(_CREATE_NODES_VIEW)
        if self.property_graph_enabled:
            await self._run(f"DROP PROPERTY GRAPH IF EXISTS {PROPERTY_GRAPH_NAME};")
            await self._run(_CREATE_PROPERTY_GRAPH)

        logger.info(
            f"Opened graph session for {self.workspace_id}/{self.agent_id} "
            f"(snapshot={'loaded' if self._snapshot_loaded else 'new'}, "
            f"property_graph={self.property_graph_enabled})"
        )

    async def _load_extensions(self) -> None:
        """Install the property-graph extension, best effort.

        Snapshots travel through ``ObjectStore``, so no remote-storage
        extension or S3 secret is registered in the session.
        """
        try:
            await self._run("INSTALL duckpgq FROM community;")
            await self._run("LOAD duckpgq;")
            self.property_graph_enabled = True
        except GraphStoreError as e:
            logger.warning(f"DuckPGQ extension unavailable: {e}")

    async def _load_facts_table(self) -> None:
        await self._run(_CREATE_FACTS_TABLE)

        try:
            self._etag = await self.object_store.head(self.key)
        except SnapshotNotFoundError:
            logger.info(f"No graph snapshot at {self.object_store.uri(self.key)}, starting empty")
            return

        tmp_path = _temp_parquet_path("load")
        try:
            self._etag = await self.object_store.download_to(self.key, tmp_path) or self._etag
            columns = ", ".join(FACT_COLUMNS)
            await self._run(
                f"INSERT INTO facts ({columns}) SELECT {columns} "
                f"FROM read_parquet({quote_string(str(tmp_path))});"
            )
            self._snapshot_loaded = True
        finally:
            tmp_path.unlink(missing_ok=True)

    # ========== Statement execution ==========

    def _require_conn(self) -> duckdb.DuckDBPyConnection:
        if self._conn is None:
            raise GraphStoreError("Graph session is closed")
        return self._conn

    async def _run(self, sql: str) -> None:
        conn = self._require_conn()
        try:
            await asyncio.to_thread(conn.execute, sql)
        except duckdb.Error as e:
            raise GraphStoreError(f"Graph statement failed: {e}") from e

    async def _fetch(self, sql: str) -> list[dict[str, Any]]:
        conn = self._require_conn()

        def _run_query() -> list[dict[str, Any]]:
            cursor = conn.execute(sql)
            columns = [column[0] for column in cursor.description or []]
            return [dict(zip(columns, row, strict=True)) for row in cursor.fetchall()]

        try:
            rows = await asyncio.to_thread(_run_query)
        except duckdb.Error as e:
            raise GraphStoreError(f"Graph query failed: {e}") from e
        return [_decode_row(row) for row in rows]

    # ========== Fact operations ==========

    async def insert_facts(self, rows: list[FactRow]) -> None:
        """Insert facts with a single multi-row statement."""
        if not rows:
            return

        values = []
        for row in rows:
            literals = [
                format_sql_value(row.id),
                format_sql_value(row.source_id),
                format_sql_value(row.target_id),
                format_sql_value(row.label),
                format_sql_value(row.properties),
            ]
            values.append(f"({', '.join(literals)})")

        await self._run(
            f"INSERT INTO facts ({', '.join(FACT_COLUMNS)}) VALUES {', '.join(values)};"
        )
        logger.debug(f"Inserted {len(rows)} facts")

    async def update_facts(
        self,
        where: FactWhere | Mapping[str, Any],
        updates: FactUpdate | Mapping[str, Any],
    ) -> None:
        """Update matching facts.

        Raises:
            EmptyPredicateError: If ``where`` or ``updates`` has no fields set.
        """
        set_clause = build_set_clause(_as_mapping(updates))
        where_clause = build_where_clause(_as_mapping(where))
        await self._run(f"UPDATE facts {set_clause} {where_clause};")

    async def delete_facts(self, where: FactWhere | Mapping[str, Any]) -> None:
        """Delete matching facts.

        Raises:
            EmptyPredicateError: If ``where`` has no fields set.
        """
        where_clause = build_where_clause(_as_mapping(where))
        await self._run(f"DELETE FROM facts {where_clause};")

    async def find_facts(
        self, where: FactWhere | Mapping[str, Any], limit: int | None = None
    ) -> list[FactRow]:
        """Return facts matching an equality predicate."""
        sql = f"SELECT {', '.join(FACT_COLUMNS)} FROM facts {build_where_clause(_as_mapping(where))}"
        if limit is not None:
            sql += f" LIMIT {int(limit)}"
        rows = await self._fetch(sql + ";")
        return [FactRow(**row) for row in rows]

    async def query_graph(self, sql: str) -> list[dict[str, Any]]:
        """Run a trusted, internally built query and return row dictionaries.

        Never pass caller-supplied text here; build literals with
        ``format_sql_value``.
        """
        return await self._fetch(sql)

    async def count_facts(self) -> int:
        rows = await self._fetch("SELECT COUNT(*) AS count FROM facts;")
        return int(rows[0]["count"])

    # ========== Durability ==========

    async def save(self) -> None:
        """Overwrite the object-storage snapshot with the current facts table.

        With conditional writes enabled, the upload only succeeds if the
        snapshot is unchanged since it was loaded.

        Raises:
            GraphStoreError: If the session is read-only or export fails.
            SnapshotConflictError: If a conditional write lost a race.
            ObjectStorageError: If the upload fails.
        """
        if self.read_only:
            raise GraphStoreError("Cannot save a read-only graph session")

        tmp_path = _temp_parquet_path("save")
        try:
            await self._run(f"COPY facts TO {quote_string(str(tmp_path))} (FORMAT PARQUET);")

            if_match = if_none_match = None
            if self.settings.graph_conditional_writes:
                if self._etag:
                    if_match = self._etag
                else:
                    if_none_match = "*"

            self._etag = await self.object_store.upload_from(
                tmp_path,
                self.key,
                content_type=PARQUET_CONTENT_TYPE,
                if_match=if_match,
                if_none_match=if_none_match,
            )
            logger.info(f"Saved graph snapshot to {self.object_store.uri(self.key)}")
        finally:
            tmp_path.unlink(missing_ok=True)

    @staticmethod
    async def delete_snapshot(
        workspace_id: str,
        agent_id: str,
        *,
        settings: Settings,
        object_store: ObjectStore | None = None,
    ) -> None:
        """Remove the snapshot of a (workspace, agent) pair from object storage."""
        store = object_store or ObjectStore(settings.s3)
        await store.delete(snapshot_key(workspace_id, agent_id))
