"""ChromaDB read access to per-(agent, grain) vector tables.

The vector tables are written by an out-of-process consumer of the write
queue. Each (agent, grain) pair owns one persistent ChromaDB directory at
``{vector_root}/{agent_id}/{grain}`` holding a single ``vectors`` collection.
Documents hold the fact content; metadata holds the ISO ``timestamp``, the
integer ``timestampMs`` used for range predicates, and the fact's open
metadata map.
"""

import asyncio
import logging
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any

import chromadb
from chromadb import Collection
from chromadb.api import ClientAPI
from chromadb.errors import NotFoundError

from chronomem.core.config import DEFAULT_QUERY_LIMIT, MAX_QUERY_LIMIT
from chronomem.core.exceptions import VectorStoreError
from chronomem.core.types import (
    DATE_PARTITIONED_GRAINS,
    FactRecord,
    QueryResult,
    TemporalGrain,
    TemporalWindow,
)
from chronomem.core.utils import ensure_utc, parse_timestamp, to_epoch_millis

logger = logging.getLogger(__name__)

VECTOR_COLLECTION_NAME = "vectors"

# Metadata keys surfaced on every result; absent keys come back as None
RESULT_METADATA_KEYS = (
    "conversationId",
    "workspaceId",
    "agentId",
    "documentId",
    "documentName",
    "folderPath",
)

_INCLUDE = ["documents", "metadatas", "embeddings"]


def clamp_limit(limit: int | None) -> int:
    """Clamp a requested row limit to ``[1, MAX_QUERY_LIMIT]``."""
    if limit is None:
        return DEFAULT_QUERY_LIMIT
    return max(1, min(int(limit), MAX_QUERY_LIMIT))


def record_metadata(record: FactRecord) -> dict[str, Any]:
    """Flatten a fact into the metadata layout stored alongside its vector.

    ChromaDB only stores scalar metadata, so None and nested values are
    dropped.
    """
    metadata: dict[str, Any] = {
        key: value
        for key, value in record.metadata.items()
        if isinstance(value, str | int | float | bool)
    }
    metadata["timestamp"] = record.timestamp
    metadata["timestampMs"] = to_epoch_millis(parse_timestamp(record.timestamp))
    return metadata


def _persistent_client(location: Path) -> ClientAPI:
    return chromadb.PersistentClient(path=str(location))


class ConnectionCache:
    """Lazily created ChromaDB clients keyed by storage location.

    Entries are never evicted. A client whose creation fails is not cached,
    so the next request retries.
    """

    def __init__(self, factory: Callable[[Path], ClientAPI] | None = None):
        self._factory = factory or _persistent_client
        self._clients: dict[str, ClientAPI] = {}

    def get(self, location: Path) -> ClientAPI:
        key = str(location)
        client = self._clients.get(key)
        if client is None:
            client = self._factory(location)
            self._clients[key] = client
            logger.debug(f"Opened vector store connection at {key}")
        return client

    def clear(self) -> None:
        self._clients.clear()

    def __len__(self) -> int:
        return len(self._clients)

    def __contains__(self, location: object) -> bool:
        return str(location) in self._clients


class VectorReadClient:
    """Similarity and range queries over per-(agent, grain) vector tables.

    Attributes:
        vector_root: Root directory of all vector tables.
        cache: Connection cache shared by every query of this client.
    """

    def __init__(self, vector_root: str | Path, cache: ConnectionCache | None = None):
        self.vector_root = Path(vector_root)
        self.cache = cache if cache is not None else ConnectionCache()

    def location(self, agent_id: str, grain: TemporalGrain | str) -> Path:
        return self.vector_root / agent_id / TemporalGrain(grain).value

    async def _open_collection(
        self, agent_id: str, grain: TemporalGrain
    ) -> Collection | None:
        """Return the (agent, grain) collection, or None if it was never written."""
        location = self.location(agent_id, grain)
        if not location.exists():
            return None

        try:
            client = self.cache.get(location)
        except Exception as e:
            raise VectorStoreError(
                f"Failed to connect to vector store at {location}: {e}"
            ) from e

        try:
            return await asyncio.to_thread(client.get_collection, VECTOR_COLLECTION_NAME)
        except (NotFoundError, ValueError):
            logger.debug(f"No vector table for {agent_id}/{grain.value}")
            return None
        except Exception as e:
            raise VectorStoreError(
                f"Failed to open vector table for {agent_id}/{grain.value}: {e}"
            ) from e

    async def query(
        self,
        agent_id: str,
        grain: TemporalGrain | str,
        *,
        vector: list[float] | None = None,
        where: Mapping[str, Any] | None = None,
        limit: int | None = None,
        temporal_window: TemporalWindow | None = None,
    ) -> list[QueryResult]:
        """Query the vector table of an (agent, grain) pair.

        Args:
            agent_id: Owning agent.
            grain: Temporal grain of the table.
            vector: Query embedding; when given, rows are ranked by distance.
            where: ChromaDB metadata predicate applied server-side.
            limit: Maximum rows, clamped to ``[1, MAX_QUERY_LIMIT]``.
            temporal_window: Inclusive time range on the fact timestamp.

        Returns:
            Matching rows; ``[]`` if the table does not exist yet.

        Raises:
            VectorStoreError: If the store cannot be reached or queried.
        """
        grain = TemporalGrain(grain)
        limit = clamp_limit(limit)

        collection = await self._open_collection(agent_id, grain)
        if collection is None:
            return []

        conditions: list[dict[str, Any]] = [dict(where)] if where else []
        post_filter: TemporalWindow | None = None
        if temporal_window is not None:
            if grain in DATE_PARTITIONED_GRAINS:
                conditions.extend(_window_conditions(temporal_window))
            else:
                post_filter = temporal_window

        combined: dict[str, Any] | None
        if not conditions:
            combined = None
        elif len(conditions) == 1:
            combined = conditions[0]
        else:
            combined = {"$and": conditions}

        try:
            results = await asyncio.to_thread(
                _run_query, collection, vector, combined, limit
            )
        except Exception as e:
            raise VectorStoreError(
                f"Vector query failed for {agent_id}/{grain.value}: {e}"
            ) from e

        if post_filter is not None:
            results = [r for r in results if _in_window(r.timestamp, post_filter)]

        logger.debug(
            f"Vector query {agent_id}/{grain.value} returned {len(results)} rows "
            f"(semantic={vector is not None}, limit={limit})"
        )
        return results

    async def get_record_by_id(
        self, agent_id: str, grain: TemporalGrain | str, record_id: str
    ) -> QueryResult | None:
        """Point lookup of one record; None when it does not exist."""
        grain = TemporalGrain(grain)
        collection = await self._open_collection(agent_id, grain)
        if collection is None:
            return None

        try:
            response = await asyncio.to_thread(
                collection.get, ids=[record_id], include=_INCLUDE
            )
        except Exception as e:
            raise VectorStoreError(
                f"Failed to get record {record_id} from {agent_id}/{grain.value}: {e}"
            ) from e

        rows = _rows_from_get(response)
        return rows[0] if rows else None


def _window_conditions(window: TemporalWindow) -> list[dict[str, Any]]:
    conditions: list[dict[str, Any]] = []
    if window.start is not None:
        conditions.append({"timestampMs": {"$gte": to_epoch_millis(window.start)}})
    if window.end is not None:
        conditions.append({"timestampMs": {"$lte": to_epoch_millis(window.end)}})
    return conditions


def _in_window(timestamp: str, window: TemporalWindow) -> bool:
    try:
        moment = parse_timestamp(timestamp)
    except ValueError:
        logger.debug(f"Dropping row with unparseable timestamp: {timestamp!r}")
        return False
    start = ensure_utc(window.start)
    end = ensure_utc(window.end)
    if start is not None and moment < start:
        return False
    if end is not None and moment > end:
        return False
    return True


def _run_query(
    collection: Collection,
    vector: list[float] | None,
    where: dict[str, Any] | None,
    limit: int,
) -> list[QueryResult]:
    if vector is None:
        response = collection.get(where=where, limit=limit, include=_INCLUDE)
        return _rows_from_get(response)

    count = collection.count()
    if count == 0:
        return []
    response = collection.query(
        query_embeddings=[vector],
        n_results=min(limit, count),
        where=where,
        include=[*_INCLUDE, "distances"],
    )
    ids = response["ids"][0] if response["ids"] else []
    distances = response.get("distances")
    return [
        _to_result(
            record_id,
            _column(response, "documents", 0, index),
            _column(response, "metadatas", 0, index),
            _column(response, "embeddings", 0, index),
            float(distances[0][index]) if distances is not None else None,
        )
        for index, record_id in enumerate(ids)
    ]


def _rows_from_get(response: Mapping[str, Any]) -> list[QueryResult]:
    rows = []
    for index, record_id in enumerate(response["ids"]):
        rows.append(
            _to_result(
                record_id,
                _column(response, "documents", None, index),
                _column(response, "metadatas", None, index),
                _column(response, "embeddings", None, index),
                None,
            )
        )
    return rows


def _column(
    response: Mapping[str, Any], name: str, batch: int | None, index: int
) -> Any:
    values = response.get(name)
    if values is None:
        return None
    if batch is not None:
        values = values[batch]
    return values[index]


def _to_result(
    record_id: str,
    document: str | None,
    metadata: Mapping[str, Any] | None,
    embedding: Any,
    distance: float | None,
) -> QueryResult:
    metadata = metadata or {}
    return QueryResult(
        id=record_id,
        content=document or "",
        embedding=[float(x) for x in embedding] if embedding is not None else [],
        timestamp=str(metadata.get("timestamp") or ""),
        metadata={key: metadata.get(key) for key in RESULT_METADATA_KEYS},
        distance=distance,
    )
