"""Shared pytest fixtures for chronomem tests."""

import math
import tempfile
import uuid
from pathlib import Path

import pytest

from chronomem.core.config import Settings
from chronomem.core.exceptions import SnapshotConflictError, SnapshotNotFoundError
from chronomem.core.types import FactRecord, TemporalGrain
from chronomem.credits import pricing
from chronomem.credits.ledger import CreditLedger
from chronomem.storage.sqlite import SQLiteStorage
from chronomem.storage.vector import VECTOR_COLLECTION_NAME, VectorReadClient, record_metadata


class InMemoryObjectStore:
    """Object store double keeping objects in a dict.

    Mirrors ``ObjectStore``'s async interface, including ETags and
    conditional writes, and records every call made to it.
    """

    def __init__(self, bucket: str = "test-bucket"):
        self.bucket = bucket
        self.objects: dict[str, bytes] = {}
        self.etags: dict[str, str] = {}
        self.calls: list[tuple[str, str]] = []
        self.uploads = 0

    def uri(self, key: str) -> str:
        return f"s3://{self.bucket}/{key}"

    async def head(self, key: str) -> str | None:
        self.calls.append(("head", key))
        if key not in self.objects:
            raise SnapshotNotFoundError(key)
        return self.etags[key]

    async def download_to(self, key: str, path: Path) -> str | None:
        self.calls.append(("download", key))
        if key not in self.objects:
            raise SnapshotNotFoundError(key)
        Path(path).write_bytes(self.objects[key])
        return self.etags[key]

    async def upload_from(
        self,
        path: Path,
        key: str,
        content_type: str = "application/octet-stream",
        if_match: str | None = None,
        if_none_match: str | None = None,
    ) -> str | None:
        self.calls.append(("upload", key))
        if if_none_match == "*" and key in self.objects:
            raise SnapshotConflictError(key)
        if if_match is not None and self.etags.get(key) != if_match:
            raise SnapshotConflictError(key)
        self.objects[key] = Path(path).read_bytes()
        self.etags[key] = f'"{uuid.uuid4().hex}"'
        self.uploads += 1
        return self.etags[key]

    async def delete(self, key: str) -> None:
        self.calls.append(("delete", key))
        self.objects.pop(key, None)
        self.etags.pop(key, None)


class CharacterEncoder:
    """Encoder double counting four characters per token."""

    def encode(self, text: str) -> list[int]:
        return [0] * math.ceil(len(text) / 4)


@pytest.fixture(autouse=True)
def offline_tokenizer(monkeypatch):
    """Estimate tokens without downloading tiktoken encodings."""
    monkeypatch.setattr(pricing, "_encoder", CharacterEncoder)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test data."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def settings(temp_dir):
    """Settings rooted in a temporary directory, without duckdb extensions."""
    return Settings(
        environment="testing",
        vector_root=temp_dir / "vectordb",
        duckdb_home=temp_dir / "duckdb",
        db_path=temp_dir / "chronomem.db",
        graph_extensions=False,
    )


@pytest.fixture
def object_store():
    return InMemoryObjectStore()


@pytest.fixture
async def sqlite_storage(settings):
    """Create and initialize SQLite storage for testing."""
    storage = SQLiteStorage(settings.db_path)
    await storage.initialize()
    yield storage
    await storage.disconnect()


@pytest.fixture
async def ledger(sqlite_storage):
    """Credit ledger with a funded workspace ``ws-1``."""
    credit_ledger = CreditLedger(sqlite_storage)
    await credit_ledger.set_balance("ws-1", 10_000_000)
    return credit_ledger


@pytest.fixture
def seed_vectors():
    """Write records into a vector table the way the queue consumer lays them out."""

    def _seed(
        client: VectorReadClient,
        agent_id: str,
        grain: TemporalGrain | str,
        records: list[FactRecord],
    ) -> None:
        location = client.location(agent_id, grain)
        location.mkdir(parents=True, exist_ok=True)
        collection = client.cache.get(location).get_or_create_collection(VECTOR_COLLECTION_NAME)
        collection.add(
            ids=[r.id for r in records],
            embeddings=[r.embedding for r in records],
            documents=[r.content for r in records],
            metadatas=[record_metadata(r) for r in records],
        )

    return _seed
