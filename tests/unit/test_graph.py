"""Unit tests for the DuckDB fact store."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from chronomem.core.exceptions import (
    EmptyPredicateError,
    GraphStoreError,
    ObjectStorageError,
    SnapshotConflictError,
)
from chronomem.core.types import FactRow, FactUpdate, FactWhere
from chronomem.core.utils import build_fact_id
from chronomem.storage.graph import FactStore, snapshot_key


def _fact(subject: str, predicate: str, obj: str, **properties) -> FactRow:
    return FactRow(
        id=build_fact_id(subject, predicate, obj),
        source_id=subject,
        target_id=obj,
        label=predicate,
        properties=properties or {"confidence": 0.9},
    )


@pytest.mark.asyncio
class TestFactStoreSession:
    """Tests for session lifecycle and snapshots."""

    async def test_snapshot_key(self):
        assert snapshot_key("ws-1", "agent-1") == "graphs/ws-1/agent-1/facts.parquet"

    async def test_missing_snapshot_starts_empty(self, settings, object_store):
        """Test that a never-saved pair yields an empty facts table."""
        async with FactStore.open("ws-1", "agent-1", settings=settings, object_store=object_store) as store:
            assert await store.count_facts() == 0
            assert not store.property_graph_enabled
        assert ("head", "graphs/ws-1/agent-1/facts.parquet") in object_store.calls

    async def test_extensions_are_best_effort(self, settings, object_store, monkeypatch):
        """Test that only the property-graph extension is requested and may fail."""
        statements = []
        run = FactStore._run

        async def offline_run(self, sql):
            statements.append(sql)
            if sql.startswith("INSTALL"):
                raise GraphStoreError("extension repository unreachable")
            await run(self, sql)

        monkeypatch.setattr(FactStore, "_run", offline_run)
        settings = settings.model_copy(update={"graph_extensions": True})

        async with FactStore.open("ws-1", "agent-1", settings=settings, object_store=object_store) as store:
            assert not store.property_graph_enabled
            assert await store.count_facts() == 0

        assert "INSTALL duckpgq FROM community;" in statements
        assert not any("httpfs" in sql or "SECRET" in sql for sql in statements)

    async def test_open_closes_on_exit(self, settings, object_store):
        async with FactStore.open("ws-1", "agent-1", settings=settings, object_store=object_store) as store:
            assert store.is_open
        assert not store.is_open
        # closing twice is harmless
        await store.close()

    async def test_closed_session_rejects_queries(self, settings, object_store):
        store = await FactStore.connect("ws-1", "agent-1", settings=settings, object_store=object_store)
        await store.close()
        with pytest.raises(GraphStoreError):
            await store.count_facts()

    async def test_probe_failure_propagates(self, settings):
        """Test that a storage failure other than absence is not treated as empty."""
        failing = MagicMock()
        failing.uri.side_effect = lambda key: f"s3://bucket/{key}"
        failing.head = AsyncMock(side_effect=ObjectStorageError("access denied"))

        with pytest.raises(ObjectStorageError):
            async with FactStore.open("ws-1", "agent-1", settings=settings, object_store=failing):
                pass

    async def test_save_and_reload(self, settings, object_store):
        """Test that saved facts are visible to a new session."""
        fact = _fact("User", "likes", "React", confidence=0.9, conversationId="conv-1")

        async with FactStore.open("ws-1", "agent-1", settings=settings, object_store=object_store) as store:
            await store.insert_facts([fact])
            await store.save()

        assert "graphs/ws-1/agent-1/facts.parquet" in object_store.objects

        async with FactStore.open("ws-1", "agent-1", settings=settings, object_store=object_store) as store:
            assert await store.find_facts(FactWhere(id=fact.id)) == [fact]

    async def test_unsaved_changes_are_lost(self, settings, object_store):
        async with FactStore.open("ws-1", "agent-1", settings=settings, object_store=object_store) as store:
            await store.insert_facts([_fact("User", "likes", "React")])

        async with FactStore.open("ws-1", "agent-1", settings=settings, object_store=object_store) as store:
            assert await store.count_facts() == 0

    async def test_pairs_are_isolated(self, settings, object_store):
        async with FactStore.open("ws-1", "agent-1", settings=settings, object_store=object_store) as store:
            await store.insert_facts([_fact("User", "likes", "React")])
            await store.save()

        async with FactStore.open("ws-1", "agent-2", settings=settings, object_store=object_store) as store:
            assert await store.count_facts() == 0

    async def test_read_only_refuses_save(self, settings, object_store):
        async with FactStore.open(
            "ws-1", "agent-1", settings=settings, object_store=object_store, read_only=True
        ) as store:
            with pytest.raises(GraphStoreError):
                await store.save()
        assert object_store.uploads == 0

    async def test_conditional_write_conflict(self, object_store, settings):
        """Test that a stale session loses against a concurrent save."""
        settings = settings.model_copy(update={"graph_conditional_writes": True})

        first = await FactStore.connect("ws-1", "agent-1", settings=settings, object_store=object_store)
        second = await FactStore.connect("ws-1", "agent-1", settings=settings, object_store=object_store)
        try:
            await first.insert_facts([_fact("User", "likes", "React")])
            await first.save()

            await second.insert_facts([_fact("User", "likes", "Vue")])
            with pytest.raises(SnapshotConflictError):
                await second.save()
        finally:
            await first.close()
            await second.close()

    async def test_delete_snapshot(self, settings, object_store):
        async with FactStore.open("ws-1", "agent-1", settings=settings, object_store=object_store) as store:
            await store.save()

        await FactStore.delete_snapshot("ws-1", "agent-1", settings=settings, object_store=object_store)
        assert object_store.objects == {}


@pytest.mark.asyncio
class TestFactOperations:
    """Tests for fact CRUD."""

    @pytest.fixture
    async def store(self, settings, object_store):
        async with FactStore.open("ws-1", "agent-1", settings=settings, object_store=object_store) as store:
            yield store

    async def test_insert_empty_is_noop(self, store):
        await store.insert_facts([])
        assert await store.count_facts() == 0

    async def test_insert_and_find(self, store):
        """Test multi-row insert and equality lookup."""
        react = _fact("User", "likes", "React")
        vue = _fact("User", "likes", "Vue")
        await store.insert_facts([react, vue, _fact("Anna", "uses", "React")])

        found = await store.find_facts(FactWhere(source_id="User", label="likes"))
        assert sorted(fact.target_id for fact in found) == ["React", "Vue"]
        assert await store.count_facts() == 3

    async def test_find_with_limit(self, store):
        await store.insert_facts([_fact("User", "likes", "React"), _fact("User", "likes", "Vue")])
        assert len(await store.find_facts({"source_id": "User"}, limit=1)) == 1

    async def test_values_with_quotes(self, store):
        fact = _fact("O'Brien", "likes", "rock 'n' roll")
        await store.insert_facts([fact])
        assert await store.find_facts(FactWhere(source_id="O'Brien")) == [fact]

    async def test_null_properties(self, store):
        fact = FactRow(id="f1", source_id="a", target_id="b", label="c", properties=None)
        await store.insert_facts([fact])
        assert (await store.find_facts(FactWhere(id="f1")))[0].properties is None

    async def test_update_facts(self, store):
        fact = _fact("User", "likes", "React")
        await store.insert_facts([fact])

        await store.update_facts(FactWhere(id=fact.id), FactUpdate(properties={"confidence": 0.5}))

        (updated,) = await store.find_facts(FactWhere(id=fact.id))
        assert updated.properties == {"confidence": 0.5}

    async def test_delete_facts(self, store):
        react = _fact("User", "likes", "React")
        await store.insert_facts([react, _fact("User", "likes", "Vue")])

        await store.delete_facts(FactWhere(id=react.id))

        assert await store.count_facts() == 1
        assert await store.find_facts(FactWhere(id=react.id)) == []

    async def test_empty_predicates_issue_no_statement(self, store):
        """Test that unbounded mutations are refused before reaching the engine."""
        await store.insert_facts([_fact("User", "likes", "React")])
        store._run = AsyncMock()

        with pytest.raises(EmptyPredicateError):
            await store.delete_facts(FactWhere())
        with pytest.raises(EmptyPredicateError):
            await store.update_facts({}, {"label": "x"})
        with pytest.raises(EmptyPredicateError):
            await store.update_facts({"id": "x"}, FactUpdate())

        store._run.assert_not_called()

    async def test_duplicate_id_rejected(self, store):
        fact = _fact("User", "likes", "React")
        await store.insert_facts([fact])
        with pytest.raises(GraphStoreError):
            await store.insert_facts([fact])

    async def test_nodes_view(self, store):
        await store.insert_facts([_fact("User", "likes", "React"), _fact("Anna", "likes", "React")])
        rows = await store.query_graph("SELECT id FROM nodes ORDER BY id;")
        assert [row["id"] for row in rows] == ["Anna", "React", "User"]
