"""Entity lookups against the fact graph for retrieval-augmented generation."""

import logging

from chronomem.core.config import Settings
from chronomem.core.sql import format_sql_list
from chronomem.core.types import GraphSnippet
from chronomem.storage.graph import FactStore
from chronomem.storage.object_store import ObjectStore

logger = logging.getLogger(__name__)


def format_snippet(subject: str, predicate: str, obj: str) -> str:
    return f"Subject: {subject}\nPredicate: {predicate}\nObject: {obj}"


def normalize_entities(entities: list[str]) -> list[str]:
    """Trim names, drop blanks and duplicates, keeping first-seen order."""
    seen: dict[str, None] = {}
    for entity in entities:
        name = entity.strip() if isinstance(entity, str) else ""
        if name:
            seen.setdefault(name, None)
    return list(seen)


class GraphSearchService:
    """Finds every fact whose subject or object is one of a set of entities.

    Graph hits are exact matches, so every snippet has similarity 1.0.
    """

    def __init__(self, settings: Settings, object_store: ObjectStore | None = None):
        self.settings = settings
        self.object_store = object_store

    async def search_graph_by_entities(
        self, workspace_id: str, agent_id: str, entities: list[str]
    ) -> list[GraphSnippet]:
        """Look up facts mentioning any of the given entities.

        Returns an empty list without opening a graph session when no
        non-blank entity is given.
        """
        names = normalize_entities(entities)
        if not names:
            return []

        entity_list = format_sql_list(names)
        sql = (
            "SELECT source_id, label, target_id FROM facts "
            f"WHERE source_id IN {entity_list} OR target_id IN {entity_list};"
        )

        async with FactStore.open(
            workspace_id,
            agent_id,
            settings=self.settings,
            object_store=self.object_store,
            read_only=True,
        ) as store:
            rows = await store.query_graph(sql)

        logger.debug(f"Graph search for {len(names)} entities returned {len(rows)} facts")
        return [
            GraphSnippet(
                content=format_snippet(row["source_id"], row["label"], row["target_id"]),
                similarity=1.0,
                subject=row["source_id"],
                predicate=row["label"],
                object=row["target_id"],
            )
            for row in rows
        ]
