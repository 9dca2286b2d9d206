"""Temporal and semantic search over an agent's vector memory.

A search always returns the facts inside the requested time window.
Semantic ranking is layered on top when a query text is given and an
embedding can be produced; if embedding fails for any reason the search
degrades to time-window recall instead of failing.
"""

import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from chronomem.core.config import DEFAULT_EMBEDDING_MODEL, MAX_QUERY_LIMIT
from chronomem.core.exceptions import InvalidGrainError
from chronomem.core.types import (
    MEMORY_GRAINS,
    CreditReservation,
    MemorySearchResult,
    QueryResult,
    TemporalGrain,
    TemporalWindow,
    parse_grain,
)
from chronomem.core.utils import format_date, parse_timestamp, utc_now
from chronomem.credits.ledger import CreditContext
from chronomem.credits.pricing import embedding_cost, estimate_tokens, usage_cost
from chronomem.llm.client import OllamaClient
from chronomem.llm.credentials import CredentialResolver, ResolvedCredential
from chronomem.storage.vector import VectorReadClient, clamp_limit

logger = logging.getLogger(__name__)

EMBEDDING_PROVIDER = "ollama"
MEMORY_SEARCH_TOOL_CALL = "memory-search-embedding"

_OLDEST = datetime.min.replace(tzinfo=UTC)


def to_search_result(row: QueryResult) -> MemorySearchResult:
    """Format a vector row for API consumers."""
    try:
        date = format_date(parse_timestamp(row.timestamp))
    except ValueError:
        date = ""
    return MemorySearchResult(
        id=row.id,
        content=row.content,
        date=date,
        timestamp=row.timestamp,
        metadata=row.metadata,
        similarity=1 / (1 + row.distance) if row.distance is not None else None,
    )


def _recency_key(row: QueryResult) -> datetime:
    try:
        return parse_timestamp(row.timestamp)
    except ValueError:
        return _OLDEST


class MemorySearchService:
    """Answers "what does this agent remember about X around time Y".

    Attributes:
        vector_client: Reads the per-(agent, grain) vector tables.
        llm_client: Produces query embeddings.
        credentials: Resolves the workspace's embedding key; None always
            uses the platform client.
        embedding_model: Model used for query embeddings.
    """

    def __init__(
        self,
        vector_client: VectorReadClient,
        llm_client: OllamaClient,
        credentials: CredentialResolver | None = None,
        embedding_model: str = DEFAULT_EMBEDDING_MODEL,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.vector_client = vector_client
        self.llm_client = llm_client
        self.credentials = credentials
        self.embedding_model = embedding_model
        self._clock = clock

    async def search_memory(
        self,
        agent_id: str,
        workspace_id: str,
        grain: TemporalGrain | str,
        minimum_days_ago: int = 0,
        maximum_days_ago: int = 365,
        max_results: int = 10,
        query_text: str | None = None,
        credit_context: CreditContext | None = None,
        conversation_id: str | None = None,
    ) -> list[MemorySearchResult]:
        """Search an agent's memory at one grain.

        Args:
            agent_id: Agent whose memory is searched.
            workspace_id: Workspace billed for the query embedding.
            grain: Memory grain; ``docs`` is rejected.
            minimum_days_ago: Newest edge of the window, in days before now.
            maximum_days_ago: Oldest edge of the window, in days before now.
            max_results: Maximum number of results.
            query_text: Optional text to rank results by similarity.
            credit_context: Enables credit reservation for the embedding.
            conversation_id: Conversation the embedding charge is attributed to.

        Returns:
            Matching facts; most recent first for ``working`` without ranking.

        Raises:
            InvalidGrainError: If the grain is not a memory grain. Raised
                before any storage access.
            VectorStoreError: If the vector store cannot be queried.
        """
        grain = parse_grain(grain)
        if grain not in MEMORY_GRAINS:
            raise InvalidGrainError(
                grain.value, f"Memory search does not support the {grain.value} grain"
            )

        now = self._clock()
        window = TemporalWindow(
            start=now - timedelta(days=maximum_days_ago),
            end=now - timedelta(days=minimum_days_ago),
        )
        max_results = clamp_limit(max_results)
        logger.info(
            f"Searching memory for agent {agent_id}, grain {grain.value}, "
            f"days {minimum_days_ago}-{maximum_days_ago}, max {max_results}"
        )

        vector: list[float] | None = None
        if query_text and query_text.strip():
            vector = await self._embed_query(
                query_text.strip(), workspace_id, agent_id, credit_context, conversation_id
            )

        if grain == TemporalGrain.WORKING and vector is None:
            # The working table has no date partitions to order by
            rows = await self.vector_client.query(
                agent_id, grain, limit=MAX_QUERY_LIMIT, temporal_window=window
            )
            rows.sort(key=_recency_key, reverse=True)
            rows = rows[:max_results]
        else:
            rows = await self.vector_client.query(
                agent_id, grain, vector=vector, limit=max_results, temporal_window=window
            )

        logger.info(f"Found {len(rows)} results for agent {agent_id}, grain {grain.value}")
        return [to_search_result(row) for row in rows]

    async def get_memory_record(
        self, agent_id: str, grain: TemporalGrain | str, record_id: str
    ) -> MemorySearchResult | None:
        """Point lookup of one fact; None when it does not exist."""
        row = await self.vector_client.get_record_by_id(agent_id, parse_grain(grain), record_id)
        return to_search_result(row) if row is not None else None

    async def _resolve_credential(self, workspace_id: str) -> ResolvedCredential:
        if self.credentials is None:
            return ResolvedCredential()
        return await self.credentials.resolve(workspace_id)

    async def _embed_query(
        self,
        text: str,
        workspace_id: str,
        agent_id: str,
        credit_context: CreditContext | None,
        conversation_id: str | None,
    ) -> list[float] | None:
        """Embed the query, settling its reservation; None means fall back."""
        reservation: CreditReservation | None = None
        try:
            credential = await self._resolve_credential(workspace_id)
            if credit_context is not None:
                estimated = embedding_cost(self.embedding_model, estimate_tokens(text))
                reservation = await credit_context.reserve(
                    workspace_id,
                    estimated,
                    uses_byok=credential.uses_byok,
                    provider=EMBEDDING_PROVIDER,
                    model=self.embedding_model,
                    conversation_id=conversation_id,
                )
        except Exception as e:
            logger.warning(
                f"Could not reserve query embedding for agent {agent_id}, "
                f"falling back to temporal search: {e}"
            )
            return None

        try:
            result = await self.llm_client.embed_with_usage(
                self.embedding_model, text, api_key=credential.api_key
            )
        except BaseException as e:
            if reservation is not None:
                try:
                    await credit_context.refund(reservation)
                except Exception as refund_error:
                    logger.error(f"Failed to refund embedding reservation: {refund_error}")
            if not isinstance(e, Exception):
                raise
            logger.warning(
                f"Query embedding failed for agent {agent_id}, "
                f"falling back to temporal search: {e}"
            )
            return None

        if credit_context is not None and reservation is not None:
            actual = usage_cost(self.embedding_model, result.usage)
            try:
                await credit_context.adjust(
                    reservation,
                    actual if actual is not None else reservation.reserved_amount,
                    description="Memory search embeddings",
                    tool_call=MEMORY_SEARCH_TOOL_CALL,
                )
            except Exception as adjust_error:
                logger.error(f"Failed to adjust embedding reservation: {adjust_error}")

        return result.embedding
