"""Core data types and Pydantic models for chronomem.

This module defines the foundational data structures used throughout the system,
including temporal grains, vector facts, write-operation messages and graph facts.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StringConstraints,
    field_validator,
    model_validator,
)

from chronomem.core.exceptions import InvalidGrainError

NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class TemporalGrain(str, Enum):
    """Time-resolution tier at which facts are bucketed."""

    WORKING = "working"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"
    DOCS = "docs"


# "docs" is reserved for document search and never holds agent memory
MEMORY_GRAINS: tuple[TemporalGrain, ...] = (
    TemporalGrain.WORKING,
    TemporalGrain.DAILY,
    TemporalGrain.WEEKLY,
    TemporalGrain.MONTHLY,
    TemporalGrain.QUARTERLY,
    TemporalGrain.YEARLY,
)

DATE_PARTITIONED_GRAINS: frozenset[TemporalGrain] = frozenset(
    {
        TemporalGrain.DAILY,
        TemporalGrain.WEEKLY,
        TemporalGrain.MONTHLY,
        TemporalGrain.QUARTERLY,
        TemporalGrain.YEARLY,
    }
)


class SubscriptionPlan(str, Enum):
    """Subscription plans that determine retention multipliers."""

    FREE = "free"
    STARTER = "starter"
    PRO = "pro"


class WireModel(BaseModel):
    """Base for models exchanged with external services using camelCase keys."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")


# Vector facts
class FactRecord(WireModel):
    """A vector-embedded text fact owned by an (agent, grain) partition.

    Attributes:
        id: Opaque record identifier.
        content: The remembered text.
        embedding: Embedding vector of the content.
        timestamp: ISO-8601 time the fact refers to.
        metadata: Open map (conversationId, workspaceId, agentId, ...).
    """

    id: NonEmptyStr
    content: str
    embedding: list[float]
    timestamp: str
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("timestamp")
    @classmethod
    def _validate_timestamp(cls, value: str) -> str:
        datetime.fromisoformat(value.replace("Z", "+00:00"))
        return value


class RawFact(WireModel):
    """A fact queued without an embedding; the consumer generates it."""

    id: NonEmptyStr
    content: str
    timestamp: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    cache_key: str | None = Field(default=None, alias="cacheKey")


# Write-operation messages (tagged union keyed by "operation")
class InsertData(WireModel):
    records: list[FactRecord] | None = None
    raw_facts: list[RawFact] | None = Field(default=None, alias="rawFacts")

    @model_validator(mode="after")
    def _require_payload(self) -> "InsertData":
        if self.records is None and self.raw_facts is None:
            raise ValueError("insert requires either records or rawFacts")
        return self


class UpdateData(WireModel):
    records: list[FactRecord]


class DeleteData(WireModel):
    record_ids: list[NonEmptyStr] = Field(alias="recordIds")


class PurgeData(WireModel):
    pass


class _WriteOperationBase(WireModel):
    agent_id: NonEmptyStr = Field(alias="agentId")
    temporal_grain: TemporalGrain = Field(alias="temporalGrain")
    workspace_id: NonEmptyStr | None = Field(default=None, alias="workspaceId")

    @property
    def ordering_key(self) -> str:
        """Broker partition key; messages sharing it are applied in order."""
        return f"{self.agent_id}-{self.temporal_grain.value}"


class InsertOperation(_WriteOperationBase):
    operation: Literal["insert"] = "insert"
    data: InsertData


class UpdateOperation(_WriteOperationBase):
    operation: Literal["update"] = "update"
    data: UpdateData


class DeleteOperation(_WriteOperationBase):
    operation: Literal["delete"] = "delete"
    data: DeleteData


class PurgeOperation(_WriteOperationBase):
    operation: Literal["purge"] = "purge"
    data: PurgeData = Field(default_factory=PurgeData)


WriteOperationMessage = Annotated[
    InsertOperation | UpdateOperation | DeleteOperation | PurgeOperation,
    Field(discriminator="operation"),
]


# Vector reads
class TemporalWindow(BaseModel):
    """Inclusive time range; None means unbounded on that side."""

    start: datetime | None = None
    end: datetime | None = None


class QueryResult(BaseModel):
    """A single row returned by the vector read client."""

    id: str
    content: str
    embedding: list[float] = Field(default_factory=list)
    timestamp: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    distance: float | None = None


class MemorySearchResult(BaseModel):
    """A memory hit formatted for API consumers.

    Attributes:
        date: Calendar day of the fact (YYYY-MM-DD).
        similarity: 1 / (1 + distance) for semantic hits, otherwise None.
    """

    id: str
    content: str
    date: str
    timestamp: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    similarity: float | None = None


# Graph facts
FACT_COLUMNS: tuple[str, ...] = ("id", "source_id", "target_id", "label", "properties")


class FactRow(BaseModel):
    """A subject-predicate-object edge in the property graph.

    Attributes:
        id: Deterministic hash of "subject|predicate|object".
        source_id: Subject.
        target_id: Object.
        label: Predicate.
        properties: confidence, workspaceId, agentId, conversationId, updatedAt.
    """

    id: str
    source_id: str
    target_id: str
    label: str
    properties: dict[str, Any] | None = Field(default_factory=dict)


class FactWhere(BaseModel):
    """Equality predicate over the fact key columns; unset fields are ignored."""

    model_config = ConfigDict(extra="forbid")

    id: str | None = None
    source_id: str | None = None
    target_id: str | None = None
    label: str | None = None


class FactUpdate(BaseModel):
    """Column assignments for a fact update; unset fields are left untouched."""

    model_config = ConfigDict(extra="forbid")

    source_id: str | None = None
    target_id: str | None = None
    label: str | None = None
    properties: dict[str, Any] | None = None


class MemoryOperationType(str, Enum):
    ADD = "ADD"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class MemoryOperation(BaseModel):
    """A single graph mutation proposed by the extraction model."""

    model_config = ConfigDict(extra="forbid")

    operation: MemoryOperationType
    subject: NonEmptyStr
    predicate: NonEmptyStr
    object: NonEmptyStr
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)


class MemoryExtractionResult(BaseModel):
    """Parsed extraction output: a summary plus graph operations."""

    model_config = ConfigDict(extra="forbid")

    summary: str = ""
    memory_operations: list[MemoryOperation] = Field(default_factory=list)

    @field_validator("summary")
    @classmethod
    def _strip_summary(cls, value: str) -> str:
        return value.strip()


class ApplyResult(BaseModel):
    """Counts of graph rows touched by one batch of memory operations."""

    inserted: int = 0
    updated: int = 0
    deleted: int = 0
    skipped: int = 0


class GraphSnippet(BaseModel):
    """A knowledge-graph hit rendered for retrieval-augmented generation."""

    content: str
    similarity: float = 1.0
    subject: str
    predicate: str
    object: str


# LLM usage and credits
class TokenUsage(BaseModel):
    """Token usage reported by an embedding or completion call."""

    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None
    cost: float | None = None

    @property
    def is_known(self) -> bool:
        return self.cost is not None or self.prompt_tokens is not None or self.total_tokens is not None


class CreditReservation(BaseModel):
    """A provisional hold against a workspace balance, in nano-dollars."""

    reservation_id: str
    workspace_id: str
    reserved_amount: int
    provider: str | None = None
    model: str | None = None
    created_at: datetime | None = None

    @property
    def is_chargeable(self) -> bool:
        return self.reservation_id not in ("byok", "zero-cost")


class CreditTransaction(BaseModel):
    """A settled charge or refund recorded against a workspace."""

    workspace_id: str
    reservation_id: str
    amount: int
    description: str
    agent_id: str | None = None
    conversation_id: str | None = None
    tool_call: str | None = None


def parse_grain(value: "TemporalGrain | str") -> TemporalGrain:
    """Coerce a grain name to ``TemporalGrain``.

    Raises:
        InvalidGrainError: If the name is not a known grain.
    """
    try:
        return TemporalGrain(value)
    except ValueError as e:
        raise InvalidGrainError(str(value), f"Unknown temporal grain: {value}") from e
