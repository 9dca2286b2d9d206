"""Knowledge extraction from conversations into the fact graph.

A completion model reads a conversation and proposes graph operations plus
a summary. Its output is parsed against a strict schema; a malformed
response gets exactly one repair round-trip before extraction fails.

Extraction runs as a small state machine::

    ATTEMPT --parsed--> DONE
    ATTEMPT --parse error--> REPAIR --parsed--> DONE
                             REPAIR --parse error--> FAILED

Each model call in ATTEMPT and REPAIR holds its own credit reservation and
settles it before the next state begins.
"""

import logging
from collections.abc import Callable, Mapping
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from chronomem.core.config import DEFAULT_EXTRACTION_MODEL, Settings
from chronomem.core.exceptions import ExtractionError, ExtractionParseError
from chronomem.core.types import (
    ApplyResult,
    FactRow,
    FactUpdate,
    FactWhere,
    MemoryExtractionResult,
    MemoryOperation,
    MemoryOperationType,
)
from chronomem.core.utils import build_fact_id, parse_json_with_fallback, utc_now
from chronomem.credits.billing import BilledCompletions
from chronomem.credits.ledger import CreditContext
from chronomem.llm.client import OllamaClient
from chronomem.llm.credentials import CredentialResolver, ResolvedCredential
from chronomem.memory.prompts import (
    REPAIR_SYSTEM_PROMPT,
    build_extraction_messages,
    build_extraction_system_prompt,
    build_repair_messages,
)
from chronomem.queue.cost_verification import CostVerificationQueue
from chronomem.storage.graph import FactStore
from chronomem.storage.object_store import ObjectStore

logger = logging.getLogger(__name__)

EXTRACTION_TOOL_CALL = "memory-extraction"


class ExtractionState(str, Enum):
    """Model-calling states; DONE returns the result and FAILED raises."""

    ATTEMPT = "attempt"
    REPAIR = "repair"


def parse_extraction_response(text: str) -> MemoryExtractionResult:
    """Parse model output into a validated extraction result.

    Raises:
        ValueError: If the text holds no JSON object or it violates the schema.
    """
    data = parse_json_with_fallback(text)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    return MemoryExtractionResult.model_validate(data)


def _preview(text: str, length: int = 300) -> str:
    return text[:length]


class KnowledgeExtractionService:
    """Turns conversation text into graph operations and applies them.

    Attributes:
        llm_client: Completion client.
        settings: Settings used to open graph sessions.
        credentials: Resolves the workspace's completion key; None always
            uses the platform client.
        completions: Runs each model call under its own credit reservation.
        default_model: Model used when a call does not name one.
    """

    def __init__(
        self,
        llm_client: OllamaClient,
        settings: Settings,
        *,
        object_store: ObjectStore | None = None,
        credentials: CredentialResolver | None = None,
        cost_verification: CostVerificationQueue | None = None,
        default_model: str = DEFAULT_EXTRACTION_MODEL,
        max_completion_tokens: int = 2000,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.llm_client = llm_client
        self.settings = settings
        self.object_store = object_store
        self.credentials = credentials
        self.completions = BilledCompletions(
            llm_client,
            description="Memory extraction",
            tool_call=EXTRACTION_TOOL_CALL,
            cost_verification=cost_verification,
            max_completion_tokens=max_completion_tokens,
        )
        self.default_model = default_model
        self._clock = clock

    # ========== Extraction ==========

    async def extract_conversation_memory(
        self,
        workspace_id: str,
        agent_id: str,
        conversation_id: str,
        conversation_text: str,
        model_name: str | None = None,
        prompt: str | None = None,
        credit_context: CreditContext | None = None,
    ) -> MemoryExtractionResult | None:
        """Extract a summary and graph operations from a conversation.

        Args:
            workspace_id: Workspace billed for the model calls.
            agent_id: Agent the conversation belongs to.
            conversation_id: Conversation being processed.
            conversation_text: Rendered conversation.
            model_name: Completion model; blank uses the default.
            prompt: Replacement for the default extraction prompt.
            credit_context: Enables credit reservations for the model calls.

        Returns:
            The parsed result, or None if the conversation text is blank.

        Raises:
            ExtractionError: If the model returns an empty response.
            ExtractionParseError: If the response and its one repair both
                fail to parse.
            LLMError: If a model call fails.
            InsufficientCreditsError: If a reservation cannot be made.
        """
        if not conversation_text.strip():
            return None

        model = model_name.strip() if model_name and model_name.strip() else self.default_model
        system_prompt = build_extraction_system_prompt(prompt)
        messages = build_extraction_messages(conversation_text)
        credential = await self._resolve_credential(workspace_id)

        logger.info(
            f"Extracting memory for {workspace_id}/{agent_id} conversation {conversation_id} "
            f"with {model} ({len(conversation_text)} chars)"
        )

        state = ExtractionState.ATTEMPT
        raw_response = ""
        parse_error = ""

        while True:
            if state is ExtractionState.ATTEMPT:
                raw_response = await self._call_model(
                    model, system_prompt, messages, credential,
                    workspace_id, agent_id, conversation_id, credit_context,
                )
                if not raw_response:
                    raise ExtractionError("Memory extraction returned empty response")
                try:
                    result = parse_extraction_response(raw_response)
                except ValueError as e:
                    parse_error = str(e)
                    logger.warning(
                        f"Failed to parse extraction response, requesting repair: {parse_error} "
                        f"(response: {_preview(raw_response)!r})"
                    )
                    state = ExtractionState.REPAIR
                    continue
                return self._done(result, conversation_id)

            repaired = await self._call_model(
                model, REPAIR_SYSTEM_PROMPT,
                build_repair_messages(raw_response, parse_error), credential,
                workspace_id, agent_id, conversation_id, credit_context,
            )
            try:
                result = parse_extraction_response(repaired)
            except ValueError as e:
                logger.error(
                    f"Failed to parse repaired extraction response: {e} "
                    f"(response: {_preview(repaired)!r})"
                )
                raise ExtractionParseError(
                    f"Extraction response could not be parsed after repair: {e}", repaired
                ) from e
            return self._done(result, conversation_id)

    def _done(self, result: MemoryExtractionResult, conversation_id: str) -> MemoryExtractionResult:
        logger.info(
            f"Extracted {len(result.memory_operations)} memory operations "
            f"for conversation {conversation_id}"
        )
        return result

    async def _resolve_credential(self, workspace_id: str) -> ResolvedCredential:
        if self.credentials is None:
            return ResolvedCredential()
        return await self.credentials.resolve(workspace_id)

    async def _call_model(
        self,
        model: str,
        system: str,
        messages: list[dict[str, str]],
        credential: ResolvedCredential,
        workspace_id: str,
        agent_id: str,
        conversation_id: str,
        credit_context: CreditContext | None,
    ) -> str:
        completion = await self.completions.complete(
            model,
            system,
            messages,
            credential,
            workspace_id,
            agent_id=agent_id,
            conversation_id=conversation_id,
            credit_context=credit_context,
        )
        return completion.text.strip()

    # ========== Graph application ==========

    async def apply_memory_operations_to_graph(
        self,
        workspace_id: str,
        agent_id: str,
        conversation_id: str,
        memory_operations: list[MemoryOperation | Mapping[str, Any]],
    ) -> ApplyResult:
        """Apply extracted operations to the agent's fact graph.

        The whole batch runs in one graph session and ends with a single
        snapshot save.

        - DELETE removes the exact (subject, predicate, object) fact.
        - UPDATE removes every fact with the same subject and predicate,
          then inserts the new triple.
        - ADD refreshes the properties of an identical fact, or inserts it.

        Operations with a blank field are skipped.

        Returns:
            Counts of inserted, updated, deleted and skipped facts.
        """
        result = ApplyResult()
        if not memory_operations:
            return result

        now = self._clock().isoformat()
        async with FactStore.open(
            workspace_id,
            agent_id,
            settings=self.settings,
            object_store=self.object_store,
        ) as store:
            for raw in memory_operations:
                operation = self._normalize_operation(raw)
                if operation is None:
                    result.skipped += 1
                    continue

                subject, predicate, obj = operation.subject, operation.predicate, operation.object
                properties = {
                    "confidence": operation.confidence,
                    "workspaceId": workspace_id,
                    "agentId": agent_id,
                    "conversationId": conversation_id,
                    "updatedAt": now,
                }
                new_fact = FactRow(
                    id=build_fact_id(subject, predicate, obj),
                    source_id=subject,
                    target_id=obj,
                    label=predicate,
                    properties=properties,
                )

                if operation.operation is MemoryOperationType.DELETE:
                    exact = FactWhere(source_id=subject, label=predicate, target_id=obj)
                    result.deleted += len(await store.find_facts(exact))
                    await store.delete_facts(exact)

                elif operation.operation is MemoryOperationType.UPDATE:
                    existing = await store.find_facts(FactWhere(source_id=subject, label=predicate))
                    for fact in existing:
                        await store.delete_facts(FactWhere(id=fact.id))
                    await store.insert_facts([new_fact])
                    result.deleted += len(existing)
                    result.updated += 1

                else:
                    existing = await store.find_facts(
                        FactWhere(source_id=subject, label=predicate, target_id=obj), limit=1
                    )
                    if existing:
                        await store.update_facts(
                            FactWhere(id=existing[0].id), FactUpdate(properties=properties)
                        )
                        result.updated += 1
                    else:
                        await store.insert_facts([new_fact])
                        result.inserted += 1

            await store.save()

        logger.info(
            f"Applied memory operations for {workspace_id}/{agent_id}: "
            f"{result.inserted} inserted, {result.updated} updated, "
            f"{result.deleted} deleted, {result.skipped} skipped"
        )
        return result

    def _normalize_operation(
        self, raw: MemoryOperation | Mapping[str, Any]
    ) -> MemoryOperation | None:
        """Validate and trim an operation; None if it cannot be applied."""
        try:
            if isinstance(raw, MemoryOperation):
                raw = raw.model_dump()
            operation = MemoryOperation.model_validate(raw)
        except PydanticValidationError as e:
            logger.warning(f"Skipping invalid memory operation {raw!r}: {e}")
            return None
        return operation
