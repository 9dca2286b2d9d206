"""Producer for vector-store write operations.

Write intents are validated locally and published to a FIFO queue. An
out-of-process consumer applies them to the vector tables; this client
never waits for that to happen.

Messages for the same (agent, grain) pair share a message group and are
applied in submission order. Different pairs have no relative ordering.
"""

import hashlib
import json
import logging
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any

from pydantic import BaseModel, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from chronomem.core.config import MAX_DEDUPLICATION_ID_LENGTH, WRITE_QUEUE_NAME
from chronomem.core.exceptions import WriteMessageValidationError
from chronomem.core.types import FactRecord, RawFact, TemporalGrain, WriteOperationMessage
from chronomem.core.utils import to_epoch_millis, utc_now
from chronomem.queue.sqs import SqsPublisher

logger = logging.getLogger(__name__)

_message_adapter: TypeAdapter[WriteOperationMessage] = TypeAdapter(WriteOperationMessage)


class PublishReceipt(BaseModel):
    """Identifiers of a published write operation."""

    message_id: str | None = None
    group_id: str
    deduplication_id: str


def validate_write_message(
    message: WriteOperationMessage | Mapping[str, Any],
) -> WriteOperationMessage:
    """Validate a write message against its operation-specific schema.

    Raises:
        WriteMessageValidationError: Listing every invalid field.
    """
    if isinstance(message, BaseModel):
        message = message.model_dump(by_alias=True, exclude_none=True)
    try:
        return _message_adapter.validate_python(message)
    except PydanticValidationError as e:
        errors = [
            f"{'.'.join(str(part) for part in error['loc']) or '<root>'}: {error['msg']}"
            for error in e.errors()
        ]
        raise WriteMessageValidationError(errors) from e


def build_deduplication_id(message: WriteOperationMessage, submitted_at: datetime) -> str:
    """Hash the operation, its partition, its payload and the submission time.

    Identical payloads submitted in different milliseconds get different IDs.
    """
    payload = {
        "operation": message.operation,
        "agentId": message.agent_id,
        "temporalGrain": message.temporal_grain.value,
        "data": message.data.model_dump(by_alias=True, exclude_none=True, mode="json"),
        "timestamp": to_epoch_millis(submitted_at),
    }
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(encoded.encode()).hexdigest()[:MAX_DEDUPLICATION_ID_LENGTH]


class WriteQueueClient:
    """Validates and publishes vector-store write operations.

    Attributes:
        publisher: Publisher bound to the FIFO write queue.
    """

    def __init__(
        self,
        publisher: SqsPublisher,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.publisher = publisher
        self._clock = clock

    @classmethod
    def from_client(
        cls, sqs_client: Any, queue_url: str | None = None
    ) -> "WriteQueueClient":
        return cls(SqsPublisher(sqs_client, WRITE_QUEUE_NAME, queue_url))

    async def send_write_operation(
        self,
        message: WriteOperationMessage | Mapping[str, Any],
        idempotency_key: str | None = None,
    ) -> PublishReceipt:
        """Validate and publish one write operation.

        Args:
            message: Message model or its camelCase wire mapping.
            idempotency_key: Caller-chosen deduplication key; replaces the
                time-based hash so retries of the same logical write dedupe.

        Returns:
            Identifiers of the published message.

        Raises:
            WriteMessageValidationError: If the message is malformed; nothing
                is published.
            QueuePublishError: If publishing fails. Not retried here.
        """
        validated = validate_write_message(message)

        group_id = validated.ordering_key
        if idempotency_key is not None:
            deduplication_id = hashlib.sha256(idempotency_key.encode()).hexdigest()
        else:
            deduplication_id = build_deduplication_id(validated, self._clock())

        body = validated.model_dump_json(by_alias=True, exclude_none=True)
        try:
            message_id = await self.publisher.publish(
                body,
                group_id=group_id,
                deduplication_id=deduplication_id,
            )
        except Exception as e:
            logger.error(
                f"Failed to publish {validated.operation} for {group_id}: {e}"
            )
            raise

        logger.info(f"Published {validated.operation} operation for {group_id}")
        return PublishReceipt(
            message_id=message_id,
            group_id=group_id,
            deduplication_id=deduplication_id,
        )

    async def _send_operation(
        self,
        operation: str,
        agent_id: str,
        grain: TemporalGrain | str,
        workspace_id: str | None,
        data: Mapping[str, Any] | None = None,
    ) -> PublishReceipt:
        # validated as a whole so every invalid argument is reported together
        message: dict[str, Any] = {
            "operation": operation,
            "agentId": agent_id,
            "temporalGrain": grain,
        }
        if workspace_id is not None:
            message["workspaceId"] = workspace_id
        if data is not None:
            message["data"] = data
        return await self.send_write_operation(message)

    async def insert_records(
        self,
        agent_id: str,
        grain: TemporalGrain | str,
        records: list[FactRecord],
        workspace_id: str | None = None,
    ) -> PublishReceipt | None:
        """Queue embedded facts for insertion; an empty list publishes nothing."""
        if not records:
            return None
        return await self._send_operation(
            "insert", agent_id, grain, workspace_id, {"records": records}
        )

    async def insert_raw_facts(
        self,
        agent_id: str,
        grain: TemporalGrain | str,
        raw_facts: list[RawFact],
        workspace_id: str | None = None,
    ) -> PublishReceipt | None:
        """Queue facts whose embeddings the consumer generates."""
        if not raw_facts:
            return None
        return await self._send_operation(
            "insert", agent_id, grain, workspace_id, {"rawFacts": raw_facts}
        )

    async def update_records(
        self,
        agent_id: str,
        grain: TemporalGrain | str,
        records: list[FactRecord],
        workspace_id: str | None = None,
    ) -> PublishReceipt | None:
        if not records:
            return None
        return await self._send_operation(
            "update", agent_id, grain, workspace_id, {"records": records}
        )

    async def remove_records(
        self,
        agent_id: str,
        grain: TemporalGrain | str,
        record_ids: list[str],
        workspace_id: str | None = None,
    ) -> PublishReceipt | None:
        if not record_ids:
            return None
        return await self._send_operation(
            "delete", agent_id, grain, workspace_id, {"recordIds": record_ids}
        )

    async def purge(
        self,
        agent_id: str,
        grain: TemporalGrain | str,
        workspace_id: str | None = None,
    ) -> PublishReceipt:
        """Queue removal of every fact in an (agent, grain) table."""
        return await self._send_operation("purge", agent_id, grain, workspace_id)
