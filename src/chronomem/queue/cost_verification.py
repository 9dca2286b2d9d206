"""Follow-up messages for reservations whose cost was not known synchronously.

When a model call returns without usable token counts (or times out after
the provider may already have billed it), the reservation cannot be settled
on the spot. A verification request is queued instead, and a separate
worker settles the reservation once the provider reports the real cost.
"""

import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from chronomem.core.config import COST_VERIFICATION_QUEUE_NAME
from chronomem.queue.sqs import SqsPublisher

logger = logging.getLogger(__name__)


class CostVerificationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    reservation_id: str = Field(alias="reservationId")
    workspace_id: str = Field(alias="workspaceId")
    model: str
    generation_id: str | None = Field(default=None, alias="generationId")
    agent_id: str | None = Field(default=None, alias="agentId")
    conversation_id: str | None = Field(default=None, alias="conversationId")


class CostVerificationQueue:
    """Publishes cost verification requests to a standard queue."""

    def __init__(self, publisher: SqsPublisher):
        self.publisher = publisher

    @classmethod
    def from_client(
        cls, sqs_client: Any, queue_url: str | None = None
    ) -> "CostVerificationQueue":
        return cls(SqsPublisher(sqs_client, COST_VERIFICATION_QUEUE_NAME, queue_url))

    async def enqueue(
        self,
        reservation_id: str,
        workspace_id: str,
        model: str,
        generation_id: str | None = None,
        agent_id: str | None = None,
        conversation_id: str | None = None,
    ) -> None:
        """Ask the verification worker to settle a reservation.

        Raises:
            QueuePublishError: If the request cannot be published.
        """
        request = CostVerificationRequest(
            reservation_id=reservation_id,
            workspace_id=workspace_id,
            model=model,
            generation_id=generation_id,
            agent_id=agent_id,
            conversation_id=conversation_id,
        )
        await self.publisher.publish(request.model_dump_json(by_alias=True, exclude_none=True))
        logger.info(f"Queued cost verification for reservation {reservation_id}")
