"""Shared SQS publishing for the queue producers."""

import asyncio
import logging
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from chronomem.core.config import S3Settings
from chronomem.core.exceptions import QueuePublishError

logger = logging.getLogger(__name__)


def create_sqs_client(settings: S3Settings, endpoint_url: str | None = None) -> Any:
    """Create a boto3 SQS client using the resolved AWS credentials."""
    return boto3.client(
        "sqs",
        region_name=settings.region,
        endpoint_url=endpoint_url,
        aws_access_key_id=settings.access_key_id,
        aws_secret_access_key=settings.secret_access_key,
        aws_session_token=settings.session_token,
    )


class SqsPublisher:
    """Publishes message bodies to one queue.

    The queue URL is looked up by name on first use when not configured.

    Attributes:
        queue_name: Queue name used for URL lookup.
        queue_url: Resolved queue URL.
    """

    def __init__(self, client: Any, queue_name: str, queue_url: str | None = None):
        self.client = client
        self.queue_name = queue_name
        self.queue_url = queue_url
        self._url_lock = asyncio.Lock()

    async def _resolve_url(self) -> str:
        if self.queue_url is not None:
            return self.queue_url
        async with self._url_lock:
            if self.queue_url is None:
                try:
                    response = await asyncio.to_thread(
                        self.client.get_queue_url, QueueName=self.queue_name
                    )
                except (ClientError, BotoCoreError) as e:
                    raise QueuePublishError(
                        f"Failed to resolve URL of queue {self.queue_name}: {e}"
                    ) from e
                self.queue_url = response["QueueUrl"]
                logger.debug(f"Resolved queue {self.queue_name} to {self.queue_url}")
        return self.queue_url  # type: ignore[return-value]

    async def publish(
        self,
        body: str,
        group_id: str | None = None,
        deduplication_id: str | None = None,
    ) -> str | None:
        """Send one message.

        Returns:
            The broker-assigned message ID.

        Raises:
            QueuePublishError: If the broker rejects or cannot receive the message.
        """
        params: dict[str, Any] = {"QueueUrl": await self._resolve_url(), "MessageBody": body}
        if group_id is not None:
            params["MessageGroupId"] = group_id
        if deduplication_id is not None:
            params["MessageDeduplicationId"] = deduplication_id

        try:
            response = await asyncio.to_thread(self.client.send_message, **params)
        except (ClientError, BotoCoreError) as e:
            raise QueuePublishError(
                f"Failed to publish to {self.queue_name}: {e}"
            ) from e
        return response.get("MessageId")
