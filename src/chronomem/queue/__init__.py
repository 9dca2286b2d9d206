"""Message producers for the vector write pipeline and cost verification."""

from chronomem.queue.client import PublishReceipt, WriteQueueClient
from chronomem.queue.cost_verification import CostVerificationQueue
from chronomem.queue.sqs import SqsPublisher, create_sqs_client

__all__ = [
    "WriteQueueClient",
    "PublishReceipt",
    "CostVerificationQueue",
    "SqsPublisher",
    "create_sqs_client",
]
