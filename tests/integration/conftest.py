"""Pytest fixtures for integration tests.

These fixtures wire real instances of the components together (DuckDB
graph sessions, ChromaDB tables, the SQLite credit ledger). Only the
network-facing edges are replaced: the language model, the SQS client and
S3, which is an in-memory object store.
"""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from chronomem.core.types import TokenUsage
from chronomem.credits.ledger import CreditContext
from chronomem.llm.client import CompletionResult, EmbeddingResult
from chronomem.memory.extraction import KnowledgeExtractionService
from chronomem.memory.graph_search import GraphSearchService
from chronomem.memory.search import MemorySearchService
from chronomem.queue.client import WriteQueueClient
from chronomem.storage.vector import VectorReadClient


@pytest.fixture
def llm_client():
    """Language model double answering with queued completions.

    Tests set ``llm_client.responses`` to the texts the model should return,
    in order.
    """
    client = MagicMock()
    client.responses = []

    async def complete(model, messages, **kwargs):
        return CompletionResult(
            text=client.responses.pop(0),
            model=model,
            usage=TokenUsage(prompt_tokens=200, completion_tokens=80),
        )

    client.complete = AsyncMock(side_effect=complete)
    client.embed_with_usage = AsyncMock(
        return_value=EmbeddingResult(embedding=[1.0, 0.0, 0.0], usage=TokenUsage(prompt_tokens=4))
    )
    return client


@pytest.fixture
def extraction_service(llm_client, settings, object_store):
    return KnowledgeExtractionService(llm_client, settings, object_store=object_store)


@pytest.fixture
def graph_search_service(settings, object_store):
    return GraphSearchService(settings, object_store=object_store)


@pytest.fixture
def vector_client(settings):
    client = VectorReadClient(settings.vector_root)
    yield client
    client.cache.clear()


@pytest.fixture
def memory_search_service(vector_client, llm_client):
    return MemorySearchService(vector_client, llm_client)


@pytest.fixture
def sqs_client():
    client = MagicMock()
    client.send_message.return_value = {"MessageId": "msg-1"}
    return client


@pytest.fixture
def write_queue(sqs_client):
    return WriteQueueClient.from_client(sqs_client, queue_url="https://queue.example/writes.fifo")


@pytest.fixture
def published_messages(sqs_client):
    """Bodies of every message sent to the write queue, decoded."""

    def _messages():
        return [json.loads(call.kwargs["MessageBody"]) for call in sqs_client.send_message.call_args_list]

    return _messages


@pytest.fixture
def credit_context(ledger):
    return CreditContext(ledger, agent_id="agent-1", conversation_id="conv-1")
