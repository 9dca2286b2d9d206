"""Memory services: search, retention, extraction, summarization and graph lookups."""

from chronomem.memory.extraction import KnowledgeExtractionService
from chronomem.memory.graph_search import GraphSearchService
from chronomem.memory.retention import retention_cutoff, retention_periods
from chronomem.memory.search import MemorySearchService
from chronomem.memory.summarize import MemorySummarizationService

__all__ = [
    "MemorySearchService",
    "KnowledgeExtractionService",
    "GraphSearchService",
    "MemorySummarizationService",
    "retention_cutoff",
    "retention_periods",
]
