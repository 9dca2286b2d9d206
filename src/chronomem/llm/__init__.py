"""LLM client module for chronomem.

This module provides embedding and completion calls via Ollama and the
credential lookup that decides which key each call uses.
"""

from chronomem.llm.client import CompletionResult, EmbeddingResult, OllamaClient
from chronomem.llm.credentials import CredentialResolver, ResolvedCredential

__all__ = [
    "OllamaClient",
    "EmbeddingResult",
    "CompletionResult",
    "CredentialResolver",
    "ResolvedCredential",
]
