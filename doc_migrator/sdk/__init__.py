"""
SDK for Doc Migrator.

Provides the LLM client and the document migration worker.
"""

from .llm_client import GuardedLLMClient, LLMResponse, is_retryable_error
from .worker import DocumentMigrationWorker

__all__ = ["GuardedLLMClient", "LLMResponse", "is_retryable_error", "DocumentMigrationWorker"]
