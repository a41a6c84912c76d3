"""Local conversational memory and retrieval engine.

Architectural role:
    `recall.core.memory_service.MemoryService` is the public entry point. It
    composes the long-term store (`recall.memory.vector_store`), the short-term
    context window (`recall.memory.context_manager`), embedding and result caches,
    the summarizer, and background maintenance. `recall.api` exposes it over HTTP
    and an interactive terminal; `recall.llm` and `recall.prompting` are used only
    by the terminal chat loop.
"""

from recall.config import MemoryConfiguration
from recall.core.memory_service import MemoryService
from recall.errors import ConfigurationError, EmbeddingError, RecallError, StoreError
from recall.memory.types import (
    ConversationContext,
    MemoryCategory,
    MemoryEntry,
    MemoryFilters,
    MemoryImportance,
    MemoryMetadata,
    MemoryResult,
)

__all__ = [
    "ConfigurationError",
    "ConversationContext",
    "EmbeddingError",
    "MemoryCategory",
    "MemoryConfiguration",
    "MemoryEntry",
    "MemoryFilters",
    "MemoryImportance",
    "MemoryMetadata",
    "MemoryResult",
    "MemoryService",
    "RecallError",
    "StoreError",
]
