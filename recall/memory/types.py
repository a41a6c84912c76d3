"""Data contracts for long-term entries and short-term conversation context.

Architectural role:
    Defines the value objects passed between the store (`vector_store`), the
    sliding-window context manager (`context_manager`), the summarizer, and the
    orchestration layer (`recall.core.memory_service`).

Ownership model:
    - `MemoryEntry` rows are owned by the store. They are created only by the
      memory service and are never mutated, only inserted or deleted.
    - `ContextInteraction` objects live in the session-scoped context window and
      are lost on restart.
    - `MemoryResult` objects exist only at query time and are never persisted.

Token accounting:
    `estimate_tokens` is the single token heuristic used everywhere a budget is
    compared: `(len(query) + len(response)) // 4`.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional, Tuple

import numpy as np


CHARS_PER_TOKEN_ESTIMATE = 4


def estimate_tokens(query: str, response: str = "") -> int:
    """Approximate token count of one query/response pair.

    Args:
        query: Query text.
        response: Response text.

    Returns:
        `(len(query) + len(response)) // 4`.
    """
    return (len(query or "") + len(response or "")) // CHARS_PER_TOKEN_ESTIMATE


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Return `value` as a timezone-aware UTC datetime (naive input is read as UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class MemoryCategory(str, Enum):
    GENERAL = "general"
    IMPORTANT = "important"
    SUMMARY = "summary"
    CONTEXT = "context"
    FACT = "fact"
    PREFERENCE = "preference"


class MemoryImportance(Enum):
    """Ordered importance levels. The raw value feeds the relevance formula."""

    LOW = 1.0
    MEDIUM = 2.0
    HIGH = 3.0
    CRITICAL = 4.0

    def __lt__(self, other):
        if not isinstance(other, MemoryImportance):
            return NotImplemented
        return self.value < other.value

    def __le__(self, other):
        if not isinstance(other, MemoryImportance):
            return NotImplemented
        return self.value <= other.value

    def __gt__(self, other):
        if not isinstance(other, MemoryImportance):
            return NotImplemented
        return self.value > other.value

    def __ge__(self, other):
        if not isinstance(other, MemoryImportance):
            return NotImplemented
        return self.value >= other.value

    @classmethod
    def parse(cls, value: Any) -> "MemoryImportance":
        """Resolve a name (`"high"`), raw value (`3.0`), or member to a member."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls[value.strip().upper()]
            except KeyError:
                raise ValueError(f"Unknown importance: {value!r}") from None
        return cls(float(value))


@dataclass(frozen=True)
class MemoryMetadata:
    category: MemoryCategory = MemoryCategory.GENERAL
    importance: MemoryImportance = MemoryImportance.MEDIUM
    tags: Tuple[str, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "category", MemoryCategory(self.category))
        object.__setattr__(self, "importance", MemoryImportance.parse(self.importance))
        object.__setattr__(self, "tags", tuple(str(t) for t in self.tags if str(t)))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.value,
            "importance": self.importance.name.lower(),
            "tags": list(self.tags),
        }


@dataclass(frozen=True)
class MemoryEntry:
    """One persisted (query, response) interaction with its query embedding.

    The embedding array is made read-only on construction; entries are never
    changed after they are written.
    """

    query: str
    response: str
    embedding: np.ndarray = field(repr=False, compare=False)
    metadata: MemoryMetadata = field(default_factory=MemoryMetadata)
    timestamp: datetime = field(default_factory=utcnow)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def __post_init__(self):
        vector = np.array(self.embedding, dtype=np.float32).reshape(-1)
        vector.flags.writeable = False
        object.__setattr__(self, "embedding", vector)
        object.__setattr__(self, "timestamp", ensure_utc(self.timestamp))

    @property
    def token_count(self) -> int:
        return estimate_tokens(self.query, self.response)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "query": self.query,
            "response": self.response,
            "timestamp": self.timestamp.isoformat(),
            **self.metadata.to_dict(),
        }


@dataclass(frozen=True)
class MemoryResult:
    entry: MemoryEntry
    similarity: float
    relevance_score: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entry": self.entry.to_dict(),
            "similarity": round(float(self.similarity), 6),
            "relevance_score": round(float(self.relevance_score), 6),
        }


@dataclass(frozen=True)
class MemoryFilters:
    """Exclusion filters applied to hybrid search candidates.

    Attributes:
        categories: Allowed categories, or `None` for any.
        min_importance: Minimum importance (inclusive), or `None`.
        date_range: Inclusive `(start, end)` window on entry timestamp, or `None`.
        tags: Required tags; an entry passes when it shares at least one.
    """

    categories: Optional[FrozenSet[MemoryCategory]] = None
    min_importance: Optional[MemoryImportance] = None
    date_range: Optional[Tuple[datetime, datetime]] = None
    tags: Optional[FrozenSet[str]] = None

    def __post_init__(self):
        if self.categories is not None:
            object.__setattr__(
                self, "categories", frozenset(MemoryCategory(c) for c in self.categories)
            )
        if self.min_importance is not None:
            object.__setattr__(self, "min_importance", MemoryImportance.parse(self.min_importance))
        if self.date_range is not None:
            start, end = self.date_range
            object.__setattr__(self, "date_range", (ensure_utc(start), ensure_utc(end)))
        if self.tags is not None:
            object.__setattr__(self, "tags", frozenset(self.tags))

    def matches(self, entry: MemoryEntry) -> bool:
        meta = entry.metadata

        if self.categories is not None and meta.category not in self.categories:
            return False

        if self.min_importance is not None and meta.importance < self.min_importance:
            return False

        if self.date_range is not None:
            start, end = self.date_range
            if not start <= entry.timestamp <= end:
                return False

        if self.tags is not None and not self.tags.intersection(meta.tags):
            return False

        return True


@dataclass(frozen=True)
class ContextInteraction:
    query: str
    response: str
    timestamp: datetime = field(default_factory=utcnow)
    from_long_term_memory: bool = False
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def token_count(self) -> int:
        return estimate_tokens(self.query, self.response)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "query": self.query,
            "response": self.response,
            "timestamp": self.timestamp.isoformat(),
            "from_long_term_memory": self.from_long_term_memory,
            "token_count": self.token_count,
        }


@dataclass(frozen=True)
class ConversationContext:
    """Ordered (oldest first) interaction sequence handed to the text generator."""

    interactions: Tuple[ContextInteraction, ...] = ()
    token_count: int = 0
    is_truncated: bool = False

    def __post_init__(self):
        object.__setattr__(self, "interactions", tuple(self.interactions))

    @property
    def is_empty(self) -> bool:
        return not self.interactions

    @property
    def interaction_count(self) -> int:
        return len(self.interactions)

    def format_for_prompt(self) -> str:
        """Render interactions as role-labeled `User:` / `Assistant:` blocks."""
        return "\n\n".join(
            f"User: {i.query}\nAssistant: {i.response}" for i in self.interactions
        )

    def get_summary(self) -> str:
        return (
            f"Context: {self.interaction_count} interactions, "
            f"{self.token_count} tokens, {self._timespan()}"
        )

    def _timespan(self) -> str:
        if not self.interactions:
            return "unknown timespan"

        seconds = (self.interactions[-1].timestamp - self.interactions[0].timestamp).total_seconds()
        hours = int(seconds // 3600)
        minutes = int((seconds % 3600) // 60)

        if hours > 0:
            return f"{hours}h {minutes}m"
        return f"{minutes}m"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "interactions": [i.to_dict() for i in self.interactions],
            "token_count": self.token_count,
            "is_truncated": self.is_truncated,
        }


@dataclass(frozen=True)
class ContextStatistics:
    total_interactions: int
    total_tokens: int
    average_tokens_per_interaction: int
    oldest_timestamp: Optional[datetime]
    newest_timestamp: Optional[datetime]
    memory_interactions: int

    @property
    def percentage_from_memory(self) -> float:
        if self.total_interactions == 0:
            return 0.0
        return self.memory_interactions / self.total_interactions * 100


@dataclass(frozen=True)
class ConversationSummary:
    text: str
    key_topics: Tuple[str, ...]
    token_count: int
    original_interaction_count: int
    compression_ratio: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "key_topics": list(self.key_topics),
            "token_count": self.token_count,
            "original_interaction_count": self.original_interaction_count,
            "compression_ratio": self.compression_ratio,
        }


@dataclass
class MemoryServiceStatistics:
    """Diagnostics snapshot read by adapters; durations are in seconds."""

    total_entries: int = 0
    average_store_time: float = 0.0
    average_retrieval_time: float = 0.0
    cache_hit_rate: float = 0.0
    embedding_cache_hit_rate: float = 0.0
    last_optimization: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_entries": self.total_entries,
            "average_store_time": self.average_store_time,
            "average_retrieval_time": self.average_retrieval_time,
            "cache_hit_rate": self.cache_hit_rate,
            "embedding_cache_hit_rate": self.embedding_cache_hit_rate,
            "last_optimization": (
                self.last_optimization.isoformat() if self.last_optimization else None
            ),
        }
