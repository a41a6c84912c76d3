"""Construction-time configuration for the memory engine.

Architectural role:
    Centralizes every tunable consumed by `recall.core.memory_service` and the
    components it builds (store, context window, caches, summarizer, background
    maintenance). A `MemoryConfiguration` is validated once at construction and is
    immutable afterwards.

Environment integration:
    `MemoryConfiguration.from_env()` loads a local `.env` file via `python-dotenv`
    and reads `RECALL_*` variables. Unset variables keep the dataclass defaults.

Failure behavior:
    Invalid values raise `ConfigurationError` before any operation is accepted.
"""

import math
import os
from dataclasses import dataclass, fields

from dotenv import load_dotenv

from recall.errors import ConfigurationError
from recall.memory.types import MemoryImportance


ENV_PREFIX = "RECALL_"

_POSITIVE_INT_FIELDS = (
    "embedding_dimension",
    "max_context_tokens",
    "sliding_window_size",
    "max_summary_tokens",
    "embedding_cache_size",
    "result_cache_size",
    "optimization_interval",
    "search_window",
)

_NON_NEGATIVE_INT_FIELDS = (
    "prune_older_than_days",
    "summary_retention_days",
)


@dataclass(frozen=True)
class MemoryConfiguration:
    """Immutable engine settings.

    Attributes:
        embedding_dimension: Fixed vector length D for every stored entry.
        max_context_tokens: Default token budget for the context window.
        sliding_window_size: Recent-window size; the log is hard-capped at twice this.
        max_summary_tokens: Default summary budget for `summarize_conversation`.
        embedding_cache_size: Capacity of the text -> vector LRU cache.
        result_cache_size: Capacity of the query -> results LRU cache.
        optimization_interval: Background maintenance is scheduled every N stores.
        prune_older_than_days: Default age cutoff for `prune_memories`.
        prune_min_importance: Default importance floor for `prune_memories`.
        summary_retention_days: Age after which summary entries are maintenance-pruned.
        summary_prune_min_importance: Summaries below this importance are maintenance-pruned.
        search_window: Number of most recent rows scanned by vector search.
        maintenance_period_seconds: Wall-clock period of the maintenance loop.
        database_path: SQLite file path (`":memory:"` for a process-local store).
    """

    embedding_dimension: int = 384
    max_context_tokens: int = 4000
    sliding_window_size: int = 10
    max_summary_tokens: int = 500
    embedding_cache_size: int = 1000
    result_cache_size: int = 100
    optimization_interval: int = 100
    prune_older_than_days: int = 90
    prune_min_importance: MemoryImportance = MemoryImportance.LOW
    summary_retention_days: int = 30
    summary_prune_min_importance: MemoryImportance = MemoryImportance.CRITICAL
    search_window: int = 1000
    maintenance_period_seconds: float = 3600.0
    database_path: str = "recall_memory.db"

    def __post_init__(self):
        for name in ("prune_min_importance", "summary_prune_min_importance"):
            try:
                object.__setattr__(self, name, MemoryImportance.parse(getattr(self, name)))
            except (TypeError, ValueError) as exc:
                raise ConfigurationError(f"{name}: {exc}") from exc
        self.validate()

    def validate(self) -> None:
        """Reject values the engine cannot operate with.

        Raises:
            ConfigurationError: On non-integer, non-positive, or non-finite values,
                or an empty database path.
        """
        for name in _POSITIVE_INT_FIELDS:
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                raise ConfigurationError(f"{name} must be a positive integer, got {value!r}")

        for name in _NON_NEGATIVE_INT_FIELDS:
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ConfigurationError(f"{name} must be a non-negative integer, got {value!r}")

        period = self.maintenance_period_seconds
        if isinstance(period, bool) or not isinstance(period, (int, float)) \
                or not math.isfinite(period) or period <= 0:
            raise ConfigurationError(
                f"maintenance_period_seconds must be a positive number, got {period!r}"
            )

        if not isinstance(self.database_path, str) or not self.database_path.strip():
            raise ConfigurationError("database_path must be a non-empty string")

    @classmethod
    def from_env(cls, env_file=None, **overrides) -> "MemoryConfiguration":
        """Build a configuration from `RECALL_*` environment variables.

        Args:
            env_file: Optional explicit `.env` path; default search otherwise.
            **overrides: Field values that take precedence over the environment.

        Returns:
            Validated `MemoryConfiguration`.

        Raises:
            ConfigurationError: When a variable cannot be converted to its field type.
        """
        load_dotenv(env_file)

        values = {}
        for f in fields(cls):
            raw = os.getenv(ENV_PREFIX + f.name.upper())
            if raw is None or raw.strip() == "":
                continue

            raw = raw.strip()
            try:
                if f.name in ("prune_min_importance", "summary_prune_min_importance"):
                    values[f.name] = MemoryImportance.parse(raw)
                elif f.name == "maintenance_period_seconds":
                    values[f.name] = float(raw)
                elif f.name == "database_path":
                    values[f.name] = raw
                else:
                    values[f.name] = int(raw)
            except ValueError as exc:
                raise ConfigurationError(
                    f"Invalid value for {ENV_PREFIX}{f.name.upper()}: {raw!r}"
                ) from exc

        values.update(overrides)
        return cls(**values)


DEFAULT_CONFIGURATION = MemoryConfiguration()
