"""Memory service: the public API of the memory engine.

Architectural role:
    Sits between adapters (`recall.api.http_api`, `recall.api.cli`) and the
    memory components. It computes and caches embeddings, writes every
    interaction to both the long-term store and the short-term context window,
    runs retrieval and hybrid search with relevance ranking, assembles budgeted
    prompt context, and schedules background maintenance.

Write flow (`store`):
    embed(query) (cache-checked) -> `VectorStore.insert` ->
    `ContextManager.add_interaction` -> flush the whole result cache -> every
    `optimization_interval`-th store, submit maintenance to the background worker.

Read flow (`retrieve` / `search`):
    result-cache check -> embed(query) -> store vector search (+ lexical search in
    parallel for `search`) -> merge / score / sort -> cache -> return.

Caching:
    - Embedding cache: exact text -> vector, LRU, never caches a failed embed.
    - Result cache: LRU keyed by the raw query text plus the call parameters,
      flushed wholesale on every write (store, summary, prune, clear_context).
      A generation counter keeps results computed before a flush from being
      cached after it.

Background maintenance:
    `optimize()` plus pruning of stale `summary` entries, run on a single worker
    thread, both every N stores and on a wall-clock period. Failures are logged
    and swallowed; the next cycle retries. `shutdown()` stops the periodic loop
    and drains the workers.

Error handling strategy:
    Foreground errors (`StoreError`, `EmbeddingError`) propagate synchronously.
    No retries are attempted here.
"""

import logging
import threading
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import timedelta
from typing import Iterable, List, Optional, Tuple

import numpy as np

from recall.config import MemoryConfiguration
from recall.core.scoring import merge_hybrid_results, score_results
from recall.errors import ConfigurationError, EmbeddingError, StoreError
from recall.memory.cache import EmbeddingCache, LRUCache
from recall.memory.context_manager import ContextManager
from recall.memory.embedding_model import provider_from_env
from recall.memory.summarizer import MemorySummarizer
from recall.memory.types import (
    ContextInteraction,
    ConversationContext,
    ConversationSummary,
    MemoryCategory,
    MemoryEntry,
    MemoryFilters,
    MemoryImportance,
    MemoryMetadata,
    MemoryResult,
    MemoryServiceStatistics,
    estimate_tokens,
    utcnow,
)
from recall.memory.vector_store import VectorStore


logger = logging.getLogger(__name__)


SEARCH_VECTOR_THRESHOLD = 0.5
CONTEXT_MEMORY_LIMIT = 3
CONTEXT_MEMORY_THRESHOLD = 0.75
SUMMARY_QUERY = "Conversation summary"
TIMING_WINDOW = 100


class MemoryService:
    """Orchestrates embedding, storage, retrieval, context assembly and maintenance.

    Args:
        embedding_provider: Object with `embed(text)` (and ideally `dimension`).
        config: Engine configuration; defaults to `MemoryConfiguration()`.
        vector_store: Pre-built store; built from `config` when omitted.
        context_manager: Pre-built context window; built from `config` when omitted.
        summarizer: Summarizer collaborator; `MemorySummarizer` when omitted.
        start_maintenance: Start the periodic maintenance loop immediately.

    Raises:
        ConfigurationError: When the provider, its loaded model, or the store
            disagrees with `config.embedding_dimension`. Providers exposing
            `load()` are loaded here so a bad model is rejected up front.
        StoreError: When the default store cannot be opened or counted; a
            store opened here is closed again.
    """

    def __init__(self, embedding_provider, config: Optional[MemoryConfiguration] = None,
                 vector_store: Optional[VectorStore] = None,
                 context_manager: Optional[ContextManager] = None,
                 summarizer=None, start_maintenance: bool = True):
        self.config = config or MemoryConfiguration()
        dimension = self.config.embedding_dimension

        provider_dimension = getattr(embedding_provider, "dimension", dimension)
        if provider_dimension != dimension:
            raise ConfigurationError(
                f"Embedding provider dimension {provider_dimension} does not match "
                f"configured embedding_dimension {dimension}"
            )
        if vector_store is not None and vector_store.embedding_dimension != dimension:
            raise ConfigurationError(
                f"Vector store dimension {vector_store.embedding_dimension} does not match "
                f"configured embedding_dimension {dimension}"
            )

        load_model = getattr(embedding_provider, "load", None)
        if load_model is not None:
            load_model()

        self.embedding_provider = embedding_provider
        owns_store = vector_store is None
        self.vector_store = vector_store or VectorStore(
            self.config.database_path, dimension, self.config.search_window
        )
        self.context_manager = context_manager or ContextManager(
            self.config.max_context_tokens, self.config.sliding_window_size
        )
        self.summarizer = summarizer or MemorySummarizer(self.config.max_summary_tokens)

        self.embedding_cache = EmbeddingCache(self.config.embedding_cache_size)
        self.result_cache = LRUCache(self.config.result_cache_size)
        self._cache_lock = threading.Lock()
        self._cache_generation = 0
        self._embed_lock = threading.Lock()

        self._stats_lock = threading.Lock()
        try:
            self._total_entries = self.vector_store.count()
        except StoreError:
            if owns_store:
                self.vector_store.close()
            raise
        self._store_times = deque(maxlen=TIMING_WINDOW)
        self._retrieval_times = deque(maxlen=TIMING_WINDOW)
        self._result_hits = 0
        self._result_misses = 0
        self._last_optimization = None
        self._store_counter = 0

        self._search_executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="recall-search")
        self._maintenance_executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="recall-maintenance"
        )
        self._stop_event = threading.Event()
        self._maintenance_thread = None
        self._closed = False

        if start_maintenance:
            self.start()

    @classmethod
    def from_env(cls, env_file=None, **overrides) -> "MemoryService":
        """Service wired from `RECALL_*` variables (configuration and embedding provider)."""
        config = MemoryConfiguration.from_env(env_file, **overrides)
        provider = provider_from_env(config.embedding_dimension)
        logger.info(
            "Memory service using %s (database=%s)", type(provider).__name__, config.database_path
        )
        return cls(provider, config)

    # =========================================================
    # EMBEDDINGS
    # =========================================================

    def embed(self, text: str) -> np.ndarray:
        """Return the embedding for `text`, calling the provider at most once per text.

        Raises:
            EmbeddingError: When the provider fails or returns a vector that is
                empty, non-finite, or of the wrong dimension. Nothing is cached then.
        """
        if not isinstance(text, str):
            raise EmbeddingError(f"Cannot embed non-string input of type {type(text).__name__}")

        cached = self.embedding_cache.get(text)
        if cached is not None:
            return cached

        with self._embed_lock:
            cached = self.embedding_cache.peek(text)
            if cached is not None:
                return cached

            try:
                raw = self.embedding_provider.embed(text)
            except (EmbeddingError, ConfigurationError):
                raise
            except Exception as exc:
                raise EmbeddingError(f"Embedding provider failed: {exc}") from exc

            vector = self._validate_embedding(raw)
            self.embedding_cache.set(text, vector)
            return vector

    def _validate_embedding(self, raw) -> np.ndarray:
        try:
            vector = np.array(raw, dtype=np.float32).reshape(-1)
        except (TypeError, ValueError) as exc:
            raise EmbeddingError(f"Embedding provider returned a non-numeric vector: {exc}") from exc

        if vector.size != self.config.embedding_dimension:
            raise EmbeddingError(
                f"Embedding provider returned {vector.size} values, "
                f"expected {self.config.embedding_dimension}"
            )
        if not np.all(np.isfinite(vector)):
            raise EmbeddingError("Embedding provider returned non-finite values")

        vector.flags.writeable = False
        return vector

    # =========================================================
    # WRITES
    # =========================================================

    def store(self, query: str, response: str, metadata=None) -> MemoryEntry:
        """Persist one interaction to the store and the context window.

        Args:
            query: User query; its embedding indexes the entry.
            response: Assistant response.
            metadata: `MemoryMetadata`, a dict of its fields, or `None` for defaults.

        Returns:
            The persisted `MemoryEntry`.

        Raises:
            EmbeddingError: Provider failure; nothing is written.
            StoreError: Store failure; the context window is not updated.
        """
        started = time.perf_counter()

        entry = MemoryEntry(
            query=query,
            response=response,
            embedding=self.embed(query),
            metadata=self._coerce_metadata(metadata),
        )
        self.vector_store.insert(entry)

        self.context_manager.add_interaction(query, response, timestamp=entry.timestamp)
        self._invalidate_results()
        self._record_store(time.perf_counter() - started, 1)
        return entry

    def batch_store(self, interactions: Iterable[Tuple[str, str]], metadata=None) -> List[MemoryEntry]:
        """Persist several `(query, response)` pairs in one store transaction.

        Every embedding is computed before anything is written, so an embedding
        failure leaves both the store and the context window untouched.
        """
        started = time.perf_counter()
        meta = self._coerce_metadata(metadata)

        entries = [
            MemoryEntry(query=query, response=response, embedding=self.embed(query), metadata=meta)
            for query, response in interactions
        ]
        if not entries:
            return []

        self.vector_store.batch_insert(entries)

        for entry in entries:
            self.context_manager.add_interaction(entry.query, entry.response, timestamp=entry.timestamp)

        self._invalidate_results()
        self._record_store(time.perf_counter() - started, len(entries))
        return entries

    @staticmethod
    def _coerce_metadata(metadata) -> MemoryMetadata:
        if metadata is None:
            return MemoryMetadata()
        if isinstance(metadata, MemoryMetadata):
            return metadata
        return MemoryMetadata(**dict(metadata))

    # =========================================================
    # RETRIEVAL
    # =========================================================

    def retrieve(self, query: str, limit: int = 5, threshold: float = 0.7) -> List[MemoryResult]:
        """Vector retrieval ranked by relevance score.

        Fetches `2 * limit` candidates at or above `threshold`, scores them, and
        returns the best `limit`. Results are served from the result cache until
        the next write.
        """
        key = ("retrieve", query, limit, threshold)
        cached = self._cached_results(key)
        if cached is not None:
            return cached

        generation = self._cache_generation
        started = time.perf_counter()

        vector = self.embed(query)
        candidates = self.vector_store.vector_search(vector, limit * 2, threshold)
        results = score_results(candidates)[:limit]

        self._cache_results(key, results, generation)
        self._record_retrieval(time.perf_counter() - started)
        return list(results)

    def search(self, query: str, limit: int = 10,
               filters: Optional[MemoryFilters] = None) -> List[MemoryResult]:
        """Hybrid lexical + vector search with optional exclusion filters.

        Lexical search runs on a worker thread while the query is embedded and the
        vector search runs on the calling thread; both fetch `2 * limit` hits.
        """
        key = ("search", query, limit, filters)
        cached = self._cached_results(key)
        if cached is not None:
            return cached

        generation = self._cache_generation
        started = time.perf_counter()

        try:
            lexical_future = self._search_executor.submit(
                self.vector_store.lexical_search, query, limit * 2
            )
        except RuntimeError:
            lexical_future = None

        try:
            vector = self.embed(query)
            vector_results = self.vector_store.vector_search(
                vector, limit * 2, SEARCH_VECTOR_THRESHOLD
            )
        except Exception:
            if lexical_future is not None and not lexical_future.cancel():
                lexical_error = lexical_future.exception()
                if lexical_error is not None:
                    logger.warning("Lexical search for %r also failed: %s", query, lexical_error)
            raise

        if lexical_future is not None:
            lexical_results = lexical_future.result()
        else:
            lexical_results = self.vector_store.lexical_search(query, limit * 2)

        results = merge_hybrid_results(lexical_results, vector_results, filters)[:limit]

        self._cache_results(key, results, generation)
        self._record_retrieval(time.perf_counter() - started)
        return list(results)

    # =========================================================
    # CONTEXT ASSEMBLY
    # =========================================================

    def get_current_context(self, max_tokens: Optional[int] = None) -> ConversationContext:
        """Recent window plus relevant long-term memories under one token budget.

        Starts from the budgeted recent window. When budget remains, the most
        recent query is used to retrieve up to three long-term memories
        (threshold 0.75); those that fit and are not already in the window are
        prepended, marked `from_long_term_memory`.
        """
        limit = self.config.max_context_tokens if max_tokens is None else max_tokens
        recent = self.context_manager.get_context(limit)

        if recent.token_count >= limit or recent.is_empty:
            return recent

        last_query = recent.interactions[-1].query
        memories = self.retrieve(last_query, limit=CONTEXT_MEMORY_LIMIT,
                                 threshold=CONTEXT_MEMORY_THRESHOLD)

        seen = {(i.query, i.response) for i in recent.interactions}
        additional = []
        current_tokens = recent.token_count

        for memory in memories:
            entry = memory.entry
            if (entry.query, entry.response) in seen:
                continue

            tokens = estimate_tokens(entry.query, entry.response)
            if current_tokens + tokens > limit:
                continue

            additional.append(
                ContextInteraction(
                    query=entry.query,
                    response=entry.response,
                    timestamp=entry.timestamp,
                    from_long_term_memory=True,
                )
            )
            seen.add((entry.query, entry.response))
            current_tokens += tokens

        return ConversationContext(
            interactions=tuple(additional) + recent.interactions,
            token_count=current_tokens,
            is_truncated=recent.is_truncated,
        )

    def summarize_conversation(self, max_length: Optional[int] = None) -> ConversationSummary:
        """Summarize the context window and store the result as a `summary` entry.

        The summary is written to the long-term store only (category `summary`,
        importance `high`, tags = key topics); it is not fed back into the context
        window. An empty window produces an empty summary and writes nothing.
        """
        history = self.context_manager.get_full_history()
        budget = self.config.max_summary_tokens if max_length is None else max_length
        summary = self.summarizer.summarize(history.interactions, budget)

        if history.is_empty or not summary.text:
            return summary

        started = time.perf_counter()
        entry = MemoryEntry(
            query=SUMMARY_QUERY,
            response=summary.text,
            embedding=self.embed(SUMMARY_QUERY),
            metadata=MemoryMetadata(
                category=MemoryCategory.SUMMARY,
                importance=MemoryImportance.HIGH,
                tags=tuple(summary.key_topics),
            ),
        )
        self.vector_store.insert(entry)

        self._invalidate_results()
        self._record_store(time.perf_counter() - started, 1)
        return summary

    # =========================================================
    # MAINTENANCE
    # =========================================================

    def prune_memories(self, older_than_days: Optional[int] = None, min_importance=None) -> int:
        """Delete old, low-importance entries, then optimize the store.

        Args:
            older_than_days: Age cutoff in days (config default when `None`).
            min_importance: Entries strictly below this importance are eligible
                (config default when `None`).

        Returns:
            Number of deleted entries.
        """
        days = self.config.prune_older_than_days if older_than_days is None else older_than_days
        importance = (
            self.config.prune_min_importance if min_importance is None
            else MemoryImportance.parse(min_importance)
        )

        cutoff = utcnow() - timedelta(days=days)
        removed = self.vector_store.prune(cutoff, importance)

        with self._stats_lock:
            self._total_entries = max(0, self._total_entries - removed)

        self._invalidate_results()
        self.vector_store.optimize()
        return removed

    def clear_context(self) -> None:
        """Drop the short-term window and the result cache; the store is untouched."""
        self.context_manager.clear()
        self._invalidate_results()

    def _run_maintenance(self) -> None:
        try:
            self.vector_store.optimize()

            cutoff = utcnow() - timedelta(days=self.config.summary_retention_days)
            removed = self.vector_store.prune(
                cutoff,
                self.config.summary_prune_min_importance,
                category=MemoryCategory.SUMMARY,
            )

            if removed:
                with self._stats_lock:
                    self._total_entries = max(0, self._total_entries - removed)
                self._invalidate_results()

            with self._stats_lock:
                self._last_optimization = utcnow()

            logger.info("Memory maintenance finished (%d stale summaries pruned)", removed)
        except Exception:
            logger.exception("Background memory maintenance failed")

    def _schedule_maintenance(self) -> None:
        try:
            self._maintenance_executor.submit(self._run_maintenance)
        except RuntimeError:
            logger.warning("Maintenance worker is shut down; skipping scheduled maintenance")

    def _maintenance_loop(self) -> None:
        while not self._stop_event.wait(self.config.maintenance_period_seconds):
            self._run_maintenance()

    def start(self) -> None:
        """Start the periodic maintenance loop (no-op when already running)."""
        if self._closed:
            return
        if self._maintenance_thread is not None and self._maintenance_thread.is_alive():
            return

        self._stop_event.clear()
        self._maintenance_thread = threading.Thread(
            target=self._maintenance_loop,
            name="recall-maintenance-loop",
            daemon=True,
        )
        self._maintenance_thread.start()

    def shutdown(self, wait: bool = True) -> None:
        """Stop the periodic loop and the worker pools. Idempotent."""
        self._stop_event.set()

        thread = self._maintenance_thread
        if thread is not None and wait and thread is not threading.current_thread():
            thread.join()
        self._maintenance_thread = None

        self._maintenance_executor.shutdown(wait=wait)
        self._search_executor.shutdown(wait=wait)

    def close(self) -> None:
        """`shutdown()` then close the store."""
        if self._closed:
            return
        self._closed = True
        self.shutdown()
        self.vector_store.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    # =========================================================
    # CACHE & STATISTICS
    # =========================================================

    def _cached_results(self, key) -> Optional[List[MemoryResult]]:
        cached = self.result_cache.get(key)
        with self._stats_lock:
            if cached is None:
                self._result_misses += 1
            else:
                self._result_hits += 1

        if cached is None:
            return None

        logger.debug("Result cache hit for %r", key[1])
        return list(cached)

    def _cache_results(self, key, results, generation: int) -> None:
        with self._cache_lock:
            if generation == self._cache_generation:
                self.result_cache.set(key, tuple(results))

    def _invalidate_results(self) -> None:
        with self._cache_lock:
            self._cache_generation += 1
            self.result_cache.remove_all()

    def _record_store(self, duration: float, count: int) -> None:
        interval = self.config.optimization_interval

        with self._stats_lock:
            self._total_entries += count
            self._store_times.append(duration)

            before = self._store_counter
            self._store_counter += count
            due = before // interval != self._store_counter // interval

        if due:
            self._schedule_maintenance()

    def _record_retrieval(self, duration: float) -> None:
        with self._stats_lock:
            self._retrieval_times.append(duration)

    def get_statistics(self) -> MemoryServiceStatistics:
        with self._stats_lock:
            lookups = self._result_hits + self._result_misses
            stats = MemoryServiceStatistics(
                total_entries=self._total_entries,
                average_store_time=(
                    sum(self._store_times) / len(self._store_times) if self._store_times else 0.0
                ),
                average_retrieval_time=(
                    sum(self._retrieval_times) / len(self._retrieval_times)
                    if self._retrieval_times else 0.0
                ),
                cache_hit_rate=self._result_hits / lookups if lookups else 0.0,
                last_optimization=self._last_optimization,
            )

        return replace(stats, embedding_cache_hit_rate=self.embedding_cache.hit_rate)
