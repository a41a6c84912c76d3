"""Short-term conversation window with token-aware eviction.

Purpose of this abstraction:
    Hold the recent (query, response) interactions of the running session as a
    serialized in-memory log so the orchestration layer can assemble a budgeted
    prompt context without going back to the store.

Short-term vs long-term memory:
    - This window is session-scoped and lost on restart. It is populated in
      parallel with the store on every write; it is not a view into the store.
    - Long-term recall always goes through `recall.memory.vector_store` search.

Eviction invariants (applied after every append, in this order):
    1. While the running token total exceeds `max_tokens`, drop the oldest item.
    2. If more than `2 * sliding_window_size` interactions remain, drop the oldest
       ones down to `sliding_window_size`. This bounds memory even for many short
       interactions.

Concurrency:
    Every public method runs under one `threading.Lock`, so calls are processed
    one at a time in arrival order with no interleaved mutation.
"""

import logging
import threading
from typing import List, Optional

from recall.memory.types import (
    ContextInteraction,
    ContextStatistics,
    ConversationContext,
    ensure_utc,
    utcnow,
)


logger = logging.getLogger(__name__)


class ContextManager:
    """Serialized sliding-window log of recent interactions.

    Args:
        max_tokens: Token ceiling for the whole log and default `get_context` budget.
        sliding_window_size: Size of `get_recent_window`; hard cap is twice this.
    """

    def __init__(self, max_tokens: int, sliding_window_size: int):
        self.max_tokens = max_tokens
        self.sliding_window_size = sliding_window_size

        self._interactions: List[ContextInteraction] = []
        self._token_count = 0
        self._lock = threading.Lock()

    def add_interaction(self, query: str, response: str,
                        from_long_term_memory: bool = False,
                        timestamp=None) -> ContextInteraction:
        """Append one interaction and enforce both eviction invariants.

        Returns:
            The stored `ContextInteraction`.
        """
        interaction = ContextInteraction(
            query=query,
            response=response,
            timestamp=ensure_utc(timestamp) if timestamp is not None else utcnow(),
            from_long_term_memory=from_long_term_memory,
        )

        with self._lock:
            self._interactions.append(interaction)
            self._token_count += interaction.token_count
            self._prune_if_needed()

        return interaction

    def get_context(self, max_tokens: Optional[int] = None) -> ConversationContext:
        """Return the newest interactions that fit in `max_tokens`.

        Walks from newest to oldest and stops at the first interaction that would
        overflow the budget, even if an older one would fit on its own. Inclusion
        follows order, not best-fit packing.
        """
        limit = self.max_tokens if max_tokens is None else max_tokens

        with self._lock:
            selected = []
            token_count = 0
            truncated = False

            for interaction in reversed(self._interactions):
                candidate = token_count + interaction.token_count
                if candidate > limit:
                    truncated = True
                    break
                selected.append(interaction)
                token_count = candidate

        selected.reverse()
        return ConversationContext(
            interactions=tuple(selected),
            token_count=token_count,
            is_truncated=truncated,
        )

    def get_full_history(self) -> ConversationContext:
        with self._lock:
            return ConversationContext(
                interactions=tuple(self._interactions),
                token_count=self._token_count,
                is_truncated=False,
            )

    def get_recent_window(self) -> ConversationContext:
        """Last `sliding_window_size` interactions regardless of token budget."""
        with self._lock:
            recent = tuple(self._interactions[-self.sliding_window_size:])
            return ConversationContext(
                interactions=recent,
                token_count=sum(i.token_count for i in recent),
                is_truncated=len(self._interactions) > self.sliding_window_size,
            )

    def get_context_for_date_range(self, start, end) -> ConversationContext:
        """Interactions whose timestamp lies in the inclusive `[start, end]` range."""
        start = ensure_utc(start)
        end = ensure_utc(end)

        with self._lock:
            selected = tuple(i for i in self._interactions if start <= i.timestamp <= end)

        return ConversationContext(
            interactions=selected,
            token_count=sum(i.token_count for i in selected),
            is_truncated=False,
        )

    def prune_old(self, keep_count: Optional[int] = None) -> int:
        """Keep only the newest `keep_count` interactions (default: window size).

        Returns:
            Number of interactions removed.
        """
        keep = self.sliding_window_size if keep_count is None else max(0, keep_count)

        with self._lock:
            return self._evict_oldest(len(self._interactions) - keep)

    def clear(self) -> None:
        with self._lock:
            self._interactions = []
            self._token_count = 0

    def get_statistics(self) -> ContextStatistics:
        with self._lock:
            total = len(self._interactions)
            return ContextStatistics(
                total_interactions=total,
                total_tokens=self._token_count,
                average_tokens_per_interaction=self._token_count // total if total else 0,
                oldest_timestamp=self._interactions[0].timestamp if total else None,
                newest_timestamp=self._interactions[-1].timestamp if total else None,
                memory_interactions=sum(1 for i in self._interactions if i.from_long_term_memory),
            )

    @property
    def token_count(self) -> int:
        with self._lock:
            return self._token_count

    def __len__(self) -> int:
        with self._lock:
            return len(self._interactions)

    # Callers must hold `self._lock`.

    def _prune_if_needed(self) -> None:
        while self._token_count > self.max_tokens and self._interactions:
            removed = self._interactions.pop(0)
            self._token_count -= removed.token_count

        if len(self._interactions) > self.sliding_window_size * 2:
            removed = self._evict_oldest(len(self._interactions) - self.sliding_window_size)
            logger.debug("Context window hard cap evicted %d interactions", removed)

    def _evict_oldest(self, count: int) -> int:
        if count <= 0:
            return 0

        removed = self._interactions[:count]
        self._interactions = self._interactions[count:]
        self._token_count -= sum(i.token_count for i in removed)
        return len(removed)
