"""Relevance scoring and hybrid result fusion.

Scoring formula (kept exact so rankings are reproducible):

    score = similarity * 0.6
          + exp(-days_since_created / 30) * 0.2
          + importance.value * 0.1
          + 0.1 if category == important
    score = min(score, 1.0)

`importance.value` is the raw ordinal (low=1 ... critical=4), so importance
weights range from 0.1 to 0.4.

Hybrid fusion (`merge_hybrid_results`):
    - An entry returned by both lexical and vector search gets the mean of the two
      similarities.
    - A lexical-only entry is scored with its similarity multiplied by
      `LEXICAL_BOOST` (its reported similarity stays the raw value).
    - A vector-only entry keeps its similarity.
"""

import math
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from recall.memory.types import (
    MemoryCategory,
    MemoryEntry,
    MemoryFilters,
    MemoryResult,
    ensure_utc,
    utcnow,
)


SIMILARITY_WEIGHT = 0.6
RECENCY_WEIGHT = 0.2
IMPORTANCE_WEIGHT = 0.1
IMPORTANT_CATEGORY_BONUS = 0.1
RECENCY_DECAY_DAYS = 30.0
MAX_RELEVANCE = 1.0
LEXICAL_BOOST = 1.2

SECONDS_PER_DAY = 86400.0


def recency_score(timestamp: datetime, now: Optional[datetime] = None) -> float:
    """`exp(-days_since / 30)`; timestamps in the future count as age 0."""
    now = ensure_utc(now) if now is not None else utcnow()
    days = max(0.0, (now - ensure_utc(timestamp)).total_seconds() / SECONDS_PER_DAY)
    return math.exp(-days / RECENCY_DECAY_DAYS)


def calculate_relevance_score(similarity: float, entry: MemoryEntry,
                              now: Optional[datetime] = None) -> float:
    score = similarity * SIMILARITY_WEIGHT
    score += recency_score(entry.timestamp, now) * RECENCY_WEIGHT
    score += entry.metadata.importance.value * IMPORTANCE_WEIGHT

    if entry.metadata.category == MemoryCategory.IMPORTANT:
        score += IMPORTANT_CATEGORY_BONUS

    return min(score, MAX_RELEVANCE)


def score_results(results: Iterable[MemoryResult],
                  now: Optional[datetime] = None) -> List[MemoryResult]:
    """Attach relevance scores and sort descending by them."""
    scored = [
        MemoryResult(
            entry=r.entry,
            similarity=r.similarity,
            relevance_score=calculate_relevance_score(r.similarity, r.entry, now),
        )
        for r in results
    ]
    scored.sort(key=lambda r: r.relevance_score, reverse=True)
    return scored


def merge_hybrid_results(lexical: Iterable[MemoryResult],
                         vector: Iterable[MemoryResult],
                         filters: Optional[MemoryFilters] = None,
                         now: Optional[datetime] = None) -> List[MemoryResult]:
    """Fuse lexical and vector hits by entry id, filter, score, and sort.

    Args:
        lexical: Results from the store's lexical search.
        vector: Results from the store's vector search.
        filters: Optional exclusion filters.
        now: Reference time for recency (defaults to current UTC time).

    Returns:
        Every surviving candidate, sorted by relevance descending. Truncation to
        the caller's limit happens in the memory service.
    """
    lexical_by_id: Dict[str, MemoryResult] = {}
    for result in lexical:
        lexical_by_id.setdefault(result.entry.id, result)

    vector_by_id: Dict[str, MemoryResult] = {}
    for result in vector:
        vector_by_id.setdefault(result.entry.id, result)

    merged = []
    for entry_id, lex in lexical_by_id.items():
        vec = vector_by_id.get(entry_id)
        if vec is not None:
            similarity = (lex.similarity + vec.similarity) / 2
            scoring_similarity = similarity
        else:
            similarity = lex.similarity
            scoring_similarity = lex.similarity * LEXICAL_BOOST
        merged.append((lex.entry, similarity, scoring_similarity))

    for entry_id, vec in vector_by_id.items():
        if entry_id not in lexical_by_id:
            merged.append((vec.entry, vec.similarity, vec.similarity))

    results = [
        MemoryResult(
            entry=entry,
            similarity=similarity,
            relevance_score=calculate_relevance_score(scoring_similarity, entry, now),
        )
        for entry, similarity, scoring_similarity in merged
        if filters is None or filters.matches(entry)
    ]

    results.sort(key=lambda r: r.relevance_score, reverse=True)
    return results
