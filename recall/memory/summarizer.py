"""Extractive conversation summarizer.

Architectural role:
    Implements the `Summarizer` contract used by
    `MemoryService.summarize_conversation`: compress a list of
    `ContextInteraction` objects into a `ConversationSummary` whose text is stored
    as a long-term `summary` entry.

Strategy:
    - Three or fewer interactions: numbered full `Q:`/`A:` listing.
    - Longer conversations: score every interaction (recency, response length,
      question mark, key terms), greedily keep the highest-scoring ones that fit in
      `max_length` tokens, restore chronological order, and clip long queries and
      responses.
    - Key topics: the five most frequent words longer than three characters,
      stop words removed, ties broken by first appearance.

Determinism:
    Deterministic for identical interactions (including timestamps).
"""

from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import List, Protocol, Sequence

from recall.memory.types import (
    CHARS_PER_TOKEN_ESTIMATE,
    ContextInteraction,
    ConversationSummary,
)


MAX_KEY_TOPICS = 5
FULL_SUMMARY_MAX_INTERACTIONS = 3
QUERY_CLIP_TOKENS = 50
RESPONSE_CLIP_TOKENS = 100

KEY_TERMS = ("important", "remember", "note", "summary", "explain", "why", "how")

STOP_WORDS = frozenset({
    "this", "that", "with", "from", "have", "they", "what", "when", "where",
    "which", "about", "their", "would", "there",
})


class Summarizer(Protocol):
    def summarize(self, interactions: Sequence[ContextInteraction],
                  max_length: int) -> ConversationSummary:
        ...


def _estimate_text_tokens(text: str) -> int:
    """Token estimate for free text; at least 1 for any input."""
    return max(1, len(text) // CHARS_PER_TOKEN_ESTIMATE)


def compress(text: str, max_tokens: int) -> str:
    """Clip `text` proportionally to `max_tokens` and append `...` when clipped."""
    estimated = _estimate_text_tokens(text)
    if estimated <= max_tokens:
        return text

    target_length = int(len(text) * (max_tokens / estimated))
    if target_length < len(text):
        return text[:target_length] + "..."
    return text


def extract_key_topics(interactions: Sequence[ContextInteraction],
                       limit: int = MAX_KEY_TOPICS) -> List[str]:
    words = []
    for interaction in interactions:
        text = f"{interaction.query} {interaction.response}".lower()
        words.extend(w for w in text.split() if len(w) > 3 and w not in STOP_WORDS)

    return [word for word, _count in Counter(words).most_common(limit)]


def importance_score(interaction: ContextInteraction,
                     context: Sequence[ContextInteraction]) -> float:
    """Heuristic importance of one interaction relative to its conversation."""
    score = 0.5

    if context:
        age_days = (context[-1].timestamp - interaction.timestamp).total_seconds() / 86400.0
        score += max(0.0, min((1.0 - age_days) * 0.3, 0.3))

    average_length = sum(len(i.response) for i in context) // max(1, len(context))
    if len(interaction.response) > average_length:
        score += 0.2

    if "?" in interaction.query:
        score += 0.1

    lowered = interaction.query.lower()
    if any(term in lowered for term in KEY_TERMS):
        score += 0.1

    return score


class MemorySummarizer:
    """Default extractive `Summarizer`.

    Args:
        max_summary_tokens: Budget used when `summarize` gets no `max_length`.
    """

    def __init__(self, max_summary_tokens: int = 500):
        self.max_summary_tokens = max_summary_tokens

    def summarize(self, interactions, max_length=None) -> ConversationSummary:
        interactions = list(interactions)
        limit = self.max_summary_tokens if max_length is None else max_length

        if not interactions:
            return ConversationSummary(
                text="",
                key_topics=(),
                token_count=0,
                original_interaction_count=0,
                compression_ratio=0.0,
            )

        topics = extract_key_topics(interactions)

        if len(interactions) <= FULL_SUMMARY_MAX_INTERACTIONS:
            text = self._full_summary(interactions)
        else:
            text = self._extracted_summary(interactions, limit)

        token_count = _estimate_text_tokens(text)
        original_tokens = sum(i.token_count for i in interactions)

        return ConversationSummary(
            text=text,
            key_topics=tuple(topics),
            token_count=token_count,
            original_interaction_count=len(interactions),
            compression_ratio=token_count / max(1, original_tokens),
        )

    def summarize_by_period(self, interactions, period: "SummarizationPeriod"):
        """Summarize each hourly/daily/weekly bucket separately, oldest first."""
        grouped = {}
        for interaction in interactions:
            grouped.setdefault(period.start_of_period(interaction.timestamp), []).append(interaction)

        return [
            PeriodSummary(period=period, start_date=start, summary=self.summarize(bucket))
            for start, bucket in sorted(grouped.items(), key=lambda item: item[0])
        ]

    @staticmethod
    def _full_summary(interactions) -> str:
        blocks = [
            f"[{index}] Q: {i.query}\nA: {i.response}\n"
            for index, i in enumerate(interactions, start=1)
        ]
        return "\n".join(blocks)

    @staticmethod
    def _extracted_summary(interactions, limit: int) -> str:
        scored = sorted(
            interactions,
            key=lambda i: importance_score(i, interactions),
            reverse=True,
        )

        selected = []
        current_tokens = 0
        for interaction in scored:
            if current_tokens + interaction.token_count <= limit:
                selected.append(interaction)
                current_tokens += interaction.token_count

        selected.sort(key=lambda i: i.timestamp)

        blocks = [
            f"[{index}] Q: {compress(i.query, QUERY_CLIP_TOKENS)}\n"
            f"A: {compress(i.response, RESPONSE_CLIP_TOKENS)}\n"
            for index, i in enumerate(selected, start=1)
        ]
        text = f"Conversation Summary ({len(interactions)} interactions):\n\n" + "\n".join(blocks)

        omitted = len(interactions) - len(selected)
        if omitted > 0:
            text += f"\n\n[... {omitted} less important interactions omitted ...]"

        return text


class SummarizationPeriod(Enum):
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"

    def start_of_period(self, moment: datetime) -> datetime:
        if self is SummarizationPeriod.HOURLY:
            return moment.replace(minute=0, second=0, microsecond=0)

        day = moment.replace(hour=0, minute=0, second=0, microsecond=0)
        if self is SummarizationPeriod.DAILY:
            return day

        # ISO weeks start on Monday.
        return day - timedelta(days=day.weekday())

    def length(self) -> timedelta:
        if self is SummarizationPeriod.HOURLY:
            return timedelta(hours=1)
        if self is SummarizationPeriod.DAILY:
            return timedelta(days=1)
        return timedelta(weeks=1)


@dataclass(frozen=True)
class PeriodSummary:
    period: SummarizationPeriod
    start_date: datetime
    summary: ConversationSummary

    @property
    def end_date(self) -> datetime:
        return self.start_date + self.period.length()
