"""Tests for the extractive summarizer and period grouping."""

from datetime import datetime, timedelta, timezone

from recall.memory.summarizer import (
    MemorySummarizer,
    PeriodSummary,
    SummarizationPeriod,
    compress,
    extract_key_topics,
)
from recall.memory.types import ContextInteraction


BASE = datetime(2024, 3, 6, 10, 30, tzinfo=timezone.utc)  # a Wednesday


def _interaction(query, response, minutes=0):
    return ContextInteraction(query=query, response=response,
                              timestamp=BASE + timedelta(minutes=minutes))


def test_empty_summary():
    summary = MemorySummarizer().summarize([])

    assert summary.text == ""
    assert summary.key_topics == ()
    assert summary.original_interaction_count == 0


def test_short_conversation_is_listed_in_full():
    interactions = [
        _interaction("What is Python?", "A programming language.", 0),
        _interaction("Who created it?", "Guido van Rossum.", 1),
    ]

    summary = MemorySummarizer().summarize(interactions)

    assert summary.text.startswith("[1] Q: What is Python?\nA: A programming language.")
    assert "[2] Q: Who created it?" in summary.text
    assert summary.original_interaction_count == 2
    assert summary.token_count > 0


def test_long_conversation_respects_budget_and_order():
    interactions = [
        _interaction(f"question number {i}?", "answer " * (5 + i), i) for i in range(8)
    ]

    summary = MemorySummarizer().summarize(interactions, max_length=40)

    assert summary.text.startswith("Conversation Summary (8 interactions):")
    assert "less important interactions omitted" in summary.text

    positions = [summary.text.find(f"question number {i}?") for i in range(8)]
    included = [p for p in positions if p >= 0]
    assert included == sorted(included)
    assert 0 < len(included) < 8


def test_key_topics_skip_short_and_stop_words():
    interactions = [
        _interaction("tell me about gardens", "gardens need water and gardens need light"),
        _interaction("what about water", "water matters"),
    ]

    topics = extract_key_topics(interactions)

    assert topics[0] in ("gardens", "water")
    assert set(topics[:2]) == {"gardens", "water"}
    assert "about" not in topics
    assert "me" not in topics
    assert len(topics) <= 5


def test_compress_clips_long_text():
    text = "word " * 100
    clipped = compress(text, 10)

    assert clipped.endswith("...")
    assert len(clipped) < len(text)
    assert compress("short", 10) == "short"


def test_summarize_by_period_groups_by_day():
    interactions = [
        _interaction("monday question", "a", 0),
        _interaction("same day", "b", 60),
        _interaction("next day", "c", 60 * 24),
    ]

    periods = MemorySummarizer().summarize_by_period(interactions, SummarizationPeriod.DAILY)

    assert [p.summary.original_interaction_count for p in periods] == [2, 1]
    assert all(isinstance(p, PeriodSummary) for p in periods)
    assert periods[0].start_date == datetime(2024, 3, 6, tzinfo=timezone.utc)
    assert periods[0].end_date == datetime(2024, 3, 7, tzinfo=timezone.utc)


def test_period_boundaries():
    assert SummarizationPeriod.HOURLY.start_of_period(BASE) == BASE.replace(minute=0)
    assert SummarizationPeriod.WEEKLY.start_of_period(BASE) == datetime(
        2024, 3, 4, tzinfo=timezone.utc
    )
    assert SummarizationPeriod.WEEKLY.length() == timedelta(weeks=1)
