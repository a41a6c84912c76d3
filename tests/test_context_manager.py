"""Tests for the sliding-window ContextManager.

Covers:
- Token-budget invariant for get_context
- Ordered (not best-fit) inclusion and truncation flag
- Token-driven eviction and the 2x window hard cap
- Recent window, date range, prune_old, clear, statistics
"""

import random
import threading
from datetime import datetime, timedelta, timezone

from recall.memory.context_manager import ContextManager
from recall.memory.types import estimate_tokens


# ── Budgeted Context ─────────────────────────────────────────────────────────


def test_get_context_never_exceeds_budget():
    rng = random.Random(42)
    manager = ContextManager(max_tokens=500, sliding_window_size=10)

    for _ in range(200):
        manager.add_interaction("q" * rng.randint(0, 120), "r" * rng.randint(0, 400))
        budget = rng.randint(0, 300)
        assert manager.get_context(budget).token_count <= budget


def test_get_context_returns_chronological_order():
    manager = ContextManager(max_tokens=4000, sliding_window_size=10)
    manager.add_interaction("first", "one")
    manager.add_interaction("second", "two")

    context = manager.get_context()

    assert [i.query for i in context.interactions] == ["first", "second"]
    assert context.token_count == estimate_tokens("first", "one") + estimate_tokens("second", "two")
    assert context.is_truncated is False


def test_get_context_stops_at_first_overflow():
    manager = ContextManager(max_tokens=4000, sliding_window_size=10)
    manager.add_interaction("a" * 4, "")        # 1 token, would fit alone
    manager.add_interaction("b" * 40, "")       # 10 tokens
    manager.add_interaction("c" * 20, "")       # 5 tokens

    context = manager.get_context(max_tokens=7)

    assert [i.query for i in context.interactions] == ["c" * 20]
    assert context.token_count == 5
    assert context.is_truncated is True


def test_get_context_zero_budget_with_history_is_truncated():
    manager = ContextManager(max_tokens=100, sliding_window_size=10)
    manager.add_interaction("hello there", "general kenobi")

    context = manager.get_context(0)

    assert context.is_empty
    assert context.is_truncated is True


def test_empty_manager_context():
    context = ContextManager(max_tokens=100, sliding_window_size=5).get_context()
    assert context.is_empty
    assert context.token_count == 0
    assert context.is_truncated is False


# ── Eviction ─────────────────────────────────────────────────────────────────


def test_token_total_is_bounded_by_max_tokens():
    manager = ContextManager(max_tokens=20, sliding_window_size=100)

    for index in range(10):
        manager.add_interaction(f"question {index}", "x" * 30)
        assert manager.token_count <= 20

    assert manager.get_full_history().interactions[-1].query == "question 9"


def test_hard_cap_trims_to_window_size():
    manager = ContextManager(max_tokens=100000, sliding_window_size=3)

    for index in range(6):
        manager.add_interaction(f"q{index}", "r")
    assert len(manager) == 6

    manager.add_interaction("q6", "r")

    history = manager.get_full_history()
    assert [i.query for i in history.interactions] == ["q4", "q5", "q6"]
    assert history.token_count == sum(i.token_count for i in history.interactions)


def test_oversized_interaction_evicts_everything_including_itself():
    manager = ContextManager(max_tokens=5, sliding_window_size=10)
    manager.add_interaction("tiny", "")
    manager.add_interaction("x" * 100, "y" * 100)

    assert len(manager) == 0
    assert manager.token_count == 0


# ── Views & Maintenance ──────────────────────────────────────────────────────


def test_recent_window_ignores_budget():
    manager = ContextManager(max_tokens=100000, sliding_window_size=2)
    for index in range(4):
        manager.add_interaction(f"q{index}", "r" * 400)

    window = manager.get_recent_window()

    assert [i.query for i in window.interactions] == ["q2", "q3"]
    assert window.is_truncated is True


def test_context_for_date_range_is_inclusive():
    manager = ContextManager(max_tokens=4000, sliding_window_size=10)
    base = datetime(2024, 1, 1, tzinfo=timezone.utc)
    for day in range(5):
        manager.add_interaction(f"day {day}", "r", timestamp=base + timedelta(days=day))

    context = manager.get_context_for_date_range(base + timedelta(days=1), base + timedelta(days=3))

    assert [i.query for i in context.interactions] == ["day 1", "day 2", "day 3"]


def test_prune_old_keeps_newest():
    manager = ContextManager(max_tokens=4000, sliding_window_size=10)
    for index in range(5):
        manager.add_interaction(f"q{index}", "r")

    assert manager.prune_old(2) == 3
    assert [i.query for i in manager.get_full_history().interactions] == ["q3", "q4"]
    assert manager.prune_old(5) == 0


def test_clear_resets_state():
    manager = ContextManager(max_tokens=4000, sliding_window_size=10)
    manager.add_interaction("q", "r")
    manager.clear()

    assert len(manager) == 0
    assert manager.token_count == 0


def test_statistics():
    manager = ContextManager(max_tokens=4000, sliding_window_size=10)
    manager.add_interaction("a" * 8, "b" * 8)
    manager.add_interaction("c" * 8, "d" * 8, from_long_term_memory=True)

    stats = manager.get_statistics()

    assert stats.total_interactions == 2
    assert stats.total_tokens == 8
    assert stats.average_tokens_per_interaction == 4
    assert stats.memory_interactions == 1
    assert stats.percentage_from_memory == 50.0
    assert stats.oldest_timestamp <= stats.newest_timestamp


def test_concurrent_appends_keep_totals_consistent():
    manager = ContextManager(max_tokens=10 ** 9, sliding_window_size=1000)

    def worker(offset):
        for index in range(100):
            manager.add_interaction(f"{offset}-{index}", "response")

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    history = manager.get_full_history()
    assert len(history.interactions) == 400
    assert history.token_count == sum(i.token_count for i in history.interactions)
