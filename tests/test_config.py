"""Tests for MemoryConfiguration defaults, validation, and environment loading."""

import pytest

from recall.config import MemoryConfiguration
from recall.errors import ConfigurationError
from recall.memory.types import MemoryImportance


def test_defaults():
    config = MemoryConfiguration()

    assert config.embedding_dimension == 384
    assert config.max_context_tokens == 4000
    assert config.sliding_window_size == 10
    assert config.max_summary_tokens == 500
    assert config.embedding_cache_size == 1000
    assert config.result_cache_size == 100
    assert config.optimization_interval == 100
    assert config.prune_older_than_days == 90
    assert config.prune_min_importance is MemoryImportance.LOW
    assert config.summary_prune_min_importance is MemoryImportance.CRITICAL
    assert config.search_window == 1000


def test_configuration_is_immutable():
    config = MemoryConfiguration()
    with pytest.raises(Exception):
        config.max_context_tokens = 10


@pytest.mark.parametrize("overrides", [
    {"embedding_dimension": 0},
    {"max_context_tokens": -5},
    {"sliding_window_size": 2.5},
    {"embedding_cache_size": True},
    {"optimization_interval": 0},
    {"prune_older_than_days": -1},
    {"maintenance_period_seconds": 0},
    {"maintenance_period_seconds": float("inf")},
    {"database_path": "  "},
    {"prune_min_importance": "enormous"},
])
def test_invalid_values_fail_fast(overrides):
    with pytest.raises(ConfigurationError):
        MemoryConfiguration(**overrides)


def test_importance_accepts_names_and_values():
    config = MemoryConfiguration(prune_min_importance="High", summary_prune_min_importance=2)

    assert config.prune_min_importance is MemoryImportance.HIGH
    assert config.summary_prune_min_importance is MemoryImportance.MEDIUM


def test_from_env_reads_prefixed_variables(monkeypatch, tmp_path):
    monkeypatch.setenv("RECALL_MAX_CONTEXT_TOKENS", "2000")
    monkeypatch.setenv("RECALL_PRUNE_MIN_IMPORTANCE", "medium")
    monkeypatch.setenv("RECALL_MAINTENANCE_PERIOD_SECONDS", "12.5")
    monkeypatch.setenv("RECALL_DATABASE_PATH", str(tmp_path / "env.db"))

    config = MemoryConfiguration.from_env(env_file=str(tmp_path / "missing.env"),
                                          sliding_window_size=4)

    assert config.max_context_tokens == 2000
    assert config.prune_min_importance is MemoryImportance.MEDIUM
    assert config.maintenance_period_seconds == 12.5
    assert config.database_path == str(tmp_path / "env.db")
    assert config.sliding_window_size == 4


def test_from_env_loads_dotenv_file(monkeypatch, tmp_path):
    monkeypatch.delenv("RECALL_SEARCH_WINDOW", raising=False)
    env_file = tmp_path / ".env"
    env_file.write_text("RECALL_SEARCH_WINDOW=250\n")

    try:
        assert MemoryConfiguration.from_env(env_file=str(env_file)).search_window == 250
    finally:
        monkeypatch.delenv("RECALL_SEARCH_WINDOW", raising=False)


def test_from_env_rejects_malformed_values(monkeypatch, tmp_path):
    monkeypatch.setenv("RECALL_EMBEDDING_DIMENSION", "lots")

    with pytest.raises(ConfigurationError):
        MemoryConfiguration.from_env(env_file=str(tmp_path / "missing.env"))
