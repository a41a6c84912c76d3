"""Shared fixtures for the memory engine tests.

Provides:
- Temporary on-disk database paths
- Deterministic hash embedding provider (and a call-counting wrapper)
- A `MemoryService` without the periodic maintenance loop, closed after each test
- A stand-in `sentence_transformers` module for exercising model loading offline
"""

import sys
import types

import numpy as np
import pytest

from recall.config import MemoryConfiguration
from recall.core.memory_service import MemoryService
from recall.memory.embedding_model import HashEmbeddingProvider
from recall.memory.vector_store import VectorStore


DIMENSION = 384


class CountingProvider:
    """Wraps `HashEmbeddingProvider` and records every text it embeds."""

    def __init__(self, dimension: int = DIMENSION):
        self.dimension = dimension
        self._inner = HashEmbeddingProvider(dimension)
        self.calls = []

    def embed(self, text):
        self.calls.append(text)
        return self._inner.embed(text)


class FailingProvider:
    dimension = DIMENSION

    def embed(self, text):
        raise RuntimeError("model unavailable")


@pytest.fixture
def failing_provider():
    return FailingProvider()


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "memory.db")


@pytest.fixture
def provider():
    return CountingProvider()


@pytest.fixture
def config(db_path):
    return MemoryConfiguration(database_path=db_path)


@pytest.fixture
def store(db_path):
    vector_store = VectorStore(db_path, DIMENSION)
    yield vector_store
    vector_store.close()


@pytest.fixture
def service(provider, config):
    memory_service = MemoryService(provider, config, start_maintenance=False)
    yield memory_service
    memory_service.close()


@pytest.fixture
def make_service(provider, db_path):
    """Factory for services with configuration overrides."""
    created = []

    def _make(embedding_provider=None, start_maintenance=False, **overrides):
        overrides.setdefault("database_path", db_path)
        memory_service = MemoryService(
            embedding_provider or provider,
            MemoryConfiguration(**overrides),
            start_maintenance=start_maintenance,
        )
        created.append(memory_service)
        return memory_service

    yield _make

    for memory_service in created:
        memory_service.close()


@pytest.fixture
def fake_sentence_transformers(monkeypatch):
    """Installs a `sentence_transformers` module whose models embed like the hash provider.

    Returns the list of created models; each records its device and `encode` calls.
    """
    created = []

    class FakeSentenceTransformer:

        def __init__(self, model_name, device=None):
            self.model_name = model_name
            self.device = device
            self.encode_calls = []
            created.append(self)

        def get_sentence_embedding_dimension(self):
            return DIMENSION

        def encode(self, texts, normalize_embeddings=False):
            self.encode_calls.append((list(texts), normalize_embeddings))
            inner = HashEmbeddingProvider(DIMENSION)
            return np.stack([inner.embed(text) for text in texts])

    module = types.ModuleType("sentence_transformers")
    module.SentenceTransformer = FakeSentenceTransformer
    monkeypatch.setitem(sys.modules, "sentence_transformers", module)
    monkeypatch.setenv("CUDA_VISIBLE_DEVICES", "0")
    return created
