"""Embedding providers for the memory subsystem.

Architectural role:
    Defines the `EmbeddingProvider` contract consumed by
    `recall.core.memory_service` (`embed(text) -> vector[D]`) and ships two
    implementations:
    - `SentenceTransformerEmbeddingProvider`: lazily loads a `SentenceTransformer`
      model, deciding CPU vs CUDA execution once through a conservative VRAM gate.
    - `HashEmbeddingProvider`: deterministic character-hash embedding used for
      offline runs and tests. It carries no semantic knowledge.

Design intent:
    - Providers are constructed once at process start and injected into the
      memory service; there is no module-global model instance.
    - Output vectors are L2-normalized float32 arrays of fixed dimension.

Determinism:
    Both providers are deterministic for a given text and model version.
"""

import logging
import os
import threading
from typing import Protocol, Sequence, runtime_checkable

import numpy as np

from recall.errors import ConfigurationError


logger = logging.getLogger(__name__)

EMBED_MODEL = "sentence-transformers/all-MiniLM-L6-v2"
MIN_VRAM_MB = 800


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Black-box text -> vector function with a fixed output dimension."""

    dimension: int

    def embed(self, text: str) -> Sequence[float]:
        ...


def has_enough_vram(min_required_mb: int = MIN_VRAM_MB) -> bool:
    """Return whether enough free GPU memory is available for embeddings.

    Args:
        min_required_mb: Minimum required free VRAM in megabytes.

    Returns:
        `True` when CUDA is available and free VRAM exceeds the threshold.
    """
    import torch

    if not torch.cuda.is_available():
        return False

    free_mem, _total_mem = torch.cuda.mem_get_info()
    free_mb = free_mem / 1024 / 1024

    logger.info("Free VRAM: %.0f MB", free_mb)

    return free_mb > min_required_mb


class SentenceTransformerEmbeddingProvider:
    """`SentenceTransformer`-backed provider with lazy, thread-safe model loading.

    Args:
        model_name: Hugging Face model identifier.
        dimension: Expected output dimension; checked against the model on load.
        device: Force `"cpu"` or `"cuda"`; autodetected via the VRAM gate when `None`.

    Behavior:
        - The model is loaded on first `embed` call (or an explicit `load`), not at
          construction.
        - A model whose output dimension differs from `dimension` is rejected
          with `ConfigurationError`.
        - Falls back to CPU (and hides CUDA devices) when VRAM is insufficient.
    """

    def __init__(self, model_name: str = EMBED_MODEL, dimension: int = 384, device=None):
        self.model_name = model_name
        self.dimension = dimension
        self._device = device
        self._model = None
        self._lock = threading.Lock()

    def load(self):
        """Load the model once and return it.

        Raises:
            ConfigurationError: When the model dimension differs from `dimension`.
        """
        with self._lock:
            if self._model is not None:
                return self._model

            logger.info("Loading embedding model %s", self.model_name)

            device = self._device
            if device is None:
                try:
                    device = "cuda" if has_enough_vram() else "cpu"
                except ImportError:
                    device = "cpu"

            if device == "cpu":
                os.environ["CUDA_VISIBLE_DEVICES"] = ""

            from sentence_transformers import SentenceTransformer

            logger.info("Loading embeddings on %s", device.upper())
            model = SentenceTransformer(self.model_name, device=device)

            model_dim = model.get_sentence_embedding_dimension()
            if model_dim is not None and model_dim != self.dimension:
                raise ConfigurationError(
                    f"Model {self.model_name} produces {model_dim}-d vectors, "
                    f"expected {self.dimension}"
                )

            self._model = model
            return model

    def embed(self, text: str) -> np.ndarray:
        model = self.load()
        vector = model.encode([text], normalize_embeddings=True)
        return np.asarray(vector, dtype=np.float32).reshape(-1)


class HashEmbeddingProvider:
    """Deterministic character-position embedding.

    Each character adds `ord(char) / 1000` to slot `index % dimension` of the
    lowercased text; the result is L2-normalized. Empty text yields the zero
    vector, whose cosine similarity with anything is 0.
    """

    def __init__(self, dimension: int = 384):
        self.dimension = dimension

    def embed(self, text: str) -> np.ndarray:
        vector = np.zeros(self.dimension, dtype=np.float32)

        for index, char in enumerate(text.lower()):
            vector[index % self.dimension] += ord(char) / 1000.0

        norm = float(np.linalg.norm(vector))
        if norm > 0:
            vector /= norm

        return vector


PROVIDER_ENV = "RECALL_EMBEDDING_PROVIDER"
MODEL_ENV = "RECALL_EMBEDDING_MODEL"


def provider_from_env(dimension: int = 384):
    """Build the provider named by `RECALL_EMBEDDING_PROVIDER`.

    `sentence-transformers` (default) uses `RECALL_EMBEDDING_MODEL` when set;
    `hash` selects `HashEmbeddingProvider`.

    Raises:
        ConfigurationError: For an unknown provider name.
    """
    name = os.getenv(PROVIDER_ENV, "sentence-transformers").strip().lower()

    if name == "hash":
        return HashEmbeddingProvider(dimension)
    if name in ("sentence-transformers", "sentence_transformers"):
        return SentenceTransformerEmbeddingProvider(
            os.getenv(MODEL_ENV, EMBED_MODEL), dimension=dimension
        )

    raise ConfigurationError(f"Unknown embedding provider {name!r} in {PROVIDER_ENV}")
