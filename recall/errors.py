"""Error taxonomy shared by the memory engine.

Architectural role:
    Defines the small set of exception types raised by the store, the embedding
    path, and configuration validation so callers (HTTP/CLI adapters, tests) can
    branch on failure class without string matching.

Propagation policy:
    - Foreground operations (`store`, `retrieve`, `search`, `prune_memories`)
      raise these synchronously to their caller. No retry is attempted inside the
      core; failures here are local disk/CPU failures.
    - Background maintenance catches them, logs, and waits for the next cycle.
"""


class RecallError(Exception):
    """Base class for every error raised by the memory engine."""


class StoreError(RecallError):
    """Persistent store failure (open, prepare, execute, or corrupt data).

    Args:
        operation: Short label of the failing store operation (for example
            `insert`, `vector_search`, `prune`).
        message: Human-readable failure description.
    """

    def __init__(self, operation: str, message: str):
        self.operation = operation
        self.message = message
        super().__init__(f"{operation} failed: {message}")


class EmbeddingError(RecallError):
    """Embedding provider failure or malformed provider output."""


class ConfigurationError(RecallError):
    """Invalid construction-time configuration."""
