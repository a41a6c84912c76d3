"""Memory subsystem package.

Architectural role:
    Groups the stateful memory components composed by `recall.core.memory_service`:
    - `types`: value objects and the token estimate.
    - `embedding_model`: embedding provider contract and implementations.
    - `cache`: LRU caches for embeddings and query results.
    - `vector_store`: durable SQLite + FTS5 + FAISS long-term store.
    - `context_manager`: session-scoped sliding-window conversation log.
    - `summarizer`: extractive conversation summarizer.
"""
