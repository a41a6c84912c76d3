"""Core orchestration package.

Composition:
    - `scoring`: relevance formula and hybrid result fusion.
    - `memory_service`: the public `MemoryService` API and background maintenance.
"""
