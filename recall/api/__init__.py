"""API adapter package.

Architectural role:
- Defines the external interaction boundary (HTTP and CLI).
- Performs transport-level validation and response shaping.
- Delegates all memory behavior to `recall.core.memory_service`.
"""
