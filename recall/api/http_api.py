"""
HTTP API adapter for the memory engine.

Architectural role:
- Expose `MemoryService` operations as JSON endpoints.
- Enforce adapter-level input validation through pydantic request models.
- Map domain errors to HTTP status codes; no memory logic lives here.

Endpoint responsibilities:
- `POST /v1/memories`: store one interaction (or a batch).
- `POST /v1/memories/retrieve`: vector retrieval with relevance ranking.
- `POST /v1/memories/search`: hybrid lexical + vector search with filters.
- `POST /v1/memories/prune`: delete old, low-importance entries.
- `GET /v1/context` / `DELETE /v1/context`: assembled context / clear window.
- `POST /v1/summaries`: summarize and store the current conversation.
- `GET /v1/stats`: service diagnostics.

Error handling strategy:
- Request validation failures -> HTTP 422 (FastAPI default).
- `ConfigurationError` / invalid enum values -> HTTP 400.
- `EmbeddingError` -> HTTP 502 (the provider is an upstream dependency).
- `StoreError` -> HTTP 500.

Running:
    `create_app()` with no service builds one from `RECALL_*` environment
    variables, so any ASGI server can load it as a factory
    (`recall.api.http_api:create_app`).
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from recall.core.memory_service import MemoryService
from recall.errors import ConfigurationError, EmbeddingError, StoreError
from recall.memory.types import MemoryCategory, MemoryFilters, MemoryImportance, MemoryMetadata


logger = logging.getLogger(__name__)


# ============================================================
# Request Schemas
# ============================================================

class MetadataModel(BaseModel):
    category: str = MemoryCategory.GENERAL.value
    importance: str = "medium"
    tags: List[str] = Field(default_factory=list)

    def to_metadata(self) -> MemoryMetadata:
        return MemoryMetadata(
            category=MemoryCategory(self.category),
            importance=MemoryImportance.parse(self.importance),
            tags=tuple(self.tags),
        )


class InteractionModel(BaseModel):
    query: str
    response: str


class StoreRequest(BaseModel):
    """Single interaction (`query` + `response`) or a batch in `interactions`."""
    query: Optional[str] = None
    response: Optional[str] = None
    interactions: Optional[List[InteractionModel]] = None
    metadata: Optional[MetadataModel] = None


class RetrieveRequest(BaseModel):
    query: str
    limit: int = Field(default=5, ge=1)
    threshold: float = Field(default=0.7, ge=-1.0, le=1.0)


class FiltersModel(BaseModel):
    categories: Optional[List[str]] = None
    min_importance: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    tags: Optional[List[str]] = None

    def to_filters(self) -> MemoryFilters:
        date_range = None
        if self.start is not None or self.end is not None:
            date_range = (self.start or datetime.min, self.end or datetime.max)

        return MemoryFilters(
            categories=self.categories,
            min_importance=self.min_importance,
            date_range=date_range,
            tags=self.tags,
        )


class SearchRequest(BaseModel):
    query: str
    limit: int = Field(default=10, ge=1)
    filters: Optional[FiltersModel] = None


class PruneRequest(BaseModel):
    older_than_days: Optional[int] = Field(default=None, ge=0)
    min_importance: Optional[str] = None


class SummaryRequest(BaseModel):
    max_length: Optional[int] = Field(default=None, ge=1)


# ============================================================
# App Factory
# ============================================================

def create_app(service: Optional[MemoryService] = None) -> FastAPI:
    """Build the FastAPI app around `service` (built from the environment when `None`).

    A service built here is closed on application shutdown; an injected one is
    left to its owner.
    """
    owns_service = service is None
    if service is None:
        service = MemoryService.from_env()

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        yield
        if owns_service:
            service.close()

    app = FastAPI(title="recall", lifespan=lifespan)
    app.state.memory_service = service

    # ============================================================
    # Error Mapping
    # ============================================================

    @app.exception_handler(EmbeddingError)
    async def embedding_error_handler(request: Request, exc: EmbeddingError):
        logger.warning("Embedding failure on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=502, content={"error": str(exc)})

    @app.exception_handler(StoreError)
    async def store_error_handler(request: Request, exc: StoreError):
        logger.error("Store failure on %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=500,
            content={"error": str(exc), "operation": exc.operation},
        )

    @app.exception_handler(ConfigurationError)
    async def configuration_error_handler(request: Request, exc: ConfigurationError):
        return JSONResponse(status_code=400, content={"error": str(exc)})

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return JSONResponse(status_code=400, content={"error": str(exc)})

    # ============================================================
    # Memories
    # ============================================================

    @app.post("/v1/memories")
    def store_memory(body: StoreRequest):
        metadata = body.metadata.to_metadata() if body.metadata else None

        if body.interactions is not None:
            entries = service.batch_store(
                [(i.query, i.response) for i in body.interactions], metadata
            )
            return {"entries": [e.to_dict() for e in entries]}

        if body.query is None or body.response is None:
            return JSONResponse(
                status_code=400,
                content={"error": "Provide query and response, or interactions"},
            )

        entry = service.store(body.query, body.response, metadata)
        return {"entry": entry.to_dict()}

    @app.post("/v1/memories/retrieve")
    def retrieve_memories(body: RetrieveRequest):
        results = service.retrieve(body.query, limit=body.limit, threshold=body.threshold)
        return {"results": [r.to_dict() for r in results]}

    @app.post("/v1/memories/search")
    def search_memories(body: SearchRequest):
        filters = body.filters.to_filters() if body.filters else None
        results = service.search(body.query, limit=body.limit, filters=filters)
        return {"results": [r.to_dict() for r in results]}

    @app.post("/v1/memories/prune")
    def prune_memories(body: PruneRequest):
        removed = service.prune_memories(body.older_than_days, body.min_importance)
        return {"removed": removed}

    # ============================================================
    # Context & Summaries
    # ============================================================

    @app.get("/v1/context")
    def get_context(max_tokens: Optional[int] = None):
        context = service.get_current_context(max_tokens)
        payload = context.to_dict()
        payload["prompt"] = context.format_for_prompt()
        return payload

    @app.delete("/v1/context")
    def clear_context():
        service.clear_context()
        return {"cleared": True}

    @app.post("/v1/summaries")
    def summarize(body: Optional[SummaryRequest] = None):
        max_length = body.max_length if body else None
        return service.summarize_conversation(max_length).to_dict()

    @app.get("/v1/stats")
    def statistics():
        return service.get_statistics().to_dict()

    return app
