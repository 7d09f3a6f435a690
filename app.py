"""
CardGraph FastAPI Application

A REST API server for the CardGraph card engine.
Provides endpoints for cards, their dependencies, embeddings and search.
"""

import os
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from cardgraph.config import Config
from cardgraph.core.factory import CardStoreFactory, EmbedderFactory, VectorStoreFactory
from cardgraph.models import (
    Card,
    CardKind,
    EmbeddingStatusReport,
    MetadataValue,
    SearchFilters,
    SearchHit,
)
from cardgraph.services.card_engine import CardEngine
from cardgraph.utils.exceptions import (
    CardGraphError,
    ConflictError,
    NotFoundError,
    PipelineTimeoutError,
    TransientStoreError,
    ValidationError,
)
from cardgraph.utils.logger import get_logger, setup_logging_from_config

# Global engine instance
engine: CardEngine | None = None
logger = get_logger(__name__)


# Pydantic models for API
class CreateCardRequest(BaseModel):
    """Request model for creating a card."""

    title: str = Field(..., description="Card title")
    content: str = Field(default="", description="Inline text or payload reference")
    kind: CardKind = Field(default=CardKind.TEXT)
    tags: list[str] = Field(default_factory=list)
    metadata: dict[str, MetadataValue] = Field(default_factory=dict)
    dependencies: list[str] = Field(default_factory=list, description="IDs this card depends on")
    wait_for_embedding: bool = Field(default=False)
    timeout: float | None = Field(default=None, gt=0, description="Max wait in seconds")


class UpdateCardRequest(BaseModel):
    """Request model for updating a card. Omitted fields stay unchanged."""

    title: str | None = None
    content: str | None = None
    kind: CardKind | None = None
    tags: list[str] | None = None
    metadata: dict[str, MetadataValue] | None = None


class SearchRequest(BaseModel):
    """Request model for searching cards."""

    query: str = Field(default="", description="Free-text query")
    tags: list[str] = Field(default_factory=list)
    kind: CardKind | None = None
    metadata: dict[str, MetadataValue] = Field(default_factory=dict)
    limit: int = Field(default=20, ge=1, le=200, description="Max results")
    timeout: float | None = Field(default=None, gt=0)


class SearchResult(BaseModel):
    """Search response."""

    hits: list[SearchHit]
    degraded: bool
    degraded_reason: str | None = None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    engine_initialized: bool
    card_store: str
    vector_store: str
    embedding_model: str


def _http_error(error: CardGraphError) -> HTTPException:
    """Map an engine error onto an HTTP status."""
    if isinstance(error, ValidationError):
        status_code = 422
    elif isinstance(error, NotFoundError):
        status_code = 404
    elif isinstance(error, ConflictError):
        status_code = 409
    elif isinstance(error, PipelineTimeoutError):
        status_code = 504
    elif isinstance(error, TransientStoreError):
        status_code = 503
    else:
        status_code = 500
    return HTTPException(
        status_code=status_code,
        detail={"error": type(error).__name__, "message": error.message, "context": error.context},
    )


def _require_engine() -> CardEngine:
    if not engine:
        raise HTTPException(status_code=503, detail="Engine not initialized")
    return engine


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown."""
    global engine

    # Load configuration from environment, an optional YAML file, or defaults
    config = Config.from_env_or_yaml(yaml_path=os.getenv("CARDGRAPH_CONFIG", "config.yaml"))

    setup_logging_from_config(config.logging)

    logger.info("Starting CardGraph server")
    logger.info(
        f"Configuration: Embedder={config.embedder.provider}/{config.embedder.model}, "
        f"CardStore={config.card_store.backend}, VectorStore={config.vector_store.backend}"
    )

    logger.info("Creating embedder")
    embedder = EmbedderFactory.create(config.embedder)

    logger.info("Creating card store")
    card_store = CardStoreFactory.create(config.card_store)

    logger.info("Detecting embedding dimension")
    vector_size = await EmbedderFactory.get_dimension(embedder, config.embedder)
    logger.info(f"Embedding dimension: {vector_size}")

    logger.info("Creating vector store")
    vector_store = VectorStoreFactory.create(config.vector_store, vector_size)

    engine = CardEngine(
        embedder=embedder,
        card_store=card_store,
        vector_store=vector_store,
        config=config,
    )

    await engine.initialize()
    logger.info("CardGraph engine initialized")

    yield

    # Cleanup
    logger.info("Shutting down CardGraph server")
    await engine.close()
    engine = None
    logger.info("Cleanup complete")


# Create FastAPI app
app = FastAPI(
    title="CardGraph API",
    description="Cards with validated dependencies, background embeddings and hybrid search",
    version="1.0.0",
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Health check endpoint
@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    if not engine:
        return HealthResponse(
            status="initializing",
            engine_initialized=False,
            card_store="unknown",
            vector_store="unknown",
            embedding_model="unknown",
        )
    config = engine.config
    return HealthResponse(
        status="healthy",
        engine_initialized=True,
        card_store=config.card_store.backend,
        vector_store=config.vector_store.backend,
        embedding_model=f"{config.embedder.model} ({config.embedder.provider})",
    )


# Card endpoints
@app.post("/cards", response_model=Card, status_code=201)
async def create_card(request: CreateCardRequest):
    """
    Create a card.

    The card is stored immediately and its embedding is generated in the
    background. With wait_for_embedding the response is sent once the
    embedding job has finished (or failed).
    """
    current = _require_engine()
    try:
        return await current.create_card(
            title=request.title,
            content=request.content,
            kind=request.kind,
            tags=request.tags,
            metadata=request.metadata,
            dependencies=request.dependencies,
            wait_for_embedding=request.wait_for_embedding,
            timeout=request.timeout,
        )
    except CardGraphError as e:
        logger.error(f"Error creating card: {e}")
        raise _http_error(e) from e


@app.get("/cards", response_model=list[Card])
async def list_cards(
    tags: list[str] | None = Query(default=None),
    kind: CardKind | None = None,
    limit: int = Query(default=100, ge=1, le=1000),
):
    """List cards, most recently modified first."""
    current = _require_engine()
    try:
        return await current.list_cards(SearchFilters(tags=tags or [], kind=kind), limit=limit)
    except CardGraphError as e:
        raise _http_error(e) from e


@app.post("/cards/search", response_model=SearchResult)
async def search_cards(request: SearchRequest):
    """
    Search cards.

    Combines lexical matching, semantic similarity and dependency-graph
    proximity. When the vector store or the embedder is unavailable the
    results are lexical-only and flagged as degraded.
    """
    current = _require_engine()
    filters = SearchFilters(tags=request.tags, kind=request.kind, metadata=request.metadata)
    try:
        response = await current.search(
            request.query, filters=filters, limit=request.limit, timeout=request.timeout
        )
    except CardGraphError as e:
        logger.error(f"Error searching cards: {e}")
        raise _http_error(e) from e
    return SearchResult(
        hits=response.hits,
        degraded=response.degraded,
        degraded_reason=response.degraded_reason,
    )


@app.get("/cards/{card_id}", response_model=Card)
async def get_card(card_id: str):
    """Retrieve a card by ID."""
    current = _require_engine()
    try:
        return await current.get_card(card_id)
    except CardGraphError as e:
        raise _http_error(e) from e


@app.patch("/cards/{card_id}", response_model=Card)
async def update_card(card_id: str, request: UpdateCardRequest):
    """
    Update a card.

    Content or tag changes schedule a new embedding; other changes only
    bump last_modified.
    """
    current = _require_engine()
    try:
        return await current.update_card(card_id, **request.model_dump(exclude_none=True))
    except CardGraphError as e:
        logger.error(f"Error updating card: {e}")
        raise _http_error(e) from e


@app.delete("/cards/{card_id}")
async def delete_card(card_id: str):
    """Delete a card, its dependency links and its vector entry."""
    current = _require_engine()
    try:
        await current.delete_card(card_id)
        return {"id": card_id, "deleted": True}
    except CardGraphError as e:
        logger.error(f"Error deleting card: {e}")
        raise _http_error(e) from e


# Dependency endpoints
@app.get("/cards/{card_id}/dependencies", response_model=list[Card])
async def get_dependencies(card_id: str, transitive: bool = Query(default=False)):
    """Cards this card depends on, directly or (with transitive) indirectly."""
    current = _require_engine()
    try:
        return await current.resolve_dependencies(card_id, transitive=transitive)
    except CardGraphError as e:
        raise _http_error(e) from e


@app.get("/cards/{card_id}/dependents", response_model=list[Card])
async def get_dependents(card_id: str):
    """Cards that directly depend on this card."""
    current = _require_engine()
    try:
        return await current.resolve_dependents(card_id)
    except CardGraphError as e:
        raise _http_error(e) from e


@app.put("/cards/{card_id}/dependencies/{target_id}")
async def add_dependency(card_id: str, target_id: str):
    """Make a card depend on another. Rejected if it would create a cycle."""
    current = _require_engine()
    try:
        edge = await current.add_dependency(card_id, target_id)
    except CardGraphError as e:
        raise _http_error(e) from e
    return {"source": edge.source, "target": edge.target}


@app.delete("/cards/{card_id}/dependencies/{target_id}")
async def remove_dependency(card_id: str, target_id: str):
    """Remove a dependency. Removing a missing dependency is not an error."""
    current = _require_engine()
    try:
        removed = await current.remove_dependency(card_id, target_id)
    except CardGraphError as e:
        raise _http_error(e) from e
    return {"source": card_id, "target": target_id, "removed": removed}


# Embedding endpoints
@app.get("/cards/{card_id}/embedding", response_model=EmbeddingStatusReport)
async def get_embedding_status(card_id: str):
    """Embedding status of a card, with the last error class if it failed."""
    current = _require_engine()
    try:
        return await current.embedding_status(card_id)
    except CardGraphError as e:
        raise _http_error(e) from e


@app.post("/cards/{card_id}/embedding")
async def regenerate_embedding(
    card_id: str,
    wait: bool = Query(default=False),
    timeout: float | None = Query(default=None, gt=0),
):
    """Re-trigger embedding generation for a card."""
    current = _require_engine()
    try:
        outcome = await current.regenerate_embedding(card_id, wait=wait, timeout=timeout)
    except CardGraphError as e:
        raise _http_error(e) from e
    return {"id": card_id, "outcome": outcome.value if outcome else "queued"}


@app.post("/embeddings/resync")
async def generate_pending_embeddings():
    """Queue every card whose embedding is missing or out of date."""
    current = _require_engine()
    try:
        submitted = await current.generate_pending_embeddings()
    except CardGraphError as e:
        raise _http_error(e) from e
    return {"submitted": submitted}


# Statistics endpoint
@app.get("/stats")
async def get_stats() -> dict[str, Any]:
    """
    Get system statistics.

    Returns card counts, embedding status histogram, dependency count and
    pipeline load.
    """
    current = _require_engine()
    try:
        return await current.get_statistics()
    except CardGraphError as e:
        logger.error(f"Error getting stats: {e}")
        raise _http_error(e) from e


# Root endpoint
@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "name": "CardGraph API",
        "version": "1.0.0",
        "description": "Cards with validated dependencies, background embeddings and hybrid search",
        "docs": "/docs",
        "health": "/health",
    }
