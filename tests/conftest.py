"""Shared fixtures for CardGraph tests.

Everything here runs in-process: cards live in InMemoryCardStore, vectors in
InMemoryVectorStore and embeddings come from a deterministic fake, so no
external service is required. Tests against real Qdrant/Ollama live in their
own modules and are marked as integration tests.
"""

import asyncio
import hashlib
import re
from collections.abc import AsyncGenerator

import pytest

from cardgraph.config import CardStoreConfig, Config, PipelineConfig, RetryConfig, VectorStoreConfig
from cardgraph.core.card_store.memory_store import InMemoryCardStore
from cardgraph.core.embeddings.base import Embedder
from cardgraph.core.vector_store.memory_store import InMemoryVectorStore
from cardgraph.models.card import Card
from cardgraph.services.card_engine import CardEngine
from cardgraph.services.dependency_graph import DependencyGraph
from cardgraph.services.embedding_pipeline import EmbeddingPipeline
from cardgraph.utils.exceptions import GenerationError, VectorStoreError
from cardgraph.utils.retry import RetryPolicy

DIMENSION = 32


class FakeEmbedder(Embedder):
    """
    Deterministic bag-of-words embedder.

    Texts sharing words get similar vectors. `gate` (when set) holds every
    call until it is opened; `failures` makes the next N calls fail.
    """

    def __init__(self, dimension: int = DIMENSION):
        self.dimension = dimension
        self.calls: list[str] = []
        self.failures = 0
        self.always_fail = False
        self.gate: asyncio.Event | None = None
        self.started = asyncio.Event()

    async def embed(self, text: str, **kwargs) -> list[float]:
        self.calls.append(text)
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.always_fail or self.failures > 0:
            self.failures = max(0, self.failures - 1)
            raise GenerationError("embedding model unavailable")

        vector = [0.0] * self.dimension
        for token in re.findall(r"\w+", text.casefold()):
            digest = hashlib.md5(token.encode("utf-8")).digest()
            vector[digest[0] % self.dimension] += 1.0
        return vector

    async def close(self):
        pass


class FlakyVectorStore(InMemoryVectorStore):
    """In-memory vector store that can be switched off and counts writes."""

    def __init__(self):
        super().__init__()
        self.down = False
        self.upserts: list[str] = []
        self.deletes: list[str] = []

    def _check(self) -> None:
        if self.down:
            raise VectorStoreError("vector store unreachable")

    async def upsert(self, card_id: str, vector: list[float], fingerprint: str) -> None:
        self._check()
        self.upserts.append(card_id)
        await super().upsert(card_id, vector, fingerprint)

    async def delete(self, card_id: str) -> None:
        self._check()
        self.deletes.append(card_id)
        await super().delete(card_id)

    async def query_similar(self, vector, top_k: int = 10):
        self._check()
        return await super().query_similar(vector, top_k)

    async def get_fingerprint(self, card_id: str) -> str | None:
        self._check()
        return await super().get_fingerprint(card_id)


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def card_store() -> InMemoryCardStore:
    return InMemoryCardStore()


@pytest.fixture
def vector_store() -> FlakyVectorStore:
    return FlakyVectorStore()


@pytest.fixture
def retry_policy() -> RetryPolicy:
    """Fast policy so retry paths finish in milliseconds."""
    return RetryPolicy(max_attempts=3, base_delay=0.01, max_delay=0.05, jitter=0.0, timeout=2.0)


@pytest.fixture
def make_card(card_store):
    """Store a card and return it."""

    async def _make(card_id: str, title: str | None = None, **fields) -> Card:
        card = Card(id=card_id, title=title or f"Card {card_id}", **fields)
        return await card_store.put(card)

    return _make


@pytest.fixture
def graph(card_store, retry_policy) -> DependencyGraph:
    return DependencyGraph(card_store=card_store, retry_policy=retry_policy)


@pytest.fixture
async def pipeline(card_store, vector_store, embedder, retry_policy) -> AsyncGenerator:
    """Running pipeline; stale jobs are not re-queued so outcomes are observable."""
    pipeline = EmbeddingPipeline(
        card_store=card_store,
        vector_store=vector_store,
        embedder=embedder,
        retry_policy=retry_policy,
        workers=2,
        requeue_stale=False,
    )
    await pipeline.start()
    yield pipeline
    await pipeline.stop()


@pytest.fixture
def test_config() -> Config:
    return Config(
        vector_store=VectorStoreConfig(backend="memory"),
        card_store=CardStoreConfig(backend="memory"),
        retry=RetryConfig(max_attempts=3, base_delay=0.01, max_delay=0.05, jitter=0.0, timeout=2.0),
        pipeline=PipelineConfig(workers=2, requeue_stale=True, resync_on_start=True),
    )


@pytest.fixture
async def engine(card_store, vector_store, embedder, test_config) -> AsyncGenerator:
    engine = CardEngine(
        embedder=embedder,
        card_store=card_store,
        vector_store=vector_store,
        config=test_config,
    )
    await engine.initialize()
    yield engine
    await engine.close()
