"""
Tests for the in-memory vector store.
"""

import pytest

from cardgraph.core.vector_store import InMemoryVectorStore
from cardgraph.utils.exceptions import ValidationError


@pytest.fixture
async def store():
    store = InMemoryVectorStore()
    await store.initialize()
    yield store
    await store.close()


@pytest.mark.asyncio
class TestInMemoryVectorStore:
    """Test InMemoryVectorStore operations."""

    async def test_upsert_and_fingerprint(self, store):
        await store.upsert("card_1", [1.0, 0.0], "sha256:a")

        assert await store.get_fingerprint("card_1") == "sha256:a"
        assert await store.count() == 1

    async def test_upsert_replaces(self, store):
        await store.upsert("card_1", [1.0, 0.0], "sha256:a")
        await store.upsert("card_1", [0.0, 1.0], "sha256:b")

        assert await store.get_fingerprint("card_1") == "sha256:b"
        assert await store.count() == 1

    async def test_missing_fingerprint(self, store):
        assert await store.get_fingerprint("card_missing") is None

    async def test_delete_is_idempotent(self, store):
        await store.upsert("card_1", [1.0, 0.0], "sha256:a")

        await store.delete("card_1")
        await store.delete("card_1")

        assert await store.count() == 0
        assert await store.get_fingerprint("card_1") is None

    async def test_query_similar_orders_by_cosine(self, store):
        await store.upsert("card_x", [1.0, 0.0], "f1")
        await store.upsert("card_y", [0.0, 1.0], "f2")
        await store.upsert("card_xy", [1.0, 1.0], "f3")

        results = await store.query_similar([1.0, 0.1], top_k=3)

        assert [r.card_id for r in results] == ["card_x", "card_xy", "card_y"]
        assert results[0].score == pytest.approx(0.995, abs=0.01)

    async def test_query_similar_respects_top_k(self, store):
        for i in range(5):
            await store.upsert(f"card_{i}", [1.0, float(i)], f"f{i}")

        assert len(await store.query_similar([1.0, 0.0], top_k=2)) == 2

    async def test_query_empty_store(self, store):
        assert await store.query_similar([1.0, 0.0]) == []

    async def test_zero_vector_scores_zero(self, store):
        await store.upsert("card_zero", [0.0, 0.0], "f")

        results = await store.query_similar([1.0, 0.0])

        assert results[0].score == 0.0

    async def test_empty_vector_rejected(self, store):
        with pytest.raises(ValidationError):
            await store.upsert("card_1", [], "f")
