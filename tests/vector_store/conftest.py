"""
Shared test fixtures for vector store tests.
"""

import uuid

import pytest

from cardgraph.core.vector_store.qdrant import QdrantStore


@pytest.fixture
def qdrant_store():
    """Qdrant store that is never connected (client patched in tests)."""
    return QdrantStore(
        host="localhost",
        port=6333,
        collection_name="test_cards",
        vector_size=4,
    )


@pytest.fixture
async def live_qdrant_store():
    """
    Qdrant store backed by a running server.

    Uses a unique collection per test and skips when Qdrant is unreachable.
    """
    collection_name = f"test_cards_{uuid.uuid4().hex[:8]}"
    store = QdrantStore(collection_name=collection_name, vector_size=4, timeout=5)
    try:
        await store.initialize()
    except Exception as e:
        await store.close()
        pytest.skip(f"Qdrant not available: {e}")

    yield store

    try:
        await store.client.delete_collection(collection_name)
    finally:
        await store.close()
