"""
Tests for embeddings base class.
"""

import pytest

from cardgraph.core.embeddings.base import Embedder


class MockEmbedder(Embedder):
    """Mock embedder for testing."""

    def __init__(self):
        self.calls = 0

    async def embed(self, text: str, **kwargs):
        self.calls += 1
        return [0.1, 0.2, 0.3, 0.4, 0.5]

    async def close(self):
        pass


@pytest.mark.unit
@pytest.mark.asyncio
class TestEmbedderBase:
    """Test base Embedder functionality."""

    async def test_abstract_instantiation(self):
        with pytest.raises(TypeError, match="Can't instantiate abstract class"):
            Embedder()

    async def test_embed_interface(self):
        embedder = MockEmbedder()
        result = await embedder.embed("test text")

        assert isinstance(result, list)
        assert all(isinstance(x, float) for x in result)

    async def test_get_dimension_default(self):
        """Default get_dimension embeds a probe string."""
        embedder = MockEmbedder()

        assert await embedder.get_dimension() == 5
        assert embedder.calls == 1
