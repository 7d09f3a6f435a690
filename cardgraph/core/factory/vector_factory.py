"""
Factory for creating vector store backends.
"""

from urllib.parse import urlparse

from cardgraph.config import VectorStoreConfig
from cardgraph.core.vector_store.base import VectorStore
from cardgraph.core.vector_store.memory_store import InMemoryVectorStore
from cardgraph.core.vector_store.qdrant import QdrantStore
from cardgraph.utils.exceptions import ConfigurationError


class VectorStoreFactory:
    """Factory for creating vector store backends from configuration."""

    @staticmethod
    def create(config: VectorStoreConfig, vector_size: int) -> VectorStore:
        """
        Create vector store from configuration.

        Args:
            config: Vector store configuration
            vector_size: Embedding dimension size

        Returns:
            Vector store instance

        Raises:
            ConfigurationError: If backend is not supported
        """
        if config.backend == "memory":
            return InMemoryVectorStore()
        if config.backend != "qdrant":
            raise ConfigurationError(f"Unsupported vector store backend: {config.backend}")

        # Parse URL to extract host and port
        parsed = urlparse(config.qdrant.url)
        host = parsed.hostname or "localhost"
        port = parsed.port or 6333

        return QdrantStore(
            host=host,
            port=port,
            collection_name=config.qdrant.collection_name,
            vector_size=vector_size,
            use_grpc=config.qdrant.use_grpc,
            hnsw_m=config.qdrant.hnsw_m,
            hnsw_ef_construct=config.qdrant.hnsw_ef_construct,
            on_disk=config.qdrant.on_disk,
            timeout=config.qdrant.timeout,
        )
