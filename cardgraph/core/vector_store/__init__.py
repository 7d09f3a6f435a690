"""
Vector store implementations for CardGraph.

Provides abstract base and concrete implementations for vector storage.
"""

from cardgraph.core.vector_store.base import SimilarityMatch, VectorStore
from cardgraph.core.vector_store.memory_store import InMemoryVectorStore
from cardgraph.core.vector_store.qdrant import QdrantStore

__all__ = [
    "VectorStore",
    "SimilarityMatch",
    "InMemoryVectorStore",
    "QdrantStore",
]
