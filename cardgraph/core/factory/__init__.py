"""
Factory modules for creating CardGraph components.

Provides modular factories for Embedder, Card Store, and Vector Store.
"""

from cardgraph.core.factory.card_store_factory import CardStoreFactory
from cardgraph.core.factory.embedder_factory import EmbedderFactory
from cardgraph.core.factory.vector_factory import VectorStoreFactory

__all__ = [
    "EmbedderFactory",
    "CardStoreFactory",
    "VectorStoreFactory",
]
