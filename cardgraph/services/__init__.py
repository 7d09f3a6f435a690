"""
Services for CardGraph.

High-level business logic services:
- CardEngine: Unified interface for all card operations
- DependencyGraph: Validated, acyclic card dependencies
- EmbeddingPipeline: Keeps the vector store in step with card content
- HybridQueryEngine: Lexical + semantic + graph-proximity search
"""

from cardgraph.services.card_engine import CardEngine
from cardgraph.services.dependency_graph import DependencyGraph
from cardgraph.services.embedding_pipeline import EmbeddingPipeline
from cardgraph.services.query_engine import HybridQueryEngine

__all__ = [
    "CardEngine",
    "DependencyGraph",
    "EmbeddingPipeline",
    "HybridQueryEngine",
]
