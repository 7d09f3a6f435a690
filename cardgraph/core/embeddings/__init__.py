"""
Embedder abstraction layer for card embeddings.

Supported providers:
- Ollama (native SDK)
- OpenAI (official SDK)
"""
from cardgraph.core.embeddings.base import Embedder
from cardgraph.core.embeddings.ollama import OllamaEmbedder
from cardgraph.core.embeddings.openai import OpenAIEmbedder

__all__ = [
    "Embedder",
    "OllamaEmbedder",
    "OpenAIEmbedder",
]
