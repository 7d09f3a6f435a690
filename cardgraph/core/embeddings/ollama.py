"""
Ollama embedder using native ollama-python SDK.
"""

import ollama

from cardgraph.core.embeddings.base import Embedder
from cardgraph.utils.exceptions import GenerationError, ValidationError
from cardgraph.utils.logger import get_logger

logger = get_logger(__name__)


class OllamaEmbedder(Embedder):
    """
    Ollama embedder for generating card embeddings.

    Supports models like nomic-embed-text, mxbai-embed-large, etc.
    """

    def __init__(
        self,
        host: str = "http://localhost:11434",
        model: str = "nomic-embed-text",
        timeout: float = 120.0,
    ):
        """
        Initialize Ollama embedder.

        Args:
            host: Ollama server URL
            model: Embedding model name
            timeout: Request timeout in seconds
        """
        self.host = host
        self.model = model
        self.timeout = timeout
        self._dimension: int | None = None

        self.client = ollama.AsyncClient(host=host, timeout=timeout)

    async def embed(self, text: str, **kwargs) -> list[float]:
        """
        Generate embedding for text using Ollama.

        Raises:
            ValidationError: If text is empty
            GenerationError: If Ollama embedding fails
        """
        if not text or not text.strip():
            raise ValidationError("Text cannot be empty")

        try:
            response = await self.client.embeddings(model=self.model, prompt=text, **kwargs)
        except Exception as e:
            logger.error(
                f"Ollama embedding error: {e}",
                extra={"model": self.model, "host": self.host, "error": str(e)},
            )
            raise GenerationError(f"Ollama embedding error: {e}") from e

        if not response or "embedding" not in response:
            raise GenerationError("Ollama returned invalid embedding response")
        return list(response["embedding"])

    async def get_dimension(self) -> int:
        """Embedding dimension, cached after the first call."""
        if self._dimension is None:
            self._dimension = await super().get_dimension()
        return self._dimension

    async def close(self):
        """Close client (Ollama SDK handles cleanup internally)."""
        pass
