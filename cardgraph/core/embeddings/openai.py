"""
OpenAI embedder using official SDK.
"""

from openai import AsyncOpenAI

from cardgraph.core.embeddings.base import Embedder
from cardgraph.utils.exceptions import GenerationError, ValidationError
from cardgraph.utils.logger import get_logger

logger = get_logger(__name__)


class OpenAIEmbedder(Embedder):
    """
    OpenAI embedder for generating card embeddings.

    Supports models like text-embedding-3-small, text-embedding-3-large, etc.
    """

    # Known dimensions for OpenAI embedding models
    _MODEL_DIMENSIONS = {
        "text-embedding-3-small": 1536,
        "text-embedding-3-large": 3072,
        "text-embedding-ada-002": 1536,
    }

    def __init__(
        self,
        api_key: str,
        model: str = "text-embedding-3-small",
        base_url: str | None = None,
        timeout: float = 120.0,
    ):
        """
        Initialize OpenAI embedder.

        Args:
            api_key: OpenAI API key
            model: Embedding model name
            base_url: Optional custom base URL
            timeout: Request timeout in seconds
        """
        self.model = model
        self.client = AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=timeout)

    @property
    def dimension(self) -> int | None:
        return self._MODEL_DIMENSIONS.get(self.model)

    async def embed(self, text: str, **kwargs) -> list[float]:
        """
        Generate embedding for text using OpenAI.

        Raises:
            ValidationError: If text is empty
            GenerationError: If OpenAI API call fails
        """
        if not text or not text.strip():
            raise ValidationError("Text cannot be empty")

        try:
            response = await self.client.embeddings.create(model=self.model, input=text, **kwargs)
        except Exception as e:
            logger.error(
                f"OpenAI embedding error: {e}",
                extra={"model": self.model, "error": str(e), "error_type": type(e).__name__},
            )
            raise GenerationError(f"OpenAI embedding error: {e}") from e

        if not response.data:
            raise GenerationError("OpenAI returned empty embedding response")
        return response.data[0].embedding

    async def get_dimension(self) -> int:
        """Known model dimension, falling back to a test embedding."""
        return self.dimension or await super().get_dimension()

    async def close(self):
        """Close OpenAI client."""
        await self.client.close()
