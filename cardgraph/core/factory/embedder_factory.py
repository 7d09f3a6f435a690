"""
Factory for creating embedder providers.
"""

from cardgraph.config import EmbedderConfig
from cardgraph.core.embeddings.base import Embedder
from cardgraph.core.embeddings.ollama import OllamaEmbedder
from cardgraph.core.embeddings.openai import OpenAIEmbedder
from cardgraph.utils.exceptions import ConfigurationError


class EmbedderFactory:
    """Factory for creating embedder providers from configuration."""

    @staticmethod
    def create(config: EmbedderConfig) -> Embedder:
        """
        Create embedder from configuration.

        Raises:
            ConfigurationError: If provider is not supported or misconfigured
        """
        if config.provider == "ollama":
            return OllamaEmbedder(
                host=config.base_url,
                model=config.model,
                timeout=config.timeout,
            )
        elif config.provider == "openai":
            if not config.api_key:
                raise ConfigurationError("OpenAI API key is required")
            return OpenAIEmbedder(
                api_key=config.api_key,
                model=config.model,
                timeout=config.timeout,
            )
        else:
            raise ConfigurationError(f"Unsupported embedder provider: {config.provider}")

    @staticmethod
    async def get_dimension(embedder: Embedder, config: EmbedderConfig | None = None) -> int:
        """
        Get embedding dimension with fallback logic.

        Priority:
        1. From config if provided
        2. From embedder.dimension property if available
        3. From actual embedding test
        """
        if config and config.dimension:
            return config.dimension

        if getattr(embedder, "dimension", None):
            return embedder.dimension

        return await embedder.get_dimension()
