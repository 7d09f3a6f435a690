"""
Configuration for CardGraph.

Supports loading from:
1. Environment variables (highest priority)
2. YAML config file
3. Default values (fallback)
"""

import os
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field


class EmbedderConfig(BaseModel):
    """Embedder configuration."""

    provider: str = "ollama"  # ollama, openai
    model: str = "nomic-embed-text"
    base_url: str = "http://localhost:11434"
    api_key: str | None = None
    timeout: float = 120.0
    # Optional: embedding dimension (fallback to auto-detect)
    dimension: int | None = None


class QdrantConfig(BaseModel):
    """Qdrant connection configuration."""

    url: str = "http://localhost:6333"
    collection_name: str = "cards"
    use_grpc: bool = False
    hnsw_m: int = 16
    hnsw_ef_construct: int = 100
    on_disk: bool = False
    timeout: int = 30


class VectorStoreConfig(BaseModel):
    """Vector store backend selection."""

    backend: str = "qdrant"  # qdrant, memory
    qdrant: QdrantConfig = Field(default_factory=QdrantConfig)


class CardStoreConfig(BaseModel):
    """Card (metadata) store configuration."""

    backend: str = "sqlite"  # sqlite, memory
    db_path: str = "data/cards.db"
    max_update_attempts: int = 5


class RetryConfig(BaseModel):
    """Shared retry policy for external calls."""

    max_attempts: int = Field(default=3, ge=1)
    base_delay: float = Field(default=0.5, ge=0.0)
    max_delay: float = Field(default=10.0, ge=0.0)
    jitter: float = Field(default=0.1, ge=0.0, le=1.0)
    timeout: float | None = 30.0


class PipelineConfig(BaseModel):
    """Embedding synchronization pipeline configuration."""

    workers: int = Field(default=2, ge=1)
    # Re-queue a job whose card changed while it was generating
    requeue_stale: bool = True
    resync_on_start: bool = True


class QueryConfig(BaseModel):
    """Hybrid query blending configuration."""

    lexical_weight: float = 0.5
    semantic_weight: float = 0.5
    title_weight: float = 0.5
    content_weight: float = 0.3
    tag_weight: float = 0.2
    graph_boost: float = 0.1
    graph_hops: int = Field(default=2, ge=0)
    boost_seeds: int = Field(default=3, ge=0)
    semantic_top_k: int = Field(default=50, ge=1)
    min_semantic_score: float = 0.3
    default_limit: int = 20


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    log_to_file: bool = True
    log_dir: str = "logs"
    file_rotation: str = "10 MB"
    file_retention: str = "7 days"
    compression: str = "zip"
    serialize: bool = True


class Config(BaseModel):
    """Main configuration."""

    embedder: EmbedderConfig = Field(default_factory=EmbedderConfig)
    vector_store: VectorStoreConfig = Field(default_factory=VectorStoreConfig)
    card_store: CardStoreConfig = Field(default_factory=CardStoreConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    query: QueryConfig = Field(default_factory=QueryConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_env(cls, env_file: str | Path | None = None) -> "Config":
        """
        Load configuration from environment variables.

        Priority: .env file -> system environment variables -> defaults

        Args:
            env_file: Optional path to .env file (default: .env in project root)

        Returns:
            Config instance

        Environment variables:
            CARDGRAPH_EMBEDDER_PROVIDER: Embedder provider (ollama, openai)
            CARDGRAPH_EMBEDDER_MODEL: Embedder model name
            CARDGRAPH_EMBEDDER_API_KEY: Embedder API key (for OpenAI)
            CARDGRAPH_EMBEDDER_DIMENSION: Embedding dimension (optional)
            CARDGRAPH_VECTOR_BACKEND: Vector store backend (qdrant, memory)
            CARDGRAPH_QDRANT_URL: Qdrant URL
            CARDGRAPH_QDRANT_COLLECTION: Qdrant collection name
            CARDGRAPH_CARD_BACKEND: Card store backend (sqlite, memory)
            CARDGRAPH_CARD_DB_PATH: SQLite database path
            CARDGRAPH_RETRY_MAX_ATTEMPTS / _BASE_DELAY / _MAX_DELAY / _TIMEOUT
            CARDGRAPH_PIPELINE_WORKERS: Number of embedding workers
            CARDGRAPH_LOG_LEVEL: Log level
        """
        if env_file:
            load_dotenv(env_file)
        elif Path(".env").exists():
            load_dotenv()

        def get_env(key: str, default: Any = None) -> Any:
            """Get environment variable with type conversion."""
            value = os.getenv(key)
            if value is None or value == "":
                return default
            if isinstance(default, bool):
                return str(value).lower() in ("true", "1", "yes")
            if isinstance(default, int):
                return int(value)
            if isinstance(default, float):
                return float(value)
            return value

        dimension = get_env("CARDGRAPH_EMBEDDER_DIMENSION")

        return cls(
            embedder=EmbedderConfig(
                provider=get_env("CARDGRAPH_EMBEDDER_PROVIDER", "ollama"),
                model=get_env("CARDGRAPH_EMBEDDER_MODEL", "nomic-embed-text"),
                base_url=get_env("CARDGRAPH_EMBEDDER_BASE_URL", "http://localhost:11434"),
                api_key=get_env("CARDGRAPH_EMBEDDER_API_KEY"),
                timeout=get_env("CARDGRAPH_EMBEDDER_TIMEOUT", 120.0),
                dimension=int(dimension) if dimension else None,
            ),
            vector_store=VectorStoreConfig(
                backend=get_env("CARDGRAPH_VECTOR_BACKEND", "qdrant"),
                qdrant=QdrantConfig(
                    url=get_env("CARDGRAPH_QDRANT_URL", "http://localhost:6333"),
                    collection_name=get_env("CARDGRAPH_QDRANT_COLLECTION", "cards"),
                    use_grpc=get_env("CARDGRAPH_QDRANT_USE_GRPC", False),
                    hnsw_m=get_env("CARDGRAPH_QDRANT_HNSW_M", 16),
                    hnsw_ef_construct=get_env("CARDGRAPH_QDRANT_HNSW_EF_CONSTRUCT", 100),
                    on_disk=get_env("CARDGRAPH_QDRANT_ON_DISK", False),
                ),
            ),
            card_store=CardStoreConfig(
                backend=get_env("CARDGRAPH_CARD_BACKEND", "sqlite"),
                db_path=get_env("CARDGRAPH_CARD_DB_PATH", "data/cards.db"),
            ),
            retry=RetryConfig(
                max_attempts=get_env("CARDGRAPH_RETRY_MAX_ATTEMPTS", 3),
                base_delay=get_env("CARDGRAPH_RETRY_BASE_DELAY", 0.5),
                max_delay=get_env("CARDGRAPH_RETRY_MAX_DELAY", 10.0),
                timeout=get_env("CARDGRAPH_RETRY_TIMEOUT", 30.0),
            ),
            pipeline=PipelineConfig(
                workers=get_env("CARDGRAPH_PIPELINE_WORKERS", 2),
                requeue_stale=get_env("CARDGRAPH_PIPELINE_REQUEUE_STALE", True),
                resync_on_start=get_env("CARDGRAPH_PIPELINE_RESYNC_ON_START", True),
            ),
            logging=LoggingConfig(
                level=get_env("CARDGRAPH_LOG_LEVEL", "INFO"),
                log_to_file=get_env("CARDGRAPH_LOG_TO_FILE", True),
                log_dir=get_env("CARDGRAPH_LOG_DIR", "logs"),
                file_rotation=get_env("CARDGRAPH_LOG_FILE_ROTATION", "10 MB"),
                file_retention=get_env("CARDGRAPH_LOG_FILE_RETENTION", "7 days"),
                compression=get_env("CARDGRAPH_LOG_COMPRESSION", "zip"),
                serialize=get_env("CARDGRAPH_LOG_SERIALIZE", True),
            ),
        )

    @classmethod
    def from_yaml(cls, yaml_path: str | Path) -> "Config":
        """
        Load configuration from YAML file.

        Raises:
            FileNotFoundError: If YAML file doesn't exist
            yaml.YAMLError: If YAML is invalid
        """
        yaml_path = Path(yaml_path)
        if not yaml_path.exists():
            raise FileNotFoundError(f"Config file not found: {yaml_path}")

        with open(yaml_path) as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    @classmethod
    def from_env_or_yaml(
        cls, yaml_path: str | Path | None = None, env_file: str | Path | None = None
    ) -> "Config":
        """
        Load configuration with priority: env vars > YAML > defaults.

        Only sections whose env values differ from the defaults override YAML.
        """
        if yaml_path and Path(yaml_path).exists():
            with open(yaml_path) as f:
                config_dict = yaml.safe_load(f) or {}
        else:
            config_dict = {}

        env_config = cls.from_env(env_file=env_file)
        default = cls()

        final_dict = {**config_dict}
        for section in (
            "embedder",
            "vector_store",
            "card_store",
            "retry",
            "pipeline",
            "logging",
        ):
            env_section = getattr(env_config, section)
            if env_section != getattr(default, section):
                final_dict[section] = env_section.model_dump()

        return cls(**final_dict) if final_dict else env_config


# Default config instance
default_config = Config()
