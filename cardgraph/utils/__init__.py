"""Utility modules for CardGraph."""

from cardgraph.utils.exceptions import (
    CardGraphError,
    CardStoreError,
    ConfigurationError,
    ConflictError,
    CycleDetectedError,
    GenerationError,
    NotFoundError,
    PipelineError,
    PipelineTimeoutError,
    SelfReferenceError,
    StoreError,
    TransientStoreError,
    ValidationError,
    VectorStoreError,
)
from cardgraph.utils.id_generator import generate_card_id, generate_job_id
from cardgraph.utils.logger import get_logger, setup_logging, setup_logging_from_config
from cardgraph.utils.retry import RetryPolicy

__all__ = [
    # Logging
    "get_logger",
    "setup_logging",
    "setup_logging_from_config",
    # Retry
    "RetryPolicy",
    # ID Generators
    "generate_card_id",
    "generate_job_id",
    # Exceptions
    "CardGraphError",
    "ValidationError",
    "SelfReferenceError",
    "CycleDetectedError",
    "NotFoundError",
    "ConflictError",
    "StoreError",
    "TransientStoreError",
    "VectorStoreError",
    "CardStoreError",
    "GenerationError",
    "PipelineError",
    "PipelineTimeoutError",
    "ConfigurationError",
]
