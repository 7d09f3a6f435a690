"""
Custom exception hierarchy for CardGraph.

Provides structured error types for better error handling and debugging.
All exceptions inherit from CardGraphError for easy catching.

Taxonomy:
- ValidationError: rejected synchronously, never retried
- NotFoundError / ConflictError: surfaced to the caller
- TransientStoreError: retried with bounded backoff, may degrade results
- GenerationError: embedding model failure, drives the failed job state
"""


class CardGraphError(Exception):
    """
    Base exception for all CardGraph errors.
    All custom exceptions should inherit from this class.
    """

    def __init__(self, message: str, context: dict | None = None):
        """
        Initialize CardGraph error.
        Args:
            message: Error message
            context: Optional context dictionary with additional error details
        """
        super().__init__(message)
        self.message = message
        self.context = context or {}


class ValidationError(CardGraphError):
    """
    Validation errors.
    Raised when input validation fails or a structural rule would be broken.
    """

    pass


class SelfReferenceError(ValidationError):
    """
    Raised when a card is asked to depend on itself.
    """

    pass


class CycleDetectedError(ValidationError):
    """
    Raised when adding a dependency edge would close a cycle.
    """

    pass


class NotFoundError(CardGraphError):
    """
    Resource not found errors.
    Raised when a requested card doesn't exist.
    """

    pass


class ConflictError(CardGraphError):
    """
    Concurrent modification errors.
    Raised when a card write is based on a stale revision.
    """

    pass


class StoreError(CardGraphError):
    """
    Base exception for store operations.
    Used for errors related to data storage operations.
    """

    pass


class TransientStoreError(StoreError):
    """
    Store unreachable or timed out.
    Retryable; callers may degrade instead of failing.
    """

    pass


class VectorStoreError(TransientStoreError):
    """
    Vector store operation errors.
    Raised when vector database operations fail.
    """

    pass


class CardStoreError(TransientStoreError):
    """
    Card store operation errors.
    Raised when the metadata database is unavailable.
    """

    pass


class GenerationError(CardGraphError):
    """
    Embedding generation errors.
    Raised when the embedding model fails to produce a vector.
    """

    pass


class PipelineError(CardGraphError):
    """
    Embedding pipeline errors.
    """

    pass


class PipelineTimeoutError(PipelineError, TimeoutError):
    """
    Raised when waiting for an embedding job exceeds the caller's timeout.
    Also catchable as asyncio.TimeoutError.
    """

    pass


class ConfigurationError(CardGraphError):
    """
    Configuration errors.
    Raised when configuration is invalid or missing required values.
    """

    pass
