"""
Shared retry policy for calls to external services.

Every call the engine makes to the vector store, the card store or the
embedding model goes through one RetryPolicy so that timeouts and backoff
behave the same everywhere:
- per-call timeout (asyncio.timeout)
- bounded attempts
- exponential backoff with jitter, capped at max_delay
"""

import asyncio
import random
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from cardgraph.utils.exceptions import GenerationError, TransientStoreError
from cardgraph.utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

RETRYABLE_ERRORS: tuple[type[BaseException], ...] = (TransientStoreError, GenerationError)


class RetryPolicy:
    """Bounded exponential backoff with jitter and per-call timeouts."""

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 0.5,
        max_delay: float = 10.0,
        jitter: float = 0.1,
        timeout: float | None = 10.0,
        retry_on: tuple[type[BaseException], ...] = RETRYABLE_ERRORS,
    ):
        """
        Initialize retry policy.

        Args:
            max_attempts: Total attempts including the first one
            base_delay: Delay before the second attempt in seconds
            max_delay: Upper bound for a single backoff delay
            jitter: Fraction of the delay added as random jitter
            timeout: Per-call timeout in seconds (None disables it)
            retry_on: Exception types considered transient
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter = jitter
        self.timeout = timeout
        self.retry_on = retry_on

    @classmethod
    def from_config(cls, config) -> "RetryPolicy":
        """Build a policy from a RetryConfig section."""
        return cls(
            max_attempts=config.max_attempts,
            base_delay=config.base_delay,
            max_delay=config.max_delay,
            jitter=config.jitter,
            timeout=config.timeout,
        )

    def backoff(self, attempt: int) -> float:
        """
        Delay to wait after the given failed attempt.

        Args:
            attempt: 1-based number of the attempt that just failed

        Returns:
            Delay in seconds
        """
        delay = min(self.max_delay, self.base_delay * (2 ** (attempt - 1)))
        if self.jitter > 0:
            delay += random.uniform(0, delay * self.jitter)
        return min(delay, self.max_delay)

    def is_retryable(self, error: BaseException) -> bool:
        return isinstance(error, self.retry_on)

    async def call(
        self,
        operation: Callable[[], Awaitable[T]],
        operation_name: str,
        timeout: float | None = None,
    ) -> T:
        """
        Run a single attempt bounded by the per-call timeout.

        Raises:
            TransientStoreError: If the call times out
        """
        limit = timeout if timeout is not None else self.timeout
        try:
            if limit is None:
                return await operation()
            async with asyncio.timeout(limit):
                return await operation()
        except TimeoutError as e:
            raise TransientStoreError(
                f"{operation_name} timed out after {limit}s",
                context={"operation": operation_name, "timeout": limit},
            ) from e

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        operation_name: str,
        max_attempts: int | None = None,
    ) -> T:
        """
        Retry an async operation with exponential backoff.

        Args:
            operation: Zero-argument async callable to retry
            operation_name: Name for logging
            max_attempts: Optional override of the attempt ceiling

        Returns:
            Result of operation

        Raises:
            The last transient error if all attempts fail; non-transient
            errors propagate immediately.
        """
        attempts = max_attempts or self.max_attempts
        last_error: BaseException | None = None

        for attempt in range(1, attempts + 1):
            try:
                return await self.call(operation, operation_name)
            except self.retry_on as e:
                last_error = e
                if attempt < attempts:
                    delay = self.backoff(attempt)
                    logger.warning(
                        f"{operation_name} failed (attempt {attempt}/{attempts}): {e}. "
                        f"Retrying in {delay:.2f}s...",
                        extra={
                            "operation": operation_name,
                            "attempt": attempt,
                            "error_type": type(e).__name__,
                        },
                    )
                    await asyncio.sleep(delay)
                else:
                    logger.error(
                        f"{operation_name} failed after {attempts} attempts",
                        extra={
                            "operation": operation_name,
                            "error": str(e),
                            "error_type": type(e).__name__,
                        },
                    )

        assert last_error is not None
        raise last_error

    def describe(self) -> dict[str, Any]:
        return {
            "max_attempts": self.max_attempts,
            "base_delay": self.base_delay,
            "max_delay": self.max_delay,
            "jitter": self.jitter,
            "timeout": self.timeout,
        }
