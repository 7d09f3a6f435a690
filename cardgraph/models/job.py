"""
Embedding job bookkeeping.

Jobs are ephemeral: they live only inside the EmbeddingPipeline. The durable
result is the embedding status stored on the Card plus the vector entry.
"""

import asyncio
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field, PrivateAttr

from cardgraph.models.card import EmbeddingStatus
from cardgraph.utils.id_generator import generate_job_id


class JobOutcome(str, Enum):
    """Terminal outcome of an embedding job."""

    GENERATED = "generated"
    # Card changed while generating; it is pending again
    STALE = "stale"
    FAILED = "failed"
    CANCELLED = "cancelled"

    def to_status(self) -> EmbeddingStatus | None:
        """Card status implied by the outcome (None for cancelled jobs)."""
        return {
            JobOutcome.GENERATED: EmbeddingStatus.GENERATED,
            JobOutcome.STALE: EmbeddingStatus.PENDING,
            JobOutcome.FAILED: EmbeddingStatus.FAILED,
        }.get(self)


class EmbeddingJob(BaseModel):
    """One synchronization attempt for a card."""

    id: str = Field(default_factory=generate_job_id)
    card_id: str
    fingerprint: str | None = None
    state: EmbeddingStatus = EmbeddingStatus.PENDING
    attempts: int = 0
    last_error: str | None = None
    cancelled: bool = False
    outcome: JobOutcome | None = None
    submissions: int = 1
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    _done: asyncio.Future | None = PrivateAttr(default=None)

    def bind(self, loop: asyncio.AbstractEventLoop) -> None:
        if self._done is None:
            self._done = loop.create_future()

    @property
    def done(self) -> asyncio.Future:
        if self._done is None:
            self.bind(asyncio.get_running_loop())
        return self._done

    @property
    def in_flight(self) -> bool:
        return self.state == EmbeddingStatus.GENERATING

    def is_finished(self) -> bool:
        return self.outcome is not None

    def finish(self, outcome: JobOutcome) -> None:
        """Record the terminal outcome and wake every waiter."""
        if self.outcome is not None:
            return
        self.outcome = outcome
        status = outcome.to_status()
        if status is not None:
            self.state = status
        if not self.done.done():
            self.done.set_result(outcome)


class EmbeddingStatusReport(BaseModel):
    """Status of a card as seen by callers of the pipeline."""

    card_id: str
    status: EmbeddingStatus
    in_flight: bool = False
    queued: bool = False
    attempts: int = 0
    last_error: str | None = None
    fingerprint: str | None = None
