"""
Embedding Synchronization Pipeline - keeps vector entries in step with cards.

Handles:
- Per-card job state machine (pending -> generating -> generated, with
  failed -> pending retries)
- Coalescing of duplicate submissions (at most one job per card)
- Staleness check when a write completes
- Bounded retries with the shared backoff policy
- Cooperative cancellation when a card is deleted
"""

import asyncio

from cardgraph.core.card_store.base import CardStore
from cardgraph.core.embeddings.base import Embedder
from cardgraph.core.vector_store.base import VectorStore
from cardgraph.models.card import Card, EmbeddingStatus
from cardgraph.models.job import EmbeddingJob, EmbeddingStatusReport, JobOutcome
from cardgraph.utils.exceptions import (
    CardGraphError,
    NotFoundError,
    PipelineError,
    PipelineTimeoutError,
    TransientStoreError,
)
from cardgraph.utils.logger import get_logger
from cardgraph.utils.retry import RetryPolicy

logger = get_logger(__name__)


class EmbeddingPipeline:
    """
    Worker pool turning "content changed" into "vector store up to date".

    Card store = durable status (embedding_status, embedding_error,
    embedding_fingerprint). Jobs = ephemeral bookkeeping kept here.
    Vector store = the vector plus the fingerprint it was computed from.
    """

    def __init__(
        self,
        card_store: CardStore,
        vector_store: VectorStore,
        embedder: Embedder,
        retry_policy: RetryPolicy | None = None,
        workers: int = 2,
        requeue_stale: bool = True,
    ):
        """
        Initialize pipeline.

        Args:
            card_store: Source of card content and durable status
            vector_store: Destination of the vectors
            embedder: Embedding model
            retry_policy: Timeout/backoff policy; max_attempts is the job's attempt ceiling
            workers: Number of concurrent worker tasks
            requeue_stale: Submit a fresh job when a card changed mid-generation
        """
        self.card_store = card_store
        self.vector_store = vector_store
        self.embedder = embedder
        self.retry = retry_policy or RetryPolicy()
        self.worker_count = workers
        self.requeue_stale = requeue_stale

        self._jobs: dict[str, EmbeddingJob] = {}
        self._history: dict[str, EmbeddingJob] = {}
        self._queue: asyncio.Queue[str] | None = None
        self._workers: list[asyncio.Task] = []
        self._stopping = False

    # ═══════════════════════════════════════════════════════════
    # LIFECYCLE
    # ═══════════════════════════════════════════════════════════

    @property
    def running(self) -> bool:
        return bool(self._workers)

    async def start(self) -> None:
        """Start the worker tasks; jobs submitted earlier are enqueued."""
        if self._workers:
            return
        self._stopping = False
        self._queue = asyncio.Queue()
        for card_id, job in self._jobs.items():
            if job.attempts == 0:
                self._queue.put_nowait(card_id)
        self._workers = [
            asyncio.create_task(self._worker(index), name=f"embedding-worker-{index}")
            for index in range(self.worker_count)
        ]
        logger.info(
            f"Embedding pipeline started with {self.worker_count} workers",
            extra={"workers": self.worker_count},
        )

    async def stop(self) -> None:
        """Stop the workers; queued jobs are resolved as cancelled."""
        self._stopping = True
        workers, self._workers = self._workers, []
        for task in workers:
            task.cancel()
        await asyncio.gather(*workers, return_exceptions=True)

        for job in list(self._jobs.values()):
            job.finish(JobOutcome.CANCELLED)
        self._jobs.clear()
        self._queue = None
        logger.info("Embedding pipeline stopped")

    async def join(self) -> None:
        """Wait until every queued job has been processed."""
        if self._queue is None:
            raise PipelineError("Pipeline is not running")
        await self._queue.join()

    # ═══════════════════════════════════════════════════════════
    # PUBLIC OPERATIONS
    # ═══════════════════════════════════════════════════════════

    def submit(self, card_id: str) -> EmbeddingJob:
        """
        Request (re)generation of a card's embedding. Never blocks.

        A request for a card that already has a queued or in-flight job is
        coalesced into that job and observes its outcome. Submitting a failed
        card re-arms it: the new job reports pending until it is claimed.
        """
        job = self._jobs.get(card_id)
        if job is not None and not job.cancelled:
            job.submissions += 1
            logger.debug(
                f"Coalesced embedding request for {card_id}",
                extra={"card_id": card_id, "job_id": job.id, "submissions": job.submissions},
            )
            return job

        job = EmbeddingJob(card_id=card_id)
        job.bind(asyncio.get_running_loop())
        self._jobs[card_id] = job
        if self._queue is not None:
            self._queue.put_nowait(card_id)
        logger.debug(
            f"Queued embedding job for {card_id}",
            extra={"card_id": card_id, "job_id": job.id},
        )
        return job

    async def status(self, card_id: str) -> EmbeddingStatusReport:
        """
        Current embedding state of a card.

        Raises:
            NotFoundError: If the card doesn't exist
        """
        card = await self.retry.run(lambda: self.card_store.get(card_id), f"get_card({card_id})")
        job = self._jobs.get(card_id)
        if job is not None:
            return EmbeddingStatusReport(
                card_id=card_id,
                status=job.state,
                in_flight=job.in_flight,
                queued=job.attempts == 0,
                attempts=job.attempts,
                last_error=job.last_error,
                fingerprint=card.embedding_fingerprint,
            )

        status = card.embedding_status
        if status == EmbeddingStatus.GENERATING:
            # Claimed by a job that no longer exists (e.g. a restart)
            status = EmbeddingStatus.PENDING
        last = self._history.get(card_id)
        return EmbeddingStatusReport(
            card_id=card_id,
            status=status,
            attempts=last.attempts if last else 0,
            last_error=card.embedding_error if status == EmbeddingStatus.FAILED else None,
            fingerprint=card.embedding_fingerprint,
        )

    async def await_completion(self, card_id: str, timeout: float | None = None) -> JobOutcome:
        """
        Wait for the card's job to finish.

        With no job in flight, a generated or failed card reports its durable
        status immediately; a pending card gets a job submitted.
        A stale job is followed by the job re-queued for the new content, so
        STALE is only returned when re-queueing is off.

        Raises:
            NotFoundError: If the card doesn't exist
            PipelineTimeoutError: If the timeout elapses first
        """
        job = self._jobs.get(card_id)
        if job is None:
            card = await self.retry.run(
                lambda: self.card_store.get(card_id), f"get_card({card_id})"
            )
            if card.embedding_status == EmbeddingStatus.GENERATED:
                return JobOutcome.GENERATED
            if card.embedding_status == EmbeddingStatus.FAILED:
                return JobOutcome.FAILED
            job = self.submit(card_id)

        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while True:
            try:
                async with asyncio.timeout_at(deadline):
                    outcome = await asyncio.shield(job.done)
            except TimeoutError as e:
                raise PipelineTimeoutError(
                    f"Embedding of {card_id} did not finish within {timeout}s",
                    context={"card_id": card_id, "timeout": timeout, "state": job.state.value},
                ) from e

            # A stale job hands over to the job re-queued for the new content
            successor = self._jobs.get(card_id)
            if outcome != JobOutcome.STALE or successor is None or successor is job:
                return outcome
            job = successor

    async def cancel(self, card_id: str) -> bool:
        """
        Cooperatively cancel the card's job.

        A queued job is dropped at once. An in-flight job is flagged and
        awaited, so any write it still makes lands before the caller's
        vector delete.

        Returns:
            True if a job was cancelled
        """
        self._history.pop(card_id, None)
        job = self._jobs.get(card_id)
        if job is None:
            return False

        job.cancelled = True
        if job.attempts == 0:
            del self._jobs[card_id]
            job.finish(JobOutcome.CANCELLED)
        else:
            await asyncio.shield(job.done)

        logger.debug(
            f"Cancelled embedding job for {card_id}",
            extra={"card_id": card_id, "job_id": job.id},
        )
        return True

    async def resync_pending(self) -> int:
        """
        Submit every card whose vector is not known to be current.

        Returns:
            Number of cards submitted
        """
        cards = await self.retry.run(
            lambda: self.card_store.list_cards(self._needs_sync), "list_unsynced_cards"
        )
        for card in cards:
            self.submit(card.id)
        if cards:
            logger.info(
                f"Resync submitted {len(cards)} cards",
                extra={"count": len(cards), "operation": "resync_pending"},
            )
        return len(cards)

    def stats(self) -> dict[str, int]:
        in_flight = sum(1 for job in self._jobs.values() if job.in_flight)
        return {
            "workers": len(self._workers),
            "queued": len(self._jobs) - in_flight,
            "in_flight": in_flight,
        }

    # ═══════════════════════════════════════════════════════════
    # WORKERS
    # ═══════════════════════════════════════════════════════════

    @staticmethod
    def _needs_sync(card: Card) -> bool:
        if not card.is_embedded():
            return True
        return card.embedding_fingerprint != card.fingerprint()

    async def _worker(self, index: int) -> None:
        assert self._queue is not None
        queue = self._queue
        while not self._stopping:
            card_id = await queue.get()
            try:
                job = self._jobs.get(card_id)
                # Missing, cancelled or already picked up by another worker
                if job is None or job.attempts > 0 or job.is_finished():
                    continue
                await self._process(job)
            except Exception as e:
                logger.exception(
                    f"Embedding worker {index} crashed on {card_id}: {e}",
                    extra={"card_id": card_id, "worker": index},
                )
            finally:
                queue.task_done()

    async def _process(self, job: EmbeddingJob) -> None:
        card_id = job.card_id
        outcome = JobOutcome.CANCELLED
        try:
            while True:
                job.attempts += 1
                try:
                    outcome = await self._attempt(job)
                    break
                except NotFoundError:
                    outcome = JobOutcome.CANCELLED
                    break
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    job.last_error = type(e).__name__
                    retryable = self.retry.is_retryable(e)
                    if job.cancelled:
                        outcome = JobOutcome.CANCELLED
                        break
                    if not retryable or job.attempts >= self.retry.max_attempts:
                        logger.error(
                            f"Embedding failed for {card_id} after {job.attempts} attempts: {e}",
                            extra={
                                "card_id": card_id,
                                "attempts": job.attempts,
                                "error_type": job.last_error,
                            },
                        )
                        outcome = JobOutcome.FAILED
                        break

                    delay = self.retry.backoff(job.attempts)
                    logger.warning(
                        f"Embedding attempt {job.attempts} for {card_id} failed: {e}. "
                        f"Retrying in {delay:.2f}s...",
                        extra={"card_id": card_id, "attempt": job.attempts, "error_type": job.last_error},
                    )
                    job.state = EmbeddingStatus.FAILED
                    await self._record_retry(job)
                    job.state = EmbeddingStatus.PENDING
                    await asyncio.sleep(delay)

            outcome = await self._finalize(job, outcome)
        finally:
            if self._jobs.get(card_id) is job:
                del self._jobs[card_id]
            if outcome != JobOutcome.CANCELLED:
                self._history[card_id] = job
            job.finish(outcome)

        logger.debug(
            f"Embedding job for {card_id} finished: {outcome.value}",
            extra={"card_id": card_id, "job_id": job.id, "outcome": outcome.value},
        )
        if outcome == JobOutcome.STALE and self.requeue_stale:
            self.submit(card_id)

    async def _attempt(self, job: EmbeddingJob) -> JobOutcome:
        """One generate-and-write attempt; the staleness check happens in _finalize."""
        if job.cancelled:
            return JobOutcome.CANCELLED
        card_id = job.card_id

        def _claim(card: Card) -> None:
            card.embedding_status = EmbeddingStatus.GENERATING

        job.state = EmbeddingStatus.GENERATING
        card = await self.retry.call(
            lambda: self.card_store.update(card_id, _claim), f"claim({card_id})"
        )
        fingerprint = card.fingerprint()
        job.fingerprint = fingerprint

        stored = await self.retry.call(
            lambda: self.vector_store.get_fingerprint(card_id), f"get_fingerprint({card_id})"
        )
        if stored == fingerprint:
            logger.debug(
                f"Vector for {card_id} already current",
                extra={"card_id": card_id, "fingerprint": fingerprint},
            )
            return JobOutcome.GENERATED

        text = card.embedding_text()
        vector = await self.retry.call(lambda: self.embedder.embed(text), f"embed({card_id})")
        if job.cancelled:
            return JobOutcome.CANCELLED

        await self.retry.call(
            lambda: self.vector_store.upsert(card_id, vector, fingerprint), f"upsert({card_id})"
        )
        if job.cancelled:
            return JobOutcome.CANCELLED
        return JobOutcome.GENERATED

    async def _finalize(self, job: EmbeddingJob, outcome: JobOutcome) -> JobOutcome:
        """Persist the job's result, downgrading to STALE if the card moved on."""
        if outcome == JobOutcome.CANCELLED:
            return outcome

        stale = False

        def _apply(card: Card) -> None:
            nonlocal stale
            if outcome == JobOutcome.FAILED:
                card.embedding_status = EmbeddingStatus.FAILED
                card.embedding_error = job.last_error
            elif card.fingerprint() != job.fingerprint:
                stale = True
                card.embedding_status = EmbeddingStatus.PENDING
            else:
                card.embedding_status = EmbeddingStatus.GENERATED
                card.embedding_fingerprint = job.fingerprint
                card.embedding_error = None

        try:
            await self.retry.run(
                lambda: self.card_store.update(job.card_id, _apply), f"finalize({job.card_id})"
            )
        except NotFoundError:
            return JobOutcome.CANCELLED
        except CardGraphError as e:
            logger.error(
                f"Could not record embedding result for {job.card_id}: {e}",
                extra={"card_id": job.card_id, "outcome": outcome.value, "error": str(e)},
            )
            job.last_error = type(e).__name__
            return JobOutcome.FAILED

        if stale:
            logger.info(
                f"Card {job.card_id} changed during generation; back to pending",
                extra={"card_id": job.card_id, "fingerprint": job.fingerprint},
            )
            return JobOutcome.STALE
        return outcome

    async def _record_retry(self, job: EmbeddingJob) -> None:
        """Persist failed -> pending for a job about to retry."""

        def _apply(card: Card) -> None:
            card.embedding_status = EmbeddingStatus.PENDING
            card.embedding_error = job.last_error

        try:
            await self.retry.call(
                lambda: self.card_store.update(job.card_id, _apply), f"record_retry({job.card_id})"
            )
        except TransientStoreError as e:
            logger.warning(
                f"Could not record retry state for {job.card_id}: {e}",
                extra={"card_id": job.card_id},
            )
