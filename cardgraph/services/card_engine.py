"""
Card Engine - the query API over cards, dependencies and embeddings.

Brings together:
- Card Store (durable card records)
- Dependency Graph Engine (validated edges)
- Embedding Synchronization Pipeline (vector store in step with content)
- Hybrid Query Engine (ranked search)
"""

from typing import Any

from pydantic import ValidationError as PydanticValidationError

from cardgraph.config import Config
from cardgraph.core.card_store.base import CardStore
from cardgraph.core.embeddings.base import Embedder
from cardgraph.core.vector_store.base import VectorStore
from cardgraph.models.card import Card, CardKind, EmbeddingStatus, MetadataValue, utc_now
from cardgraph.models.edge import DependencyEdge
from cardgraph.models.job import EmbeddingStatusReport, JobOutcome
from cardgraph.models.search import SearchFilters, SearchResponse
from cardgraph.services.dependency_graph import DependencyGraph
from cardgraph.services.embedding_pipeline import EmbeddingPipeline
from cardgraph.services.query_engine import HybridQueryEngine
from cardgraph.utils.exceptions import NotFoundError, ValidationError
from cardgraph.utils.id_generator import generate_card_id
from cardgraph.utils.logger import get_logger
from cardgraph.utils.retry import RetryPolicy

logger = get_logger(__name__)


def _validation_error(error: PydanticValidationError) -> ValidationError:
    problems = [
        f"{'.'.join(str(part) for part in item['loc']) or 'card'}: {item['msg']}"
        for item in error.errors()
    ]
    return ValidationError(
        f"Invalid card: {'; '.join(problems)}",
        context={"errors": problems},
    )


class CardEngine:
    """
    Card engine integrating all components.

    Features:
    - Card CRUD with validation
    - Dependency management without cycles
    - Background embedding generation with status reporting
    - Hybrid lexical + semantic + graph search
    """

    def __init__(
        self,
        embedder: Embedder,
        card_store: CardStore,
        vector_store: VectorStore,
        config: Config | None = None,
    ):
        """
        Initialize Card Engine.

        Args:
            embedder: Embedder for generating embeddings
            card_store: Durable card storage
            vector_store: Vector database
            config: Configuration object
        """
        self.config = config or Config()
        self.embedder = embedder
        self.card_store = card_store
        self.vector_store = vector_store
        self.retry = RetryPolicy.from_config(self.config.retry)

        self.graph = DependencyGraph(card_store=card_store, retry_policy=self.retry)
        self.pipeline = EmbeddingPipeline(
            card_store=card_store,
            vector_store=vector_store,
            embedder=embedder,
            retry_policy=self.retry,
            workers=self.config.pipeline.workers,
            requeue_stale=self.config.pipeline.requeue_stale,
        )
        self.query_engine = HybridQueryEngine(
            card_store=card_store,
            vector_store=vector_store,
            embedder=embedder,
            graph=self.graph,
            config=self.config.query,
            retry_policy=self.retry,
        )

    async def initialize(self) -> None:
        """Initialize stores, load the graph and start the pipeline."""
        logger.info("Initializing Card Engine")

        await self.card_store.initialize()
        logger.info("Card store initialized")

        await self.vector_store.initialize()
        logger.info("Vector store initialized")

        await self.graph.load()
        await self.pipeline.start()

        if self.config.pipeline.resync_on_start:
            await self.pipeline.resync_pending()

        logger.info("Card Engine ready")

    # ═══════════════════════════════════════════════════════════
    # CARD OPERATIONS
    # ═══════════════════════════════════════════════════════════

    async def create_card(
        self,
        title: str,
        content: str = "",
        kind: CardKind | str = CardKind.TEXT,
        tags: list[str] | None = None,
        metadata: dict[str, MetadataValue] | None = None,
        dependencies: list[str] | None = None,
        wait_for_embedding: bool = False,
        timeout: float | None = None,
    ) -> Card:
        """
        Create a card and schedule its embedding.

        Args:
            title: Card title
            content: Inline text or payload reference
            kind: Content kind
            tags: Tags (deduplicated case-insensitively)
            metadata: Scalar metadata values
            dependencies: IDs of cards the new card depends on
            wait_for_embedding: Wait until the embedding job finishes
            timeout: Maximum wait in seconds when wait_for_embedding is set

        Returns:
            The stored card

        Raises:
            ValidationError: If the fields are invalid
            NotFoundError: If a dependency doesn't exist
            PipelineTimeoutError: If waiting for the embedding times out
        """
        now = utc_now()
        try:
            card = Card(
                id=generate_card_id(),
                title=title,
                content=content,
                kind=kind,
                tags=tags or [],
                metadata=metadata or {},
                created_at=now,
                last_modified=now,
            )
        except PydanticValidationError as e:
            raise _validation_error(e) from e

        dependencies = list(dict.fromkeys(dependencies or []))
        for dependency in dependencies:
            await self.get_card(dependency)

        card = await self.retry.run(lambda: self.card_store.put(card), f"create_card({card.id})")
        logger.info(
            f"Card created: {card.id}",
            extra={"card_id": card.id, "kind": card.kind.value, "operation": "create_card"},
        )

        try:
            for dependency in dependencies:
                await self.graph.add_edge(card.id, dependency)
        except Exception:
            await self.delete_card(card.id)
            raise

        self.pipeline.submit(card.id)
        if wait_for_embedding:
            await self.pipeline.await_completion(card.id, timeout=timeout)
        return await self.get_card(card.id)

    async def get_card(self, card_id: str) -> Card:
        """
        Get a card by ID.

        Raises:
            NotFoundError: If the card doesn't exist
        """
        if not card_id:
            raise ValidationError("card_id is required")
        return await self.retry.run(lambda: self.card_store.get(card_id), f"get_card({card_id})")

    async def update_card(
        self,
        card_id: str,
        title: str | None = None,
        content: str | None = None,
        kind: CardKind | str | None = None,
        tags: list[str] | None = None,
        metadata: dict[str, MetadataValue] | None = None,
    ) -> Card:
        """
        Update card fields. None leaves a field unchanged.

        Content or tag changes reset the embedding to pending and schedule a
        new job; title, kind and metadata changes only bump last_modified.

        Raises:
            NotFoundError: If the card doesn't exist
            ValidationError: If the new values are invalid
        """
        changes: dict[str, Any] = {
            name: value
            for name, value in (
                ("title", title),
                ("content", content),
                ("kind", kind),
                ("tags", tags),
                ("metadata", metadata),
            )
            if value is not None
        }
        resubmit = False

        def _apply(card: Card) -> None:
            nonlocal resubmit
            before = card.fingerprint()
            for name, value in changes.items():
                setattr(card, name, value)
            resubmit = card.fingerprint() != before
            if resubmit:
                card.embedding_status = EmbeddingStatus.PENDING
                card.embedding_error = None
            card.touch(utc_now())

        try:
            card = await self.retry.run(
                lambda: self.card_store.update(card_id, _apply), f"update_card({card_id})"
            )
        except PydanticValidationError as e:
            raise _validation_error(e) from e

        if resubmit:
            self.pipeline.submit(card_id)
        logger.info(
            f"Card updated: {card_id}",
            extra={
                "card_id": card_id,
                "fields": sorted(changes),
                "reembed": resubmit,
                "operation": "update_card",
            },
        )
        return card

    async def delete_card(self, card_id: str) -> None:
        """
        Delete a card everywhere.

        Order: graph edges, card record, pending/in-flight embedding job,
        vector entry. The in-flight job is awaited before the vector delete,
        so the vector is deleted exactly once and never resurrected.

        Raises:
            NotFoundError: If the card doesn't exist
        """
        await self.get_card(card_id)

        logger.info(
            f"Deleting card: {card_id}",
            extra={"card_id": card_id, "operation": "delete_card"},
        )

        dependents = await self.graph.remove_card(card_id)
        await self.retry.run(lambda: self.card_store.delete(card_id), f"delete_card({card_id})")
        await self.pipeline.cancel(card_id)
        await self.retry.run(
            lambda: self.vector_store.delete(card_id), f"delete_vector({card_id})"
        )

        logger.info(
            f"Card deleted: {card_id}",
            extra={"card_id": card_id, "dependents_updated": len(dependents)},
        )

    async def list_cards(
        self, filters: SearchFilters | None = None, limit: int | None = None
    ) -> list[Card]:
        """List cards matching the filters, most recently modified first."""
        filters = filters or SearchFilters()
        cards = await self.retry.run(
            lambda: self.card_store.list_cards(filters.matches), "list_cards"
        )
        cards.sort(key=lambda card: (-card.last_modified.timestamp(), card.id))
        return cards[:limit] if limit is not None else cards

    async def search(
        self,
        query: str,
        filters: SearchFilters | None = None,
        limit: int | None = None,
        timeout: float | None = None,
    ) -> SearchResponse:
        """Ranked hybrid search; see HybridQueryEngine.search."""
        return await self.query_engine.search(query, filters=filters, limit=limit, timeout=timeout)

    # ═══════════════════════════════════════════════════════════
    # DEPENDENCIES
    # ═══════════════════════════════════════════════════════════

    async def add_dependency(self, source: str, target: str) -> DependencyEdge:
        """Make `source` depend on `target`; see DependencyGraph.add_edge."""
        return await self.graph.add_edge(source, target)

    async def remove_dependency(self, source: str, target: str) -> bool:
        return await self.graph.remove_edge(source, target)

    async def resolve_dependencies(self, card_id: str, transitive: bool = False) -> list[Card]:
        """
        Cards a card depends on.

        Args:
            card_id: Card to resolve
            transitive: Include indirect dependencies

        Returns:
            Dependency cards ordered by ID

        Raises:
            NotFoundError: If the card doesn't exist
        """
        await self.get_card(card_id)
        if transitive:
            ids = self.graph.transitive_dependencies_of(card_id)
        else:
            ids = self.graph.dependencies_of(card_id)

        cards = []
        for dependency in sorted(ids):
            try:
                cards.append(await self.get_card(dependency))
            except NotFoundError:
                # Deleted between the graph read and the fetch
                continue
        return cards

    async def resolve_dependents(self, card_id: str) -> list[Card]:
        """Cards that directly depend on a card, ordered by ID."""
        await self.get_card(card_id)
        cards = []
        for dependent in sorted(self.graph.dependents_of(card_id)):
            try:
                cards.append(await self.get_card(dependent))
            except NotFoundError:
                continue
        return cards

    # ═══════════════════════════════════════════════════════════
    # EMBEDDINGS
    # ═══════════════════════════════════════════════════════════

    async def embedding_status(self, card_id: str) -> EmbeddingStatusReport:
        return await self.pipeline.status(card_id)

    async def regenerate_embedding(
        self, card_id: str, wait: bool = False, timeout: float | None = None
    ) -> JobOutcome | None:
        """
        Re-trigger embedding generation, re-arming a failed card.

        Returns:
            The job outcome when wait is set, otherwise None
        """

        def _rearm(card: Card) -> None:
            if card.embedding_status == EmbeddingStatus.FAILED:
                card.embedding_status = EmbeddingStatus.PENDING
                card.embedding_error = None

        await self.retry.run(
            lambda: self.card_store.update(card_id, _rearm), f"rearm_embedding({card_id})"
        )
        job = self.pipeline.submit(card_id)
        logger.info(
            f"Embedding regeneration requested: {card_id}",
            extra={"card_id": card_id, "job_id": job.id},
        )
        if wait:
            return await self.pipeline.await_completion(card_id, timeout=timeout)
        return None

    async def generate_pending_embeddings(self) -> int:
        """Submit every card whose embedding is not current; returns the count."""
        return await self.pipeline.resync_pending()

    # ═══════════════════════════════════════════════════════════
    # STATISTICS & LIFECYCLE
    # ═══════════════════════════════════════════════════════════

    async def get_statistics(self) -> dict[str, Any]:
        """
        Get card engine statistics.

        Returns:
            Statistics dictionary
        """
        cards = await self.retry.run(self.card_store.list_cards, "list_cards")
        histogram = {status.value: 0 for status in EmbeddingStatus}
        tags: set[str] = set()
        embedded = 0
        for card in cards:
            histogram[card.embedding_status.value] += 1
            embedded += card.is_embedded()
            tags.update(tag.casefold() for tag in card.tags)

        vector_count = await self.retry.run(self.vector_store.count, "count_vectors")

        return {
            "cards": {
                "total": len(cards),
                "embedded": embedded,
                "by_status": histogram,
                "unique_tags": len(tags),
                "total_vectors": vector_count,
            },
            "dependencies": {
                "total": self.graph.edge_count(),
            },
            "pipeline": self.pipeline.stats(),
            "retry": self.retry.describe(),
        }

    async def close(self) -> None:
        """Stop the pipeline and close all connections."""
        logger.info("Shutting down Card Engine")

        await self.pipeline.stop()

        await self.card_store.close()
        await self.vector_store.close()
        await self.embedder.close()

        logger.info("Card Engine shutdown complete")
