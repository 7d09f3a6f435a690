"""
Qdrant vector store implementation.

Each card is one point whose payload carries the original card id and the
content fingerprint the vector was generated from.
"""

from uuid import NAMESPACE_DNS, UUID, uuid5

from qdrant_client import AsyncQdrantClient
from qdrant_client.models import (
    Distance,
    HnswConfigDiff,
    OptimizersConfigDiff,
    PointIdsList,
    PointStruct,
    VectorParams,
)

from cardgraph.core.vector_store.base import SimilarityMatch, VectorStore
from cardgraph.utils.exceptions import ValidationError, VectorStoreError
from cardgraph.utils.logger import get_logger

logger = get_logger(__name__)


class QdrantStore(VectorStore):
    """
    Qdrant vector store for card embeddings.

    Features:
    - HNSW indexing for fast search
    - Optional gRPC transport
    - Writes wait for completion so fingerprints are read back consistently
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6333,
        collection_name: str = "cards",
        vector_size: int = 768,
        use_grpc: bool = False,
        hnsw_m: int = 16,
        hnsw_ef_construct: int = 100,
        on_disk: bool = False,
        timeout: int = 30,
    ):
        """
        Initialize Qdrant store.

        Args:
            host: Qdrant host
            port: Qdrant port (6333 for HTTP, 6334 for gRPC)
            collection_name: Collection name
            vector_size: Embedding dimension
            use_grpc: Use gRPC connection (faster)
            hnsw_m: HNSW M parameter (connections per node)
            hnsw_ef_construct: HNSW ef_construct parameter
            on_disk: Store vectors on disk (reduces RAM usage)
            timeout: Client request timeout in seconds
        """
        self.host = host
        self.port = port
        self.collection_name = collection_name
        self.vector_size = vector_size
        self.use_grpc = use_grpc
        self.hnsw_m = hnsw_m
        self.hnsw_ef_construct = hnsw_ef_construct
        self.on_disk = on_disk
        self.timeout = timeout
        self.client: AsyncQdrantClient | None = None

    def _to_uuid(self, id_str: str) -> str:
        """
        Convert string ID to UUID format consistently.

        Args:
            id_str: String identifier

        Returns:
            UUID string
        """
        try:
            UUID(id_str)
            return id_str
        except ValueError:
            return str(uuid5(NAMESPACE_DNS, id_str))

    async def connect(self) -> None:
        """
        Establish connection to Qdrant.

        Raises:
            VectorStoreError: If connection fails
        """
        if self.client is None:
            try:
                self.client = AsyncQdrantClient(
                    host=self.host,
                    port=self.port,
                    prefer_grpc=self.use_grpc,
                    timeout=self.timeout,
                )
            except Exception as e:
                logger.error(
                    f"Failed to connect to Qdrant: {e}",
                    extra={"host": self.host, "port": self.port, "error": str(e)},
                )
                raise VectorStoreError(f"Failed to connect to Qdrant: {e}") from e

    async def initialize(self) -> None:
        """
        Create the collection when missing.

        Raises:
            VectorStoreError: If initialization fails
        """
        try:
            await self.connect()

            collections = await self.client.get_collections()
            collection_names = [col.name for col in collections.collections]

            if self.collection_name not in collection_names:
                await self.client.create_collection(
                    collection_name=self.collection_name,
                    vectors_config=VectorParams(
                        size=self.vector_size,
                        distance=Distance.COSINE,
                        hnsw_config=HnswConfigDiff(
                            m=self.hnsw_m,
                            ef_construct=self.hnsw_ef_construct,
                            full_scan_threshold=10000,
                        ),
                        on_disk=self.on_disk,
                    ),
                    optimizers_config=OptimizersConfigDiff(indexing_threshold=20000),
                )

                await self.client.create_payload_index(
                    collection_name=self.collection_name,
                    field_name="card_id",
                    field_schema="keyword",
                )
                logger.info(
                    f"Created Qdrant collection {self.collection_name}",
                    extra={"collection": self.collection_name, "vector_size": self.vector_size},
                )
        except Exception as e:
            logger.error(
                f"Failed to initialize Qdrant collection: {e}",
                extra={"collection": self.collection_name, "error": str(e)},
            )
            raise VectorStoreError(f"Failed to initialize Qdrant collection: {e}") from e

    async def upsert(self, card_id: str, vector: list[float], fingerprint: str) -> None:
        """
        Store or replace the vector for a card.

        Raises:
            ValidationError: If card_id or vector is empty
            VectorStoreError: If upsert operation fails
        """
        if not card_id:
            raise ValidationError("Card ID cannot be empty")
        if not vector:
            raise ValidationError("Vector cannot be empty")

        try:
            await self.connect()

            point = PointStruct(
                id=self._to_uuid(card_id),
                vector=vector,
                payload={"card_id": card_id, "fingerprint": fingerprint},
            )

            await self.client.upsert(
                collection_name=self.collection_name,
                points=[point],
                wait=True,  # Wait for write to complete for consistency
            )
        except Exception as e:
            logger.error(
                f"Failed to upsert vector for {card_id}: {e}",
                extra={"card_id": card_id, "error": str(e)},
            )
            raise VectorStoreError(f"Failed to upsert vector: {e}") from e

    async def delete(self, card_id: str) -> None:
        """
        Delete a card's vector (idempotent in Qdrant).

        Raises:
            VectorStoreError: If deletion operation fails
        """
        try:
            await self.connect()

            await self.client.delete(
                collection_name=self.collection_name,
                points_selector=PointIdsList(points=[self._to_uuid(card_id)]),
                wait=True,  # Wait for delete to complete for consistency
            )
        except Exception as e:
            logger.error(
                f"Failed to delete vector for {card_id}: {e}",
                extra={"card_id": card_id, "error": str(e)},
            )
            raise VectorStoreError(f"Failed to delete vector: {e}") from e

    async def query_similar(self, vector: list[float], top_k: int = 10) -> list[SimilarityMatch]:
        """
        Search for similar cards by vector.

        Raises:
            VectorStoreError: If the query fails
        """
        try:
            await self.connect()

            response = await self.client.query_points(
                collection_name=self.collection_name,
                query=vector,
                limit=top_k,
                with_payload=True,
                with_vectors=False,
            )
        except Exception as e:
            logger.error(
                f"Similarity query failed: {e}",
                extra={"collection": self.collection_name, "error": str(e)},
            )
            raise VectorStoreError(f"Similarity query failed: {e}") from e

        return [
            SimilarityMatch(card_id=point.payload["card_id"], score=point.score)
            for point in response.points
            if point.payload and "card_id" in point.payload
        ]

    async def get_fingerprint(self, card_id: str) -> str | None:
        """
        Fingerprint stored with a card's vector.

        Raises:
            VectorStoreError: If retrieval operation fails
        """
        try:
            await self.connect()

            results = await self.client.retrieve(
                collection_name=self.collection_name,
                ids=[self._to_uuid(card_id)],
                with_payload=True,
                with_vectors=False,
            )
        except Exception as e:
            logger.error(
                f"Failed to retrieve vector for {card_id}: {e}",
                extra={"card_id": card_id, "error": str(e)},
            )
            raise VectorStoreError(f"Failed to retrieve vector: {e}") from e

        if not results:
            return None
        return (results[0].payload or {}).get("fingerprint")

    async def count(self) -> int:
        try:
            await self.connect()
            response = await self.client.count(collection_name=self.collection_name)
        except Exception as e:
            raise VectorStoreError(f"Failed to count vectors: {e}") from e
        return response.count

    async def close(self) -> None:
        """Close the connection to Qdrant."""
        if self.client is not None:
            await self.client.close()
            self.client = None
