"""
Base interface for vector storage.

The engine never inspects vector contents; it only manages fingerprints and
the lifecycle of each card's entry.
"""

from abc import ABC, abstractmethod

from pydantic import BaseModel


class SimilarityMatch(BaseModel):
    """Vector search result."""

    card_id: str
    score: float


class VectorStore(ABC):
    """Abstract base class for vector storage implementations."""

    @abstractmethod
    async def initialize(self) -> None:
        """
        Initialize the vector store (create collections/indices).

        Raises:
            VectorStoreError: If initialization fails
        """
        pass

    @abstractmethod
    async def upsert(self, card_id: str, vector: list[float], fingerprint: str) -> None:
        """
        Store or replace the vector for a card.

        Args:
            card_id: Card identifier
            vector: Embedding vector
            fingerprint: Content fingerprint the vector was computed from

        Raises:
            ValidationError: If the arguments are invalid
            VectorStoreError: If upsert operation fails
        """
        pass

    @abstractmethod
    async def delete(self, card_id: str) -> None:
        """
        Delete a card's vector. Deleting a missing entry is not an error.

        Raises:
            VectorStoreError: If deletion operation fails
        """
        pass

    @abstractmethod
    async def query_similar(self, vector: list[float], top_k: int = 10) -> list[SimilarityMatch]:
        """
        Search for the cards most similar to a vector.

        Args:
            vector: Query embedding vector
            top_k: Maximum results

        Returns:
            Matches ordered by descending score
        """
        pass

    @abstractmethod
    async def get_fingerprint(self, card_id: str) -> str | None:
        """
        Fingerprint stored with a card's vector.

        Returns:
            The fingerprint, or None when the card has no entry
        """
        pass

    @abstractmethod
    async def count(self) -> int:
        """Number of stored vectors."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close the connection to the vector store."""
        pass
