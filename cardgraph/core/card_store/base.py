"""
Base interface for card storage.

The card store is durable keyed storage for card records; it holds no
business logic. The graph engine and the embedding pipeline never mutate
cards directly: every change round-trips through this contract so the store
stays the single source of truth for card attributes.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable

from cardgraph.models.card import Card
from cardgraph.utils.exceptions import ConflictError, NotFoundError
from cardgraph.utils.logger import get_logger

logger = get_logger(__name__)

CardPredicate = Callable[[Card], bool]
CardMutator = Callable[[Card], Card | None]


class CardStore(ABC):
    """Abstract base class for card storage implementations."""

    max_update_attempts: int = 5

    @abstractmethod
    async def initialize(self) -> None:
        """Initialize the store (create tables/schema)."""
        pass

    @abstractmethod
    async def get(self, card_id: str) -> Card:
        """
        Retrieve a card by ID.

        Returns:
            A private copy of the stored card

        Raises:
            NotFoundError: If the card doesn't exist
            CardStoreError: If the store is unavailable
        """
        pass

    @abstractmethod
    async def put(self, card: Card) -> Card:
        """
        Insert or replace a card.

        A card with revision 0 is inserted; any other card replaces the stored
        record only when its revision matches the stored revision.

        Returns:
            The stored card with its incremented revision

        Raises:
            ConflictError: If the id is taken or the revision is stale
            NotFoundError: If a non-new card was deleted meanwhile
            CardStoreError: If the store is unavailable
        """
        pass

    @abstractmethod
    async def delete(self, card_id: str) -> None:
        """
        Delete a card.

        Raises:
            NotFoundError: If the card doesn't exist
        """
        pass

    @abstractmethod
    async def list_cards(self, predicate: CardPredicate | None = None) -> list[Card]:
        """
        List cards, optionally filtered by a predicate.

        Returns:
            Matching cards ordered by creation time
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close the connection to the store."""
        pass

    async def count(self) -> int:
        return len(await self.list_cards())

    async def exists(self, card_id: str) -> bool:
        try:
            await self.get(card_id)
        except NotFoundError:
            return False
        return True

    async def update(self, card_id: str, mutator: CardMutator) -> Card:
        """
        Atomic per-record read-modify-write.

        The mutator receives a private copy and may modify it in place or
        return a replacement. Conflicting concurrent writes are retried.

        Raises:
            NotFoundError: If the card doesn't exist (or disappears)
            ConflictError: If the write keeps conflicting
        """
        for attempt in range(1, self.max_update_attempts + 1):
            card = await self.get(card_id)
            replacement = mutator(card)
            if replacement is not None:
                card = replacement
            try:
                return await self.put(card)
            except ConflictError:
                logger.debug(
                    f"Write conflict on {card_id} (attempt {attempt}/{self.max_update_attempts})",
                    extra={"card_id": card_id, "attempt": attempt},
                )

        raise ConflictError(
            f"Card {card_id} kept changing during update",
            context={"card_id": card_id, "attempts": self.max_update_attempts},
        )
