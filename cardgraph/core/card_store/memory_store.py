"""
In-memory card store.

Suitable for tests and single-process deployments. Every read and write
copies the card so callers never share mutable state with the store.
"""

import asyncio

from cardgraph.core.card_store.base import CardPredicate, CardStore
from cardgraph.models.card import Card
from cardgraph.utils.exceptions import ConflictError, NotFoundError


class InMemoryCardStore(CardStore):
    """Dict-backed card store guarded by an asyncio lock."""

    def __init__(self):
        self._cards: dict[str, Card] = {}
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        pass

    async def get(self, card_id: str) -> Card:
        card = self._cards.get(card_id)
        if card is None:
            raise NotFoundError(f"Card not found: {card_id}", context={"card_id": card_id})
        return card.model_copy(deep=True)

    async def put(self, card: Card) -> Card:
        async with self._lock:
            existing = self._cards.get(card.id)
            if existing is None:
                if card.revision != 0:
                    raise NotFoundError(
                        f"Card not found: {card.id}", context={"card_id": card.id}
                    )
            elif card.revision == 0:
                raise ConflictError(
                    f"Card already exists: {card.id}", context={"card_id": card.id}
                )
            elif existing.revision != card.revision:
                raise ConflictError(
                    f"Stale revision for {card.id}: {card.revision} != {existing.revision}",
                    context={"card_id": card.id, "revision": card.revision},
                )

            stored = card.model_copy(deep=True)
            stored.revision = card.revision + 1
            self._cards[card.id] = stored
            return stored.model_copy(deep=True)

    async def delete(self, card_id: str) -> None:
        async with self._lock:
            if self._cards.pop(card_id, None) is None:
                raise NotFoundError(f"Card not found: {card_id}", context={"card_id": card_id})

    async def list_cards(self, predicate: CardPredicate | None = None) -> list[Card]:
        cards = sorted(self._cards.values(), key=lambda c: (c.created_at, c.id))
        return [c.model_copy(deep=True) for c in cards if predicate is None or predicate(c)]

    async def count(self) -> int:
        return len(self._cards)

    async def close(self) -> None:
        pass
