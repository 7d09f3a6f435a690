"""
Card store implementations for CardGraph.

Provides abstract base and concrete implementations for card persistence.

Available backends:
- InMemoryCardStore: process-local dict, for tests and demos
- SQLiteCardStore: durable local storage with aiosqlite
"""

from cardgraph.core.card_store.base import CardMutator, CardPredicate, CardStore
from cardgraph.core.card_store.memory_store import InMemoryCardStore
from cardgraph.core.card_store.sqlite_store import SQLiteCardStore

__all__ = [
    "CardStore",
    "CardPredicate",
    "CardMutator",
    "InMemoryCardStore",
    "SQLiteCardStore",
]
