"""
SQLite card store implementation.

Clean, efficient implementation using aiosqlite. The full card is stored as
JSON next to a few indexed columns; the revision column enforces optimistic
concurrency with conditional UPDATEs.
"""

import asyncio
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import TypeVar

import aiosqlite

from cardgraph.core.card_store.base import CardPredicate, CardStore
from cardgraph.models.card import Card
from cardgraph.utils.exceptions import CardStoreError, ConflictError, NotFoundError
from cardgraph.utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class SQLiteCardStore(CardStore):
    """
    SQLite-based card store.

    Features:
    - Fast local storage
    - JSON serialization of the card model
    - Revision-checked writes
    - Indices on kind, status and modification time
    """

    def __init__(self, db_path: str = "data/cards.db"):
        """
        Initialize SQLite card store.

        Args:
            db_path: Path to SQLite database file (":memory:" for a private DB)
        """
        self.db_path = db_path
        self.connection: aiosqlite.Connection | None = None
        # One connection is shared by all coroutines; serialize statements
        self._lock = asyncio.Lock()

        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    async def connect(self) -> None:
        """Establish connection to SQLite."""
        if self.connection is None:
            try:
                self.connection = await aiosqlite.connect(self.db_path)
                await self.connection.execute("PRAGMA journal_mode = WAL")
                await self.connection.commit()
            except aiosqlite.Error as e:
                raise CardStoreError(f"Failed to open card database: {e}") from e

    async def initialize(self) -> None:
        """Initialize database schema."""

        async def _create() -> None:
            await self.connection.execute(
                """
                CREATE TABLE IF NOT EXISTS cards (
                    id TEXT PRIMARY KEY,
                    revision INTEGER NOT NULL,
                    kind TEXT NOT NULL,
                    embedding_status TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    last_modified TEXT NOT NULL,
                    data TEXT NOT NULL
                )
            """
            )
            await self.connection.execute(
                "CREATE INDEX IF NOT EXISTS idx_cards_kind ON cards(kind)"
            )
            await self.connection.execute(
                "CREATE INDEX IF NOT EXISTS idx_cards_status ON cards(embedding_status)"
            )
            await self.connection.execute(
                "CREATE INDEX IF NOT EXISTS idx_cards_modified ON cards(last_modified)"
            )
            await self.connection.commit()

        await self._run(_create, "initialize")

    async def _run(self, operation: Callable[[], Awaitable[T]], operation_name: str) -> T:
        async with self._lock:
            await self.connect()
            try:
                return await operation()
            except aiosqlite.Error as e:
                logger.error(
                    f"Card store {operation_name} failed: {e}",
                    extra={"operation": operation_name, "error": str(e)},
                )
                raise CardStoreError(
                    f"Card store {operation_name} failed: {e}",
                    context={"operation": operation_name},
                ) from e

    # ═══════════════════════════════════════════════════════════
    # CARD OPERATIONS
    # ═══════════════════════════════════════════════════════════

    async def get(self, card_id: str) -> Card:
        async def _get():
            cursor = await self.connection.execute(
                "SELECT revision, data FROM cards WHERE id = ?", (card_id,)
            )
            return await cursor.fetchone()

        row = await self._run(_get, "get")
        if not row:
            raise NotFoundError(f"Card not found: {card_id}", context={"card_id": card_id})
        return self._row_to_card(row)

    async def put(self, card: Card) -> Card:
        stored = card.model_copy(deep=True)
        stored.revision = card.revision + 1
        params = (
            stored.revision,
            stored.kind.value,
            stored.embedding_status.value,
            stored.created_at.isoformat(),
            stored.last_modified.isoformat(),
            stored.model_dump_json(),
        )

        async def _put() -> str | None:
            if card.revision == 0:
                try:
                    await self.connection.execute(
                        """
                        INSERT INTO cards (
                            revision, kind, embedding_status, created_at, last_modified, data, id
                        ) VALUES (?, ?, ?, ?, ?, ?, ?)
                        """,
                        (*params, card.id),
                    )
                except aiosqlite.IntegrityError:
                    await self.connection.rollback()
                    return "exists"
                await self.connection.commit()
                return None

            cursor = await self.connection.execute(
                """
                UPDATE cards SET
                    revision = ?, kind = ?, embedding_status = ?, created_at = ?,
                    last_modified = ?, data = ?
                WHERE id = ? AND revision = ?
                """,
                (*params, card.id, card.revision),
            )
            await self.connection.commit()
            if cursor.rowcount == 1:
                return None

            cursor = await self.connection.execute(
                "SELECT revision FROM cards WHERE id = ?", (card.id,)
            )
            return "stale" if await cursor.fetchone() else "missing"

        problem = await self._run(_put, "put")
        if problem == "exists":
            raise ConflictError(f"Card already exists: {card.id}", context={"card_id": card.id})
        if problem == "stale":
            raise ConflictError(
                f"Stale revision for {card.id}",
                context={"card_id": card.id, "revision": card.revision},
            )
        if problem == "missing":
            raise NotFoundError(f"Card not found: {card.id}", context={"card_id": card.id})
        return stored

    async def delete(self, card_id: str) -> None:
        async def _delete() -> int:
            cursor = await self.connection.execute("DELETE FROM cards WHERE id = ?", (card_id,))
            await self.connection.commit()
            return cursor.rowcount

        if await self._run(_delete, "delete") == 0:
            raise NotFoundError(f"Card not found: {card_id}", context={"card_id": card_id})

    async def list_cards(self, predicate: CardPredicate | None = None) -> list[Card]:
        async def _list():
            cursor = await self.connection.execute(
                "SELECT revision, data FROM cards ORDER BY created_at, id"
            )
            return await cursor.fetchall()

        cards = [self._row_to_card(row) for row in await self._run(_list, "list")]
        if predicate is None:
            return cards
        return [card for card in cards if predicate(card)]

    async def count(self) -> int:
        async def _count():
            cursor = await self.connection.execute("SELECT COUNT(*) FROM cards")
            return (await cursor.fetchone())[0]

        return await self._run(_count, "count")

    async def close(self) -> None:
        if self.connection is not None:
            await self.connection.close()
            self.connection = None

    # ═══════════════════════════════════════════════════════════
    # HELPER METHODS
    # ═══════════════════════════════════════════════════════════

    def _row_to_card(self, row: tuple) -> Card:
        """Convert database row to Card object."""
        card = Card.model_validate_json(row[1])
        card.revision = row[0]
        return card
