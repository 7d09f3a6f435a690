"""
Dependency Graph Engine - keeps card dependencies a valid DAG.

Handles:
- Validated edge insertion (self references and cycles are rejected)
- Idempotent edge removal and cascading cleanup on card deletion
- Reachability queries (direct, transitive, bounded neighborhoods)

The engine is the single writer of edge state. Edges live in in-memory
adjacency maps; each card's `dependencies` field is a cached view that the
engine persists through the card store after every change.
"""

import asyncio
import weakref
from collections import deque
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager

from cardgraph.core.card_store.base import CardStore
from cardgraph.models.card import Card, utc_now
from cardgraph.models.edge import DependencyEdge
from cardgraph.utils.exceptions import (
    CycleDetectedError,
    NotFoundError,
    SelfReferenceError,
)
from cardgraph.utils.logger import get_logger
from cardgraph.utils.retry import RetryPolicy

logger = get_logger(__name__)


class DependencyGraph:
    """
    Directed acyclic graph of card-to-card dependencies.

    Concurrency:
    - Mutations on the same unordered pair {a, b} are serialized by a
      per-pair lock.
    - The cycle check and the in-memory commit run without a suspension
      point between them, so no other edge mutation can interleave.
    - The cached view is persisted afterwards; a failed write rolls the edge
      back, so an edge is either fully present or fully absent.
    """

    def __init__(self, card_store: CardStore, retry_policy: RetryPolicy | None = None):
        """
        Initialize graph engine.

        Args:
            card_store: Store holding the cards and their cached dependency views
            retry_policy: Policy for card store calls
        """
        self.card_store = card_store
        self.retry = retry_policy or RetryPolicy()

        self._outgoing: dict[str, set[str]] = {}
        self._incoming: dict[str, set[str]] = {}
        # Edges whose removal is being persisted; excluded from cached views
        self._removing: set[tuple[str, str]] = set()
        # Ids of deleted cards; ids are never reused
        self._tombstones: set[str] = set()
        self._pair_locks: weakref.WeakValueDictionary[frozenset[str], asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    # ═══════════════════════════════════════════════════════════
    # LOADING
    # ═══════════════════════════════════════════════════════════

    async def load(self) -> int:
        """
        Rebuild the edge set from the cards' cached views.

        Dangling ids, self references and edges that would close a cycle are
        dropped with a warning and the affected cached views are rewritten.

        Returns:
            Number of edges loaded
        """
        cards = await self.retry.run(self.card_store.list_cards, "load_cards")
        known = {card.id for card in cards}

        self._outgoing.clear()
        self._incoming.clear()
        repaired: set[str] = set()

        for card in cards:
            for target in card.dependencies:
                if target == card.id or target not in known or self._reaches(target, card.id):
                    logger.warning(
                        f"Dropping invalid dependency {card.id} -> {target}",
                        extra={"source": card.id, "target": target},
                    )
                    repaired.add(card.id)
                    continue
                self._link(card.id, target)

        for card_id in repaired:
            await self._persist_view(card_id)

        count = self.edge_count()
        logger.info(
            f"Dependency graph loaded: {len(known)} cards, {count} edges",
            extra={"cards": len(known), "edges": count, "repaired": len(repaired)},
        )
        return count

    # ═══════════════════════════════════════════════════════════
    # MUTATIONS
    # ═══════════════════════════════════════════════════════════

    async def add_edge(self, source: str, target: str) -> DependencyEdge:
        """
        Make `source` depend on `target`.

        Raises:
            SelfReferenceError: If source == target
            NotFoundError: If either card doesn't exist
            CycleDetectedError: If target can already reach source
        """
        if source == target:
            raise SelfReferenceError(
                f"Card {source} cannot depend on itself", context={"card_id": source}
            )

        async with self._pair_lock(source, target):
            await self._require(source)
            await self._require(target)

            # Check and commit atomically: no await until the edge is linked
            for card_id in (source, target):
                if card_id in self._tombstones:
                    raise NotFoundError(f"Card not found: {card_id}", context={"card_id": card_id})
            if target in self._outgoing.get(source, ()):
                return DependencyEdge(source=source, target=target)
            path = self._find_path(target, source)
            if path is not None:
                raise CycleDetectedError(
                    f"Adding {source} -> {target} would create a cycle: "
                    + " -> ".join([source, *path]),
                    context={"source": source, "target": target, "path": path},
                )
            self._link(source, target)

            try:
                await self._persist_view(source)
            except BaseException:
                self._unlink(source, target)
                raise

        logger.info(
            f"Dependency added: {source} -> {target}",
            extra={"source": source, "target": target, "operation": "add_edge"},
        )
        return DependencyEdge(source=source, target=target)

    async def remove_edge(self, source: str, target: str) -> bool:
        """
        Remove a dependency. Removing a missing edge is not an error.

        Returns:
            True if an edge was removed
        """
        async with self._pair_lock(source, target):
            if target not in self._outgoing.get(source, ()):
                return False

            self._removing.add((source, target))
            try:
                await self._persist_view(source)
            except NotFoundError:
                # Source deleted meanwhile; remove_card already cleaned up
                pass
            finally:
                self._removing.discard((source, target))
            self._unlink(source, target)

        logger.info(
            f"Dependency removed: {source} -> {target}",
            extra={"source": source, "target": target, "operation": "remove_edge"},
        )
        return True

    async def remove_card(self, card_id: str) -> set[str]:
        """
        Drop every edge touching a card and rewrite its dependents' views.

        Returns:
            IDs of the cards that depended on the removed card
        """
        self._tombstones.add(card_id)
        dependents = set(self._incoming.get(card_id, ()))
        for target in list(self._outgoing.get(card_id, ())):
            self._unlink(card_id, target)
        for dependent in dependents:
            self._unlink(dependent, card_id)

        for dependent in dependents:
            try:
                await self._persist_view(dependent)
            except NotFoundError:
                continue

        logger.debug(
            f"Removed {card_id} from dependency graph",
            extra={"card_id": card_id, "dependents": len(dependents)},
        )
        return dependents

    # ═══════════════════════════════════════════════════════════
    # QUERIES
    # ═══════════════════════════════════════════════════════════

    def dependencies_of(self, card_id: str) -> set[str]:
        """Direct dependencies of a card."""
        return set(self._outgoing.get(card_id, ()))

    def dependents_of(self, card_id: str) -> set[str]:
        """Cards that directly depend on a card."""
        return set(self._incoming.get(card_id, ()))

    def transitive_dependencies_of(self, card_id: str, max_depth: int | None = None) -> set[str]:
        """
        Everything a card depends on, directly or indirectly.

        Args:
            card_id: Start card
            max_depth: Maximum number of hops (None for unbounded)

        Returns:
            Set of reachable card IDs, excluding the start card
        """
        return set(self._bfs(card_id, self._outgoing, max_depth))

    def neighbors_within(self, card_id: str, max_hops: int) -> dict[str, int]:
        """
        Cards linked to a card in either direction within max_hops.

        Returns:
            Mapping of card ID to hop distance
        """
        return self._bfs(card_id, None, max_hops)

    def has_edge(self, source: str, target: str) -> bool:
        return target in self._outgoing.get(source, ())

    def edges(self) -> list[DependencyEdge]:
        return [
            DependencyEdge(source=source, target=target)
            for source, targets in self._outgoing.items()
            for target in sorted(targets)
        ]

    def edge_count(self) -> int:
        return sum(len(targets) for targets in self._outgoing.values())

    # ═══════════════════════════════════════════════════════════
    # HELPER METHODS
    # ═══════════════════════════════════════════════════════════

    @asynccontextmanager
    async def _pair_lock(self, a: str, b: str) -> AsyncIterator[None]:
        key = frozenset((a, b))
        lock = self._pair_locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._pair_locks[key] = lock
        async with lock:
            yield

    async def _require(self, card_id: str) -> Card:
        return await self.retry.run(
            lambda: self.card_store.get(card_id), f"get_card({card_id})"
        )

    def _view(self, card_id: str) -> list[str]:
        return sorted(
            target
            for target in self._outgoing.get(card_id, ())
            if (card_id, target) not in self._removing
        )

    async def _persist_view(self, card_id: str) -> None:
        """Write the engine's view of a card's dependencies to the store."""

        def _apply(card: Card) -> None:
            card.dependencies = self._view(card_id)
            card.touch(utc_now())

        await self.retry.run(
            lambda: self.card_store.update(card_id, _apply), f"persist_dependencies({card_id})"
        )

    def _link(self, source: str, target: str) -> None:
        self._outgoing.setdefault(source, set()).add(target)
        self._incoming.setdefault(target, set()).add(source)

    def _unlink(self, source: str, target: str) -> None:
        for index, a, b in ((self._outgoing, source, target), (self._incoming, target, source)):
            neighbors = index.get(a)
            if neighbors is None:
                continue
            neighbors.discard(b)
            if not neighbors:
                del index[a]

    def _reaches(self, start: str, goal: str) -> bool:
        return self._find_path(start, goal) is not None

    def _find_path(self, start: str, goal: str) -> list[str] | None:
        """Shortest dependency path from start to goal (inclusive), or None."""
        if start == goal:
            return [start]
        parents: dict[str, str] = {}
        queue = deque([start])
        seen = {start}
        while queue:
            node = queue.popleft()
            for nxt in self._outgoing.get(node, ()):
                if nxt in seen:
                    continue
                parents[nxt] = node
                if nxt == goal:
                    path = [goal]
                    while path[-1] != start:
                        path.append(parents[path[-1]])
                    return list(reversed(path))
                seen.add(nxt)
                queue.append(nxt)
        return None

    def _bfs(
        self,
        start: str,
        index: dict[str, set[str]] | None,
        max_depth: int | None,
    ) -> dict[str, int]:
        """Breadth-first distances from start; index None walks both directions."""
        distances: dict[str, int] = {}
        queue = deque([(start, 0)])
        seen = {start}
        while queue:
            node, depth = queue.popleft()
            if max_depth is not None and depth >= max_depth:
                continue
            for nxt in self._step(node, index):
                if nxt in seen:
                    continue
                seen.add(nxt)
                distances[nxt] = depth + 1
                queue.append((nxt, depth + 1))
        return distances

    def _step(self, node: str, index: dict[str, set[str]] | None) -> Iterable[str]:
        if index is not None:
            return index.get(node, ())
        return self._outgoing.get(node, set()) | self._incoming.get(node, set())
