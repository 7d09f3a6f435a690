"""
Tests for the dependency graph engine.

Tests cover:
1. Edge validation (self reference, missing cards, cycles)
2. Cached dependency views in the card store
3. Reachability queries
4. Card removal cleanup
5. Concurrent mutations
6. Loading and repairing persisted edges
"""

import asyncio

import pytest

from cardgraph.services.dependency_graph import DependencyGraph
from cardgraph.utils.exceptions import (
    CardStoreError,
    CycleDetectedError,
    NotFoundError,
    SelfReferenceError,
    ValidationError,
)


@pytest.fixture
async def three_cards(make_card):
    """Cards 1, 2, 3 with no edges."""
    for card_id in ("card_1", "card_2", "card_3"):
        await make_card(card_id)


@pytest.mark.asyncio
class TestAddEdge:
    """Test edge insertion and validation."""

    async def test_add_edge_updates_cached_view(self, graph, card_store, three_cards):
        edge = await graph.add_edge("card_1", "card_2")

        assert (edge.source, edge.target) == ("card_1", "card_2")
        assert graph.dependencies_of("card_1") == {"card_2"}
        assert graph.dependents_of("card_2") == {"card_1"}
        assert (await card_store.get("card_1")).dependencies == ["card_2"]

    async def test_add_edge_bumps_last_modified(self, graph, card_store, three_cards):
        before = (await card_store.get("card_1")).last_modified

        await graph.add_edge("card_1", "card_2")

        assert (await card_store.get("card_1")).last_modified >= before

    async def test_self_reference_rejected(self, graph, three_cards):
        with pytest.raises(SelfReferenceError):
            await graph.add_edge("card_1", "card_1")

        assert graph.edge_count() == 0

    async def test_self_reference_is_a_validation_error(self, graph, three_cards):
        with pytest.raises(ValidationError):
            await graph.add_edge("card_2", "card_2")

    async def test_missing_card_rejected(self, graph, three_cards):
        with pytest.raises(NotFoundError):
            await graph.add_edge("card_1", "card_missing")
        with pytest.raises(NotFoundError):
            await graph.add_edge("card_missing", "card_1")

        assert graph.edge_count() == 0

    async def test_two_cycle_rejected(self, graph, card_store, three_cards):
        await graph.add_edge("card_1", "card_2")

        with pytest.raises(CycleDetectedError) as exc_info:
            await graph.add_edge("card_2", "card_1")

        assert exc_info.value.context["path"] == ["card_1", "card_2"]
        assert graph.dependencies_of("card_2") == set()
        assert (await card_store.get("card_2")).dependencies == []

    async def test_long_cycle_rejected(self, graph, three_cards):
        await graph.add_edge("card_1", "card_2")
        await graph.add_edge("card_2", "card_3")

        with pytest.raises(CycleDetectedError, match="card_3 -> card_1 -> card_2 -> card_3"):
            await graph.add_edge("card_3", "card_1")

        assert graph.edge_count() == 2

    async def test_duplicate_edge_is_noop(self, graph, three_cards):
        await graph.add_edge("card_1", "card_2")
        await graph.add_edge("card_1", "card_2")

        assert graph.edge_count() == 1

    async def test_diamond_is_allowed(self, graph, make_card, three_cards):
        await make_card("card_4")
        await graph.add_edge("card_1", "card_2")
        await graph.add_edge("card_1", "card_3")
        await graph.add_edge("card_2", "card_4")
        await graph.add_edge("card_3", "card_4")

        assert graph.transitive_dependencies_of("card_1") == {"card_2", "card_3", "card_4"}

    async def test_reference_scenario(self, graph, three_cards):
        """Cards {1, 2, 3 -> 2}: 2 -> 3 closes a cycle, 1 -> 2 does not."""
        await graph.add_edge("card_3", "card_2")

        with pytest.raises(CycleDetectedError):
            await graph.add_edge("card_2", "card_3")

        await graph.add_edge("card_1", "card_2")

        assert graph.transitive_dependencies_of("card_1") == {"card_2"}
        assert graph.transitive_dependencies_of("card_3") == {"card_2"}

    async def test_failed_persist_rolls_back(self, graph, card_store, three_cards, monkeypatch):
        async def broken_update(card_id, mutator):
            raise CardStoreError("disk full")

        monkeypatch.setattr(card_store, "update", broken_update)

        with pytest.raises(CardStoreError):
            await graph.add_edge("card_1", "card_2")

        assert not graph.has_edge("card_1", "card_2")
        assert graph.dependents_of("card_2") == set()


@pytest.mark.asyncio
class TestRemoveEdge:
    """Test edge removal."""

    async def test_remove_edge(self, graph, card_store, three_cards):
        await graph.add_edge("card_1", "card_2")

        assert await graph.remove_edge("card_1", "card_2") is True
        assert graph.edge_count() == 0
        assert (await card_store.get("card_1")).dependencies == []

    async def test_remove_missing_edge_is_idempotent(self, graph, three_cards):
        assert await graph.remove_edge("card_1", "card_2") is False
        assert await graph.remove_edge("card_x", "card_y") is False

    async def test_removed_edge_allows_reverse(self, graph, three_cards):
        await graph.add_edge("card_1", "card_2")
        await graph.remove_edge("card_1", "card_2")

        await graph.add_edge("card_2", "card_1")

        assert graph.has_edge("card_2", "card_1")


@pytest.mark.asyncio
class TestQueries:
    """Test reachability queries."""

    @pytest.fixture
    async def chain(self, graph, make_card):
        """card_a -> card_b -> card_c -> card_d, plus card_e -> card_c."""
        for card_id in ("card_a", "card_b", "card_c", "card_d", "card_e"):
            await make_card(card_id)
        await graph.add_edge("card_a", "card_b")
        await graph.add_edge("card_b", "card_c")
        await graph.add_edge("card_c", "card_d")
        await graph.add_edge("card_e", "card_c")

    async def test_transitive_dependencies(self, graph, chain):
        assert graph.transitive_dependencies_of("card_a") == {"card_b", "card_c", "card_d"}
        assert graph.transitive_dependencies_of("card_d") == set()

    async def test_transitive_dependencies_bounded(self, graph, chain):
        assert graph.transitive_dependencies_of("card_a", max_depth=1) == {"card_b"}
        assert graph.transitive_dependencies_of("card_a", max_depth=2) == {"card_b", "card_c"}

    async def test_neighbors_within_walks_both_directions(self, graph, chain):
        assert graph.neighbors_within("card_c", 1) == {
            "card_b": 1,
            "card_e": 1,
            "card_d": 1,
        }
        assert graph.neighbors_within("card_c", 2)["card_a"] == 2

    async def test_neighbors_within_zero_hops(self, graph, chain):
        assert graph.neighbors_within("card_c", 0) == {}

    async def test_edges_listing(self, graph, chain):
        pairs = {(edge.source, edge.target) for edge in graph.edges()}

        assert ("card_a", "card_b") in pairs
        assert graph.edge_count() == 4 == len(pairs)

    async def test_unknown_card(self, graph):
        assert graph.dependencies_of("card_unknown") == set()
        assert graph.transitive_dependencies_of("card_unknown") == set()


@pytest.mark.asyncio
class TestRemoveCard:
    """Test cleanup when a card is deleted."""

    async def test_remove_card_cleans_dependents(self, graph, card_store, three_cards):
        await graph.add_edge("card_1", "card_2")
        await graph.add_edge("card_3", "card_2")

        dependents = await graph.remove_card("card_2")

        assert dependents == {"card_1", "card_3"}
        assert graph.edge_count() == 0
        assert (await card_store.get("card_1")).dependencies == []
        assert (await card_store.get("card_3")).dependencies == []

    async def test_removed_card_cannot_gain_edges(self, graph, card_store, three_cards):
        await graph.remove_card("card_2")

        # Still in the store until the caller deletes it
        with pytest.raises(NotFoundError):
            await graph.add_edge("card_1", "card_2")


@pytest.mark.asyncio
class TestConcurrency:
    """Test concurrent edge mutations."""

    async def test_concurrent_opposite_edges_never_form_cycle(self, graph, three_cards):
        results = await asyncio.gather(
            graph.add_edge("card_1", "card_2"),
            graph.add_edge("card_2", "card_1"),
            return_exceptions=True,
        )

        errors = [r for r in results if isinstance(r, Exception)]
        assert len(errors) == 1
        assert isinstance(errors[0], CycleDetectedError)
        assert graph.edge_count() == 1

    async def test_concurrent_three_cycle_never_forms(self, graph, three_cards):
        """Edges on different pairs still cannot close a cycle together."""
        results = await asyncio.gather(
            graph.add_edge("card_1", "card_2"),
            graph.add_edge("card_2", "card_3"),
            graph.add_edge("card_3", "card_1"),
            return_exceptions=True,
        )

        assert sum(isinstance(r, CycleDetectedError) for r in results) == 1
        assert graph.edge_count() == 2

    async def test_concurrent_adds_on_same_source_all_persist(
        self, graph, card_store, make_card, three_cards
    ):
        await make_card("card_4")

        await asyncio.gather(
            graph.add_edge("card_1", "card_2"),
            graph.add_edge("card_1", "card_3"),
            graph.add_edge("card_1", "card_4"),
        )

        assert (await card_store.get("card_1")).dependencies == ["card_2", "card_3", "card_4"]


@pytest.mark.asyncio
class TestLoad:
    """Test rebuilding the graph from persisted views."""

    async def test_load_restores_edges(self, card_store, retry_policy, make_card):
        await make_card("card_2")
        await make_card("card_1", dependencies=["card_2"])

        graph = DependencyGraph(card_store=card_store, retry_policy=retry_policy)

        assert await graph.load() == 1
        assert graph.has_edge("card_1", "card_2")

    async def test_load_drops_dangling_and_cyclic_edges(
        self, card_store, retry_policy, make_card
    ):
        await make_card("card_1", dependencies=["card_2", "card_gone"])
        await make_card("card_2", dependencies=["card_1"])

        graph = DependencyGraph(card_store=card_store, retry_policy=retry_policy)
        count = await graph.load()

        assert count == 1
        assert graph.has_edge("card_1", "card_2")
        assert not graph.has_edge("card_2", "card_1")
        assert (await card_store.get("card_1")).dependencies == ["card_2"]
        assert (await card_store.get("card_2")).dependencies == []

