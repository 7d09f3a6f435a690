"""
Hybrid Query Engine - lexical, semantic and graph-proximity ranking.

Handles:
- Exact-match filtering (tags, kind, metadata)
- Lexical scoring over title, content and tags
- Semantic scoring against the vector store
- Graph-proximity boosting around the best matches
- Degraded lexical-only results when the semantic side is unavailable
"""

import asyncio
import re

from cardgraph.config import QueryConfig
from cardgraph.core.card_store.base import CardStore
from cardgraph.core.embeddings.base import Embedder
from cardgraph.core.vector_store.base import VectorStore
from cardgraph.models.card import Card, EmbeddingStatus
from cardgraph.models.search import SearchFilters, SearchHit, SearchResponse
from cardgraph.services.dependency_graph import DependencyGraph
from cardgraph.utils.exceptions import GenerationError, TransientStoreError
from cardgraph.utils.logger import get_logger
from cardgraph.utils.retry import RetryPolicy

logger = get_logger(__name__)

_TOKEN_PATTERN = re.compile(r"\w+")

# Share of a field score earned by token overlap; the rest is the phrase match
_TOKEN_SHARE = 0.8


def tokenize(text: str) -> list[str]:
    return _TOKEN_PATTERN.findall(text.casefold())


class _Semantic:
    """Outcome of the semantic step."""

    def __init__(self, scores: dict[str, float] | None = None, reason: str | None = None):
        self.scores = scores or {}
        self.reason = reason

    @property
    def degraded(self) -> bool:
        return self.reason is not None


class HybridQueryEngine:
    """
    Ranks cards for a free-text query.

    score = lexical_weight * lexical + semantic_weight * semantic + graph boost
    Semantic scores only count for cards whose embedding is generated, so a
    pending card is still found through its text.
    """

    def __init__(
        self,
        card_store: CardStore,
        vector_store: VectorStore,
        embedder: Embedder,
        graph: DependencyGraph,
        config: QueryConfig | None = None,
        retry_policy: RetryPolicy | None = None,
    ):
        self.card_store = card_store
        self.vector_store = vector_store
        self.embedder = embedder
        self.graph = graph
        self.config = config or QueryConfig()
        self.retry = retry_policy or RetryPolicy()

    async def search(
        self,
        query: str,
        filters: SearchFilters | None = None,
        limit: int | None = None,
        timeout: float | None = None,
    ) -> SearchResponse:
        """
        Search cards.

        Args:
            query: Free-text query; empty lists the filtered cards by recency
            filters: Exact-match restrictions applied before scoring
            limit: Maximum number of hits
            timeout: Time limit in seconds for the semantic step

        Returns:
            SearchResponse; degraded=True when semantic scoring was skipped
        """
        filters = filters or SearchFilters()
        limit = limit if limit is not None else self.config.default_limit
        if limit <= 0:
            return SearchResponse()

        candidates = await self.retry.run(
            lambda: self.card_store.list_cards(filters.matches), "list_candidates"
        )
        by_id = {card.id: card for card in candidates}

        query = query.strip()
        if not query:
            ranked = sorted(candidates, key=lambda card: self._recency_key(card))
            return SearchResponse(hits=[SearchHit(card=card, score=0.0) for card in ranked[:limit]])

        lexical = {card.id: self.lexical_score(query, card) for card in candidates}
        semantic = await self._semantic_scores(query, by_id, timeout)

        hits: dict[str, SearchHit] = {}
        for card in candidates:
            lex = lexical[card.id]
            sem = semantic.scores.get(card.id)
            if lex <= 0 and sem is None:
                continue
            if semantic.degraded:
                score = lex
            else:
                score = self.config.lexical_weight * lex + self.config.semantic_weight * (sem or 0.0)
            hits[card.id] = SearchHit(card=card, score=score, lexical_score=lex, semantic_score=sem)

        self._apply_graph_boost(hits, by_id, lexical)

        ranked_hits = sorted(hits.values(), key=self._rank_key)[:limit]
        if semantic.degraded:
            logger.warning(
                f"Search degraded to lexical-only: {semantic.reason}",
                extra={"query": query, "reason": semantic.reason},
            )
        logger.debug(
            f"Search '{query}' returned {len(ranked_hits)} of {len(candidates)} candidates",
            extra={"query": query, "hits": len(ranked_hits), "candidates": len(candidates)},
        )
        return SearchResponse(
            hits=ranked_hits,
            degraded=semantic.degraded,
            degraded_reason=semantic.reason,
        )

    def lexical_score(self, query: str, card: Card) -> float:
        """
        Case-insensitive token and phrase match in [0, 1].

        Each field scores 0.8 * (fraction of query tokens present) plus 0.2
        when the whole query appears as a substring; fields are then combined
        with the configured weights.
        """
        tokens = set(tokenize(query))
        if not tokens:
            return 0.0
        phrase = " ".join(tokenize(query))

        def field_score(field_tokens: list[str], phrase_hit: bool) -> float:
            present = tokens.intersection(field_tokens)
            return _TOKEN_SHARE * len(present) / len(tokens) + (1 - _TOKEN_SHARE) * phrase_hit

        title_tokens = tokenize(card.title)
        content_tokens = tokenize(card.content)
        tag_phrases = [" ".join(tokenize(tag)) for tag in card.tags]
        tag_tokens = [token for tag in tag_phrases for token in tag.split()]

        weighted = [
            (self.config.title_weight, field_score(title_tokens, phrase in " ".join(title_tokens))),
            (
                self.config.content_weight,
                field_score(content_tokens, phrase in " ".join(content_tokens)),
            ),
            (
                self.config.tag_weight,
                field_score(tag_tokens, any(phrase in tag for tag in tag_phrases)),
            ),
        ]
        total_weight = sum(weight for weight, _ in weighted)
        if total_weight <= 0:
            return 0.0
        return sum(weight * score for weight, score in weighted) / total_weight

    # ═══════════════════════════════════════════════════════════
    # HELPER METHODS
    # ═══════════════════════════════════════════════════════════

    async def _semantic_scores(
        self, query: str, by_id: dict[str, Card], timeout: float | None
    ) -> _Semantic:
        if self.config.semantic_weight <= 0:
            return _Semantic()
        try:
            async with asyncio.timeout(timeout):
                return await self._query_vectors(query, by_id)
        except TimeoutError:
            return _Semantic(reason=f"semantic search exceeded {timeout}s")
        except (TransientStoreError, GenerationError) as e:
            return _Semantic(reason=f"{type(e).__name__}: {e}")

    async def _query_vectors(self, query: str, by_id: dict[str, Card]) -> _Semantic:
        vector = await self.retry.call(lambda: self.embedder.embed(query), "embed_query")
        matches = await self.retry.call(
            lambda: self.vector_store.query_similar(vector, self.config.semantic_top_k),
            "query_similar",
        )

        scores: dict[str, float] = {}
        for match in matches:
            card = by_id.get(match.card_id)
            if card is None or card.embedding_status != EmbeddingStatus.GENERATED:
                continue
            score = max(0.0, min(1.0, match.score))
            if score < self.config.min_semantic_score:
                continue
            scores[match.card_id] = score
        return _Semantic(scores=scores)

    def _apply_graph_boost(
        self,
        hits: dict[str, SearchHit],
        by_id: dict[str, Card],
        lexical: dict[str, float],
    ) -> None:
        """Boost candidates near the best matches; linked cards join the results."""
        if self.config.graph_boost <= 0 or self.config.graph_hops <= 0 or not hits:
            return

        seeds = sorted(hits.values(), key=self._rank_key)[: self.config.boost_seeds]
        boosts: dict[str, float] = {}
        for seed in seeds:
            for card_id, distance in self.graph.neighbors_within(
                seed.card.id, self.config.graph_hops
            ).items():
                if card_id not in by_id:
                    continue
                boost = self.config.graph_boost / distance
                boosts[card_id] = max(boosts.get(card_id, 0.0), boost)

        for card_id, boost in boosts.items():
            hit = hits.get(card_id)
            if hit is None:
                hits[card_id] = SearchHit(
                    card=by_id[card_id],
                    score=boost,
                    lexical_score=lexical.get(card_id, 0.0),
                    graph_score=boost,
                )
            else:
                hit.graph_score = boost
                hit.score += boost

    @staticmethod
    def _recency_key(card: Card) -> tuple:
        return (-card.last_modified.timestamp(), card.id)

    @classmethod
    def _rank_key(cls, hit: SearchHit) -> tuple:
        return (-hit.score, *cls._recency_key(hit.card))
