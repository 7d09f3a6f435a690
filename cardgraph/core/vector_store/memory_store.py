"""
In-memory vector store using brute-force cosine similarity.
"""

import numpy as np

from cardgraph.core.vector_store.base import SimilarityMatch, VectorStore
from cardgraph.utils.exceptions import ValidationError


class InMemoryVectorStore(VectorStore):
    """Process-local vector store for tests and small collections."""

    def __init__(self):
        self._vectors: dict[str, np.ndarray] = {}
        self._fingerprints: dict[str, str] = {}

    async def initialize(self) -> None:
        pass

    async def upsert(self, card_id: str, vector: list[float], fingerprint: str) -> None:
        if not card_id:
            raise ValidationError("Card ID cannot be empty")
        if not vector:
            raise ValidationError("Vector cannot be empty")
        self._vectors[card_id] = np.asarray(vector, dtype=float)
        self._fingerprints[card_id] = fingerprint

    async def delete(self, card_id: str) -> None:
        self._vectors.pop(card_id, None)
        self._fingerprints.pop(card_id, None)

    async def query_similar(self, vector: list[float], top_k: int = 10) -> list[SimilarityMatch]:
        if not self._vectors:
            return []

        ids = list(self._vectors)
        matrix = np.vstack([self._vectors[card_id] for card_id in ids])
        query = np.asarray(vector, dtype=float)

        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
        with np.errstate(divide="ignore", invalid="ignore"):
            scores = np.where(norms > 0, matrix @ query / norms, 0.0)

        order = np.argsort(-scores)[:top_k]
        return [SimilarityMatch(card_id=ids[i], score=float(scores[i])) for i in order]

    async def get_fingerprint(self, card_id: str) -> str | None:
        return self._fingerprints.get(card_id)

    async def count(self) -> int:
        return len(self._vectors)

    async def close(self) -> None:
        pass
