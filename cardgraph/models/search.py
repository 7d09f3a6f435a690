"""Search request and result models."""

from pydantic import BaseModel, Field, field_validator

from cardgraph.models.card import Card, CardKind, MetadataValue, normalize_tags


class SearchFilters(BaseModel):
    """
    Exact-match restrictions applied before scoring.

    A card matches when it carries every requested tag (case-insensitive),
    has the requested kind, and every metadata key equals the requested value.
    """

    tags: list[str] = Field(default_factory=list)
    kind: CardKind | None = None
    metadata: dict[str, MetadataValue] = Field(default_factory=dict)

    @field_validator("tags")
    @classmethod
    def _normalize_tags(cls, value: list[str]) -> list[str]:
        return normalize_tags(value)

    def matches(self, card: Card) -> bool:
        if self.kind is not None and card.kind != self.kind:
            return False
        if not all(card.has_tag(tag) for tag in self.tags):
            return False
        for key, expected in self.metadata.items():
            if key not in card.metadata:
                return False
            actual = card.metadata[key]
            # True == 1 == 1.0 in Python; exact match also compares the type
            if type(actual) is not type(expected) or actual != expected:
                return False
        return True

    def is_empty(self) -> bool:
        return self.kind is None and not self.tags and not self.metadata


class SearchHit(BaseModel):
    """A ranked card with its per-signal scores."""

    card: Card
    score: float
    lexical_score: float = 0.0
    semantic_score: float | None = None
    graph_score: float = 0.0


class SearchResponse(BaseModel):
    """Ranked results plus the degraded-mode flag."""

    hits: list[SearchHit] = Field(default_factory=list)
    degraded: bool = False
    degraded_reason: str | None = None

    @property
    def cards(self) -> list[Card]:
        return [hit.card for hit in self.hits]

    @property
    def ids(self) -> list[str]:
        return [hit.card.id for hit in self.hits]
