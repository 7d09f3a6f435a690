"""Dependency edge model."""

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


class DependencyEdge(BaseModel):
    """Directed edge: source depends on target."""

    model_config = ConfigDict(frozen=True)

    source: str
    target: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def pair_key(self) -> frozenset[str]:
        """Unordered {source, target} key used to serialize mutations."""
        return frozenset((self.source, self.target))

    def is_self_reference(self) -> bool:
        return self.source == self.target
