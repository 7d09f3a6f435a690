"""
Card model with tag normalization and content fingerprinting.
"""

import hashlib
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

MetadataValue = str | int | float | bool | None


class CardKind(str, Enum):
    """Kinds of card content."""

    TEXT = "text"
    IMAGE = "image"  # Images and graphs
    CODE = "code"  # Code, CAD and similar artifacts


class EmbeddingStatus(str, Enum):
    """Embedding lifecycle of a card."""

    PENDING = "pending"
    GENERATING = "generating"
    GENERATED = "generated"
    FAILED = "failed"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def normalize_tags(tags: list[str]) -> list[str]:
    """
    Deduplicate tags case-insensitively, keeping the first spelling and order.

    Blank tags are dropped and surrounding whitespace is stripped.
    """
    seen: set[str] = set()
    result = []
    for tag in tags:
        cleaned = tag.strip()
        key = cleaned.casefold()
        if not cleaned or key in seen:
            continue
        seen.add(key)
        result.append(cleaned)
    return result


def compute_fingerprint(content: str, tags: list[str]) -> str:
    """
    Compute the content+tags fingerprint used to detect stale embeddings.

    Tags are compared case-insensitively and order-insensitively, so reordering
    or re-casing tags does not invalidate an embedding.

    Returns:
        Hash string in format "sha256:hexdigest"
    """
    tag_part = "\x1e".join(sorted(tag.casefold() for tag in normalize_tags(tags)))
    payload = f"{content}\x1f{tag_part}"
    digest = hashlib.sha256(payload.encode("utf-8")).hexdigest()
    return f"sha256:{digest}"


class Card(BaseModel):
    """
    The atomic unit of stored content.

    The dependency list is a cached view owned by the DependencyGraph; it is
    only written through the graph engine. The embedding fields are the
    durable result of the EmbeddingPipeline.
    """

    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(..., min_length=1, description="Unique card ID (card_xxx)")
    title: str = Field(..., min_length=1, description="Card title")
    kind: CardKind = Field(default=CardKind.TEXT, description="Content kind")
    content: str = Field(default="", description="Inline text or payload reference")
    tags: list[str] = Field(default_factory=list, description="Ordered, case-insensitive set")
    metadata: dict[str, MetadataValue] = Field(default_factory=dict)
    dependencies: list[str] = Field(default_factory=list, description="Cards this one depends on")

    embedding_status: EmbeddingStatus = Field(default=EmbeddingStatus.PENDING)
    embedding_error: str | None = Field(default=None, description="Error class of last failure")
    embedding_fingerprint: str | None = Field(
        default=None, description="Fingerprint confirmed in the vector store"
    )

    created_at: datetime = Field(default_factory=utc_now)
    last_modified: datetime = Field(default_factory=utc_now)
    revision: int = Field(default=0, ge=0, description="Store revision for conflict detection")

    @field_validator("title")
    @classmethod
    def _strip_title(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("title cannot be blank")
        return value

    @field_validator("tags")
    @classmethod
    def _normalize_tags(cls, value: list[str]) -> list[str]:
        return normalize_tags(value)

    @field_validator("dependencies")
    @classmethod
    def _dedupe_dependencies(cls, value: list[str]) -> list[str]:
        return list(dict.fromkeys(value))

    @model_validator(mode="after")
    def _no_self_dependency(self) -> "Card":
        if self.id in self.dependencies:
            raise ValueError(f"card {self.id} cannot depend on itself")
        return self

    def fingerprint(self) -> str:
        """Fingerprint of the current content and tags."""
        return compute_fingerprint(self.content, self.tags)

    def embedding_text(self) -> str:
        """Text handed to the embedding model."""
        parts = [self.title, self.content]
        if self.tags:
            parts.append(" ".join(self.tags))
        return "\n".join(part for part in parts if part)

    def has_tag(self, tag: str) -> bool:
        key = tag.strip().casefold()
        return any(t.casefold() == key for t in self.tags)

    def touch(self, when: datetime | None = None) -> None:
        """Bump last_modified, never moving it backwards."""
        when = when or utc_now()
        if when > self.last_modified:
            self.last_modified = when

    def is_embedded(self) -> bool:
        return self.embedding_status == EmbeddingStatus.GENERATED
