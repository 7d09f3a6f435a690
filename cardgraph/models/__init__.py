"""
Data models for CardGraph.

Core models:
- Card: user-authored content with tags, metadata and dependency links
- CardKind, EmbeddingStatus: enums
- DependencyEdge: directed card-to-card dependency
- EmbeddingJob, JobOutcome, EmbeddingStatusReport: pipeline bookkeeping
- SearchFilters, SearchHit, SearchResponse: hybrid query models
"""

from cardgraph.models.card import (
    Card,
    CardKind,
    EmbeddingStatus,
    MetadataValue,
    compute_fingerprint,
    normalize_tags,
)
from cardgraph.models.edge import DependencyEdge
from cardgraph.models.job import EmbeddingJob, EmbeddingStatusReport, JobOutcome
from cardgraph.models.search import SearchFilters, SearchHit, SearchResponse

__all__ = [
    # Card models
    "Card",
    "CardKind",
    "EmbeddingStatus",
    "MetadataValue",
    "compute_fingerprint",
    "normalize_tags",
    # Graph models
    "DependencyEdge",
    # Pipeline models
    "EmbeddingJob",
    "EmbeddingStatusReport",
    "JobOutcome",
    # Search models
    "SearchFilters",
    "SearchHit",
    "SearchResponse",
]
