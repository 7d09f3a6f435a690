"""
ID generation utilities for CardGraph.

Provides consistent ID generation for all entity types:
- Cards: card_xxx
- Embedding jobs: job_xxx
"""

from uuid import uuid4


def generate_card_id() -> str:
    """
    Generate unique Card ID.

    Returns:
        ID in format "card_xxx" where xxx is 12 hex characters
    """
    return f"card_{uuid4().hex[:12]}"


def generate_job_id() -> str:
    """
    Generate unique embedding Job ID.

    Returns:
        ID in format "job_xxx" where xxx is 12 hex characters
    """
    return f"job_{uuid4().hex[:12]}"
