"""
Request validation for the Index Manager.

Everything here runs before any embedder or store call, so a malformed
request never produces partial work.
"""

from typing import Any, Optional, Sequence

from embedding_index.shared.config import IndexConfig
from embedding_index.shared.errors import DimensionMismatchError, ValidationError
from embedding_index.shared.utils import truncate_text


def validate_k(k: Any) -> int:
    """Reject anything but a positive integer."""
    if isinstance(k, bool) or not isinstance(k, int):
        raise ValidationError(f"k must be an integer, got {k!r}")
    if k < 1:
        raise ValidationError(f"k must be >= 1, got {k}")
    return k


def require_query(query: Optional[str]) -> str:
    if query is None or not query.strip():
        raise ValidationError("Query text must not be empty")
    return query


def prepare_text(index: IndexConfig, text: str) -> str:
    """Apply the index's character budget before embedding."""
    return truncate_text(text, index.max_text_chars)


def check_embedder_dimensions(index: IndexConfig, embedder: Any) -> int:
    """
    Check that an embedder produces vectors sized for the index column.

    Raises:
        ValidationError: If the embedder is not declared for the index
        DimensionMismatchError: If the declared sizes disagree
    """
    expected = index.dimensions_for(embedder.kind)
    if embedder.dimensions != expected:
        raise DimensionMismatchError(
            expected,
            embedder.dimensions,
            context=f"embedder '{embedder.embedder_id}' on index '{index.name}'",
        )
    return expected


def check_vector(vector: Sequence[float], expected: int, context: str = "") -> None:
    """The vector an embedder actually returned must match the column."""
    if len(vector) != expected:
        raise DimensionMismatchError(expected, len(vector), context=context)
