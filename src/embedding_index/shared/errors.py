"""
Errors Module - Exception taxonomy for the index service.
=========================================================

Three families of failures cross the Index Manager boundary:

- EmbedError: an embedder call failed (network, auth, rate limit, bad input)
- StoreError: the vector store or source store failed (constraint, connectivity)
- ValidationError: the request itself is malformed (bad k, unknown index, ...)

ConfigurationError is raised at startup when settings are incomplete.
"""

from typing import Optional


class IndexServiceError(Exception):
    """Base class for all errors raised by the index service."""


# ─────────────────────────────────────────────────────────────────────────────
# Embedder Errors
# ─────────────────────────────────────────────────────────────────────────────


class EmbedError(IndexServiceError):
    """An embedder could not produce a vector for the given text."""

    def __init__(
        self,
        message: str,
        *,
        embedder_id: Optional[str] = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.embedder_id = embedder_id
        self.retryable = retryable


class TransientEmbedError(EmbedError):
    """Network, timeout or rate-limit failure. Adapters retry these."""

    def __init__(self, message: str, *, embedder_id: Optional[str] = None):
        super().__init__(message, embedder_id=embedder_id, retryable=True)


# ─────────────────────────────────────────────────────────────────────────────
# Store Errors
# ─────────────────────────────────────────────────────────────────────────────


class StoreError(IndexServiceError):
    """A read or write against the vector store or source store failed."""


class StoreConnectionError(StoreError):
    """The store connection was lost or could not be established."""


# ─────────────────────────────────────────────────────────────────────────────
# Request / Configuration Errors
# ─────────────────────────────────────────────────────────────────────────────


class ValidationError(IndexServiceError):
    """The request is malformed; no work was attempted."""


class DimensionMismatchError(ValidationError):
    """A vector length does not match the dimension declared for its column."""

    def __init__(self, expected: int, actual: int, context: str = ""):
        where = f" ({context})" if context else ""
        super().__init__(
            f"Dimension mismatch{where}: expected {expected}, got {actual}"
        )
        self.expected = expected
        self.actual = actual


class ConfigurationError(IndexServiceError):
    """Settings are missing a credential or are otherwise unusable."""
