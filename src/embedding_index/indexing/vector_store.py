"""
Vector Store Module - Abstract interface for vector storage and retrieval.
=========================================================================

A vector store keeps, per index, one row per source record with one
fixed-dimension vector column per embedder, and answers nearest-neighbor
queries ordered by cosine distance.

Backends:
- postgres: pgvector via asyncpg (store_pgvector)
- chroma: local persistent ChromaDB (store_chroma)
- memory: process-local numpy store (store_memory)
"""

import math
from abc import ABC, abstractmethod
from typing import Optional, Sequence

from embedding_index.shared.config import IndexConfig, Settings
from embedding_index.shared.errors import StoreError, ValidationError
from embedding_index.shared.logging import get_logger
from embedding_index.shared.schemas import (
    BulkWriteResult,
    EmbedderKind,
    EmbeddingRecord,
    SearchResult,
    StoreBackend,
)

logger = get_logger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# Abstract Base Class
# ─────────────────────────────────────────────────────────────────────────────


class VectorStore(ABC):
    """
    Abstract base class for vector stores.

    Contract:
    - bulk_upsert() is not transactional across the batch; per-row
      failures are reported in the result, connectivity loss raises
      StoreConnectionError.
    - nearest() returns at most `limit` results ordered by ascending
      cosine distance, ties broken by insertion order.
    - upsert is idempotent per (record_id, embedder).
    """

    @property
    @abstractmethod
    def backend(self) -> StoreBackend:
        """Get the backend identifier."""
        pass

    async def ensure_index(self, index: IndexConfig) -> None:
        """Create the storage for an index if the backend needs it."""

    async def upsert(self, index: IndexConfig, record: EmbeddingRecord) -> None:
        """
        Write a single embedding.

        Raises:
            StoreError: If the row could not be written
        """
        result = await self.bulk_upsert(index, [record])
        if result.failed:
            raise StoreError(
                f"Failed to write {record.record_id} to '{index.name}': "
                f"{result.failed[0].reason}"
            )

    @abstractmethod
    async def bulk_upsert(
        self,
        index: IndexConfig,
        records: Sequence[EmbeddingRecord],
    ) -> BulkWriteResult:
        """
        Write many embeddings.

        Returns:
            Count of rows written plus per-row failures
        """
        pass

    @abstractmethod
    async def nearest(
        self,
        index: IndexConfig,
        embedder: EmbedderKind,
        vector: Sequence[float],
        limit: int,
    ) -> list[SearchResult]:
        """Get the `limit` stored vectors closest to `vector`."""
        pass

    @abstractmethod
    async def count(self, index: IndexConfig, embedder: EmbedderKind) -> int:
        """Number of records that have a vector for this embedder."""
        pass

    @abstractmethod
    async def clear(self, index: IndexConfig, embedder: EmbedderKind) -> int:
        """Drop all vectors of one embedder from an index. Returns rows cleared."""
        pass

    async def close(self) -> None:
        """Release backend resources."""

    @staticmethod
    def _check_limit(limit: int) -> None:
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise ValidationError(f"limit must be a positive integer, got {limit!r}")


def column_name(embedder: EmbedderKind) -> str:
    """Name of the vector column holding an embedder's vectors."""
    return f"embedding_{embedder.value}"


def finite_distance(value: Optional[float]) -> float:
    """
    Bring a backend-reported cosine distance into [0, 2].

    pgvector returns NaN when either vector has zero length; like the
    in-memory store, such a pair is treated as orthogonal (1.0).
    """
    if value is None or math.isnan(value):
        return 1.0
    return min(2.0, max(0.0, float(value)))


# ─────────────────────────────────────────────────────────────────────────────
# Factory Function
# ─────────────────────────────────────────────────────────────────────────────


def create_vector_store(settings: Settings, pool: Optional[object] = None) -> VectorStore:
    """
    Create the vector store selected by settings.

    Args:
        settings: Deployment settings
        pool: Shared PgConnectionPool (postgres backend only)

    Returns:
        VectorStore instance
    """
    backend = settings.get_effective_backend()

    if backend == StoreBackend.POSTGRES:
        from embedding_index.indexing.store_pgvector import PgConnectionPool, PgVectorStore

        if pool is None:
            pool = PgConnectionPool.from_settings(settings)
        store: VectorStore = PgVectorStore(pool)

    elif backend == StoreBackend.CHROMA:
        from embedding_index.indexing.store_chroma import ChromaVectorStore

        store = ChromaVectorStore(settings.resolve_path(settings.store.chroma_dir))

    elif backend == StoreBackend.MEMORY:
        from embedding_index.indexing.store_memory import InMemoryVectorStore

        store = InMemoryVectorStore()

    else:
        raise ValidationError(f"Unsupported store backend: {backend!r}")

    logger.info(f"Vector store backend: {store.backend.value}")
    return store
