"""
In-Memory Store Module - numpy-backed vector store.
===================================================

A process-local store with the same contract as the pgvector backend:
declared column dimensions are enforced per row, distances are cosine
distances and ties are broken by first insertion. Used for tests and
for trying an index without a database.
"""

import itertools
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

import numpy as np

from embedding_index.indexing.vector_store import VectorStore
from embedding_index.shared.config import IndexConfig
from embedding_index.shared.logging import get_logger
from embedding_index.shared.schemas import (
    BulkWriteResult,
    EmbedderKind,
    EmbeddingRecord,
    SearchResult,
    SeedFailure,
    StoreBackend,
)

logger = get_logger(__name__)


def cosine_distance(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine distance 1 - cos(a, b), clamped to [0, 2].

    A zero-length vector has no direction; its distance to anything is 1.0.

    Example:
        >>> cosine_distance([1.0, 0.0], [0.0, 1.0])
        1.0
    """
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    norm = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if norm == 0.0:
        return 1.0
    distance = 1.0 - float(np.dot(va, vb)) / norm
    return min(2.0, max(0.0, distance))


@dataclass
class _Row:
    seq: int
    vector: np.ndarray
    text: Optional[str] = None
    attributes: dict[str, Any] = field(default_factory=dict)


class InMemoryVectorStore(VectorStore):
    """
    Vector store kept in a dictionary per (index, embedder).

    Example:
        >>> store = InMemoryVectorStore()
        >>> await store.upsert(index, record)
        >>> hits = await store.nearest(index, EmbedderKind.SBERT, record.vector, 1)
    """

    def __init__(self):
        self._tables: dict[tuple[str, EmbedderKind], dict[str, _Row]] = {}
        self._seq = itertools.count()

    @property
    def backend(self) -> StoreBackend:
        return StoreBackend.MEMORY

    def _table(self, index: IndexConfig, embedder: EmbedderKind) -> dict[str, _Row]:
        return self._tables.setdefault((index.name, embedder), {})

    async def ensure_index(self, index: IndexConfig) -> None:
        for kind in index.embedders:
            self._table(index, kind)

    async def bulk_upsert(
        self,
        index: IndexConfig,
        records: Sequence[EmbeddingRecord],
    ) -> BulkWriteResult:
        result = BulkWriteResult()

        for record in records:
            kind = EmbedderKind(record.embedder_id)
            if kind not in index.embedders:
                result.failed.append(
                    SeedFailure(
                        record_id=record.record_id,
                        reason=f"no vector column for embedder '{kind.value}'",
                    )
                )
                continue

            expected = index.embedders[kind]
            if len(record.vector) != expected:
                result.failed.append(
                    SeedFailure(
                        record_id=record.record_id,
                        reason=f"expected {expected} dimensions, not {len(record.vector)}",
                    )
                )
                continue

            table = self._table(index, kind)
            existing = table.get(record.record_id)
            table[record.record_id] = _Row(
                seq=existing.seq if existing else next(self._seq),
                vector=np.asarray(record.vector, dtype=np.float32),
                text=record.text,
                attributes=dict(record.attributes),
            )
            result.written += 1

        return result

    async def nearest(
        self,
        index: IndexConfig,
        embedder: EmbedderKind,
        vector: Sequence[float],
        limit: int,
    ) -> list[SearchResult]:
        self._check_limit(limit)
        table = self._tables.get((index.name, embedder), {})
        if not table:
            return []

        scored = [
            (cosine_distance(vector, row.vector), row.seq, record_id, row)
            for record_id, row in table.items()
        ]
        scored.sort(key=lambda item: (item[0], item[1]))

        return [
            SearchResult(record_id=record_id, distance=distance, attributes=dict(row.attributes))
            for distance, _, record_id, row in scored[:limit]
        ]

    async def count(self, index: IndexConfig, embedder: EmbedderKind) -> int:
        return len(self._tables.get((index.name, embedder), {}))

    async def clear(self, index: IndexConfig, embedder: EmbedderKind) -> int:
        table = self._tables.pop((index.name, embedder), {})
        return len(table)

    def get_vector(self, index_name: str, embedder: EmbedderKind, record_id: str) -> Optional[list[float]]:
        """Get a stored vector (inspection helper)."""
        row = self._tables.get((index_name, embedder), {}).get(record_id)
        return row.vector.tolist() if row is not None else None
