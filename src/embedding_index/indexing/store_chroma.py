"""
Chroma Store Module - ChromaDB wrapper for local vector storage.
================================================================

Provides a database-free deployment option: one persistent ChromaDB
collection per (index, embedder), cosine space. Embeddings are computed
by our embedders, never by ChromaDB's embedding functions.

ChromaDB's client is synchronous; every call runs in a worker thread.
"""

import asyncio
import json
from pathlib import Path
from typing import Any, Sequence

import chromadb
from chromadb.config import Settings as ChromaSettings
from chromadb.errors import ChromaError

from embedding_index.indexing.vector_store import VectorStore, finite_distance
from embedding_index.shared.config import IndexConfig
from embedding_index.shared.errors import StoreError
from embedding_index.shared.logging import get_logger
from embedding_index.shared.schemas import (
    BulkWriteResult,
    EmbedderKind,
    EmbeddingRecord,
    SearchResult,
    SeedFailure,
    StoreBackend,
)
from embedding_index.shared.utils import ensure_directory

logger = get_logger(__name__)

_ROW_ERRORS = (ValueError, ChromaError)


class ChromaVectorStore(VectorStore):
    """
    ChromaDB-backed vector store.

    Example:
        >>> store = ChromaVectorStore(Path("data/chroma"))
        >>> await store.bulk_upsert(index, records)
        >>> hits = await store.nearest(index, EmbedderKind.SBERT, vector, 5)
    """

    def __init__(self, persist_directory: Path):
        self.persist_directory = ensure_directory(Path(persist_directory))

        self._client = chromadb.PersistentClient(
            path=str(self.persist_directory),
            settings=ChromaSettings(
                anonymized_telemetry=False,
                allow_reset=True,
            ),
        )

        logger.info(f"Chroma store initialized: persist_dir={self.persist_directory}")

    @property
    def backend(self) -> StoreBackend:
        return StoreBackend.CHROMA

    @staticmethod
    def collection_name(index: IndexConfig, embedder: EmbedderKind) -> str:
        return f"{index.name}_{embedder.value}"

    def _collection(self, index: IndexConfig, embedder: EmbedderKind):
        return self._client.get_or_create_collection(
            name=self.collection_name(index, embedder),
            metadata={"hnsw:space": "cosine"},
        )

    async def ensure_index(self, index: IndexConfig) -> None:
        for kind in index.embedders:
            await asyncio.to_thread(self._collection, index, kind)

    async def bulk_upsert(
        self,
        index: IndexConfig,
        records: Sequence[EmbeddingRecord],
    ) -> BulkWriteResult:
        return await asyncio.to_thread(self._bulk_upsert_sync, index, records)

    def _bulk_upsert_sync(
        self,
        index: IndexConfig,
        records: Sequence[EmbeddingRecord],
    ) -> BulkWriteResult:
        result = BulkWriteResult()
        by_kind: dict[EmbedderKind, list[EmbeddingRecord]] = {}

        # Enforce the declared dimension the way a vector(D) column would
        for record in records:
            kind = EmbedderKind(record.embedder_id)
            expected = index.embedders.get(kind)
            if expected is None or len(record.vector) != expected:
                reason = (
                    f"no vector column for embedder '{kind.value}'"
                    if expected is None
                    else f"expected {expected} dimensions, not {len(record.vector)}"
                )
                result.failed.append(SeedFailure(record_id=record.record_id, reason=reason))
                continue
            by_kind.setdefault(kind, []).append(record)

        for kind, batch in by_kind.items():
            collection = self._collection(index, kind)
            try:
                collection.upsert(**_to_chroma(batch))
                result.written += len(batch)
            except _ROW_ERRORS as e:
                logger.warning(f"Chroma batch upsert failed, retrying per record: {e}")
                # Fall back to individual writes so one bad row does not sink the batch
                for record in batch:
                    try:
                        collection.upsert(**_to_chroma([record]))
                        result.written += 1
                    except _ROW_ERRORS as row_error:
                        result.failed.append(
                            SeedFailure(record_id=record.record_id, reason=str(row_error))
                        )

        return result

    async def nearest(
        self,
        index: IndexConfig,
        embedder: EmbedderKind,
        vector: Sequence[float],
        limit: int,
    ) -> list[SearchResult]:
        self._check_limit(limit)
        return await asyncio.to_thread(self._nearest_sync, index, embedder, list(vector), limit)

    def _nearest_sync(
        self,
        index: IndexConfig,
        embedder: EmbedderKind,
        vector: list[float],
        limit: int,
    ) -> list[SearchResult]:
        collection = self._collection(index, embedder)
        available = collection.count()
        if available == 0:
            return []

        try:
            results = collection.query(
                query_embeddings=[vector],
                n_results=min(limit, available),
                include=["metadatas", "distances"],
            )
        except _ROW_ERRORS as e:
            raise StoreError(f"Chroma query on '{index.name}' failed: {e}") from e

        return _results_to_hits(results)

    async def count(self, index: IndexConfig, embedder: EmbedderKind) -> int:
        collection = await asyncio.to_thread(self._collection, index, embedder)
        return await asyncio.to_thread(collection.count)

    async def clear(self, index: IndexConfig, embedder: EmbedderKind) -> int:
        return await asyncio.to_thread(self._clear_sync, index, embedder)

    def _clear_sync(self, index: IndexConfig, embedder: EmbedderKind) -> int:
        collection = self._collection(index, embedder)
        cleared = collection.count()
        # Delete and recreate collection
        self._client.delete_collection(collection.name)
        self._collection(index, embedder)
        logger.info(f"Cleared collection: {collection.name}")
        return cleared


def _to_chroma(records: Sequence[EmbeddingRecord]) -> dict[str, Any]:
    """Convert records to ChromaDB upsert arguments. Metadata must be flat and non-empty."""
    return {
        "ids": [r.record_id for r in records],
        "embeddings": [list(r.vector) for r in records],
        "documents": [r.text or "" for r in records],
        "metadatas": [
            {"attributes": json.dumps(r.attributes, default=str)} for r in records
        ],
    }


def _results_to_hits(results: dict) -> list[SearchResult]:
    """Convert ChromaDB query results to SearchResults ordered by distance."""
    if not results or not results.get("ids") or not results["ids"][0]:
        return []

    ids = results["ids"][0]
    metadatas = (results.get("metadatas") or [[]])[0] or []
    distances = (results.get("distances") or [[]])[0] or []

    hits = []
    for i, record_id in enumerate(ids):
        meta = metadatas[i] if i < len(metadatas) and metadatas[i] else {}
        raw = meta.get("attributes")
        hits.append(
            SearchResult(
                record_id=record_id,
                distance=finite_distance(distances[i] if i < len(distances) else None),
                attributes=json.loads(raw) if raw else {},
            )
        )

    # Stable sort keeps Chroma's order for equal distances
    hits.sort(key=lambda h: h.distance)
    return hits
