"""
Index Manager Module - Seed and query pipelines over a named index.
===================================================================

The Index Manager is the only writer of EmbeddingRecords. It reads
EmbeddableRecords from the domain store, embeds their text and writes
the vectors to the vector store (seed), and answers free-text top-K
queries (search).

Failure policy:
- Seed: per-record embedder and row failures are collected in the
  SeedSummary; only a lost store connection aborts the run.
- Search: any embedder or store failure propagates; there are no
  partial results. An empty result is a successful "no matches" response.

Cancellation: seed flushes each batch of embeddings before starting the
next one, so vectors already written stay valid if the run is cancelled.
Re-running seed overwrites them.
"""

import asyncio
import time
from typing import Any, Iterable, Mapping, Optional, Sequence, Union

from pydantic import ValidationError as SchemaValidationError

from embedding_index.indexing.embeddings_base import EmbeddingProvider, build_embedders
from embedding_index.indexing.sources import RecordSource, create_record_source
from embedding_index.indexing.vector_store import VectorStore, create_vector_store
from embedding_index.service.validation import (
    check_embedder_dimensions,
    check_vector,
    prepare_text,
    require_query,
    validate_k,
)
from embedding_index.shared.config import IndexConfig, Settings
from embedding_index.shared.errors import (
    ConfigurationError,
    DimensionMismatchError,
    EmbedError,
    ValidationError,
)
from embedding_index.shared.logging import get_logger
from embedding_index.shared.schemas import (
    EmbeddableRecord,
    EmbedderKind,
    EmbeddingRecord,
    IndexStats,
    SearchResponse,
    SeedFailure,
    SeedSummary,
    SourceKind,
    StoreBackend,
)
from embedding_index.shared.utils import batched, preview

logger = get_logger(__name__)

EMPTY_TEXT_REASON = "empty source text"

EmbedderArg = Optional[Union[EmbedderKind, str]]


def coerce_embedder(value: EmbedderArg) -> Optional[EmbedderKind]:
    """Accept an EmbedderKind or its string value (CLI input)."""
    if value is None or isinstance(value, EmbedderKind):
        return value
    try:
        return EmbedderKind(str(value).lower())
    except ValueError as e:
        supported = ", ".join(k.value for k in EmbedderKind)
        raise ValidationError(f"Unknown embedder '{value}' (supported: {supported})") from e


class IndexManager:
    """
    Seeds and searches the configured indexes.

    Collaborators are passed in explicitly; from_settings() builds the
    standard set (shared asyncpg pool, store, source, embedders).

    Example:
        >>> async with IndexManager.from_settings(settings) as manager:
        ...     summary = await manager.seed("products")
        ...     response = await manager.search("products", "red running shoes", k=3)
    """

    def __init__(
        self,
        settings: Settings,
        store: VectorStore,
        source: RecordSource,
        embedders: Mapping[EmbedderKind, EmbeddingProvider],
        pool: Optional[Any] = None,
    ):
        self._settings = settings
        self._store = store
        self._source = source
        self._embedders = dict(embedders)
        self._pool = pool

        logger.debug(
            f"IndexManager initialized: backend={store.backend.value}, "
            f"embedders={[k.value for k in self._embedders]}"
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        kinds: Optional[Iterable[EmbedderKind]] = None,
    ) -> "IndexManager":
        """
        Build a manager and its collaborators from settings.

        Credentials are checked before anything is constructed.

        Raises:
            ConfigurationError: If a required credential is missing
        """
        embedders = build_embedders(settings, kinds)

        pool = None
        needs_postgres = settings.get_effective_backend() == StoreBackend.POSTGRES or any(
            i.source.kind == SourceKind.POSTGRES for i in settings.indexes
        )
        if needs_postgres:
            from embedding_index.indexing.store_pgvector import PgConnectionPool

            pool = PgConnectionPool.from_settings(settings)

        store = create_vector_store(settings, pool)
        source = create_record_source(settings, pool)
        return cls(settings, store, source, embedders, pool=pool)

    async def __aenter__(self) -> "IndexManager":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        """Release embedder clients, the store and the shared pool."""
        for provider in self._embedders.values():
            await provider.aclose()
        await self._source.close()
        await self._store.close()
        if self._pool is not None:
            await self._pool.close()

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def store(self) -> VectorStore:
        return self._store

    # ─────────────────────────────────────────────────────────────────────
    # Resolution
    # ─────────────────────────────────────────────────────────────────────

    def _resolve(
        self,
        index_name: str,
        embedder: EmbedderArg = None,
    ) -> tuple[IndexConfig, EmbeddingProvider, int]:
        """Look up index, embedder adapter and column dimension, or fail before any work."""
        index = self._settings.get_index(index_name)
        kind = coerce_embedder(embedder) or index.primary_embedder
        index.dimensions_for(kind)

        provider = self._embedders.get(kind)
        if provider is None:
            raise ConfigurationError(
                f"Embedder '{kind.value}' is declared for index '{index.name}' "
                f"but was not initialized"
            )
        dims = check_embedder_dimensions(index, provider)
        return index, provider, dims

    # ─────────────────────────────────────────────────────────────────────
    # Seed Pipeline
    # ─────────────────────────────────────────────────────────────────────

    async def seed(
        self,
        index_name: str,
        embedder: EmbedderArg = None,
        *,
        concurrency: Optional[int] = None,
        rebuild: bool = False,
    ) -> SeedSummary:
        """
        Populate embeddings for an index from its current source records.

        Args:
            index_name: Configured index name
            embedder: Embedder to seed (defaults to the index's primary one)
            concurrency: Maximum in-flight embed calls
            rebuild: Clear this embedder's vectors before seeding

        Returns:
            SeedSummary with attempted/succeeded counts and per-record failures

        Raises:
            ValidationError: Unknown index/embedder or dimension mismatch
            StoreError: Source read failed or the store connection was lost
        """
        index, provider, dims = self._resolve(index_name, embedder)
        limit = concurrency if concurrency is not None else self._settings.seed.concurrency
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise ValidationError(f"concurrency must be >= 1, got {limit!r}")

        started = time.perf_counter()
        await self._store.ensure_index(index)
        if rebuild:
            cleared = await self._store.clear(index, provider.kind)
            logger.info(f"Rebuild: cleared {cleared} {provider.embedder_id} vectors from '{index.name}'")

        records = await self._source.fetch_records(index)
        logger.info(
            f"Seeding '{index.name}' with {provider.embedder_id}: "
            f"{len(records)} records, concurrency={limit}"
        )

        summary = await self._seed_records(index, provider, dims, records, limit)
        summary.duration_seconds = round(time.perf_counter() - started, 3)

        logger.info(
            f"Seed of '{index.name}' finished: {summary.succeeded}/{summary.attempted} "
            f"succeeded, {summary.failed_count} failed in {summary.duration_seconds:.2f}s"
        )
        return summary

    async def _seed_records(
        self,
        index: IndexConfig,
        provider: EmbeddingProvider,
        dims: int,
        records: Sequence[EmbeddableRecord],
        concurrency: int,
    ) -> SeedSummary:
        summary = SeedSummary(
            index=index.name,
            embedder_id=provider.embedder_id,
            attempted=len(records),
        )
        semaphore = asyncio.Semaphore(concurrency)

        for chunk in batched(list(records), self._settings.seed.write_batch_size):
            outcomes = await asyncio.gather(
                *(self._embed_record(index, provider, dims, r, semaphore) for r in chunk)
            )

            ready: list[EmbeddingRecord] = []
            for outcome in outcomes:
                if isinstance(outcome, SeedFailure):
                    summary.failed.append(outcome)
                else:
                    ready.append(outcome)

            if ready:
                written = await self._store.bulk_upsert(index, ready)
                summary.succeeded += written.written
                summary.failed.extend(written.failed)

            logger.debug(
                f"'{index.name}': {summary.succeeded + summary.failed_count}"
                f"/{summary.attempted} processed"
            )

        return summary

    async def _embed_record(
        self,
        index: IndexConfig,
        provider: EmbeddingProvider,
        dims: int,
        record: EmbeddableRecord,
        semaphore: asyncio.Semaphore,
    ) -> Union[EmbeddingRecord, SeedFailure]:
        """Embed one record. Expected failures come back as a SeedFailure."""
        if not record.has_text:
            logger.warning(f"Skipping record {record.id} in '{index.name}': {EMPTY_TEXT_REASON}")
            return SeedFailure(record_id=record.id, reason=EMPTY_TEXT_REASON)

        text = prepare_text(index, record.text)
        async with semaphore:
            try:
                vector = await provider.embed(text)
                check_vector(vector, dims, context=f"record {record.id}")
                return EmbeddingRecord(
                    record_id=record.id,
                    vector=vector,
                    embedder_id=provider.embedder_id,
                    text=text,
                    attributes=record.attributes,
                )
            except (EmbedError, DimensionMismatchError, SchemaValidationError) as e:
                logger.warning(f"Failed to embed record {record.id} in '{index.name}': {e}")
                return SeedFailure(record_id=record.id, reason=str(e))

    async def index_record(
        self,
        index_name: str,
        record: EmbeddableRecord,
        embedder: EmbedderArg = None,
    ) -> SeedSummary:
        """
        Embed and upsert a single record (e.g. right after it was created).

        Failures are reported in the returned one-record summary.
        """
        index, provider, dims = self._resolve(index_name, embedder)
        started = time.perf_counter()
        await self._store.ensure_index(index)

        summary = await self._seed_records(index, provider, dims, [record], 1)
        summary.duration_seconds = round(time.perf_counter() - started, 3)

        if summary.is_complete:
            logger.info(f"Indexed record {record.id} into '{index.name}'")
        return summary

    async def reindex_record(
        self,
        index_name: str,
        record_id: Union[str, int],
        embedder: EmbedderArg = None,
    ) -> SeedSummary:
        """
        Re-read one source record and regenerate its embedding.

        Raises:
            ValidationError: If the source has no record with this id
        """
        index = self._settings.get_index(index_name)
        record = await self._source.fetch_record(index, str(record_id))
        if record is None:
            raise ValidationError(f"Record '{record_id}' not found in the source of '{index.name}'")
        return await self.index_record(index.name, record, embedder)

    # ─────────────────────────────────────────────────────────────────────
    # Query Pipeline
    # ─────────────────────────────────────────────────────────────────────

    async def search(
        self,
        index_name: str,
        query: str,
        k: Optional[int] = None,
        embedder: EmbedderArg = None,
    ) -> SearchResponse:
        """
        Return the k records most similar to a free-text query.

        Args:
            index_name: Configured index name
            query: Free-text query
            k: Number of results (defaults to the deployment/index default)
            embedder: Embedder column to search

        Returns:
            SearchResponse ordered by ascending distance; `no_matches` is
            set when the index is empty

        Raises:
            ValidationError: k < 1, empty query, unknown index/embedder
            EmbedError: The query could not be embedded
            StoreError: The nearest-neighbor query failed
        """
        index, provider, dims = self._resolve(index_name, embedder)
        limit = validate_k(k if k is not None else self._settings.get_effective_top_k(index))
        text = prepare_text(index, require_query(query))

        vector = await provider.embed_query(text)
        check_vector(vector, dims, context=f"query on '{index.name}'")
        results = await self._store.nearest(index, provider.kind, vector, limit)

        response = SearchResponse(
            index=index.name,
            embedder_id=provider.embedder_id,
            query=query,
            k=limit,
            results=results,
        )

        if response.no_matches:
            logger.info(response.message)
        else:
            logger.debug(
                f"Search '{preview(query)}' on '{index.name}': {len(results)} results, "
                f"best distance {results[0].distance:.4f}"
            )
        return response

    # ─────────────────────────────────────────────────────────────────────
    # Maintenance / Introspection
    # ─────────────────────────────────────────────────────────────────────

    async def ensure_storage(self, index_name: Optional[str] = None) -> list[str]:
        """Create tables/collections for one index, or all of them."""
        indexes = (
            [self._settings.get_index(index_name)] if index_name else list(self._settings.indexes)
        )
        for index in indexes:
            await self._store.ensure_index(index)
        return [i.name for i in indexes]

    async def stats(self, index_name: str, embedder: EmbedderArg = None) -> IndexStats:
        """Vector count for one index and embedder."""
        index = self._settings.get_index(index_name)
        kind = coerce_embedder(embedder) or index.primary_embedder
        dims = index.dimensions_for(kind)
        count = await self._store.count(index, kind)
        return IndexStats(index=index.name, embedder_id=kind.value, dimensions=dims, count=count)

    def describe(self) -> list[dict[str, Any]]:
        """Configured indexes with their sources and embedder columns."""
        return describe_indexes(self._settings)


def describe_indexes(settings: Settings) -> list[dict[str, Any]]:
    """Summarize index definitions without touching any backend."""
    return [
        {
            "name": index.name,
            "description": index.description,
            "source": index.source.kind.value,
            "table": index.table_name,
            "embedders": {k.value: d for k, d in index.embedders.items()},
            "default_embedder": index.primary_embedder.value,
            "default_top_k": settings.get_effective_top_k(index),
            "max_text_chars": index.max_text_chars,
        }
        for index in settings.indexes
    ]
