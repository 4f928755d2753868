"""
pgvector Store Module - Postgres + pgvector storage via asyncpg.
================================================================

Layout: one table per index,

    id          TEXT PRIMARY KEY
    seq         BIGSERIAL             -- insertion order, breaks distance ties
    text        TEXT
    attributes  JSONB                 -- display attributes returned by search
    updated_at  TIMESTAMPTZ
    embedding_<kind>  vector(D)       -- one column per embedder

Queries are "ORDER BY embedding_<kind> <=> $1, seq LIMIT $2", where <=>
is pgvector's cosine distance operator.
"""

import asyncio
import json
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional, Sequence

import asyncpg
import numpy as np
from pgvector.asyncpg import register_vector

from embedding_index.indexing.vector_store import VectorStore, column_name, finite_distance
from embedding_index.shared.config import IndexConfig, Settings
from embedding_index.shared.errors import ConfigurationError, StoreConnectionError, StoreError
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

_CONNECTION_ERRORS = (
    asyncpg.exceptions.PostgresConnectionError,
    asyncpg.exceptions.CannotConnectNowError,
    OSError,
    asyncio.TimeoutError,
)

_MISSING_OBJECT_ERRORS = (
    asyncpg.exceptions.UndefinedTableError,
    asyncpg.exceptions.UndefinedColumnError,
)


def quote_ident(name: str) -> str:
    """Quote an identifier that was already validated against the config regex."""
    return '"' + name.replace('"', '""') + '"'


# ─────────────────────────────────────────────────────────────────────────────
# Connection Pool
# ─────────────────────────────────────────────────────────────────────────────


class PgConnectionPool:
    """
    Lazily created asyncpg pool shared by the vector store and the
    postgres record source.

    acquire() hands out one connection per operation and always returns
    it to the pool, including when the operation raises.
    """

    def __init__(
        self,
        dsn: str,
        min_size: int = 1,
        max_size: int = 10,
        command_timeout: float = 30.0,
        create_extension: bool = True,
    ):
        if not dsn:
            raise ConfigurationError("DATABASE_URL is required for the postgres backend")
        self._dsn = dsn
        self._min_size = min_size
        self._max_size = max_size
        self._command_timeout = command_timeout
        self._create_extension = create_extension
        self._pool: Optional[asyncpg.Pool] = None
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "PgConnectionPool":
        return cls(
            dsn=settings.database_url,
            min_size=settings.store.pool_min_size,
            max_size=settings.store.pool_max_size,
            command_timeout=settings.store.command_timeout,
            create_extension=settings.store.create_extension,
        )

    async def _init_connection(self, conn: asyncpg.Connection) -> None:
        if self._create_extension:
            await conn.execute("CREATE EXTENSION IF NOT EXISTS vector")
        await register_vector(conn)

    async def _ensure_pool(self) -> asyncpg.Pool:
        async with self._lock:
            if self._pool is None:
                try:
                    self._pool = await asyncpg.create_pool(
                        self._dsn,
                        min_size=self._min_size,
                        max_size=self._max_size,
                        command_timeout=self._command_timeout,
                        init=self._init_connection,
                    )
                except _CONNECTION_ERRORS as e:
                    raise StoreConnectionError(f"Failed to connect to PostgreSQL: {e}") from e
                logger.info(
                    f"PostgreSQL pool created (min={self._min_size}, max={self._max_size})"
                )
        return self._pool

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[asyncpg.Connection]:
        pool = await self._ensure_pool()
        try:
            async with pool.acquire() as conn:
                yield conn
        except _CONNECTION_ERRORS as e:
            raise StoreConnectionError(f"PostgreSQL connection lost: {e}") from e

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None


# ─────────────────────────────────────────────────────────────────────────────
# Vector Store
# ─────────────────────────────────────────────────────────────────────────────


class PgVectorStore(VectorStore):
    """
    pgvector-backed vector store.

    Example:
        >>> store = PgVectorStore(PgConnectionPool(dsn))
        >>> await store.ensure_index(index)
        >>> hits = await store.nearest(index, EmbedderKind.GEMINI, vector, 3)
    """

    def __init__(self, pool: PgConnectionPool):
        self._pool = pool

    @property
    def backend(self) -> StoreBackend:
        return StoreBackend.POSTGRES

    async def ensure_index(self, index: IndexConfig) -> None:
        """Create the index table and one vector column per declared embedder."""
        table = quote_ident(index.table_name)
        statements = [
            f"""
            CREATE TABLE IF NOT EXISTS {table} (
                id TEXT PRIMARY KEY,
                seq BIGSERIAL,
                text TEXT,
                attributes JSONB NOT NULL DEFAULT '{{}}'::jsonb,
                updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
            )
            """
        ]
        for kind, dims in index.embedders.items():
            statements.append(
                f"ALTER TABLE {table} ADD COLUMN IF NOT EXISTS "
                f"{quote_ident(column_name(kind))} vector({int(dims)})"
            )

        async with self._pool.acquire() as conn:
            try:
                async with conn.transaction():
                    for sql in statements:
                        await conn.execute(sql)
            except asyncpg.PostgresError as e:
                raise StoreError(f"Failed to create table for '{index.name}': {e}") from e

        logger.info(f"Ensured table {index.table_name} for index '{index.name}'")

    async def bulk_upsert(
        self,
        index: IndexConfig,
        records: Sequence[EmbeddingRecord],
    ) -> BulkWriteResult:
        """
        Write-through per record, each row in its own transaction.

        A failing row (e.g. dimension mismatch with the column type) is
        recorded and the batch continues; connection loss aborts.
        """
        result = BulkWriteResult()
        if not records:
            return result

        async with self._pool.acquire() as conn:
            for record in records:
                col = quote_ident(column_name(EmbedderKind(record.embedder_id)))
                sql = build_upsert_sql(index.table_name, col)
                try:
                    async with conn.transaction():
                        await conn.execute(
                            sql,
                            record.record_id,
                            record.text,
                            json.dumps(record.attributes, default=str),
                            np.asarray(record.vector, dtype=np.float32),
                        )
                    result.written += 1
                except _CONNECTION_ERRORS as e:
                    raise StoreConnectionError(
                        f"Connection lost while writing '{index.name}': {e}"
                    ) from e
                except (asyncpg.PostgresError, asyncpg.InterfaceError) as e:
                    if conn.is_closed():
                        raise StoreConnectionError(
                            f"Connection lost while writing '{index.name}': {e}"
                        ) from e
                    logger.warning(f"Row {record.record_id} rejected by '{index.name}': {e}")
                    result.failed.append(SeedFailure(record_id=record.record_id, reason=str(e)))

        return result

    async def nearest(
        self,
        index: IndexConfig,
        embedder: EmbedderKind,
        vector: Sequence[float],
        limit: int,
    ) -> list[SearchResult]:
        self._check_limit(limit)
        sql = build_nearest_sql(index.table_name, quote_ident(column_name(embedder)))

        async with self._pool.acquire() as conn:
            try:
                rows = await conn.fetch(sql, np.asarray(vector, dtype=np.float32), limit)
            except _MISSING_OBJECT_ERRORS as e:
                logger.warning(f"Index '{index.name}' has no storage yet: {e}")
                return []
            except asyncpg.PostgresError as e:
                raise StoreError(f"Nearest-neighbor query on '{index.name}' failed: {e}") from e

        return [
            SearchResult(
                record_id=row["id"],
                distance=finite_distance(row["distance"]),
                attributes=_load_attributes(row["attributes"]),
            )
            for row in rows
        ]

    async def count(self, index: IndexConfig, embedder: EmbedderKind) -> int:
        table = quote_ident(index.table_name)
        col = quote_ident(column_name(embedder))
        async with self._pool.acquire() as conn:
            try:
                value = await conn.fetchval(f"SELECT count(*) FROM {table} WHERE {col} IS NOT NULL")
            except _MISSING_OBJECT_ERRORS:
                return 0
            except asyncpg.PostgresError as e:
                raise StoreError(f"Count on '{index.name}' failed: {e}") from e
        return int(value)

    async def clear(self, index: IndexConfig, embedder: EmbedderKind) -> int:
        table = quote_ident(index.table_name)
        col = quote_ident(column_name(embedder))
        async with self._pool.acquire() as conn:
            try:
                status = await conn.execute(
                    f"UPDATE {table} SET {col} = NULL, updated_at = now() WHERE {col} IS NOT NULL"
                )
            except _MISSING_OBJECT_ERRORS:
                return 0
            except asyncpg.PostgresError as e:
                raise StoreError(f"Clear on '{index.name}' failed: {e}") from e

        # asyncpg returns a command tag such as "UPDATE 12"
        cleared = int(status.split()[-1]) if status else 0
        logger.info(f"Cleared {cleared} {embedder.value} vectors from '{index.name}'")
        return cleared

    async def close(self) -> None:
        await self._pool.close()


# ─────────────────────────────────────────────────────────────────────────────
# SQL Builders
# ─────────────────────────────────────────────────────────────────────────────


def build_upsert_sql(table_name: str, quoted_column: str) -> str:
    """Upsert touching only one embedder's column, so parallel columns survive."""
    table = quote_ident(table_name)
    return (
        f"INSERT INTO {table} (id, text, attributes, {quoted_column}, updated_at) "
        f"VALUES ($1, $2, $3::jsonb, $4, now()) "
        f"ON CONFLICT (id) DO UPDATE SET "
        f"text = EXCLUDED.text, attributes = EXCLUDED.attributes, "
        f"{quoted_column} = EXCLUDED.{quoted_column}, updated_at = now()"
    )


def build_nearest_sql(table_name: str, quoted_column: str) -> str:
    table = quote_ident(table_name)
    return (
        f"SELECT id, attributes, ({quoted_column} <=> $1)::float8 AS distance "
        f"FROM {table} WHERE {quoted_column} IS NOT NULL "
        f"ORDER BY {quoted_column} <=> $1, seq "
        f"LIMIT $2"
    )


def _load_attributes(value: Any) -> dict[str, Any]:
    if value is None:
        return {}
    if isinstance(value, (str, bytes)):
        return json.loads(value)
    return dict(value)
