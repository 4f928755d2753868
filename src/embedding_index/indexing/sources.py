"""
Sources Module - Readers for the records an index is built from.
================================================================

EmbeddableRecords are owned by the domain store (a products table, an
uploaded-documents table, a JSONL export). The Index Manager only reads
them. Each index declares its source in settings:

- postgres: SELECT id, text, display columns FROM <table>
- jsonl: one JSON object per line
- memory: records registered programmatically
"""

import asyncio
import datetime as dt
import uuid
from abc import ABC, abstractmethod
from decimal import Decimal
from pathlib import Path
from typing import Any, Iterable, Optional

import asyncpg

from embedding_index.shared.config import IndexConfig, Settings
from embedding_index.shared.errors import StoreError, ValidationError
from embedding_index.shared.logging import get_logger
from embedding_index.shared.schemas import EmbeddableRecord, SourceKind
from embedding_index.shared.utils import load_jsonl

logger = get_logger(__name__)


def to_jsonable(value: Any) -> Any:
    """Convert database values (Decimal prices, UUID ids, timestamps) for JSON attributes."""
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (dt.datetime, dt.date)):
        return value.isoformat()
    return value


# ─────────────────────────────────────────────────────────────────────────────
# Abstract Base Class
# ─────────────────────────────────────────────────────────────────────────────


class RecordSource(ABC):
    """Read-only access to the EmbeddableRecords of an index."""

    @abstractmethod
    async def fetch_records(self, index: IndexConfig) -> list[EmbeddableRecord]:
        """Snapshot read of all source records for an index."""
        pass

    async def fetch_record(self, index: IndexConfig, record_id: str) -> Optional[EmbeddableRecord]:
        """Get one source record by id. Default: scan the snapshot."""
        for record in await self.fetch_records(index):
            if record.id == str(record_id):
                return record
        return None

    async def close(self) -> None:
        """Release resources."""


# ─────────────────────────────────────────────────────────────────────────────
# In-Memory Source
# ─────────────────────────────────────────────────────────────────────────────


class InMemoryRecordSource(RecordSource):
    """
    Records registered per index name.

    Example:
        >>> source = InMemoryRecordSource()
        >>> source.add("clubs", [EmbeddableRecord(id=1, text="...")])
    """

    def __init__(self, records: Optional[dict[str, Iterable[EmbeddableRecord]]] = None):
        self._records: dict[str, dict[str, EmbeddableRecord]] = {}
        for name, items in (records or {}).items():
            self.add(name, items)

    def add(self, index_name: str, records: Iterable[EmbeddableRecord]) -> None:
        bucket = self._records.setdefault(index_name, {})
        for record in records:
            bucket[record.id] = record

    def clear(self, index_name: Optional[str] = None) -> None:
        if index_name is None:
            self._records.clear()
        else:
            self._records.pop(index_name, None)

    async def fetch_records(self, index: IndexConfig) -> list[EmbeddableRecord]:
        return list(self._records.get(index.name, {}).values())

    async def fetch_record(self, index: IndexConfig, record_id: str) -> Optional[EmbeddableRecord]:
        return self._records.get(index.name, {}).get(str(record_id))


# ─────────────────────────────────────────────────────────────────────────────
# JSONL Source
# ─────────────────────────────────────────────────────────────────────────────


class JsonlRecordSource(RecordSource):
    """
    Records read from a JSONL file.

    The id comes from `source.id_column`, the embedded text from
    `source.text_column`. Display attributes are `source.display_columns`,
    or every other key when none are declared.
    """

    def __init__(self, base_dir: Optional[Path] = None):
        self._base_dir = base_dir

    def _path_for(self, index: IndexConfig) -> Path:
        path = Path(index.source.path or "")
        if not path.is_absolute() and self._base_dir is not None:
            path = self._base_dir / path
        return path

    async def fetch_records(self, index: IndexConfig) -> list[EmbeddableRecord]:
        path = self._path_for(index)
        if not path.exists():
            raise StoreError(f"Source file for '{index.name}' not found: {path}")
        return await asyncio.to_thread(self._read, index, path)

    def _read(self, index: IndexConfig, path: Path) -> list[EmbeddableRecord]:
        src = index.source
        records = []
        for item in load_jsonl(path):
            if item.get(src.id_column) is None:
                logger.warning(f"Skipping line without '{src.id_column}' in {path}")
                continue
            if src.display_columns:
                attributes = {c: item.get(c) for c in src.display_columns}
            else:
                attributes = {
                    k: v for k, v in item.items() if k not in (src.id_column, src.text_column)
                }
            records.append(
                EmbeddableRecord(
                    id=item[src.id_column],
                    text=item.get(src.text_column),
                    attributes=attributes,
                )
            )
        logger.debug(f"Read {len(records)} records for '{index.name}' from {path}")
        return records


# ─────────────────────────────────────────────────────────────────────────────
# Postgres Source
# ─────────────────────────────────────────────────────────────────────────────


class PostgresRecordSource(RecordSource):
    """Records read from the domain table through the shared asyncpg pool."""

    def __init__(self, pool):
        self._pool = pool

    def _select_sql(self, index: IndexConfig, by_id: bool = False) -> str:
        from embedding_index.indexing.store_pgvector import quote_ident

        src = index.source
        id_col = quote_ident(src.id_column)
        columns = [
            f"{id_col}::text AS id",
            f"{quote_ident(src.text_column)}::text AS text",
        ]
        columns += [quote_ident(c) for c in src.display_columns]
        sql = f"SELECT {', '.join(columns)} FROM {quote_ident(src.table or '')}"
        if by_id:
            sql += f" WHERE {id_col}::text = $1"
        return sql

    def _row_to_record(self, index: IndexConfig, row: asyncpg.Record) -> EmbeddableRecord:
        attributes = {c: to_jsonable(row[c]) for c in index.source.display_columns}
        return EmbeddableRecord(id=row["id"], text=row["text"], attributes=attributes)

    async def fetch_records(self, index: IndexConfig) -> list[EmbeddableRecord]:
        async with self._pool.acquire() as conn:
            try:
                rows = await conn.fetch(self._select_sql(index))
            except asyncpg.PostgresError as e:
                raise StoreError(f"Failed to read source table for '{index.name}': {e}") from e
        return [self._row_to_record(index, row) for row in rows]

    async def fetch_record(self, index: IndexConfig, record_id: str) -> Optional[EmbeddableRecord]:
        async with self._pool.acquire() as conn:
            try:
                row = await conn.fetchrow(self._select_sql(index, by_id=True), str(record_id))
            except asyncpg.PostgresError as e:
                raise StoreError(f"Failed to read source record for '{index.name}': {e}") from e
        return self._row_to_record(index, row) if row is not None else None


# ─────────────────────────────────────────────────────────────────────────────
# Routing Source
# ─────────────────────────────────────────────────────────────────────────────


class RoutingRecordSource(RecordSource):
    """Dispatches each index to the reader for its declared source kind."""

    def __init__(self, sources: dict[SourceKind, RecordSource]):
        self._sources = sources

    def _source_for(self, index: IndexConfig) -> RecordSource:
        source = self._sources.get(index.source.kind)
        if source is None:
            raise ValidationError(
                f"No reader configured for source kind '{index.source.kind.value}' "
                f"(index '{index.name}')"
            )
        return source

    async def fetch_records(self, index: IndexConfig) -> list[EmbeddableRecord]:
        return await self._source_for(index).fetch_records(index)

    async def fetch_record(self, index: IndexConfig, record_id: str) -> Optional[EmbeddableRecord]:
        return await self._source_for(index).fetch_record(index, record_id)

    async def close(self) -> None:
        for source in self._sources.values():
            await source.close()


def create_record_source(settings: Settings, pool: Optional[object] = None) -> RecordSource:
    """
    Build a source that can read every configured index.

    Args:
        settings: Deployment settings
        pool: Shared PgConnectionPool, required when any index reads from postgres
    """
    kinds = {index.source.kind for index in settings.indexes}
    sources: dict[SourceKind, RecordSource] = {}

    if SourceKind.JSONL in kinds:
        sources[SourceKind.JSONL] = JsonlRecordSource(settings.project_root)
    if SourceKind.MEMORY in kinds:
        sources[SourceKind.MEMORY] = InMemoryRecordSource()
    if SourceKind.POSTGRES in kinds:
        if pool is None:
            raise ValidationError("A postgres connection pool is required for postgres sources")
        sources[SourceKind.POSTGRES] = PostgresRecordSource(pool)

    return RoutingRecordSource(sources)
