"""
Tests for Vector Stores.
========================

Tests for:
- cosine_distance
- InMemoryVectorStore: round-trip, ranking, ties, dimension checks
- PgVectorStore: SQL builders and row-level error handling (mocked asyncpg)
- ChromaVectorStore: local persistent collections
"""

import asyncio
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock, Mock

import pytest


def _record(record_id, vector, embedder="sbert", **attributes):
    from embedding_index.shared.schemas import EmbeddingRecord

    return EmbeddingRecord(
        record_id=str(record_id),
        vector=vector,
        embedder_id=embedder,
        text=f"text {record_id}",
        attributes=attributes,
    )


# ─────────────────────────────────────────────────────────────────────────────
# Cosine Distance Tests
# ─────────────────────────────────────────────────────────────────────────────


class TestCosineDistance:
    """Tests for cosine_distance()."""

    def test_identical_vectors(self):
        from embedding_index.indexing.store_memory import cosine_distance

        assert cosine_distance([0.3, 0.4, 0.5], [0.3, 0.4, 0.5]) == pytest.approx(0.0, abs=1e-9)

    def test_orthogonal_vectors(self):
        from embedding_index.indexing.store_memory import cosine_distance

        assert cosine_distance([1.0, 0.0], [0.0, 1.0]) == pytest.approx(1.0)

    def test_opposite_vectors(self):
        from embedding_index.indexing.store_memory import cosine_distance

        assert cosine_distance([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(2.0)

    def test_scale_invariant(self):
        from embedding_index.indexing.store_memory import cosine_distance

        assert cosine_distance([1.0, 1.0], [5.0, 5.0]) == pytest.approx(0.0, abs=1e-9)

    def test_zero_vector(self):
        """A zero vector has no direction; its distance is 1.0."""
        from embedding_index.indexing.store_memory import cosine_distance

        assert cosine_distance([0.0, 0.0], [1.0, 0.0]) == 1.0


# ─────────────────────────────────────────────────────────────────────────────
# In-Memory Store Tests
# ─────────────────────────────────────────────────────────────────────────────


class TestInMemoryVectorStore:
    """Tests for InMemoryVectorStore."""

    def test_round_trip(self, settings, memory_store):
        """upsert(id, v) then nearest(v, 1) returns id at distance 0."""
        from embedding_index.shared.schemas import EmbedderKind

        index = settings.get_index("products")
        asyncio.run(memory_store.upsert(index, _record(1, [0.2, 0.5, 0.1], name="A")))
        asyncio.run(memory_store.upsert(index, _record(2, [0.9, 0.0, 0.3], name="B")))

        hits = asyncio.run(memory_store.nearest(index, EmbedderKind.SBERT, [0.2, 0.5, 0.1], 1))

        assert len(hits) == 1
        assert hits[0].record_id == "1"
        assert hits[0].distance == pytest.approx(0.0, abs=1e-6)
        assert hits[0].attributes == {"name": "A"}

    def test_ties_broken_by_insertion_order(self, settings, memory_store):
        """Identical vectors come back in the order they were first written."""
        from embedding_index.shared.schemas import EmbedderKind

        index = settings.get_index("products")
        for record_id in ("z", "a", "m"):
            asyncio.run(memory_store.upsert(index, _record(record_id, [1.0, 0.0, 0.0])))

        hits = asyncio.run(memory_store.nearest(index, EmbedderKind.SBERT, [1.0, 0.0, 0.0], 3))

        assert [h.record_id for h in hits] == ["z", "a", "m"]

    def test_overwrite_keeps_position_and_count(self, settings, memory_store):
        """Upsert is idempotent per (record, embedder)."""
        from embedding_index.shared.schemas import EmbedderKind

        index = settings.get_index("products")
        asyncio.run(memory_store.upsert(index, _record(1, [1.0, 0.0, 0.0])))
        asyncio.run(memory_store.upsert(index, _record(2, [1.0, 0.0, 0.0])))
        asyncio.run(memory_store.upsert(index, _record(1, [1.0, 0.0, 0.0])))

        hits = asyncio.run(memory_store.nearest(index, EmbedderKind.SBERT, [1.0, 0.0, 0.0], 5))

        assert asyncio.run(memory_store.count(index, EmbedderKind.SBERT)) == 2
        assert [h.record_id for h in hits] == ["1", "2"]

    def test_limit_caps_results(self, settings, memory_store):
        from embedding_index.shared.schemas import EmbedderKind

        index = settings.get_index("products")
        records = [_record(i, [1.0, float(i), 0.0]) for i in range(3)]
        result = asyncio.run(memory_store.bulk_upsert(index, records))

        hits = asyncio.run(memory_store.nearest(index, EmbedderKind.SBERT, [1.0, 0.0, 0.0], 100))

        assert result.written == 3
        assert len(hits) == 3
        assert [h.record_id for h in hits] == ["0", "1", "2"]

    def test_dimension_mismatch_is_row_failure(self, settings, memory_store):
        """A vector sized differently from the column is reported, others are written."""
        index = settings.get_index("products")

        result = asyncio.run(
            memory_store.bulk_upsert(index, [_record(1, [1.0, 0.0, 0.0]), _record(2, [1.0, 0.0])])
        )

        assert result.written == 1
        assert result.failed[0].record_id == "2"
        assert "expected 3 dimensions" in result.failed[0].reason

    def test_undeclared_embedder_is_row_failure(self, settings, memory_store):
        index = settings.get_index("products")

        result = asyncio.run(memory_store.bulk_upsert(index, [_record(1, [1.0, 0.0, 0.0], embedder="gemini")]))

        assert result.written == 0
        assert "no vector column" in result.failed[0].reason

    def test_single_upsert_raises_store_error(self, settings, memory_store):
        from embedding_index.shared.errors import StoreError

        index = settings.get_index("products")

        with pytest.raises(StoreError):
            asyncio.run(memory_store.upsert(index, _record(1, [1.0])))

    def test_invalid_limit(self, settings, memory_store):
        from embedding_index.shared.errors import ValidationError
        from embedding_index.shared.schemas import EmbedderKind

        index = settings.get_index("products")

        with pytest.raises(ValidationError):
            asyncio.run(memory_store.nearest(index, EmbedderKind.SBERT, [1.0, 0.0, 0.0], 0))

    def test_empty_index(self, settings, memory_store):
        from embedding_index.shared.schemas import EmbedderKind

        index = settings.get_index("products")

        assert asyncio.run(memory_store.nearest(index, EmbedderKind.SBERT, [1.0, 0.0, 0.0], 5)) == []

    def test_clear(self, settings, memory_store):
        from embedding_index.shared.schemas import EmbedderKind

        index = settings.get_index("products")
        asyncio.run(memory_store.bulk_upsert(index, [_record(1, [1.0, 0.0, 0.0]), _record(2, [0.0, 1.0, 0.0])]))

        assert asyncio.run(memory_store.clear(index, EmbedderKind.SBERT)) == 2
        assert asyncio.run(memory_store.count(index, EmbedderKind.SBERT)) == 0


# ─────────────────────────────────────────────────────────────────────────────
# pgvector Store Tests
# ─────────────────────────────────────────────────────────────────────────────


class _FakePool:
    """Stand-in for PgConnectionPool handing out one mocked connection."""

    def __init__(self, conn):
        self.conn = conn
        self.closed = False

    @asynccontextmanager
    async def acquire(self):
        yield self.conn

    async def close(self):
        self.closed = True


def _mock_connection():
    conn = MagicMock()
    conn.execute = AsyncMock(return_value="INSERT 0 1")
    conn.fetch = AsyncMock(return_value=[])
    conn.fetchval = AsyncMock(return_value=0)
    conn.is_closed = Mock(return_value=False)
    return conn


class TestPgVectorSql:
    """Tests for the SQL built by the pgvector store."""

    def test_quote_ident(self):
        from embedding_index.indexing.store_pgvector import quote_ident

        assert quote_ident("products_embeddings") == '"products_embeddings"'
        assert quote_ident('we"ird') == '"we""ird"'

    def test_nearest_sql_orders_by_cosine_then_seq(self):
        from embedding_index.indexing.store_pgvector import build_nearest_sql

        sql = build_nearest_sql("products_embeddings", '"embedding_gemini"')

        assert '"embedding_gemini" <=> $1' in sql
        assert "ORDER BY \"embedding_gemini\" <=> $1, seq" in sql
        assert sql.endswith("LIMIT $2")
        assert '"embedding_gemini" IS NOT NULL' in sql

    def test_upsert_sql_only_touches_one_column(self):
        from embedding_index.indexing.store_pgvector import build_upsert_sql

        sql = build_upsert_sql("clubs_embeddings", '"embedding_ollama"')

        assert "ON CONFLICT (id) DO UPDATE" in sql
        assert '"embedding_ollama" = EXCLUDED."embedding_ollama"' in sql
        assert "embedding_gemini" not in sql

    def test_column_name(self):
        from embedding_index.indexing.vector_store import column_name
        from embedding_index.shared.schemas import EmbedderKind

        assert column_name(EmbedderKind.OLLAMA) == "embedding_ollama"


class TestPgVectorStore:
    """Tests for PgVectorStore with a mocked connection."""

    def test_ensure_index_declares_vector_columns(self, make_settings):
        from embedding_index.indexing.store_pgvector import PgVectorStore

        settings = make_settings(
            indexes=[
                {
                    "name": "clubs",
                    "source": {"kind": "memory"},
                    "embedders": {"ollama": 1024, "gemini": 768},
                }
            ]
        )
        conn = _mock_connection()
        store = PgVectorStore(_FakePool(conn))

        asyncio.run(store.ensure_index(settings.get_index("clubs")))

        statements = [c.args[0] for c in conn.execute.call_args_list]
        assert any('CREATE TABLE IF NOT EXISTS "clubs_embeddings"' in s for s in statements)
        assert any('"embedding_ollama" vector(1024)' in s for s in statements)
        assert any('"embedding_gemini" vector(768)' in s for s in statements)

    def test_bulk_upsert_records_row_failures(self, settings):
        """A rejected row is recorded and the rest of the batch is written."""
        import asyncpg

        from embedding_index.indexing.store_pgvector import PgVectorStore

        conn = _mock_connection()
        conn.execute = AsyncMock(
            side_effect=[
                "INSERT 0 1",
                asyncpg.exceptions.DataError("expected 3 dimensions, not 2"),
                "INSERT 0 1",
            ]
        )
        store = PgVectorStore(_FakePool(conn))
        index = settings.get_index("products")

        result = asyncio.run(
            store.bulk_upsert(
                index,
                [_record(1, [1.0, 0.0, 0.0]), _record(2, [1.0, 0.0]), _record(3, [0.0, 1.0, 0.0])],
            )
        )

        assert result.written == 2
        assert [f.record_id for f in result.failed] == ["2"]

    def test_bulk_upsert_connection_loss_raises(self, settings):
        import asyncpg

        from embedding_index.indexing.store_pgvector import PgVectorStore
        from embedding_index.shared.errors import StoreConnectionError

        conn = _mock_connection()
        conn.execute = AsyncMock(side_effect=asyncpg.exceptions.InterfaceError("connection is closed"))
        conn.is_closed = Mock(return_value=True)
        store = PgVectorStore(_FakePool(conn))

        with pytest.raises(StoreConnectionError):
            asyncio.run(store.bulk_upsert(settings.get_index("products"), [_record(1, [1.0, 0.0, 0.0])]))

    def test_nearest_maps_rows(self, settings):
        from embedding_index.indexing.store_pgvector import PgVectorStore
        from embedding_index.shared.schemas import EmbedderKind

        conn = _mock_connection()
        conn.fetch = AsyncMock(
            return_value=[
                {"id": "7", "attributes": '{"name": "Porto"}', "distance": 0.05},
                {"id": "3", "attributes": {"name": "Braga"}, "distance": 0.2},
            ]
        )
        store = PgVectorStore(_FakePool(conn))

        hits = asyncio.run(
            store.nearest(settings.get_index("products"), EmbedderKind.SBERT, [1.0, 0.0, 0.0], 2)
        )

        assert [h.record_id for h in hits] == ["7", "3"]
        assert hits[0].attributes == {"name": "Porto"}
        assert conn.fetch.call_args.args[2] == 2

    def test_zero_vector_distance_matches_memory_store(self, settings):
        """pgvector reports NaN for a zero-length vector; it comes back as 1.0."""
        from embedding_index.indexing.store_memory import cosine_distance
        from embedding_index.indexing.store_pgvector import PgVectorStore
        from embedding_index.shared.schemas import EmbedderKind

        conn = _mock_connection()
        conn.fetch = AsyncMock(
            return_value=[
                {"id": "1", "attributes": {}, "distance": float("nan")},
                {"id": "2", "attributes": {}, "distance": 1.0000001},
            ]
        )
        store = PgVectorStore(_FakePool(conn))

        hits = asyncio.run(
            store.nearest(settings.get_index("products"), EmbedderKind.SBERT, [0.0, 0.0, 0.0], 2)
        )

        assert [h.distance for h in hits] == [1.0, 1.0000001]
        assert hits[0].distance == cosine_distance([0.0, 0.0, 0.0], [1.0, 0.0, 0.0])

    def test_finite_distance_bounds(self):
        from embedding_index.indexing.vector_store import finite_distance

        assert finite_distance(float("nan")) == 1.0
        assert finite_distance(None) == 1.0
        assert finite_distance(-1e-7) == 0.0
        assert finite_distance(2.0000001) == 2.0
        assert finite_distance(0.25) == 0.25

    def test_nearest_missing_table_is_empty(self, settings):
        """A never-seeded index has no table yet; that is an empty result."""
        import asyncpg

        from embedding_index.indexing.store_pgvector import PgVectorStore
        from embedding_index.shared.schemas import EmbedderKind

        conn = _mock_connection()
        conn.fetch = AsyncMock(
            side_effect=asyncpg.exceptions.UndefinedTableError('relation "products_embeddings" does not exist')
        )
        store = PgVectorStore(_FakePool(conn))

        hits = asyncio.run(
            store.nearest(settings.get_index("products"), EmbedderKind.SBERT, [1.0, 0.0, 0.0], 5)
        )

        assert hits == []

    def test_clear_parses_command_tag(self, settings):
        from embedding_index.indexing.store_pgvector import PgVectorStore
        from embedding_index.shared.schemas import EmbedderKind

        conn = _mock_connection()
        conn.execute = AsyncMock(return_value="UPDATE 12")
        store = PgVectorStore(_FakePool(conn))

        assert asyncio.run(store.clear(settings.get_index("products"), EmbedderKind.SBERT)) == 12

    def test_pool_requires_dsn(self):
        from embedding_index.indexing.store_pgvector import PgConnectionPool
        from embedding_index.shared.errors import ConfigurationError

        with pytest.raises(ConfigurationError):
            PgConnectionPool("")


# ─────────────────────────────────────────────────────────────────────────────
# Chroma Store Tests
# ─────────────────────────────────────────────────────────────────────────────


@pytest.mark.slow
class TestChromaVectorStore:
    """Tests for ChromaVectorStore on a temporary directory."""

    def test_nearest_orders_by_distance(self, settings, tmp_path):
        from embedding_index.indexing.store_chroma import ChromaVectorStore
        from embedding_index.shared.schemas import EmbedderKind

        store = ChromaVectorStore(tmp_path / "chroma")
        index = settings.get_index("products")
        result = asyncio.run(
            store.bulk_upsert(
                index,
                [
                    _record("far", [0.0, 1.0, 0.0], name="Far"),
                    _record("near", [1.0, 0.1, 0.0], name="Near"),
                ],
            )
        )

        hits = asyncio.run(store.nearest(index, EmbedderKind.SBERT, [1.0, 0.0, 0.0], 5))

        assert result.written == 2
        assert [h.record_id for h in hits] == ["near", "far"]
        assert hits[0].attributes == {"name": "Near"}

    def test_empty_collection(self, settings, tmp_path):
        from embedding_index.indexing.store_chroma import ChromaVectorStore
        from embedding_index.shared.schemas import EmbedderKind

        store = ChromaVectorStore(tmp_path / "chroma")

        hits = asyncio.run(
            store.nearest(settings.get_index("products"), EmbedderKind.SBERT, [1.0, 0.0, 0.0], 5)
        )

        assert hits == []

    def test_dimension_mismatch_is_row_failure(self, settings, tmp_path):
        from embedding_index.indexing.store_chroma import ChromaVectorStore

        store = ChromaVectorStore(tmp_path / "chroma")

        result = asyncio.run(store.bulk_upsert(settings.get_index("products"), [_record(1, [1.0, 0.0])]))

        assert result.written == 0
        assert "expected 3 dimensions" in result.failed[0].reason
