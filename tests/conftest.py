"""
Pytest Configuration and Fixtures.
===================================

Shared fixtures for all test modules:
- Stub embedder with fixed vectors per text
- Settings built from dictionaries (memory backend, memory sources)
- In-memory store / source and a ready IndexManager
"""

import asyncio
import math
from pathlib import Path
from typing import Optional, Sequence

import pytest

from embedding_index.indexing.embeddings_base import EmbeddingProvider
from embedding_index.shared.errors import EmbedError
from embedding_index.shared.schemas import EmbedderKind

_ENV_VARS = (
    "GEMINI_API_KEY",
    "OPENAI_API_KEY",
    "OLLAMA_BASE_URL",
    "DATABASE_URL",
    "STORE_BACKEND",
    "DEFAULT_TOP_K",
    "LOG_LEVEL",
)


# ─────────────────────────────────────────────────────────────────────────────
# Stub Embedder
# ─────────────────────────────────────────────────────────────────────────────


def vector_at_distance(distance: float) -> list[float]:
    """3-d unit vector whose cosine distance to [1, 0, 0] is `distance`."""
    cos = 1.0 - distance
    return [cos, math.sqrt(max(0.0, 1.0 - cos * cos)), 0.0]


class StubEmbedder(EmbeddingProvider):
    """
    Deterministic embedder: fixed vector per text, a default otherwise.

    Texts in `fail_on` raise EmbedError; texts in `block_on` wait on
    `gate` (used to suspend a seed run mid-way).
    """

    def __init__(
        self,
        vectors: Optional[dict[str, Sequence[float]]] = None,
        dims: int = 3,
        kind: EmbedderKind = EmbedderKind.SBERT,
        fail_on: Sequence[str] = (),
        block_on: Sequence[str] = (),
        default: Optional[Sequence[float]] = None,
    ):
        super().__init__(max_retries=1, retry_min_wait=0, retry_max_wait=0)
        self.vectors = dict(vectors or {})
        self._dims = dims
        self._kind = kind
        self.fail_on = set(fail_on)
        self.block_on = set(block_on)
        self.default = list(default) if default is not None else [1.0] + [0.0] * (dims - 1)
        self.gate = asyncio.Event()
        self.calls: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.delay = 0.0
        self.closed = False

    @property
    def kind(self) -> EmbedderKind:
        return self._kind

    @property
    def model_name(self) -> str:
        return "stub"

    @property
    def dimensions(self) -> int:
        return self._dims

    async def _embed_document(self, text: str) -> Sequence[float]:
        self.calls.append(text)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if text in self.block_on:
                await self.gate.wait()
            if text in self.fail_on:
                raise EmbedError(f"provider rejected '{text}'", embedder_id=self.embedder_id)
            return self.vectors.get(text, self.default)
        finally:
            self.in_flight -= 1

    async def aclose(self) -> None:
        self.closed = True


# ─────────────────────────────────────────────────────────────────────────────
# Settings Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep developer credentials and overrides out of the tests."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def project_root() -> Path:
    """Get the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def config_path(project_root: Path) -> Path:
    """Get the config file path."""
    return project_root / "config" / "settings.yaml"


@pytest.fixture
def index_definitions() -> list[dict]:
    """Two memory-sourced indexes with 3-dimensional SBERT columns."""
    return [
        {
            "name": "products",
            "source": {"kind": "memory", "display_columns": ["name"]},
            "embedders": {"sbert": 3},
        },
        {
            "name": "documents",
            "source": {"kind": "memory"},
            "embedders": {"sbert": 3},
            "max_text_chars": 20,
            "default_top_k": 2,
        },
    ]


@pytest.fixture
def make_settings(tmp_path: Path, index_definitions: list[dict]):
    """Factory for Settings on the memory backend, with overrides."""
    from embedding_index.shared.config import load_settings

    def _make(**overrides):
        values = {
            "indexes": index_definitions,
            "store": {"backend": "memory"},
            "seed": {"concurrency": 4, "write_batch_size": 64},
        }
        values.update(overrides)
        return load_settings(config_path=tmp_path / "missing.yaml", overrides=values)

    return _make


@pytest.fixture
def settings(make_settings):
    return make_settings()


# ─────────────────────────────────────────────────────────────────────────────
# Manager Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def stub_embedder() -> StubEmbedder:
    return StubEmbedder()


@pytest.fixture
def memory_store():
    from embedding_index.indexing.store_memory import InMemoryVectorStore

    return InMemoryVectorStore()


@pytest.fixture
def memory_source():
    from embedding_index.indexing.sources import InMemoryRecordSource

    return InMemoryRecordSource()


@pytest.fixture
def make_manager(settings, memory_store, memory_source, stub_embedder):
    """Factory for an IndexManager over the in-memory store and source."""
    from embedding_index.service.manager import IndexManager

    def _make(embedder: Optional[StubEmbedder] = None, settings_=None, store=None):
        provider = embedder or stub_embedder
        return IndexManager(
            settings_ or settings,
            store or memory_store,
            memory_source,
            {provider.kind: provider},
        )

    return _make


@pytest.fixture
def manager(make_manager):
    return make_manager()


@pytest.fixture
def sample_records():
    """Five products; record 3 has no description."""
    from embedding_index.shared.schemas import EmbeddableRecord

    return [
        EmbeddableRecord(id=1, text="trail running shoe", attributes={"name": "Trail Runner"}),
        EmbeddableRecord(id=2, text="waterproof jacket", attributes={"name": "Summit Shell"}),
        EmbeddableRecord(id=3, text="", attributes={"name": "Mystery Box"}),
        EmbeddableRecord(id=4, text="family tent", attributes={"name": "Base Camp"}),
        EmbeddableRecord(id=5, text="camp stove", attributes={"name": "Stove Mini"}),
    ]


# ─────────────────────────────────────────────────────────────────────────────
# Pytest Configuration
# ─────────────────────────────────────────────────────────────────────────────


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "requires_api: marks tests that require API keys"
    )
