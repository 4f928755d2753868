"""
Schemas Module - Pydantic data models for the application.
==========================================================

Defines the data contracts shared by embedders, stores and the
Index Manager:
- Source records and their derived embeddings
- Search results and responses
- Seed summaries and bulk write results
"""

import math
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, computed_field, field_validator


# ─────────────────────────────────────────────────────────────────────────────
# Enums
# ─────────────────────────────────────────────────────────────────────────────


class EmbedderKind(str, Enum):
    """Supported embedding providers."""

    GEMINI = "gemini"
    OPENAI = "openai"
    OLLAMA = "ollama"
    SBERT = "sbert"


class StoreBackend(str, Enum):
    """Supported vector store backends."""

    POSTGRES = "postgres"
    CHROMA = "chroma"
    MEMORY = "memory"


class SourceKind(str, Enum):
    """Where an index reads its source records from."""

    POSTGRES = "postgres"
    JSONL = "jsonl"
    MEMORY = "memory"


# ─────────────────────────────────────────────────────────────────────────────
# Record Models
# ─────────────────────────────────────────────────────────────────────────────


class EmbeddableRecord(BaseModel):
    """
    A source entity to be indexed (a product, a document, a club).

    Only `text` is embedded. `attributes` are display fields returned
    alongside search results.
    """

    id: str = Field(..., description="Stable identifier assigned by the source store")
    text: Optional[str] = Field(default=None, description="Text used to derive the embedding")
    attributes: dict[str, Any] = Field(default_factory=dict)

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> str:
        """Source stores use ints and UUIDs; the index keys on strings."""
        if v is None:
            raise ValueError("record id is required")
        return str(v)

    @property
    def has_text(self) -> bool:
        return bool(self.text and self.text.strip())


class EmbeddingRecord(BaseModel):
    """
    The derived artifact: one vector for one record from one embedder.

    A record either has a complete vector or none; partially written
    vectors are never produced.
    """

    record_id: str
    vector: list[float]
    embedder_id: str
    text: Optional[str] = None
    attributes: dict[str, Any] = Field(default_factory=dict)

    @field_validator("vector")
    @classmethod
    def validate_vector(cls, v: list[float]) -> list[float]:
        if not v:
            raise ValueError("embedding vector is empty")
        if not all(math.isfinite(x) for x in v):
            raise ValueError("embedding vector contains non-finite values")
        return v

    @property
    def dimensions(self) -> int:
        return len(self.vector)


# ─────────────────────────────────────────────────────────────────────────────
# Search Models
# ─────────────────────────────────────────────────────────────────────────────


class SearchResult(BaseModel):
    """A single nearest-neighbor hit. Lower distance means more similar."""

    record_id: str
    distance: float = Field(..., description="Cosine distance in [0, 2]")
    attributes: dict[str, Any] = Field(default_factory=dict)

    @property
    def similarity(self) -> float:
        return 1.0 - self.distance


class SearchResponse(BaseModel):
    """Ordered search results for one query against one index."""

    index: str
    embedder_id: str
    query: str
    k: int
    results: list[SearchResult] = Field(default_factory=list)

    @computed_field
    @property
    def no_matches(self) -> bool:
        """True when the search succeeded but nothing was found."""
        return not self.results

    @computed_field
    @property
    def message(self) -> Optional[str]:
        if self.no_matches:
            return f"No matches found in index '{self.index}' for this query"
        return None


# ─────────────────────────────────────────────────────────────────────────────
# Seed Models
# ─────────────────────────────────────────────────────────────────────────────


class SeedFailure(BaseModel):
    """A record that could not be indexed, and why."""

    record_id: str
    reason: str


class BulkWriteResult(BaseModel):
    """Outcome of a bulk upsert. Partial success is expected."""

    written: int = 0
    failed: list[SeedFailure] = Field(default_factory=list)


class SeedSummary(BaseModel):
    """Outcome of a seed run."""

    index: str
    embedder_id: str
    attempted: int = 0
    succeeded: int = 0
    failed: list[SeedFailure] = Field(default_factory=list)
    duration_seconds: float = 0.0

    @computed_field
    @property
    def failed_count(self) -> int:
        return len(self.failed)

    @property
    def is_complete(self) -> bool:
        return self.succeeded == self.attempted


class IndexStats(BaseModel):
    """Vector count for one index and embedder."""

    index: str
    embedder_id: str
    dimensions: int
    count: int
