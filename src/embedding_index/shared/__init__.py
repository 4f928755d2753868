"""
Shared Module - Common utilities, configuration, schemas, errors and logging.
=============================================================================

This module provides foundational components used across all other modules:

- config: Configuration loading and index definitions
- logging: Structured logging setup
- errors: EmbedError / StoreError / ValidationError taxonomy
- schemas: Pydantic data models
- utils: Utility functions (JSONL I/O, truncation, batching)
"""

from embedding_index.shared.config import (
    IndexConfig,
    Settings,
    SourceConfig,
    get_settings,
    load_settings,
)
from embedding_index.shared.errors import (
    ConfigurationError,
    DimensionMismatchError,
    EmbedError,
    IndexServiceError,
    StoreConnectionError,
    StoreError,
    TransientEmbedError,
    ValidationError,
)
from embedding_index.shared.logging import get_logger, setup_logging
from embedding_index.shared.schemas import (
    BulkWriteResult,
    EmbeddableRecord,
    EmbedderKind,
    EmbeddingRecord,
    IndexStats,
    SearchResponse,
    SearchResult,
    SeedFailure,
    SeedSummary,
    SourceKind,
    StoreBackend,
)

__all__ = [
    # Config
    "IndexConfig",
    "Settings",
    "SourceConfig",
    "get_settings",
    "load_settings",
    # Errors
    "ConfigurationError",
    "DimensionMismatchError",
    "EmbedError",
    "IndexServiceError",
    "StoreConnectionError",
    "StoreError",
    "TransientEmbedError",
    "ValidationError",
    # Logging
    "get_logger",
    "setup_logging",
    # Schemas
    "BulkWriteResult",
    "EmbeddableRecord",
    "EmbedderKind",
    "EmbeddingRecord",
    "IndexStats",
    "SearchResponse",
    "SearchResult",
    "SeedFailure",
    "SeedSummary",
    "SourceKind",
    "StoreBackend",
]
