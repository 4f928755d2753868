"""
Indexing Module - Embeddings, vector storage and source records.
================================================================

This module handles embedding generation and vector database operations:

- embeddings_base: Abstract interface for embedding providers
- embeddings_gemini / embeddings_openai / embeddings_ollama / embeddings_sbert:
  provider adapters, selected through EmbedderKind
- vector_store: Abstract vector store and backend factory
- store_pgvector / store_chroma / store_memory: store backends
- sources: Readers for the records an index is built from

Provider adapters and store backends are imported lazily by the
factories, so SDKs for unused providers are never loaded.
"""

from embedding_index.indexing.embeddings_base import (
    EmbeddingProvider,
    build_embedder,
    build_embedders,
)
from embedding_index.indexing.sources import (
    InMemoryRecordSource,
    JsonlRecordSource,
    PostgresRecordSource,
    RecordSource,
    create_record_source,
)
from embedding_index.indexing.store_memory import InMemoryVectorStore, cosine_distance
from embedding_index.indexing.vector_store import VectorStore, column_name, create_vector_store

__all__ = [
    # Embedders
    "EmbeddingProvider",
    "build_embedder",
    "build_embedders",
    # Vector Store
    "VectorStore",
    "InMemoryVectorStore",
    "column_name",
    "cosine_distance",
    "create_vector_store",
    # Sources
    "RecordSource",
    "InMemoryRecordSource",
    "JsonlRecordSource",
    "PostgresRecordSource",
    "create_record_source",
]
