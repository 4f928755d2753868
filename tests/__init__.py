"""
Tests Package - Unit tests for the Embedding Index Service.
===========================================================

Test modules:
- test_config: Settings, credential checks, schemas, utilities
- test_embeddings: Embedder adapters, retries, factory
- test_vector_store: In-memory, pgvector and Chroma stores
- test_sources: Record sources
- test_manager: Seed and search pipelines
- test_cli: embindex commands

Run tests with:
    pytest tests/
    pytest tests/ -v -m "not slow"
"""
