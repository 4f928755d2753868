"""
Embedding Index Service - Provider-agnostic embedding indexes
=============================================================

Embeds the text of domain records (products, documents, clubs) with a
configurable provider, stores the vectors in fixed-dimension columns and
answers top-K cosine nearest-neighbor queries:

- seed: source records → embed → bulk upsert, with a per-record summary
- search: query text → embed → nearest(k) → ordered results or "no matches"

Embedders: Gemini, OpenAI, Ollama, SBERT. Stores: pgvector, ChromaDB, memory.
"""

__version__ = "0.1.0"
__author__ = "Embedding Index Team"
__license__ = "MIT"

# Public API - lazy imports to avoid circular dependencies and speed up startup
__all__ = [
    # Version info
    "__version__",
    "__author__",
    "__license__",
    # Main modules (imported on demand)
    "shared",
    "indexing",
    "service",
    "cli",
]
