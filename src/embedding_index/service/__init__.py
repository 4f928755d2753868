"""
Service Module - The Index Manager.
===================================

- manager: seed / search / single-record indexing over named indexes
- validation: request checks applied before any embedder or store call
"""

from embedding_index.service.manager import (
    EMPTY_TEXT_REASON,
    IndexManager,
    coerce_embedder,
    describe_indexes,
)

__all__ = [
    "EMPTY_TEXT_REASON",
    "IndexManager",
    "coerce_embedder",
    "describe_indexes",
]
