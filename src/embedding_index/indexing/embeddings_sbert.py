"""
SBERT Embeddings Module - Local embeddings via sentence-transformers.
====================================================================

Runs a sentence-transformers model in-process; no credentials needed.
Encoding is CPU/GPU bound, so each call runs in a worker thread.

Asymmetric retrieval models (e5, bge) expect different prefixes for
stored passages and for queries, e.g. "passage: " and "query: ". Both
are configurable and empty by default.

The loaded model must produce the dimension declared for the index
column; a mismatch is a configuration error, raised on first use.
"""

import asyncio
import threading
from typing import Optional, Sequence

from embedding_index.indexing.embeddings_base import EmbeddingProvider
from embedding_index.shared.errors import ConfigurationError, EmbedError
from embedding_index.shared.logging import get_logger
from embedding_index.shared.schemas import EmbedderKind

logger = get_logger(__name__)


KNOWN_DIMENSIONS = {
    "all-MiniLM-L6-v2": 384,
    "all-MiniLM-L12-v2": 384,
    "all-mpnet-base-v2": 768,
    "multi-qa-MiniLM-L6-cos-v1": 384,
    "intfloat/e5-small-v2": 384,
    "BAAI/bge-small-en-v1.5": 384,
}


def _pick_device(device: str) -> str:
    if device != "auto":
        return device
    import torch

    return "cuda" if torch.cuda.is_available() else "cpu"


class SBERTEmbeddingProvider(EmbeddingProvider):
    """
    Local sentence-transformers embedder.

    Example:
        >>> provider = SBERTEmbeddingProvider(query_prefix="query: ", document_prefix="passage: ",
        ...                                   model_name="intfloat/e5-small-v2")
        >>> vector = await provider.embed_query("trail running shoes")
    """

    def __init__(
        self,
        model_name: str = "all-MiniLM-L6-v2",
        dimensions: Optional[int] = None,
        device: str = "auto",
        normalize: bool = True,
        query_prefix: str = "",
        document_prefix: str = "",
        **retry_options,
    ):
        super().__init__(**retry_options)
        self._model_name = model_name
        self._dimensions = dimensions or KNOWN_DIMENSIONS.get(model_name, 384)
        self._device = device
        self._normalize = normalize
        self._query_prefix = query_prefix
        self._document_prefix = document_prefix

        self._model = None
        self._load_lock = threading.Lock()

    @property
    def kind(self) -> EmbedderKind:
        return EmbedderKind.SBERT

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def _get_model(self):
        # Worker threads may race on the first call
        with self._load_lock:
            if self._model is None:
                self._model = self._load_model()
        return self._model

    def _load_model(self):
        from sentence_transformers import SentenceTransformer

        device = _pick_device(self._device)
        logger.info(f"Loading SBERT model {self._model_name} on {device}")
        model = SentenceTransformer(self._model_name, device=device)

        actual = model.get_sentence_embedding_dimension()
        if actual != self._dimensions:
            raise ConfigurationError(
                f"SBERT model '{self._model_name}' produces {actual}-dimensional vectors, "
                f"but {self._dimensions} is configured"
            )
        return model

    def _encode(self, text: str) -> Sequence[float]:
        vector = self._get_model().encode(
            text,
            convert_to_numpy=True,
            normalize_embeddings=self._normalize,
            show_progress_bar=False,
        )
        return vector.tolist()

    async def _encode_async(self, text: str) -> Sequence[float]:
        try:
            return await asyncio.to_thread(self._encode, text)
        except (OSError, RuntimeError) as e:
            # Model download and device (CUDA) failures
            raise EmbedError(
                f"SBERT model '{self._model_name}' failed: {e}", embedder_id=self.embedder_id
            ) from e

    async def _embed_document(self, text: str) -> Sequence[float]:
        return await self._encode_async(self._document_prefix + text)

    async def _embed_query(self, text: str) -> Sequence[float]:
        return await self._encode_async(self._query_prefix + text)

    def get_info(self) -> dict:
        info = super().get_info()
        info["device"] = str(self._model.device) if self._model is not None else self._device
        if self._query_prefix or self._document_prefix:
            info["prefixes"] = {"query": self._query_prefix, "document": self._document_prefix}
        return info
