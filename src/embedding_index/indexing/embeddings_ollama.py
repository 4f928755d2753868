"""
Ollama Embeddings Module - Local embeddings via an Ollama server.
=================================================================

Calls the Ollama /api/embed endpoint over HTTP. All inference runs on
the Ollama host; no API key is needed.

Prerequisite:
    ollama pull mxbai-embed-large
    ollama serve
"""

from typing import Optional, Sequence

import httpx

from embedding_index.indexing.embeddings_base import EmbeddingProvider
from embedding_index.shared.errors import EmbedError, TransientEmbedError
from embedding_index.shared.logging import get_logger
from embedding_index.shared.schemas import EmbedderKind

logger = get_logger(__name__)


OLLAMA_MODEL_DIMENSIONS = {
    "mxbai-embed-large": 1024,
    "nomic-embed-text": 768,
    "all-minilm": 384,
    "bge-m3": 1024,
}

EMBED_PATH = "/api/embed"


class OllamaEmbeddingProvider(EmbeddingProvider):
    """
    Ollama embedding provider.

    Example:
        >>> provider = OllamaEmbeddingProvider(base_url="http://localhost:11434")
        >>> embedding = await provider.embed("A football club from Madrid")
        >>> print(len(embedding))  # 1024
    """

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model_name: str = "mxbai-embed-large",
        dimensions: Optional[int] = None,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
        **retry_options,
    ):
        super().__init__(**retry_options)

        self._base_url = base_url.rstrip("/")
        self._model_name = model_name
        self._dimensions = dimensions or OLLAMA_MODEL_DIMENSIONS.get(model_name, 1024)
        self._client = client or httpx.AsyncClient(base_url=self._base_url, timeout=timeout)

        logger.debug(f"Ollama provider configured: model={self._model_name}, url={self._base_url}")

    @property
    def kind(self) -> EmbedderKind:
        return EmbedderKind.OLLAMA

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def dimensions(self) -> int:
        return self._dimensions

    async def _embed_document(self, text: str) -> Sequence[float]:
        try:
            response = await self._client.post(
                EMBED_PATH,
                json={"model": self._model_name, "input": text},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status == 429 or status >= 500:
                raise TransientEmbedError(
                    f"Ollama returned {status}", embedder_id=self.embedder_id
                ) from e
            raise EmbedError(
                f"Ollama returned {status}: {e.response.text[:200]}",
                embedder_id=self.embedder_id,
            ) from e
        except httpx.TransportError as e:
            raise TransientEmbedError(
                f"Ollama unreachable at {self._base_url}: {e}", embedder_id=self.embedder_id
            ) from e

        payload = response.json()
        embeddings = payload.get("embeddings")
        if not embeddings or not embeddings[0]:
            raise EmbedError(
                f"Ollama response missing 'embeddings': {str(payload)[:200]}",
                embedder_id=self.embedder_id,
            )

        return embeddings[0]

    async def aclose(self) -> None:
        await self._client.aclose()

    def get_info(self) -> dict:
        info = super().get_info()
        info["base_url"] = self._base_url
        return info
