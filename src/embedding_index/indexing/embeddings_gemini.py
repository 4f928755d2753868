"""
Gemini Embeddings Module - Google GenAI embeddings API.
=======================================================

Provides embeddings using Google's Gemini API through the async client
of the google-genai SDK. Requires a GEMINI_API_KEY from Google AI Studio.

Available models:
- text-embedding-004: 768 dimensions (recommended)
- embedding-001: Legacy model, 768 dimensions
"""

from typing import Optional, Sequence

import httpx
from google import genai
from google.genai import errors as genai_errors

from embedding_index.indexing.embeddings_base import EmbeddingProvider
from embedding_index.shared.errors import ConfigurationError, EmbedError, TransientEmbedError
from embedding_index.shared.logging import get_logger
from embedding_index.shared.schemas import EmbedderKind

logger = get_logger(__name__)


# Model dimension mapping
GEMINI_MODEL_DIMENSIONS = {
    "text-embedding-004": 768,
    "embedding-001": 768,
}


class GeminiEmbeddingProvider(EmbeddingProvider):
    """
    Gemini embedding provider using the Google GenAI SDK.

    Documents are embedded with the RETRIEVAL_DOCUMENT task type and
    queries with RETRIEVAL_QUERY.

    Example:
        >>> provider = GeminiEmbeddingProvider(api_key="...")
        >>> embedding = await provider.embed("Wireless mechanical keyboard")
        >>> print(len(embedding))  # 768
    """

    def __init__(
        self,
        api_key: str,
        model_name: str = "text-embedding-004",
        dimensions: Optional[int] = None,
        task_type: str = "RETRIEVAL_DOCUMENT",
        query_task_type: str = "RETRIEVAL_QUERY",
        client: Optional[genai.Client] = None,
        **retry_options,
    ):
        """
        Initialize the Gemini provider.

        Args:
            api_key: Gemini API key
            model_name: Embedding model name
            dimensions: Declared dimensions (defaults from the model table)
            task_type: Task type for document embeddings
            query_task_type: Task type for query embeddings
            client: Pre-built client (tests)
        """
        super().__init__(**retry_options)

        if not api_key and client is None:
            raise ConfigurationError(
                "Gemini API key is required. Set GEMINI_API_KEY environment variable."
            )

        self._api_key = api_key
        self._model_name = model_name
        self._task_type = task_type
        self._query_task_type = query_task_type
        self._dimensions = dimensions or GEMINI_MODEL_DIMENSIONS.get(model_name, 768)
        self._client = client
        self._owns_client = client is None

        logger.debug(
            f"Gemini provider configured: model={self._model_name}, "
            f"task_type={self._task_type}"
        )

    @property
    def kind(self) -> EmbedderKind:
        return EmbedderKind.GEMINI

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def dimensions(self) -> int:
        return self._dimensions

    @property
    def client(self) -> genai.Client:
        """Lazy create and return the Gemini client."""
        if self._client is None:
            self._client = genai.Client(api_key=self._api_key)
            logger.info(f"Gemini client initialized for model: {self._model_name}")
        return self._client

    async def _embed_document(self, text: str) -> Sequence[float]:
        return await self._embed(text, self._task_type)

    async def _embed_query(self, text: str) -> Sequence[float]:
        return await self._embed(text, self._query_task_type)

    async def _embed(self, text: str, task_type: str) -> Sequence[float]:
        try:
            result = await self.client.aio.models.embed_content(
                model=self._model_name,
                contents=text,
                config={"task_type": task_type},
            )
        except genai_errors.APIError as e:
            if e.code == 429 or isinstance(e, genai_errors.ServerError):
                raise TransientEmbedError(
                    f"Gemini embedding failed ({e.code}): {e}", embedder_id=self.embedder_id
                ) from e
            raise EmbedError(
                f"Gemini embedding failed ({e.code}): {e}", embedder_id=self.embedder_id
            ) from e
        except httpx.TransportError as e:
            raise TransientEmbedError(
                f"Gemini unreachable: {e}", embedder_id=self.embedder_id
            ) from e

        if not result.embeddings or not result.embeddings[0].values:
            raise EmbedError("Gemini returned no embedding", embedder_id=self.embedder_id)

        return result.embeddings[0].values

    def get_info(self) -> dict:
        info = super().get_info()
        info["task_type"] = self._task_type
        info["api_key_set"] = bool(self._api_key)
        return info

    async def aclose(self) -> None:
        """Close the async transport of a client this provider created."""
        if self._owns_client and self._client is not None:
            await self._client.aio.aclose()
            self._client = None
