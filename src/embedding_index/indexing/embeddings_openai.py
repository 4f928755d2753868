"""
OpenAI Embeddings Module - OpenAI embeddings API.
=================================================

Provides embeddings through the async OpenAI client. Requires an
OPENAI_API_KEY. A custom base_url makes it usable against compatible
gateways (Azure-style proxies, local servers).
"""

from typing import Optional, Sequence

import openai
from openai import AsyncOpenAI

from embedding_index.indexing.embeddings_base import EmbeddingProvider
from embedding_index.shared.errors import ConfigurationError, EmbedError, TransientEmbedError
from embedding_index.shared.logging import get_logger
from embedding_index.shared.schemas import EmbedderKind

logger = get_logger(__name__)


OPENAI_MODEL_DIMENSIONS = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
}

_TRANSIENT_ERRORS = (
    openai.APIConnectionError,
    openai.APITimeoutError,
    openai.RateLimitError,
    openai.InternalServerError,
)


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """
    OpenAI embedding provider.

    text-embedding-3 models accept a target dimension, so a 3-large
    model can be stored in a smaller column when configured that way.
    """

    def __init__(
        self,
        api_key: str,
        model_name: str = "text-embedding-3-small",
        dimensions: Optional[int] = None,
        base_url: Optional[str] = None,
        timeout: float = 30.0,
        client: Optional[AsyncOpenAI] = None,
        **retry_options,
    ):
        super().__init__(**retry_options)

        if not api_key and client is None:
            raise ConfigurationError(
                "OpenAI API key is required. Set OPENAI_API_KEY environment variable."
            )

        self._model_name = model_name
        self._dimensions = dimensions or OPENAI_MODEL_DIMENSIONS.get(model_name, 1536)
        # Retries are handled by tenacity, not by the SDK
        self._client = client or AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout,
            max_retries=0,
        )

        logger.debug(f"OpenAI provider configured: model={self._model_name}")

    @property
    def kind(self) -> EmbedderKind:
        return EmbedderKind.OPENAI

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def dimensions(self) -> int:
        return self._dimensions

    @property
    def _supports_dimensions(self) -> bool:
        return self._model_name.startswith("text-embedding-3")

    async def _embed_document(self, text: str) -> Sequence[float]:
        kwargs = {"model": self._model_name, "input": text}
        if self._supports_dimensions:
            kwargs["dimensions"] = self._dimensions

        try:
            response = await self._client.embeddings.create(**kwargs)
        except _TRANSIENT_ERRORS as e:
            raise TransientEmbedError(
                f"OpenAI embedding failed: {e}", embedder_id=self.embedder_id
            ) from e
        except openai.OpenAIError as e:
            raise EmbedError(
                f"OpenAI embedding failed: {e}", embedder_id=self.embedder_id
            ) from e

        if not response.data:
            raise EmbedError("OpenAI returned no embedding", embedder_id=self.embedder_id)

        return response.data[0].embedding

    async def aclose(self) -> None:
        await self._client.close()
