"""
Embeddings Base Module - Abstract interface for embedding providers.
===================================================================

Defines the abstract base class for embedding providers, enabling
provider-agnostic seeding and search. Providers are selected through
the closed EmbedderKind enum and built from explicit settings; nothing
is looked up by string at call time.
"""

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Iterable, Optional, Sequence

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from embedding_index.shared.config import Settings
from embedding_index.shared.errors import EmbedError, TransientEmbedError, ValidationError
from embedding_index.shared.logging import get_logger
from embedding_index.shared.schemas import EmbedderKind

logger = get_logger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# Abstract Base Class
# ─────────────────────────────────────────────────────────────────────────────


class EmbeddingProvider(ABC):
    """
    Abstract base class for embedding providers.

    Implementations must provide:
    - _embed_document(): one provider call for one document text
    - kind / model_name / dimensions

    The public coroutines embed() and embed_query() reject empty text,
    retry transient failures with exponential backoff and normalize the
    provider output to a list of floats.
    """

    def __init__(
        self,
        *,
        max_retries: int = 3,
        retry_min_wait: float = 1.0,
        retry_max_wait: float = 10.0,
    ):
        self._max_retries = max(1, max_retries)
        self._retry_min_wait = retry_min_wait
        self._retry_max_wait = retry_max_wait

    @property
    @abstractmethod
    def kind(self) -> EmbedderKind:
        """Get the embedder kind."""
        pass

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Get the model name being used."""
        pass

    @property
    @abstractmethod
    def dimensions(self) -> int:
        """Get the embedding vector dimensions."""
        pass

    @property
    def embedder_id(self) -> str:
        """Identifier stored with every vector this provider produces."""
        return self.kind.value

    @abstractmethod
    async def _embed_document(self, text: str) -> Sequence[float]:
        """Call the provider once for a document text."""
        pass

    async def _embed_query(self, text: str) -> Sequence[float]:
        """
        Call the provider once for a query text.

        Some providers use different task types for queries vs documents.
        Default implementation embeds it as a document.
        """
        return await self._embed_document(text)

    async def embed(self, text: str) -> list[float]:
        """
        Embed a document text.

        Raises:
            EmbedError: Empty input or a provider failure that survived retries
        """
        self._require_text(text)
        vector = await self._with_retry(self._embed_document, text)
        return [float(x) for x in vector]

    async def embed_query(self, text: str) -> list[float]:
        """Embed a search query."""
        self._require_text(text)
        vector = await self._with_retry(self._embed_query, text)
        return [float(x) for x in vector]

    async def is_available(self) -> bool:
        """Check if the provider answers with a vector of the declared size."""
        try:
            vector = await self.embed("test")
            return len(vector) == self.dimensions
        except EmbedError as e:
            logger.warning(f"Provider {self.embedder_id} not available: {e}")
            return False

    async def aclose(self) -> None:
        """Release network clients. Default: nothing to release."""

    def get_info(self) -> dict[str, Any]:
        """Get provider information."""
        return {
            "provider": self.embedder_id,
            "model": self.model_name,
            "dimensions": self.dimensions,
        }

    # ─────────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────────

    def _require_text(self, text: Optional[str]) -> None:
        if not text or not text.strip():
            raise EmbedError(
                "Cannot embed empty text",
                embedder_id=self.embedder_id,
                retryable=False,
            )

    async def _with_retry(
        self,
        call: Callable[[str], Awaitable[Sequence[float]]],
        text: str,
    ) -> Sequence[float]:
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(TransientEmbedError),
            stop=stop_after_attempt(self._max_retries),
            wait=wait_exponential(
                multiplier=self._retry_min_wait,
                min=self._retry_min_wait,
                max=self._retry_max_wait,
            ),
            before_sleep=self._log_retry,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await call(text)
        raise EmbedError("retry loop exited without a result", embedder_id=self.embedder_id)

    def _log_retry(self, retry_state: Any) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            f"{self.embedder_id}: transient failure (attempt {retry_state.attempt_number}"
            f"/{self._max_retries}): {exc}"
        )


# ─────────────────────────────────────────────────────────────────────────────
# Provider Factory
# ─────────────────────────────────────────────────────────────────────────────


def build_embedder(kind: EmbedderKind, settings: Settings) -> EmbeddingProvider:
    """
    Build the adapter for an embedder kind from explicit settings.

    Args:
        kind: Embedder kind
        settings: Deployment settings carrying credentials and model config

    Returns:
        EmbeddingProvider instance

    Raises:
        ValidationError: If kind is not a supported embedder

    Example:
        >>> provider = build_embedder(EmbedderKind.OLLAMA, settings)
        >>> vector = await provider.embed("Barcelona football club")
    """
    cfg = settings.embeddings
    retry = {
        "max_retries": cfg.max_retries,
        "retry_min_wait": cfg.retry_min_wait,
        "retry_max_wait": cfg.retry_max_wait,
    }

    provider: EmbeddingProvider

    if kind == EmbedderKind.GEMINI:
        from embedding_index.indexing.embeddings_gemini import GeminiEmbeddingProvider

        provider = GeminiEmbeddingProvider(
            api_key=settings.gemini_api_key,
            model_name=cfg.gemini.model_name,
            dimensions=cfg.gemini.dimensions,
            task_type=cfg.gemini.task_type,
            query_task_type=cfg.gemini.query_task_type,
            **retry,
        )

    elif kind == EmbedderKind.OPENAI:
        from embedding_index.indexing.embeddings_openai import OpenAIEmbeddingProvider

        provider = OpenAIEmbeddingProvider(
            api_key=settings.openai_api_key,
            model_name=cfg.openai.model_name,
            dimensions=cfg.openai.dimensions,
            base_url=cfg.openai.base_url,
            timeout=cfg.timeout,
            **retry,
        )

    elif kind == EmbedderKind.OLLAMA:
        from embedding_index.indexing.embeddings_ollama import OllamaEmbeddingProvider

        provider = OllamaEmbeddingProvider(
            base_url=settings.get_effective_ollama_url(),
            model_name=cfg.ollama.model_name,
            dimensions=cfg.ollama.dimensions,
            timeout=cfg.timeout,
            **retry,
        )

    elif kind == EmbedderKind.SBERT:
        from embedding_index.indexing.embeddings_sbert import SBERTEmbeddingProvider

        provider = SBERTEmbeddingProvider(
            model_name=cfg.sbert.model_name,
            dimensions=cfg.sbert.dimensions,
            device=cfg.sbert.device,
            normalize=cfg.sbert.normalize,
            query_prefix=cfg.sbert.query_prefix,
            document_prefix=cfg.sbert.document_prefix,
            **retry,
        )

    else:
        raise ValidationError(f"Unsupported embedder kind: {kind!r}")

    logger.info(
        f"Initialized embedding provider: {provider.embedder_id} "
        f"(model={provider.model_name}, dims={provider.dimensions})"
    )
    return provider


def build_embedders(
    settings: Settings,
    kinds: Optional[Iterable[EmbedderKind]] = None,
) -> dict[EmbedderKind, EmbeddingProvider]:
    """
    Build one adapter per embedder kind, validating credentials first.

    Args:
        settings: Deployment settings
        kinds: Kinds to build (defaults to every kind used by an index)

    Raises:
        ConfigurationError: If a required credential is missing
    """
    wanted = list(kinds) if kinds is not None else sorted(
        settings.configured_embedders(), key=lambda k: k.value
    )
    settings.validate_for(wanted)
    return {kind: build_embedder(kind, settings) for kind in wanted}
