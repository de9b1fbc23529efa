"""Embedding providers.

Three interchangeable implementations of the same capability:

- OllamaEmbeddingProvider: remote Ollama server, one request per text
- OpenAIEmbeddingProvider: OpenAI-compatible /embeddings endpoint
- LocalEmbeddingProvider: sentence-transformers model run in-process

Vectors from different providers (or models) are never comparable.
"""
import asyncio
from abc import ABC, abstractmethod
from typing import Any, Callable, List, Optional, Sequence

import httpx
import numpy as np
import structlog

from docqa import config
from docqa.errors import EmbeddingFailed, EmbeddingUnavailable, InvalidConfiguration, InvalidVector
from docqa.llm_client import OllamaClient, OpenAIClient, describe_http_error
from docqa.rag.vectors import l2_normalize

logger = structlog.get_logger()


class EmbeddingProvider(ABC):
    """Turns text into a fixed-length vector."""

    model: str

    @abstractmethod
    async def embed(self, text: str) -> List[float]:
        """Embed one text.

        Raises:
            EmbeddingUnavailable: If the backend cannot be reached or loaded
            EmbeddingFailed: If embedding this input failed
        """

    async def embed_all(self, texts: Sequence[str]) -> List[List[float]]:
        """Embed texts one after another, preserving order.

        Stops at the first failure; nothing is returned for a partial batch.
        """
        embeddings = []
        for i, text in enumerate(texts, 1):
            embeddings.append(await self.embed(text))
            logger.debug("embedding_generated", index=i, total=len(texts))
        return embeddings


def _translate_http_error(error: httpx.HTTPError, model: str) -> Exception:
    if isinstance(error, httpx.HTTPStatusError):
        return EmbeddingFailed(f"Embedding request for {model} failed", **describe_http_error(error))
    return EmbeddingUnavailable(
        f"Embedding service for {model} is unreachable", **describe_http_error(error)
    )


def _check_vector(vector: List[float], model: str) -> List[float]:
    if not vector:
        raise EmbeddingFailed(f"Empty embedding returned by {model}")
    return vector


class OllamaEmbeddingProvider(EmbeddingProvider):
    """Embeddings served by an Ollama instance."""

    def __init__(self, client: Optional[OllamaClient] = None, model: str = None):
        self.client = client or OllamaClient()
        self.model = model or config.EMBEDDING_MODEL

    async def embed(self, text: str) -> List[float]:
        try:
            vector = await self.client.embeddings(prompt=text, model=self.model)
        except httpx.HTTPError as e:
            raise _translate_http_error(e, self.model) from e
        except ValueError as e:
            raise EmbeddingFailed(
                f"Malformed embedding response from {self.model}", detail=str(e)
            ) from e
        return _check_vector(vector, self.model)


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """Embeddings served by an OpenAI-compatible API."""

    def __init__(self, client: Optional[OpenAIClient] = None, model: str = None):
        self.client = client or OpenAIClient()
        self.model = model or config.OPENAI_EMBEDDING_MODEL

    async def embed(self, text: str) -> List[float]:
        if not self.client.api_key:
            raise EmbeddingUnavailable("OpenAI API key not configured")
        try:
            vector = await self.client.embeddings(text, model=self.model)
        except httpx.HTTPError as e:
            raise _translate_http_error(e, self.model) from e
        except ValueError as e:
            raise EmbeddingFailed(
                f"Malformed embedding response from {self.model}", detail=str(e)
            ) from e
        return _check_vector(vector, self.model)


def load_sentence_transformer(model_name: str, device: str) -> Any:
    from sentence_transformers import SentenceTransformer

    return SentenceTransformer(model_name, device=device)


class LocalEmbeddingProvider(EmbeddingProvider):
    """Sentence-transformers model executed in-process.

    The model is loaded on first use and reused for the lifetime of the
    provider. Concurrent first calls wait on the same load. Models such as
    all-MiniLM-L6-v2 mean-pool token embeddings; the output is additionally
    L2-normalised so cosine similarity between vectors is meaningful.
    """

    def __init__(
        self,
        model: str = None,
        device: str = None,
        loader: Callable[[str, str], Any] = load_sentence_transformer,
    ):
        self.model = model or config.LOCAL_EMBEDDING_MODEL
        self.device = device or config.LOCAL_EMBEDDING_DEVICE
        self._loader = loader
        self._runtime = None
        self._lock = asyncio.Lock()

    @property
    def initialized(self) -> bool:
        return self._runtime is not None

    async def initialize(self) -> Any:
        """Load the model once; later calls return the same instance."""
        if self._runtime is not None:
            return self._runtime

        async with self._lock:
            if self._runtime is None:
                logger.info("loading_embedding_model", model=self.model, device=self.device)
                try:
                    self._runtime = await asyncio.to_thread(
                        self._loader, self.model, self.device
                    )
                except Exception as e:
                    logger.error(
                        "embedding_model_load_failed",
                        model=self.model,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    raise EmbeddingUnavailable(
                        f"Could not load embedding model {self.model}", detail=str(e)
                    ) from e
                logger.info("embedding_model_loaded", model=self.model)

        return self._runtime

    async def embed(self, text: str) -> List[float]:
        runtime = await self.initialize()

        try:
            output = await asyncio.to_thread(
                runtime.encode,
                text,
                convert_to_numpy=True,
                normalize_embeddings=True,
                show_progress_bar=False,
            )
            vector = l2_normalize(np.asarray(output, dtype=np.float64).reshape(-1))
        except InvalidVector as e:
            raise EmbeddingFailed(f"{self.model} produced a zero vector", detail=str(e)) from e
        except Exception as e:
            logger.error(
                "local_embedding_failed",
                model=self.model,
                text_preview=text[:100],
                error=str(e),
            )
            raise EmbeddingFailed(f"Inference with {self.model} failed", detail=str(e)) from e

        return vector.tolist()


def create_embedding_provider(kind: str = None) -> EmbeddingProvider:
    """Build the embedding provider named by kind (default config.EMBEDDING_PROVIDER)."""
    kind = (kind or config.EMBEDDING_PROVIDER).lower()

    if kind == "ollama":
        return OllamaEmbeddingProvider()
    if kind == "openai":
        return OpenAIEmbeddingProvider()
    if kind == "local":
        return LocalEmbeddingProvider()

    raise InvalidConfiguration(f"Unknown embedding provider: {kind}")
