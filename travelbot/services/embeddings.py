"""
Text embeddings for travel queries and catalog entities.

EMBEDDING_PROVIDER picks the backend:

    local   sentence-transformers, default mixedbread-ai/mxbai-embed-large-v1
            (1024-d, CPU friendly). Install with the `local` extra.
    gemini  Gemini embedding API truncated to EMBEDDING_DIM, needs GEMINI_API_KEY.

Queries and catalog documents are embedded asymmetrically: mxbai expects a
retrieval prompt in front of queries, Gemini takes a task type. Vectors come
back unit length; their dimension is checked by the similarity search.
"""
from __future__ import annotations

import asyncio
import hashlib
import logging
import threading
from abc import ABC, abstractmethod
from functools import lru_cache
from typing import Awaitable, Callable, List, Sequence, TypeVar

import numpy as np

from travelbot.core.config import settings

logger = logging.getLogger(__name__)

TASK_DOCUMENT = "RETRIEVAL_DOCUMENT"
TASK_QUERY = "RETRIEVAL_QUERY"

LOCAL_QUERY_PROMPT = "Represent this sentence for searching relevant passages: "

# embed_content accepts at most 100 inputs per request
GEMINI_MAX_BATCH = 100

T = TypeVar("T")


class EmbeddingProvider(ABC):
    """Turns text into unit vectors of length `dim`."""

    dim: int = settings.EMBEDDING_DIM
    model_name: str = settings.EMBEDDING_MODEL

    @abstractmethod
    async def embed(self, text: str, task_type: str = TASK_QUERY) -> List[float]: ...

    @abstractmethod
    async def embed_batch(
        self,
        texts: Sequence[str],
        task_type: str = TASK_DOCUMENT,
    ) -> List[List[float]]: ...


def unit_vector(vector: Sequence[float]) -> List[float]:
    arr = np.asarray(vector, dtype=np.float64)
    norm = float(np.linalg.norm(arr))
    if norm == 0.0:
        return [float(v) for v in vector]
    return (arr / norm).tolist()


def prepare_text(text: str) -> str:
    """Collapse whitespace; embedding an empty string is a caller bug."""
    cleaned = " ".join((text or "").split())
    if not cleaned:
        raise ValueError("Cannot embed empty text")
    return cleaned


def text_cache_key(text: str) -> str:
    """Cache key for a query text; whitespace differences map to the same key."""
    return hashlib.sha256(" ".join(text.split()).encode("utf-8")).hexdigest()


async def call_with_backoff(
    call: Callable[[], Awaitable[T]],
    *,
    attempts: int,
    base_delay: float,
    label: str,
) -> T:
    """Await `call()` up to `attempts` times with exponential backoff between tries."""
    for attempt in range(1, attempts + 1):
        try:
            return await call()
        except Exception as exc:
            if attempt >= attempts:
                raise
            delay = base_delay * 2 ** (attempt - 1)
            logger.warning(
                "%s failed (attempt %d/%d): %s; retrying in %.1fs",
                label, attempt, attempts, exc, delay,
            )
            await asyncio.sleep(delay)
    raise RuntimeError("attempts must be at least 1")


class LocalEmbeddingProvider(EmbeddingProvider):
    """
    sentence-transformers on the local machine.

    The model is loaded by the first call, not at construction, so building
    the provider at startup stays cheap. encode() blocks, so it runs in the
    default executor.
    """

    def __init__(self, model_name: str | None = None, query_prompt: str = LOCAL_QUERY_PROMPT) -> None:
        self.model_name = model_name or settings.EMBEDDING_MODEL
        self.dim = settings.EMBEDDING_DIM
        self.query_prompt = query_prompt
        self._model = None
        self._load_lock = threading.Lock()

    def _loaded_model(self):
        with self._load_lock:
            if self._model is None:
                from sentence_transformers import SentenceTransformer

                logger.info("Loading embedding model %s", self.model_name)
                self._model = SentenceTransformer(self.model_name)
                logger.info("Embedding model %s ready (dim=%d)", self.model_name, self.dim)
        return self._model

    def _encode(self, texts: List[str]) -> List[List[float]]:
        return self._loaded_model().encode(
            texts,
            normalize_embeddings=True,
            batch_size=settings.EMBEDDING_BATCH_SIZE,
            show_progress_bar=False,
        ).tolist()

    async def _run(self, texts: List[str], task_type: str) -> List[List[float]]:
        if task_type == TASK_QUERY and self.query_prompt:
            texts = [self.query_prompt + t for t in texts]
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._encode, texts)

    async def embed(self, text: str, task_type: str = TASK_QUERY) -> List[float]:
        return (await self._run([prepare_text(text)], task_type))[0]

    async def embed_batch(
        self,
        texts: Sequence[str],
        task_type: str = TASK_DOCUMENT,
    ) -> List[List[float]]:
        if not texts:
            return []
        return await self._run([prepare_text(t) for t in texts], task_type)


class GeminiEmbeddingProvider(EmbeddingProvider):
    """Gemini embeddings. Truncated outputs are not unit length, so every vector is re-normalised."""

    def __init__(self, model_name: str | None = None) -> None:
        if not settings.GEMINI_API_KEY:
            raise ValueError("EMBEDDING_PROVIDER=gemini requires GEMINI_API_KEY")
        from google import genai

        self._client = genai.Client(api_key=settings.GEMINI_API_KEY)
        self.model_name = model_name or settings.EMBEDDING_MODEL
        self.dim = settings.EMBEDDING_DIM

    async def _request(self, texts: List[str], task_type: str) -> List[List[float]]:
        from google.genai import types

        response = await self._client.aio.models.embed_content(
            model=self.model_name,
            contents=texts,
            config=types.EmbedContentConfig(task_type=task_type, output_dimensionality=self.dim),
        )
        return [unit_vector(item.values) for item in response.embeddings]

    async def _request_with_backoff(self, texts: List[str], task_type: str) -> List[List[float]]:
        return await call_with_backoff(
            lambda: self._request(texts, task_type),
            attempts=settings.EMBEDDING_MAX_RETRIES,
            base_delay=settings.EMBEDDING_RETRY_BASE_DELAY,
            label=f"Gemini embed ({len(texts)} texts)",
        )

    async def embed(self, text: str, task_type: str = TASK_QUERY) -> List[float]:
        return (await self._request_with_backoff([prepare_text(text)], task_type))[0]

    async def embed_batch(
        self,
        texts: Sequence[str],
        task_type: str = TASK_DOCUMENT,
    ) -> List[List[float]]:
        cleaned = [prepare_text(t) for t in texts]
        vectors: List[List[float]] = []
        for start in range(0, len(cleaned), GEMINI_MAX_BATCH):
            chunk = cleaned[start:start + GEMINI_MAX_BATCH]
            vectors.extend(await self._request_with_backoff(chunk, task_type))
        return vectors


PROVIDERS = {
    "local": LocalEmbeddingProvider,
    "gemini": GeminiEmbeddingProvider,
}


@lru_cache
def get_embedding_provider() -> EmbeddingProvider:
    name = settings.EMBEDDING_PROVIDER.strip().lower()
    provider_cls = PROVIDERS.get(name)
    if provider_cls is None:
        raise ValueError(
            f"Unknown EMBEDDING_PROVIDER={name!r}; expected one of {sorted(PROVIDERS)}"
        )
    logger.info("Embedding provider: %s (%s, dim=%d)", name, settings.EMBEDDING_MODEL, settings.EMBEDDING_DIM)
    return provider_cls()
