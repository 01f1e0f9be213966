"""Embedding providers.

Algorithmic code only sees the ``Embedder`` protocol; concrete providers are
built from ``AppConfig`` by ``create_embedder`` and injected.
"""

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Protocol

import openai
from openai import AsyncOpenAI
from sklearn.feature_extraction.text import HashingVectorizer

from src.config import AppConfig
from src.pipeline.rate_limit import TokenBucket

# Configure module logger
logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})
DEFAULT_HASHING_DIM = 256


class EmbeddingError(Exception):
    """Raised when the provider cannot embed one text."""


class Embedder(Protocol):
    """Anything that turns text into a fixed-length vector."""

    model: str

    async def embed(self, text: str) -> List[float]:
        ...


def _is_retryable(error: Exception) -> bool:
    if isinstance(error, openai.APIConnectionError):
        return True
    return getattr(error, "status_code", None) in RETRYABLE_STATUS_CODES


class OpenAIEmbedder:
    """Hosted embeddings with rate limiting and exponential backoff.

    Every attempt first takes a token from the rate limiter. Rate-limit (429),
    server (5xx) and connection errors are retried up to ``retry_max`` times
    with ``backoff_base_s * 2 ** (attempt - 1)`` seconds between attempts;
    anything else fails immediately.
    """

    def __init__(
        self,
        model: str,
        api_key: Optional[str] = None,
        rate_limiter: Optional[TokenBucket] = None,
        retry_max: int = 3,
        backoff_base_s: float = 0.5,
        client=None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.model = model
        self.api_key = api_key
        self._client = client
        self.rate_limiter = rate_limiter
        self.retry_max = retry_max
        self.backoff_base_s = backoff_base_s
        self._sleep = sleep

    async def embed(self, text: str) -> List[float]:
        attempt = 0
        while True:
            if self.rate_limiter is not None:
                await self.rate_limiter.acquire()
            try:
                response = await self.client.embeddings.create(
                    model=self.model,
                    input=text,
                )
                return [float(x) for x in response.data[0].embedding]
            except Exception as e:
                attempt += 1
                if not _is_retryable(e):
                    raise EmbeddingError(f"Embedding request failed: {e}") from e
                if attempt > self.retry_max:
                    raise EmbeddingError(
                        f"Embedding retries exhausted after {attempt} attempts: {e}"
                    ) from e

                backoff = self.backoff_base_s * (2 ** (attempt - 1))
                logger.warning(
                    "Transient embedding error, backing off",
                    extra={
                        "attempt": attempt,
                        "retry_max": self.retry_max,
                        "backoff_s": backoff,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    },
                )
                await self._sleep(backoff)

    @property
    def client(self) -> AsyncOpenAI:
        # Built on first use so the app can start without an API key
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self.api_key)
        return self._client


class HashingEmbedder:
    """Offline deterministic embeddings from hashed word and bigram counts.

    Useful for local runs and demos; vectors are L2-normalized.
    """

    def __init__(self, n_features: int = DEFAULT_HASHING_DIM):
        self.model = f"hashing-{n_features}"
        self.vectorizer = HashingVectorizer(
            n_features=n_features,
            alternate_sign=False,
            norm="l2",
            lowercase=True,
            ngram_range=(1, 2),
            stop_words="english",
        )

    async def embed(self, text: str) -> List[float]:
        return self.vectorizer.transform([text]).toarray()[0].tolist()


def create_embedder(config: AppConfig) -> Embedder:
    """Build the provider selected by ``config.embedding_provider``."""
    if config.embedding_provider == "hashing":
        logger.info("Using offline hashing embedder")
        return HashingEmbedder()

    logger.info(
        "Using OpenAI embedder",
        extra={
            "model": config.embedding_model,
            "requests_per_minute": config.embed_requests_per_minute,
        },
    )
    return OpenAIEmbedder(
        model=config.embedding_model,
        api_key=config.openai_api_key,
        rate_limiter=TokenBucket(config.embed_requests_per_minute),
        retry_max=config.embed_retry_max,
        backoff_base_s=config.embed_backoff_base_s,
    )
