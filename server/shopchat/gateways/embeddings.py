from __future__ import annotations

import asyncio
import hashlib
import logging
import re
import unicodedata
from typing import List, Protocol, Sequence

import numpy as np
from langchain_core.embeddings import Embeddings

from shopchat.core.config import AppSettings
from shopchat.core.exceptions import AppError, EmbeddingUnavailableError, UpstreamRequestError
from shopchat.core.retry import RetryPolicy, call_with_retry, is_transient

logger = logging.getLogger("shopchat.embeddings")

_TOKEN_RE = re.compile(r"\w+", re.UNICODE)


class EmbeddingGateway(Protocol):
    dimension: int

    async def embed(self, text: str) -> List[float]:  # pragma: no cover - protocol definition
        ...

    async def embed_many(
        self, texts: Sequence[str], *, concurrency: int = 4
    ) -> List[List[float]]:  # pragma: no cover - protocol definition
        ...


class HashingEmbeddings(Embeddings):
    """Deterministic offline embedder.

    Unigrams and bigrams are hashed into ``size`` signed buckets and the result
    is L2-normalised, so texts sharing words land close under cosine distance.
    """

    def __init__(self, size: int = 768) -> None:
        if size <= 0:
            raise ValueError("size must be > 0")
        self.size = size

    def embed_documents(self, texts: List[str]) -> List[List[float]]:
        return [self._vector(text) for text in texts]

    def embed_query(self, text: str) -> List[float]:
        return self._vector(text)

    def _features(self, text: str) -> list[str]:
        normalized = unicodedata.normalize("NFC", text).lower()
        tokens = _TOKEN_RE.findall(normalized)
        if not tokens:
            return [normalized]
        bigrams = [f"{left} {right}" for left, right in zip(tokens, tokens[1:])]
        return tokens + bigrams

    def _vector(self, text: str) -> List[float]:
        vector = np.zeros(self.size, dtype=np.float64)
        for feature in self._features(text):
            digest = hashlib.blake2b(feature.encode("utf-8"), digest_size=8).digest()
            bucket = int.from_bytes(digest[:4], "little") % self.size
            sign = 1.0 if digest[4] & 1 else -1.0
            vector[bucket] += sign
        norm = np.linalg.norm(vector)
        if norm > 0:
            vector /= norm
        return vector.tolist()


class LangChainEmbeddingGateway:
    """Embedding gateway over any LangChain ``Embeddings`` implementation."""

    def __init__(
        self,
        embeddings: Embeddings,
        *,
        dimension: int,
        policy: RetryPolicy | None = None,
        provider: str = "custom",
    ) -> None:
        self._embeddings = embeddings
        self.dimension = dimension
        self._policy = policy or RetryPolicy()
        self._provider = provider

    async def embed(self, text: str) -> List[float]:
        try:
            vector = await call_with_retry(
                lambda: self._embeddings.aembed_query(text),
                policy=self._policy,
                label=f"embeddings.{self._provider}",
            )
        except AppError:
            raise
        except Exception as exc:
            details = {"provider": self._provider}
            if is_transient(exc):
                raise EmbeddingUnavailableError("Embedding service is unavailable.", details=details) from exc
            raise UpstreamRequestError("Embedding request was rejected.", details=details) from exc
        return self._validate(vector)

    async def embed_many(self, texts: Sequence[str], *, concurrency: int = 4) -> List[List[float]]:
        semaphore = asyncio.Semaphore(max(1, concurrency))

        async def _bounded(text: str) -> List[float]:
            async with semaphore:
                return await self.embed(text)

        tasks = [asyncio.ensure_future(_bounded(text)) for text in texts]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            # Cancel and drain siblings after the first failure.
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    def _validate(self, vector: Sequence[float]) -> List[float]:
        values = [float(value) for value in vector]
        if len(values) != self.dimension:
            raise UpstreamRequestError(
                "Embedding dimension mismatch.",
                details={"expected": self.dimension, "received": len(values), "provider": self._provider},
            )
        return values


def build_embeddings(settings: AppSettings) -> Embeddings:
    provider = (settings.embeddings_provider or "openai").lower()

    if provider == "openai":
        from langchain_openai import OpenAIEmbeddings

        if not settings.openai_api_key:
            raise AppError("OPENAI_API_KEY is not configured for embeddings.")
        return OpenAIEmbeddings(
            model=settings.embedding_model,
            dimensions=settings.embedding_dimension,
            api_key=settings.openai_api_key,
            timeout=settings.embedding_timeout_sec,
            max_retries=0,
        )

    if provider == "local":
        from langchain_community.embeddings import OllamaEmbeddings

        kwargs: dict[str, object] = {"model": settings.embedding_model}
        if settings.ollama_host:
            kwargs["base_url"] = settings.ollama_host
        return OllamaEmbeddings(**kwargs)

    if provider == "fake":
        return HashingEmbeddings(size=settings.embedding_dimension)

    raise AppError(f"Unsupported embeddings provider: {settings.embeddings_provider}")


def build_embedding_gateway(settings: AppSettings) -> LangChainEmbeddingGateway:
    provider = (settings.embeddings_provider or "openai").lower()
    policy = RetryPolicy(
        max_retries=settings.upstream_max_retries,
        backoff_sec=settings.upstream_backoff_sec,
        timeout_sec=settings.embedding_timeout_sec,
    )
    logger.info("embeddings.configured", extra={"provider": provider, "dimension": settings.embedding_dimension})
    return LangChainEmbeddingGateway(
        build_embeddings(settings),
        dimension=settings.embedding_dimension,
        policy=policy,
        provider=provider,
    )
