"""
Embedding provider abstraction.

EmbeddingProvider owns the shared contract: input validation, batching,
order preservation, dimension checks and error mapping. Concrete backends
only describe their endpoint, auth header and response shape.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from itertools import chain
from typing import Any, ClassVar, Sequence

import httpx

from qdrant_rag.aio import gather_or_cancel
from qdrant_rag.config import ProviderConfig, ProviderKind
from qdrant_rag.embeddings.rate_limit import RateLimitedCaller, RateLimiter, RetryPolicy, Sleep
from qdrant_rag.errors import (
    DimensionMismatchError,
    InvalidInputError,
    ProviderRequestError,
)

LOG = logging.getLogger("embeddings.provider")


@dataclass(frozen=True)
class EmbeddingResult:
    """A dense vector plus the model that produced it."""

    vector: list[float]
    dimensions: int
    model: str


class EmbeddingProvider(ABC):
    """Abstract interface for text → embedding vector conversion."""

    kind: ClassVar[ProviderKind]
    default_base_url: ClassVar[str]
    batch_size: ClassVar[int] = 96

    def __init__(
        self,
        config: ProviderConfig,
        *,
        client: httpx.AsyncClient | None = None,
        limiter: RateLimiter | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        cfg = config.resolved()
        self._config = cfg
        self._model: str = cfg.model
        self._dimensions: int = cfg.dimensions
        self._base_url = cfg.base_url or self.default_base_url
        self._caller = RateLimitedCaller(
            self.kind.value,
            limiter or RateLimiter(cfg.max_requests_per_minute),
            RetryPolicy(
                retries=cfg.retry_attempts,
                base_delay=cfg.retry_base_delay,
                max_delay=cfg.retry_max_delay,
            ),
            sleep=sleep,
        )
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=self._base_url, timeout=cfg.timeout)

    # ── capability ──────────────────────────────────────────────────────

    def dimensions(self) -> int:
        return self._dimensions

    def model_name(self) -> str:
        return self._model

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._caller.policy

    async def embed(self, text: str, *, query: bool = False) -> EmbeddingResult:
        """Embed a single text. ``query=True`` marks a search query rather than a document."""
        return (await self.embed_batch([text], query=query))[0]

    async def embed_batch(self, texts: Sequence[str], *, query: bool = False) -> list[EmbeddingResult]:
        """
        Embed many texts in as few remote calls as the batch limit allows.

        Output order matches input order. Any failing chunk fails the
        whole call; nothing is dropped silently.
        """
        texts = list(texts)
        if not texts:
            return []
        for i, text in enumerate(texts):
            if not isinstance(text, str) or not text.strip():
                raise InvalidInputError(f"text at position {i} is empty")

        chunks = [texts[i : i + self.batch_size] for i in range(0, len(texts), self.batch_size)]
        LOG.debug("%s: embedding %d texts in %d request(s)", self.kind.value, len(texts), len(chunks))
        per_chunk = await gather_or_cancel(*(self._embed_chunk(chunk, query) for chunk in chunks))
        return [self._to_result(vector) for vector in chain.from_iterable(per_chunk)]

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ── backend hooks ───────────────────────────────────────────────────

    @abstractmethod
    def _build_request(self, texts: list[str], query: bool) -> tuple[str, dict[str, Any]]:
        """Return (path, json body) for one batch request; ``query`` marks search queries."""

    @abstractmethod
    def _decode(self, data: Any, count: int) -> list[list[float]]:
        """Extract ``count`` vectors, in request order, from a response body."""

    def _headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json"}

    # ── internals ───────────────────────────────────────────────────────

    async def _embed_chunk(self, chunk: list[str], query: bool) -> list[list[float]]:
        try:
            vectors = await self._caller.call(lambda: self._request(chunk, query))
        except httpx.HTTPStatusError as exc:
            raise self._rejected(exc) from exc
        if len(vectors) != len(chunk):
            raise ProviderRequestError(
                f"{self.kind.value}: returned {len(vectors)} embeddings for {len(chunk)} inputs"
            )
        return vectors

    async def _request(self, texts: list[str], query: bool) -> list[list[float]]:
        path, body = self._build_request(texts, query)
        resp = await self._client.post(path, json=body, headers=self._headers())
        resp.raise_for_status()
        try:
            return self._decode(resp.json(), len(texts))
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise ProviderRequestError(f"{self.kind.value}: malformed embedding response: {exc}") from exc

    def _rejected(self, exc: httpx.HTTPStatusError) -> Exception:
        code = exc.response.status_code
        detail = exc.response.text[:200]
        if code in (400, 413, 422):
            return InvalidInputError(f"{self.kind.value} rejected input ({code}): {detail}")
        return ProviderRequestError(f"{self.kind.value} request failed ({code}): {detail}", status_code=code)

    def _to_result(self, vector: Sequence[float]) -> EmbeddingResult:
        if len(vector) != self._dimensions:
            raise DimensionMismatchError(self._dimensions, len(vector), context=f"{self.kind.value}/{self._model}")
        return EmbeddingResult(vector=[float(x) for x in vector], dimensions=len(vector), model=self._model)

    @staticmethod
    def _by_index(items: list[dict[str, Any]], count: int) -> list[list[float]]:
        """Reorder ``[{index, embedding}]`` items into request order."""
        ordered: list[list[float] | None] = [None] * count
        for item in items:
            index = int(item["index"])
            if not 0 <= index < count:
                raise ValueError(f"embedding index {index} out of range for {count} inputs")
            ordered[index] = item["embedding"]
        if any(v is None for v in ordered):
            raise ValueError("response is missing embeddings for some inputs")
        return ordered  # type: ignore[return-value]

    def __repr__(self) -> str:
        return f"{type(self).__name__}(model={self._model!r}, dimensions={self._dimensions})"
