"""
Cloud embedding backends: OpenAI, Cohere and Voyage AI.

All three authenticate with a bearer token and differ only in endpoint
and response shape. The API key is required at construction.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from qdrant_rag.config import API_KEY_ENV, ProviderConfig, ProviderKind
from qdrant_rag.embeddings.provider import EmbeddingProvider
from qdrant_rag.embeddings.rate_limit import RateLimiter, Sleep
from qdrant_rag.errors import MissingCredentialError

LOG = logging.getLogger("embeddings.cloud")


class CloudEmbeddingProvider(EmbeddingProvider):
    """Shared bearer-auth handling for hosted embedding APIs."""

    def __init__(
        self,
        config: ProviderConfig,
        *,
        client: httpx.AsyncClient | None = None,
        limiter: RateLimiter | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if not config.api_key:
            raise MissingCredentialError(
                f"API key required for {self.kind.value}. Set {API_KEY_ENV[self.kind]} or pass api_key=."
            )
        self._api_key = config.api_key
        super().__init__(config, client=client, limiter=limiter, sleep=sleep)
        LOG.info("%s embeddings: model=%s, dimensions=%d", self.kind.value, self._model, self._dimensions)

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }


class OpenAIEmbeddingProvider(CloudEmbeddingProvider):
    """OpenAI embeddings API. text-embedding-3-* models accept a target dimension."""

    kind = ProviderKind.OPENAI
    default_base_url = "https://api.openai.com/v1"
    batch_size = 2048

    def _build_request(self, texts: list[str], query: bool) -> tuple[str, dict[str, Any]]:
        body: dict[str, Any] = {"model": self._model, "input": texts}
        if self._model.startswith("text-embedding-3"):
            body["dimensions"] = self._dimensions
        return "/embeddings", body

    def _decode(self, data: Any, count: int) -> list[list[float]]:
        return self._by_index(data["data"], count)


class CohereEmbeddingProvider(CloudEmbeddingProvider):
    """
    Cohere v2 embed API.

    v3 models embed documents and queries differently: documents are sent
    as ``input_type`` (default search_document), queries as ``query_input_type``.
    """

    kind = ProviderKind.COHERE
    default_base_url = "https://api.cohere.com/v2"
    batch_size = 96

    def __init__(
        self,
        config: ProviderConfig,
        *,
        input_type: str = "search_document",
        query_input_type: str = "search_query",
        **kwargs: Any,
    ) -> None:
        super().__init__(config, **kwargs)
        self._input_type = input_type
        self._query_input_type = query_input_type

    def _build_request(self, texts: list[str], query: bool) -> tuple[str, dict[str, Any]]:
        return "/embed", {
            "model": self._model,
            "texts": texts,
            "input_type": self._query_input_type if query else self._input_type,
            "embedding_types": ["float"],
        }

    def _decode(self, data: Any, count: int) -> list[list[float]]:
        return list(data["embeddings"]["float"])


class VoyageEmbeddingProvider(CloudEmbeddingProvider):
    """Voyage AI embeddings API. When ``input_type`` is set, queries are sent as ``query``."""

    kind = ProviderKind.VOYAGE
    default_base_url = "https://api.voyageai.com/v1"
    batch_size = 128

    def __init__(self, config: ProviderConfig, *, input_type: str | None = None, **kwargs: Any) -> None:
        super().__init__(config, **kwargs)
        self._input_type = input_type

    def _build_request(self, texts: list[str], query: bool) -> tuple[str, dict[str, Any]]:
        body: dict[str, Any] = {"model": self._model, "input": texts}
        if self._input_type:
            body["input_type"] = "query" if query else self._input_type
        return "/embeddings", body

    def _decode(self, data: Any, count: int) -> list[list[float]]:
        return self._by_index(data["data"], count)
