"""
Embedding providers: one capability interface over Ollama, OpenAI, Cohere
and Voyage AI, each throttled and retried by its own RateLimitedCaller.
"""

from __future__ import annotations

from qdrant_rag.embeddings.cloud import (
    CohereEmbeddingProvider,
    OpenAIEmbeddingProvider,
    VoyageEmbeddingProvider,
)
from qdrant_rag.embeddings.factory import PROVIDERS, create_provider
from qdrant_rag.embeddings.local import OllamaEmbeddingProvider
from qdrant_rag.embeddings.provider import EmbeddingProvider, EmbeddingResult
from qdrant_rag.embeddings.rate_limit import RateLimitedCaller, RateLimiter, RetryPolicy

__all__ = [
    "CohereEmbeddingProvider",
    "EmbeddingProvider",
    "EmbeddingResult",
    "OllamaEmbeddingProvider",
    "OpenAIEmbeddingProvider",
    "PROVIDERS",
    "RateLimitedCaller",
    "RateLimiter",
    "RetryPolicy",
    "VoyageEmbeddingProvider",
    "create_provider",
]
