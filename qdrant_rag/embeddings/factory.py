"""
Factory: build one EmbeddingProvider from configuration.

PROVIDERS is keyed by every ProviderKind member; adding a backend means
adding an enum member and a table entry.
"""

from __future__ import annotations

import logging
from typing import Any

from qdrant_rag.config import API_KEY_ENV, CLOUD_KINDS, ProviderConfig, ProviderKind
from qdrant_rag.embeddings.cloud import (
    CohereEmbeddingProvider,
    OpenAIEmbeddingProvider,
    VoyageEmbeddingProvider,
)
from qdrant_rag.embeddings.local import OllamaEmbeddingProvider
from qdrant_rag.embeddings.provider import EmbeddingProvider
from qdrant_rag.errors import MissingCredentialError

LOG = logging.getLogger("embeddings.factory")

PROVIDERS: dict[ProviderKind, type[EmbeddingProvider]] = {
    ProviderKind.OLLAMA: OllamaEmbeddingProvider,
    ProviderKind.OPENAI: OpenAIEmbeddingProvider,
    ProviderKind.COHERE: CohereEmbeddingProvider,
    ProviderKind.VOYAGE: VoyageEmbeddingProvider,
}


async def create_provider(config: ProviderConfig, **kwargs: Any) -> EmbeddingProvider:
    """
    Create the EmbeddingProvider selected by ``config.kind``.

    Args:
        config: Provider configuration (unset fields take per-kind defaults)
        **kwargs: Passed to the provider constructor (client, limiter, sleep)

    Raises:
        UnknownProviderError: Unrecognized kind
        MissingCredentialError: Cloud kind without an API key
        ModelNotFoundError: Local model not pulled
    """
    resolved = config.resolved()
    kind = resolved.kind
    if kind in CLOUD_KINDS and not resolved.api_key:
        raise MissingCredentialError(f"{kind.value} provider requires {API_KEY_ENV[kind]}")

    provider = PROVIDERS[kind](resolved, **kwargs)
    if isinstance(provider, OllamaEmbeddingProvider):
        try:
            await provider.ensure_model()
        except Exception:
            await provider.close()
            raise

    LOG.info("Embedding provider ready: %r", provider)
    return provider
