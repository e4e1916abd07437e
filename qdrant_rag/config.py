"""Configuration management for qdrant-rag.

Loads settings from environment variables with per-provider defaults.
Values are frozen once loaded; the pipeline never re-reads the environment.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from enum import Enum

from qdrant_rag.errors import UnknownProviderError


class ProviderKind(str, Enum):
    OLLAMA = "ollama"
    OPENAI = "openai"
    COHERE = "cohere"
    VOYAGE = "voyage"

    @classmethod
    def parse(cls, value: "ProviderKind | str") -> "ProviderKind":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            supported = ", ".join(k.value for k in cls)
            raise UnknownProviderError(f"Unknown embedding provider: {value!r}. Supported: {supported}") from None


CLOUD_KINDS = frozenset({ProviderKind.OPENAI, ProviderKind.COHERE, ProviderKind.VOYAGE})

# kind -> (model, dimensions, requests per minute)
PROVIDER_DEFAULTS: dict[ProviderKind, tuple[str, int, int]] = {
    ProviderKind.OLLAMA: ("nomic-embed-text", 768, 1000),
    ProviderKind.OPENAI: ("text-embedding-3-small", 1536, 3500),
    ProviderKind.COHERE: ("embed-english-v3.0", 1024, 100),
    ProviderKind.VOYAGE: ("voyage-2", 1024, 300),
}

API_KEY_ENV: dict[ProviderKind, str] = {
    ProviderKind.OPENAI: "OPENAI_API_KEY",
    ProviderKind.COHERE: "COHERE_API_KEY",
    ProviderKind.VOYAGE: "VOYAGE_API_KEY",
}


def _env_int(name: str) -> int | None:
    raw = os.getenv(name, "").strip()
    return int(raw) if raw else None


@dataclass(frozen=True)
class ProviderConfig:
    """Embedding provider configuration.

    ``model``, ``dimensions`` and ``max_requests_per_minute`` left as None are
    filled from PROVIDER_DEFAULTS by :meth:`resolved`. Delays are in seconds.
    """

    kind: ProviderKind | str = ProviderKind.OLLAMA
    api_key: str | None = None
    model: str | None = None
    dimensions: int | None = None
    max_requests_per_minute: int | None = None
    retry_attempts: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 30.0
    base_url: str | None = None
    timeout: float = 60.0

    def resolved(self) -> "ProviderConfig":
        kind = ProviderKind.parse(self.kind)
        model, dims, rpm = PROVIDER_DEFAULTS[kind]
        return replace(
            self,
            kind=kind,
            model=self.model or model,
            dimensions=self.dimensions or dims,
            max_requests_per_minute=self.max_requests_per_minute or rpm,
        )

    @classmethod
    def from_env(cls) -> "ProviderConfig":
        kind = ProviderKind.parse(os.getenv("EMBEDDING_PROVIDER", "ollama"))
        key_env = API_KEY_ENV.get(kind)
        return cls(
            kind=kind,
            api_key=os.getenv(key_env) if key_env else None,
            model=os.getenv("EMBEDDING_MODEL") or None,
            dimensions=_env_int("EMBEDDING_DIMENSIONS"),
            max_requests_per_minute=_env_int("EMBEDDING_MAX_REQUESTS_PER_MINUTE"),
            retry_attempts=int(os.getenv("EMBEDDING_RETRY_ATTEMPTS", "3")),
            retry_base_delay=int(os.getenv("EMBEDDING_RETRY_DELAY", "1000")) / 1000.0,
            retry_max_delay=int(os.getenv("EMBEDDING_RETRY_MAX_DELAY", "30000")) / 1000.0,
            base_url=os.getenv("EMBEDDING_BASE_URL") or None,
            timeout=float(os.getenv("EMBEDDING_TIMEOUT", "60")),
        )


@dataclass(frozen=True)
class StoreConfig:
    """Qdrant connection parameters. ``location=":memory:"`` runs in-process."""

    url: str = "http://localhost:6333"
    api_key: str | None = None
    location: str | None = None

    @classmethod
    def from_env(cls) -> "StoreConfig":
        return cls(
            url=os.getenv("QDRANT_URL", "http://localhost:6333"),
            api_key=os.getenv("QDRANT_API_KEY") or None,
        )


@dataclass(frozen=True)
class FusionConfig:
    """Tunable parameters for fused search.

    rrf_k is the Reciprocal Rank Fusion smoothing constant: each list
    contributes ``1 / (rrf_k + rank)``. overfetch multiplies the requested
    k for each branch so fusion has enough candidates.
    """

    rrf_k: int = 60
    overfetch: int = 2
    operation_timeout: float | None = 120.0

    @classmethod
    def from_env(cls) -> "FusionConfig":
        timeout = float(os.getenv("OPERATION_TIMEOUT", "120"))
        return cls(
            rrf_k=int(os.getenv("HYBRID_RRF_K", "60")),
            overfetch=int(os.getenv("HYBRID_OVERFETCH", "2")),
            operation_timeout=timeout if timeout > 0 else None,
        )


@dataclass(frozen=True)
class AppConfig:
    """Top-level application configuration."""

    provider: ProviderConfig = field(default_factory=ProviderConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    fusion: FusionConfig = field(default_factory=FusionConfig)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "AppConfig":
        return cls(
            provider=ProviderConfig.from_env(),
            store=StoreConfig.from_env(),
            fusion=FusionConfig.from_env(),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
