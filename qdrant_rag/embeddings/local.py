"""
Local embedding backend: Ollama.

Connects to a locally running Ollama instance at http://localhost:11434.
Default model: nomic-embed-text (768 dimensions).
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from qdrant_rag.config import ProviderKind
from qdrant_rag.embeddings.provider import EmbeddingProvider
from qdrant_rag.errors import ModelNotFoundError, ProviderRequestError

LOG = logging.getLogger("embeddings.local")


class OllamaEmbeddingProvider(EmbeddingProvider):
    """
    Local embedding via Ollama's HTTP API.

    Requires Ollama to be running locally: https://ollama.ai
    The model must already be pulled; :meth:`ensure_model` checks this and
    is called once by the factory before the provider is handed out.
    """

    kind = ProviderKind.OLLAMA
    default_base_url = "http://localhost:11434"
    batch_size = 512

    async def ensure_model(self) -> None:
        """Fail fast if the configured model is not available locally."""

        async def _tags() -> Any:
            resp = await self._client.get("/api/tags")
            resp.raise_for_status()
            return resp.json()

        try:
            data = await self._caller.call(_tags)
        except httpx.HTTPStatusError as exc:
            raise ProviderRequestError(
                f"Ollama at {self._base_url} refused model listing ({exc.response.status_code})",
                status_code=exc.response.status_code,
            ) from exc
        except ValueError as exc:
            raise ProviderRequestError(f"Ollama at {self._base_url}: model listing is not JSON: {exc}") from exc

        try:
            names = [str(m.get("name", "")) for m in data.get("models", [])]
        except (AttributeError, TypeError) as exc:
            raise ProviderRequestError(f"Ollama at {self._base_url}: malformed model listing: {exc}") from exc
        if not any(self._matches(name) for name in names):
            raise ModelNotFoundError(
                f"Ollama model '{self._model}' not found at {self._base_url}. "
                f"Available: {names}. Pull with: ollama pull {self._model}"
            )
        LOG.info("Ollama model %s available at %s", self._model, self._base_url)

    def _matches(self, name: str) -> bool:
        if name == self._model:
            return True
        # "nomic-embed-text" is served as "nomic-embed-text:latest"
        return ":" not in self._model and name.split(":", 1)[0] == self._model

    def _build_request(self, texts: list[str], query: bool) -> tuple[str, dict[str, Any]]:
        return "/api/embed", {"model": self._model, "input": texts}

    def _decode(self, data: Any, count: int) -> list[list[float]]:
        return list(data["embeddings"])
