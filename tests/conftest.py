"""
Shared test fixtures and pytest configuration.

Markers:
    @pytest.mark.integration: requires a running Qdrant and Ollama (with the default model pulled)

Run:
    pytest -m integration             # live-service tests only
    pytest -m "not integration"       # skip them (fast CI)

Everything else runs offline: HTTP backends are faked with httpx.MockTransport
and Qdrant runs in local in-process mode.
"""

from __future__ import annotations

import asyncio
import json
import os
from typing import Dict, List, Optional

import httpx
import pytest

QDRANT_URL = os.environ.get("QDRANT_URL", "http://localhost:6333")
OLLAMA_URL = os.environ.get("EMBEDDING_BASE_URL", "http://localhost:11434")


def _reachable(url: str) -> bool:
    try:
        return httpx.get(url, timeout=2.0).status_code < 500
    except httpx.HTTPError:
        return False


_SERVICES_OK: Optional[bool] = None


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: requires live Qdrant and Ollama services")


def pytest_collection_modifyitems(config, items):
    """Auto-skip integration tests when the services are not running."""
    global _SERVICES_OK

    integration = [item for item in items if "integration" in item.keywords]
    if not integration:
        return
    if _SERVICES_OK is None:
        _SERVICES_OK = _reachable(f"{QDRANT_URL}/collections") and _reachable(f"{OLLAMA_URL}/api/tags")

    skip = pytest.mark.skip(reason="Qdrant and/or Ollama not reachable")
    for item in integration:
        if not _SERVICES_OK:
            item.add_marker(skip)


# ── Deterministic time ───────────────────────────────────────────────────────


class FakeClock:
    """Monotonic clock whose sleep() advances time instantly."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ── Fake Ollama ──────────────────────────────────────────────────────────────


class FakeOllama:
    """
    In-memory stand-in for Ollama's /api/embed and /api/tags.

    ``vectors`` maps exact texts to vectors; unknown texts get ``default``
    (a vector with a 1.0 in the last slot).
    """

    def __init__(
        self,
        vectors: Dict[str, List[float]],
        dims: int,
        models: Optional[List[str]] = None,
    ) -> None:
        self.vectors = vectors
        self.dims = dims
        self.models = models if models is not None else ["nomic-embed-text:latest"]
        self.requests: List[dict] = []

    def default(self) -> List[float]:
        return [0.0] * (self.dims - 1) + [1.0]

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/api/tags":
            return httpx.Response(200, json={"models": [{"name": m} for m in self.models]})
        body = json.loads(request.content)
        self.requests.append(body)
        return httpx.Response(
            200,
            json={"embeddings": [self.vectors.get(t, self.default()) for t in body["input"]]},
        )

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler), base_url="http://ollama.test")


def unit(dims: int, *weights: float) -> List[float]:
    """A vector with the given leading weights, zero-padded to ``dims``."""
    return list(weights) + [0.0] * (dims - len(weights))
