"""Tests for embedding providers against faked HTTP backends."""

from __future__ import annotations

import json

import httpx
import pytest
from conftest import FakeClock, FakeOllama, unit

from qdrant_rag.config import ProviderConfig, ProviderKind
from qdrant_rag.embeddings import (
    CohereEmbeddingProvider,
    OllamaEmbeddingProvider,
    OpenAIEmbeddingProvider,
    VoyageEmbeddingProvider,
)
from qdrant_rag.errors import (
    DimensionMismatchError,
    InvalidInputError,
    MissingCredentialError,
    ModelNotFoundError,
    ProviderRequestError,
    ProviderUnavailableError,
)


class Backend:
    """Records requests and answers with a scripted handler."""

    def __init__(self, respond) -> None:
        self.respond = respond
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.respond(request, len(self.requests))

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler), base_url="http://backend.test")

    def bodies(self) -> list[dict]:
        return [json.loads(r.content) for r in self.requests]


def vec_for(text: str, dims: int) -> list[float]:
    """Encode the numeric suffix of ``t<n>`` into slot 0 so order is checkable."""
    return unit(dims, float(text[1:]))


def openai_style(dims: int, reverse: bool = False):
    def respond(request: httpx.Request, _n: int) -> httpx.Response:
        texts = json.loads(request.content)["input"]
        data = [{"index": i, "embedding": vec_for(t, dims)} for i, t in enumerate(texts)]
        if reverse:
            data.reverse()
        return httpx.Response(200, json={"data": data})

    return respond


def cohere_style(dims: int):
    def respond(request: httpx.Request, _n: int) -> httpx.Response:
        texts = json.loads(request.content)["texts"]
        return httpx.Response(200, json={"embeddings": {"float": [vec_for(t, dims) for t in texts]}})

    return respond


def ollama_config(**overrides) -> ProviderConfig:
    return ProviderConfig(kind=ProviderKind.OLLAMA, dimensions=4, **overrides)


class TestOllamaProvider:
    @pytest.mark.asyncio
    async def test_embed_single(self):
        fake = FakeOllama({"hello": [0.1, 0.2, 0.3, 0.4]}, dims=4)
        provider = OllamaEmbeddingProvider(ollama_config(), client=fake.client())

        result = await provider.embed("hello")

        assert result.vector == [0.1, 0.2, 0.3, 0.4]
        assert result.dimensions == 4
        assert result.model == "nomic-embed-text"
        assert fake.requests == [{"model": "nomic-embed-text", "input": ["hello"]}]

    @pytest.mark.asyncio
    async def test_accessors(self):
        provider = OllamaEmbeddingProvider(ProviderConfig(kind="ollama"), client=FakeOllama({}, 768).client())
        assert provider.dimensions() == 768
        assert provider.model_name() == "nomic-embed-text"

    @pytest.mark.asyncio
    async def test_empty_text_rejected_without_request(self):
        fake = FakeOllama({}, dims=4)
        provider = OllamaEmbeddingProvider(ollama_config(), client=fake.client())
        with pytest.raises(InvalidInputError):
            await provider.embed("   ")
        with pytest.raises(InvalidInputError, match="position 1"):
            await provider.embed_batch(["ok", ""])
        assert fake.requests == []

    @pytest.mark.asyncio
    async def test_empty_batch_returns_empty(self):
        fake = FakeOllama({}, dims=4)
        provider = OllamaEmbeddingProvider(ollama_config(), client=fake.client())
        assert await provider.embed_batch([]) == []
        assert fake.requests == []

    @pytest.mark.asyncio
    async def test_dimension_mismatch_is_hard_error(self):
        fake = FakeOllama({"short": [1.0, 2.0]}, dims=4)
        provider = OllamaEmbeddingProvider(ollama_config(), client=fake.client())
        with pytest.raises(DimensionMismatchError) as excinfo:
            await provider.embed("short")
        assert excinfo.value.expected == 4
        assert excinfo.value.actual == 2

    @pytest.mark.asyncio
    async def test_ensure_model_present(self):
        fake = FakeOllama({}, dims=4, models=["llama3:8b", "nomic-embed-text:latest"])
        provider = OllamaEmbeddingProvider(ollama_config(), client=fake.client())
        await provider.ensure_model()

    @pytest.mark.asyncio
    async def test_ensure_model_missing(self):
        fake = FakeOllama({}, dims=4, models=["llama3:8b"])
        provider = OllamaEmbeddingProvider(ollama_config(), client=fake.client())
        with pytest.raises(ModelNotFoundError, match="ollama pull nomic-embed-text"):
            await provider.ensure_model()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(200, json=["nomic-embed-text"]),
            httpx.Response(200, json={"models": ["nomic-embed-text"]}),
            httpx.Response(200, content=b"<html>proxy error</html>"),
        ],
    )
    async def test_malformed_model_listing(self, response):
        backend = Backend(lambda request, n: response)
        provider = OllamaEmbeddingProvider(ollama_config(), client=backend.client())
        with pytest.raises(ProviderRequestError):
            await provider.ensure_model()

    @pytest.mark.asyncio
    async def test_tagged_model_needs_exact_match(self):
        fake = FakeOllama({}, dims=4, models=["mxbai-embed-large:latest"])
        provider = OllamaEmbeddingProvider(ollama_config(model="mxbai-embed-large:v1"), client=fake.client())
        with pytest.raises(ModelNotFoundError):
            await provider.ensure_model()


class TestCloudProviders:
    def test_api_key_required_at_construction(self):
        for cls in (OpenAIEmbeddingProvider, CohereEmbeddingProvider, VoyageEmbeddingProvider):
            with pytest.raises(MissingCredentialError):
                cls(ProviderConfig(kind=cls.kind))

    @pytest.mark.asyncio
    async def test_openai_request_shape(self):
        backend = Backend(openai_style(8))
        provider = OpenAIEmbeddingProvider(
            ProviderConfig(kind="openai", api_key="sk-test", dimensions=8), client=backend.client()
        )

        await provider.embed("t1")

        request = backend.requests[0]
        assert request.url.path == "/embeddings"
        assert request.headers["Authorization"] == "Bearer sk-test"
        assert backend.bodies()[0] == {"model": "text-embedding-3-small", "input": ["t1"], "dimensions": 8}

    @pytest.mark.asyncio
    async def test_openai_batch_order_preserved_when_backend_reorders(self):
        backend = Backend(openai_style(4, reverse=True))
        provider = OpenAIEmbeddingProvider(
            ProviderConfig(kind="openai", api_key="k", dimensions=4), client=backend.client()
        )

        results = await provider.embed_batch(["t1", "t2", "t3"])

        assert [r.vector[0] for r in results] == [1.0, 2.0, 3.0]
        assert len(backend.requests) == 1

    @pytest.mark.asyncio
    async def test_cohere_splits_batches_and_keeps_order(self):
        backend = Backend(cohere_style(2))
        provider = CohereEmbeddingProvider(
            ProviderConfig(kind="cohere", api_key="co-key", dimensions=2), client=backend.client()
        )
        texts = [f"t{i}" for i in range(200)]

        results = await provider.embed_batch(texts)

        assert [r.vector[0] for r in results] == [float(i) for i in range(200)]
        assert sorted(len(b["texts"]) for b in backend.bodies()) == [8, 96, 96]
        body = backend.bodies()[0]
        assert body["input_type"] == "search_document"
        assert body["embedding_types"] == ["float"]
        assert backend.requests[0].headers["Authorization"] == "Bearer co-key"

    @pytest.mark.asyncio
    async def test_voyage_input_type(self):
        backend = Backend(openai_style(4))
        provider = VoyageEmbeddingProvider(
            ProviderConfig(kind="voyage", api_key="vk", dimensions=4),
            input_type="document",
            client=backend.client(),
        )

        result = await provider.embed("t5")
        await provider.embed("t6", query=True)

        assert result.vector[0] == 5.0
        assert result.model == "voyage-2"
        assert backend.bodies()[0] == {"model": "voyage-2", "input": ["t5"], "input_type": "document"}
        assert backend.bodies()[1]["input_type"] == "query"

    @pytest.mark.asyncio
    async def test_cohere_queries_use_search_query(self):
        backend = Backend(cohere_style(2))
        provider = CohereEmbeddingProvider(
            ProviderConfig(kind="cohere", api_key="co-key", dimensions=2), client=backend.client()
        )

        await provider.embed("t1")
        await provider.embed("t2", query=True)

        assert [b["input_type"] for b in backend.bodies()] == ["search_document", "search_query"]


class TestFailureHandling:
    def provider(self, respond, clock: FakeClock, **config) -> OpenAIEmbeddingProvider:
        backend = Backend(respond)
        provider = OpenAIEmbeddingProvider(
            ProviderConfig(kind="openai", api_key="k", dimensions=4, **config),
            client=backend.client(),
            sleep=clock.sleep,
        )
        provider.backend = backend  # type: ignore[attr-defined]
        return provider

    @pytest.mark.asyncio
    async def test_transient_error_retried(self, clock: FakeClock):
        ok = openai_style(4)

        def respond(request, n):
            return httpx.Response(503) if n == 1 else ok(request, n)

        provider = self.provider(respond, clock)
        result = await provider.embed("t2")
        assert result.vector[0] == 2.0
        assert len(provider.backend.requests) == 2
        assert clock.sleeps == [1.0]

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, clock: FakeClock):
        provider = self.provider(lambda r, n: httpx.Response(500), clock, retry_attempts=2)
        with pytest.raises(ProviderUnavailableError):
            await provider.embed("t1")
        assert len(provider.backend.requests) == 3

    @pytest.mark.asyncio
    async def test_bad_request_maps_to_invalid_input(self, clock: FakeClock):
        provider = self.provider(lambda r, n: httpx.Response(400, json={"error": "too long"}), clock)
        with pytest.raises(InvalidInputError, match="too long"):
            await provider.embed("t1")
        assert len(provider.backend.requests) == 1

    @pytest.mark.asyncio
    async def test_auth_failure_not_retried(self, clock: FakeClock):
        provider = self.provider(lambda r, n: httpx.Response(401, json={"error": "bad key"}), clock)
        with pytest.raises(ProviderRequestError) as excinfo:
            await provider.embed("t1")
        assert excinfo.value.status_code == 401
        assert len(provider.backend.requests) == 1

    @pytest.mark.asyncio
    async def test_malformed_response(self, clock: FakeClock):
        provider = self.provider(lambda r, n: httpx.Response(200, json={"unexpected": True}), clock)
        with pytest.raises(ProviderRequestError, match="malformed"):
            await provider.embed("t1")
        assert len(provider.backend.requests) == 1

    @pytest.mark.asyncio
    async def test_missing_items_fail_whole_batch(self, clock: FakeClock):
        def respond(request, n):
            return httpx.Response(200, json={"data": [{"index": 0, "embedding": unit(4, 1.0)}]})

        provider = self.provider(respond, clock)
        with pytest.raises(ProviderRequestError):
            await provider.embed_batch(["t1", "t2"])

    @pytest.mark.asyncio
    async def test_negative_index_rejected(self, clock: FakeClock):
        def respond(request, n):
            data = [{"index": 0, "embedding": unit(4, 1.0)}, {"index": -1, "embedding": unit(4, 2.0)}]
            return httpx.Response(200, json={"data": data})

        provider = self.provider(respond, clock)
        with pytest.raises(ProviderRequestError, match="out of range"):
            await provider.embed_batch(["t1", "t2"])

    @pytest.mark.asyncio
    async def test_close_leaves_injected_client_open(self, clock: FakeClock):
        provider = self.provider(openai_style(4), clock)
        await provider.close()
        assert (await provider.embed("t3")).vector[0] == 3.0
