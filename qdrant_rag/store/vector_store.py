"""
Abstract vector store interface with a Qdrant backend.

The pipeline consumes the store through VectorStore; collection schema
(dimension, distance, sparse field) is fixed at creation and only read
back here. Qdrant runs in two modes:
- Remote (url / api_key): a Qdrant server or cloud cluster
- Local (location=":memory:" or a path): in-process, no server needed

Store calls are retried with the same backoff policy as embedding calls.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping, Sequence, TypeVar

import httpx
from pydantic import ValidationError
from qdrant_client import AsyncQdrantClient, models
from qdrant_client.http.exceptions import ResponseHandlingException, UnexpectedResponse

from qdrant_rag.embeddings.rate_limit import RateLimitedCaller, RetryPolicy
from qdrant_rag.errors import (
    ConfigurationError,
    InvalidInputError,
    RetrievalError,
    StoreRequestError,
    StoreUnavailableError,
)
from qdrant_rag.sparse import SparseVector, to_qdrant

LOG = logging.getLogger("store.vector_store")

T = TypeVar("T")

DENSE_VECTOR = "dense"
SPARSE_VECTOR = "text"

FILTER_CLAUSES = ("must", "should", "must_not", "min_should")

FilterSpec = Mapping[str, Any] | models.Filter | None


@dataclass
class PointRecord:
    """One point to write: store key, vectors and payload."""

    key: str
    dense: list[float]
    sparse: SparseVector | None = None
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass
class ScoredPoint:
    """A single ranked result from one search branch."""

    key: str
    score: float
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass
class CollectionInfo:
    name: str
    dimension: int
    distance: str
    has_sparse: bool
    points_count: int = 0
    vector_name: str | None = DENSE_VECTOR


class VectorStore(ABC):
    """
    Abstract interface for vector storage and similarity search.

    Implementations must make single-point upsert/delete atomic; callers
    add no locking of their own.
    """

    @abstractmethod
    async def create_collection(
        self,
        name: str,
        dimension: int,
        distance: str = "Cosine",
        enable_hybrid: bool = False,
    ) -> None:
        """Create a collection with a dense vector and optional sparse field."""

    @abstractmethod
    async def list_collections(self) -> list[str]:
        """Return the names of all collections."""

    @abstractmethod
    async def delete_collection(self, name: str) -> None:
        """Drop a collection and all its points."""

    @abstractmethod
    async def collection_info(self, name: str) -> CollectionInfo:
        """Read back a collection's schema and size."""

    @abstractmethod
    async def upsert_points(self, collection: str, points: Sequence[PointRecord]) -> None:
        """Write points. Upserts on matching keys."""

    @abstractmethod
    async def delete_points(self, collection: str, keys: Sequence[str]) -> None:
        """Delete points by key. Missing keys are ignored."""

    @abstractmethod
    async def retrieve_payloads(self, collection: str, keys: Sequence[str]) -> dict[str, dict[str, Any]]:
        """Return ``{key: payload}`` for the keys that exist."""

    @abstractmethod
    async def search_dense(
        self,
        collection: str,
        vector: Sequence[float],
        limit: int,
        filters: FilterSpec = None,
    ) -> list[ScoredPoint]:
        """Dense similarity search, best first."""

    @abstractmethod
    async def search_sparse(
        self,
        collection: str,
        vector: SparseVector,
        limit: int,
        filters: FilterSpec = None,
    ) -> list[ScoredPoint]:
        """Sparse (lexical) similarity search, best first."""

    async def close(self) -> None:
        """Release resources. Override if needed."""
        pass


def is_transient_store(exc: BaseException) -> bool:
    """Connectivity failures and 5xx/429 responses from Qdrant are retried."""
    if isinstance(exc, UnexpectedResponse):
        return exc.status_code == 429 or exc.status_code >= 500
    return isinstance(exc, (ResponseHandlingException, httpx.TransportError, ConnectionError))


def build_filter(filters: FilterSpec) -> models.Filter | None:
    """
    Turn a caller filter into a Qdrant Filter.

    A mapping with must/should/must_not keys is validated as a raw Qdrant
    filter; any other mapping is a set of payload equality conditions
    (lists match any of their values).
    """
    if filters is None or isinstance(filters, models.Filter):
        return filters
    if not filters:
        return None
    try:
        if any(clause in filters for clause in FILTER_CLAUSES):
            return models.Filter.model_validate(dict(filters))
        conditions = []
        for key, value in filters.items():
            if isinstance(value, (list, tuple)):
                match: Any = models.MatchAny(any=list(value))
            else:
                match = models.MatchValue(value=value)
            conditions.append(models.FieldCondition(key=key, match=match))
        return models.Filter(must=conditions)
    except ValidationError as exc:
        raise InvalidInputError(f"invalid filter: {exc}") from exc


class QdrantVectorStore(VectorStore):
    """
    Qdrant-backed vector store over AsyncQdrantClient.

    Hybrid collections carry a named dense vector ``dense`` and a sparse
    vector ``text``. Collections created elsewhere with a single unnamed
    vector are supported for dense search.
    """

    def __init__(
        self,
        url: str = "http://localhost:6333",
        api_key: str | None = None,
        location: str | None = None,
        client: AsyncQdrantClient | None = None,
        retry: RetryPolicy | None = None,
    ) -> None:
        if client is not None:
            self._client = client
        elif location:
            self._client = AsyncQdrantClient(location=location)
            LOG.info("Qdrant: local mode (%s)", location)
        else:
            self._client = AsyncQdrantClient(url=url, api_key=api_key)
            LOG.info("Qdrant: connected to %s", url)
        self._caller = RateLimitedCaller(
            "qdrant",
            None,
            retry or RetryPolicy(),
            is_transient=is_transient_store,
            exhausted_error=StoreUnavailableError,
        )
        self._layouts: dict[str, CollectionInfo] = {}

    async def _call(self, operation: Callable[[], Awaitable[T]]) -> T:
        try:
            return await self._caller.call(operation)
        except UnexpectedResponse as exc:
            raise self._rejected(exc) from exc
        except ValueError as exc:
            # local mode reports missing or duplicate collections this way
            raise InvalidInputError(str(exc)) from exc

    @staticmethod
    def _rejected(exc: UnexpectedResponse) -> RetrievalError:
        code = exc.status_code
        detail = exc.content.decode("utf-8", errors="replace")[:200] if exc.content else exc.reason_phrase
        if code in (401, 403):
            return ConfigurationError(f"qdrant refused credentials ({code}): {detail}. Check QDRANT_API_KEY.")
        if code == 404:
            return InvalidInputError(f"not found: {detail}")
        if code in (400, 409, 422):
            return InvalidInputError(f"qdrant rejected request ({code}): {detail}")
        return StoreRequestError(f"qdrant request failed ({code}): {detail}", status_code=code)

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._caller.policy

    # ── collections ─────────────────────────────────────────────────────

    async def create_collection(
        self,
        name: str,
        dimension: int,
        distance: str = "Cosine",
        enable_hybrid: bool = False,
    ) -> None:
        try:
            metric = models.Distance(distance)
        except ValueError:
            supported = ", ".join(d.value for d in models.Distance)
            raise InvalidInputError(f"unknown distance {distance!r}. Supported: {supported}") from None
        sparse = {SPARSE_VECTOR: models.SparseVectorParams()} if enable_hybrid else None
        await self._call(
            lambda: self._client.create_collection(
                collection_name=name,
                vectors_config={DENSE_VECTOR: models.VectorParams(size=dimension, distance=metric)},
                sparse_vectors_config=sparse,
            )
        )
        self._layouts.pop(name, None)
        LOG.info("Created collection %s (dim=%d, distance=%s, hybrid=%s)", name, dimension, metric.value, enable_hybrid)

    async def list_collections(self) -> list[str]:
        resp = await self._call(self._client.get_collections)
        return [c.name for c in resp.collections]

    async def delete_collection(self, name: str) -> None:
        await self._call(lambda: self._client.delete_collection(collection_name=name))
        self._layouts.pop(name, None)

    async def collection_info(self, name: str) -> CollectionInfo:
        info = await self._call(lambda: self._client.get_collection(collection_name=name))
        params = info.config.params
        vectors = params.vectors
        if isinstance(vectors, dict):
            if not vectors:
                raise ConfigurationError(f"collection {name} has no dense vector")
            vector_name = DENSE_VECTOR if DENSE_VECTOR in vectors else next(iter(vectors))
            dense = vectors[vector_name]
        else:
            vector_name, dense = None, vectors
        layout = CollectionInfo(
            name=name,
            dimension=dense.size,
            distance=dense.distance.value if hasattr(dense.distance, "value") else str(dense.distance),
            has_sparse=SPARSE_VECTOR in (params.sparse_vectors or {}),
            points_count=info.points_count or 0,
            vector_name=vector_name,
        )
        self._layouts[name] = layout
        return layout

    async def _layout(self, name: str) -> CollectionInfo:
        layout = self._layouts.get(name)
        if layout is None:
            layout = await self.collection_info(name)
        return layout

    # ── points ──────────────────────────────────────────────────────────

    async def upsert_points(self, collection: str, points: Sequence[PointRecord]) -> None:
        if not points:
            return
        layout = await self._layout(collection)
        structs = []
        for point in points:
            if layout.vector_name is None:
                vector: Any = point.dense
            else:
                vector = {layout.vector_name: point.dense}
                if layout.has_sparse and point.sparse:
                    vector[SPARSE_VECTOR] = to_qdrant(point.sparse)
            structs.append(models.PointStruct(id=point.key, vector=vector, payload=point.payload))
        await self._call(lambda: self._client.upsert(collection_name=collection, points=structs, wait=True))

    async def delete_points(self, collection: str, keys: Sequence[str]) -> None:
        if not keys:
            return
        await self._call(
            lambda: self._client.delete(
                collection_name=collection,
                points_selector=models.PointIdsList(points=list(keys)),
                wait=True,
            )
        )

    async def retrieve_payloads(self, collection: str, keys: Sequence[str]) -> dict[str, dict[str, Any]]:
        if not keys:
            return {}
        records = await self._call(
            lambda: self._client.retrieve(
                collection_name=collection,
                ids=list(keys),
                with_payload=True,
                with_vectors=False,
            )
        )
        return {str(r.id): dict(r.payload or {}) for r in records}

    async def search_dense(
        self,
        collection: str,
        vector: Sequence[float],
        limit: int,
        filters: FilterSpec = None,
    ) -> list[ScoredPoint]:
        layout = await self._layout(collection)
        return await self._query(collection, list(vector), layout.vector_name, limit, filters)

    async def search_sparse(
        self,
        collection: str,
        vector: SparseVector,
        limit: int,
        filters: FilterSpec = None,
    ) -> list[ScoredPoint]:
        if not vector:
            return []
        return await self._query(collection, to_qdrant(vector), SPARSE_VECTOR, limit, filters)

    async def _query(
        self,
        collection: str,
        query: Any,
        using: str | None,
        limit: int,
        filters: FilterSpec,
    ) -> list[ScoredPoint]:
        qfilter = build_filter(filters)
        resp = await self._call(
            lambda: self._client.query_points(
                collection_name=collection,
                query=query,
                using=using,
                limit=limit,
                query_filter=qfilter,
                with_payload=True,
            )
        )
        return [ScoredPoint(key=str(p.id), score=p.score, payload=dict(p.payload or {})) for p in resp.points]

    async def close(self) -> None:
        await self._client.close()


def build_vector_store(backend: str = "qdrant", **kwargs: Any) -> VectorStore:
    """
    Factory: create a VectorStore of the requested type.

    Args:
        backend: "qdrant" (only supported backend currently)
        **kwargs: Backend-specific configuration

    Raises:
        ConfigurationError: Unknown backend
    """
    if backend == "qdrant":
        return QdrantVectorStore(**kwargs)
    raise ConfigurationError(f"Unknown vector store backend: {backend!r}. Supported: 'qdrant'")
