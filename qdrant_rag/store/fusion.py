"""
Hybrid retrieval over one collection: dense + sparse search merged with
Reciprocal Rank Fusion.

Pipeline: embed query (dense) + encode query (sparse) → two concurrent
top-k' searches → RRF → top-k. Writes normalize caller ids to UUID keys
and store both vectors in one point.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Iterable, Mapping, Sequence, TypeVar

from qdrant_rag.aio import gather_or_cancel
from qdrant_rag.config import FusionConfig
from qdrant_rag.embeddings.provider import EmbeddingProvider
from qdrant_rag.errors import (
    DimensionMismatchError,
    IdentifierCollisionError,
    InvalidInputError,
    OperationTimeoutError,
)
from qdrant_rag.sparse import SparseEncoder, SparseVector
from qdrant_rag.store.vector_store import CollectionInfo, FilterSpec, PointRecord, ScoredPoint, VectorStore

LOG = logging.getLogger("store.fusion")

T = TypeVar("T")

# Fixed namespace: changing it would orphan every stored point.
ID_NAMESPACE = uuid.UUID("3b9d6c52-7e0a-5f41-9c8e-2a6f0d4b1e73")

ID_FIELD = "doc_id"
TEXT_FIELD = "text"


def normalize_id(raw_id: str | int) -> str:
    """Map a caller-supplied id to its store key (uuid5, stable across runs)."""
    if isinstance(raw_id, bool) or not isinstance(raw_id, (str, int)):
        raise InvalidInputError(f"document id must be a string or integer, got {type(raw_id).__name__}")
    text = str(raw_id)
    if not text.strip():
        raise InvalidInputError("document id must not be empty")
    return str(uuid.uuid5(ID_NAMESPACE, text))


@dataclass
class Document:
    """A document to index. Vectors left as None are computed on upsert."""

    id: str
    text: str
    payload: dict[str, Any] = field(default_factory=dict)
    dense_vector: list[float] | None = None
    sparse_vector: SparseVector | None = None


@dataclass
class SearchHit:
    """A hit from one ranked list; rank is 1-based within that list."""

    id: str
    key: str
    score: float
    rank: int
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass
class FusedHit:
    """A merged hit. ``ranks`` records the rank in each list that contained it."""

    id: str
    key: str
    fused_score: float
    payload: dict[str, Any] = field(default_factory=dict)
    ranks: dict[str, int] = field(default_factory=dict)

    @property
    def rank_sum(self) -> int:
        return sum(self.ranks.values())

    @property
    def text(self) -> str:
        return self.payload.get(TEXT_FIELD, "")


def reciprocal_rank_fusion(
    ranked_lists: Mapping[str, Sequence[SearchHit]],
    k: int = 60,
    limit: int | None = None,
) -> list[FusedHit]:
    """
    Merge ranked lists with RRF: ``score(d) = sum(1 / (k + rank_L(d)))``
    over the lists L containing d.

    Ordered by score descending, then by the sum of raw ranks ascending,
    then by store key, so equal inputs always give the same order.
    """
    if k < 0:
        raise ValueError(f"RRF constant must be non-negative, got {k}")
    fused: dict[str, FusedHit] = {}
    for name, hits in ranked_lists.items():
        for hit in hits:
            entry = fused.get(hit.key)
            if entry is None:
                entry = FusedHit(id=hit.id, key=hit.key, fused_score=0.0, payload=hit.payload)
                fused[hit.key] = entry
            elif name in entry.ranks:
                continue
            entry.ranks[name] = hit.rank
            entry.fused_score += 1.0 / (k + hit.rank)

    ordered = sorted(fused.values(), key=lambda h: (-h.fused_score, h.rank_sum, h.key))
    return ordered if limit is None else ordered[:limit]


def _ranked(points: Sequence[ScoredPoint]) -> list[SearchHit]:
    return [
        SearchHit(id=str(p.payload.get(ID_FIELD, p.key)), key=p.key, score=p.score, rank=rank, payload=p.payload)
        for rank, p in enumerate(points, start=1)
    ]


class FusionStore:
    """
    Dense, sparse and fused retrieval against one collection.

    Usage::

        fusion = FusionStore(store, "docs", provider)
        await fusion.upsert(Document(id="a", text="vector search engines"))
        hits = await fusion.search("semantic retrieval", k=5)
    """

    def __init__(
        self,
        store: VectorStore,
        collection: str,
        provider: EmbeddingProvider,
        encoder: SparseEncoder | None = None,
        config: FusionConfig | None = None,
    ) -> None:
        self._store = store
        self._collection = collection
        self._provider = provider
        self._encoder = encoder or SparseEncoder()
        self._config = config or FusionConfig()
        self._info: CollectionInfo | None = None

    @property
    def collection(self) -> str:
        return self._collection

    @property
    def config(self) -> FusionConfig:
        return self._config

    async def collection_info(self) -> CollectionInfo:
        """Read the collection schema once and check it matches the provider."""
        if self._info is None:
            info = await self._store.collection_info(self._collection)
            expected = self._provider.dimensions()
            if info.dimension != expected:
                raise DimensionMismatchError(info.dimension, expected, context=f"collection {self._collection}")
            self._info = info
        return self._info

    # ── search ──────────────────────────────────────────────────────────

    async def search(
        self,
        query: str,
        k: int = 5,
        filters: FilterSpec = None,
        *,
        timeout: float | None = None,
    ) -> list[FusedHit]:
        """Hybrid search: dense and sparse branches fused with RRF."""
        self._check_query(query, k)
        return await self._bounded(self._hybrid(query, k, filters), timeout, "hybrid search")

    async def semantic_search(
        self,
        query: str,
        k: int = 5,
        filters: FilterSpec = None,
        *,
        timeout: float | None = None,
    ) -> list[FusedHit]:
        """Dense-only search; fused_score is the raw similarity."""
        self._check_query(query, k)
        return await self._bounded(self._semantic(query, k, filters), timeout, "semantic search")

    async def _hybrid(self, query: str, k: int, filters: FilterSpec) -> list[FusedHit]:
        info = await self.collection_info()
        if not info.has_sparse:
            raise InvalidInputError(
                f"collection {self._collection} has no sparse vector; recreate it with hybrid search enabled"
            )
        fetch = k * max(1, self._config.overfetch)
        sparse_query = self._encoder.encode(query)
        dense, sparse = await gather_or_cancel(
            self._dense_branch(query, fetch, filters),
            self._store.search_sparse(self._collection, sparse_query, fetch, filters),
        )
        # points sharing no term with the query carry no lexical evidence
        sparse = [p for p in sparse if p.score > 0]
        fused = reciprocal_rank_fusion({"dense": dense, "sparse": _ranked(sparse)}, k=self._config.rrf_k, limit=k)
        LOG.debug(
            "hybrid search on %s: %d dense + %d sparse candidates -> %d hits",
            self._collection,
            len(dense),
            len(sparse),
            len(fused),
        )
        return fused

    async def _semantic(self, query: str, k: int, filters: FilterSpec) -> list[FusedHit]:
        await self.collection_info()
        hits = await self._dense_branch(query, k, filters)
        return [
            FusedHit(id=h.id, key=h.key, fused_score=h.score, payload=h.payload, ranks={"dense": h.rank})
            for h in hits
        ]

    async def _dense_branch(self, query: str, limit: int, filters: FilterSpec) -> list[SearchHit]:
        embedded = await self._provider.embed(query, query=True)
        points = await self._store.search_dense(self._collection, embedded.vector, limit, filters)
        return _ranked(points)

    # ── writes ──────────────────────────────────────────────────────────

    async def upsert(self, document: Document, *, timeout: float | None = None) -> str:
        """Index one document; returns its store key."""
        return (await self.upsert_many([document], timeout=timeout))[0]

    async def upsert_many(self, documents: Iterable[Document], *, timeout: float | None = None) -> list[str]:
        """
        Index documents in one batch; returns their store keys.

        Repeating an id inside the batch keeps the last occurrence. Vectors
        are computed only where the document does not already carry them.
        """
        docs = list(documents)
        if not docs:
            return []
        return await self._bounded(self._write(docs), timeout, "upsert")

    async def _write(self, docs: list[Document]) -> list[str]:
        keys = [normalize_id(doc.id) for doc in docs]
        latest: dict[str, Document] = {}
        for key, doc in zip(keys, docs):
            if not isinstance(doc.text, str) or not doc.text.strip():
                raise InvalidInputError(f"document {doc.id!r} has empty text")
            previous = latest.get(key)
            if previous is not None and str(previous.id) != str(doc.id):
                self._collision(key, str(previous.id), str(doc.id))
            latest[key] = doc

        info = await self.collection_info()
        pending = [(key, doc) for key, doc in latest.items() if doc.dense_vector is None]
        existing, embedded = await gather_or_cancel(
            self._store.retrieve_payloads(self._collection, list(latest)),
            self._provider.embed_batch([doc.text for _, doc in pending]),
        )
        for key, payload in existing.items():
            stored_id = payload.get(ID_FIELD)
            if stored_id is not None and str(stored_id) != str(latest[key].id):
                self._collision(key, str(stored_id), str(latest[key].id))

        dense_by_key = {key: result.vector for (key, _), result in zip(pending, embedded)}
        points = []
        for key, doc in latest.items():
            dense = doc.dense_vector if doc.dense_vector is not None else dense_by_key[key]
            if len(dense) != info.dimension:
                raise DimensionMismatchError(info.dimension, len(dense), context=f"document {doc.id!r}")
            sparse = doc.sparse_vector if doc.sparse_vector is not None else self._encoder.encode(doc.text)
            payload = {**doc.payload, ID_FIELD: str(doc.id), TEXT_FIELD: doc.text}
            points.append(PointRecord(key=key, dense=list(dense), sparse=sparse, payload=payload))

        await self._store.upsert_points(self._collection, points)
        LOG.info("Upserted %d point(s) into %s", len(points), self._collection)
        return keys

    async def delete(self, ids: Iterable[str | int], *, timeout: float | None = None) -> list[str]:
        """Delete documents by caller id. Unknown ids are ignored."""
        keys = [normalize_id(raw) for raw in ids]
        if keys:
            await self._bounded(self._store.delete_points(self._collection, keys), timeout, "delete")
            LOG.info("Deleted %d point(s) from %s", len(keys), self._collection)
        return keys

    # ── helpers ─────────────────────────────────────────────────────────

    def _collision(self, key: str, first: str, second: str) -> None:
        LOG.error("Identifier collision in %s: %r and %r -> %s", self._collection, first, second, key)
        raise IdentifierCollisionError(key, first, second)

    @staticmethod
    def _check_query(query: str, k: int) -> None:
        if not isinstance(query, str) or not query.strip():
            raise InvalidInputError("query must not be empty")
        if k < 1:
            raise InvalidInputError(f"k must be >= 1, got {k}")

    async def _bounded(self, operation: Awaitable[T], timeout: float | None, what: str) -> T:
        limit = timeout if timeout is not None else self._config.operation_timeout
        if limit is None:
            return await operation
        try:
            return await asyncio.wait_for(operation, limit)
        except asyncio.TimeoutError:
            raise OperationTimeoutError(f"{what} on {self._collection} exceeded {limit}s") from None
