from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError

from qdrant_rag.config import AppConfig, FusionConfig
from qdrant_rag.embeddings import EmbeddingProvider, RetryPolicy, create_provider
from qdrant_rag.errors import InvalidInputError
from qdrant_rag.models import (
    CollectionList,
    CollectionSummary,
    DocumentIdsResult,
    DocumentInput,
    HitOutput,
    SearchMode,
    SearchResponse,
    StatusResult,
)
from qdrant_rag.sparse import SparseEncoder
from qdrant_rag.store import Document, FusedHit, FusionStore, VectorStore, build_vector_store
from qdrant_rag.store.fusion import ID_FIELD, TEXT_FIELD

LOG = logging.getLogger("tools")


class RetrievalService:
    """Long-lived wiring: one provider, one store client, one FusionStore per collection."""

    def __init__(
        self,
        store: VectorStore,
        provider: EmbeddingProvider,
        encoder: Optional[SparseEncoder] = None,
        fusion_config: Optional[FusionConfig] = None,
    ) -> None:
        self.store = store
        self.provider = provider
        self.encoder = encoder or SparseEncoder()
        self.fusion_config = fusion_config or FusionConfig()
        self._fusions: Dict[str, FusionStore] = {}

    @classmethod
    async def from_config(cls, config: AppConfig) -> "RetrievalService":
        provider = await create_provider(config.provider)
        store = build_vector_store(
            "qdrant",
            url=config.store.url,
            api_key=config.store.api_key,
            location=config.store.location,
            retry=RetryPolicy(
                retries=config.provider.retry_attempts,
                base_delay=config.provider.retry_base_delay,
                max_delay=config.provider.retry_max_delay,
            ),
        )
        return cls(store, provider, fusion_config=config.fusion)

    def fusion(self, collection: str) -> FusionStore:
        fusion = self._fusions.get(collection)
        if fusion is None:
            fusion = FusionStore(self.store, collection, self.provider, self.encoder, self.fusion_config)
            self._fusions[collection] = fusion
        return fusion

    def forget(self, collection: str) -> None:
        self._fusions.pop(collection, None)

    async def close(self) -> None:
        await self.provider.close()
        await self.store.close()


def _hit_output(hit: FusedHit) -> HitOutput:
    metadata = {k: v for k, v in hit.payload.items() if k not in (ID_FIELD, TEXT_FIELD)}
    return HitOutput(
        id=hit.id,
        score=hit.fused_score,
        text=hit.text,
        metadata=metadata,
        denseRank=hit.ranks.get("dense"),
        sparseRank=hit.ranks.get("sparse"),
    )


async def create_collection(
    service: RetrievalService, name: str, distance: str = "Cosine", enableHybrid: bool = False
) -> CollectionSummary:
    service.forget(name)
    await service.store.create_collection(
        name,
        dimension=service.provider.dimensions(),
        distance=distance,
        enable_hybrid=enableHybrid,
    )
    return await get_collection_info(service, name)


async def list_collections(service: RetrievalService) -> CollectionList:
    return CollectionList(collections=sorted(await service.store.list_collections()))


async def get_collection_info(service: RetrievalService, name: str) -> CollectionSummary:
    info = await service.store.collection_info(name)
    return CollectionSummary(
        name=info.name,
        vectorSize=info.dimension,
        distance=info.distance,
        hybridEnabled=info.has_sparse,
        pointsCount=info.points_count,
    )


async def delete_collection(service: RetrievalService, name: str) -> StatusResult:
    await service.store.delete_collection(name)
    service.forget(name)
    return StatusResult(collection=name, status="deleted")


async def add_documents(
    service: RetrievalService, collection: str, documents: Sequence[DocumentInput | Dict[str, Any]]
) -> DocumentIdsResult:
    try:
        inputs = [d if isinstance(d, DocumentInput) else DocumentInput.model_validate(d) for d in documents]
    except ValidationError as exc:
        raise InvalidInputError(f"invalid document: {exc.errors()[0]['msg']}") from exc
    docs = [Document(id=str(d.id), text=d.text, payload=dict(d.metadata)) for d in inputs]
    await service.fusion(collection).upsert_many(docs)
    ids = [doc.id for doc in docs]
    LOG.info("Added %d document(s) to %s", len(ids), collection)
    return DocumentIdsResult(collection=collection, documentIds=ids, count=len(ids))


async def semantic_search(
    service: RetrievalService,
    collection: str,
    query: str,
    limit: int = 5,
    filter: Optional[Dict[str, Any]] = None,
) -> SearchResponse:
    hits = await service.fusion(collection).semantic_search(query, k=limit, filters=filter)
    return SearchResponse(
        collection=collection,
        query=query,
        mode=SearchMode.SEMANTIC,
        results=[_hit_output(h) for h in hits],
    )


async def hybrid_search(
    service: RetrievalService,
    collection: str,
    query: str,
    limit: int = 5,
    filter: Optional[Dict[str, Any]] = None,
) -> SearchResponse:
    hits = await service.fusion(collection).search(query, k=limit, filters=filter)
    return SearchResponse(
        collection=collection,
        query=query,
        mode=SearchMode.HYBRID,
        results=[_hit_output(h) for h in hits],
    )


async def delete_documents(service: RetrievalService, collection: str, ids: List[str]) -> DocumentIdsResult:
    await service.fusion(collection).delete(ids)
    return DocumentIdsResult(collection=collection, documentIds=[str(i) for i in ids], count=len(ids))
