"""
Vector store access and hybrid (dense + sparse) retrieval.
"""

from __future__ import annotations

from qdrant_rag.store.fusion import (
    Document,
    FusedHit,
    FusionStore,
    SearchHit,
    normalize_id,
    reciprocal_rank_fusion,
)
from qdrant_rag.store.vector_store import (
    CollectionInfo,
    PointRecord,
    QdrantVectorStore,
    ScoredPoint,
    VectorStore,
    build_filter,
    build_vector_store,
)

__all__ = [
    "CollectionInfo",
    "Document",
    "FusedHit",
    "FusionStore",
    "PointRecord",
    "QdrantVectorStore",
    "ScoredPoint",
    "SearchHit",
    "VectorStore",
    "build_filter",
    "build_vector_store",
    "normalize_id",
    "reciprocal_rank_fusion",
]
