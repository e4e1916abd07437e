from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field


class SearchMode(str, Enum):
    SEMANTIC = "semantic"
    HYBRID = "hybrid"


class DocumentInput(BaseModel):
    id: Union[str, int]
    text: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class CollectionSummary(BaseModel):
    name: str
    vectorSize: int
    distance: str
    hybridEnabled: bool
    pointsCount: int


class CollectionList(BaseModel):
    collections: List[str]


class HitOutput(BaseModel):
    id: str
    score: float
    text: str
    metadata: Dict[str, Any]
    denseRank: Optional[int] = None
    sparseRank: Optional[int] = None


class SearchResponse(BaseModel):
    collection: str
    query: str
    mode: SearchMode
    results: List[HitOutput]


class DocumentIdsResult(BaseModel):
    collection: str
    documentIds: List[str]
    count: int


class StatusResult(BaseModel):
    collection: str
    status: str


class ErrorDetail(BaseModel):
    kind: str
    message: str


class ErrorResult(BaseModel):
    error: ErrorDetail
