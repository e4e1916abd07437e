from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from mcp.server.fastmcp import FastMCP

from qdrant_rag import tools
from qdrant_rag.config import AppConfig
from qdrant_rag.errors import RetrievalError
from qdrant_rag.models import ErrorDetail, ErrorResult
from qdrant_rag.tools import RetrievalService

LOG = logging.getLogger("server")


class ServiceHolder:
    """Builds the RetrievalService on first use; the Ollama model check needs a running loop."""

    def __init__(self, config: AppConfig, service: Optional[RetrievalService] = None) -> None:
        self._config = config
        self._service = service
        self._lock = asyncio.Lock()

    async def get(self) -> RetrievalService:
        async with self._lock:
            if self._service is None:
                self._service = await RetrievalService.from_config(self._config)
            return self._service


def _validate_required(name: str, value: Optional[str]) -> None:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValueError(f"Missing required field: {name}")


def _json_payload(model) -> dict:
    return model.model_dump(mode="json")


async def run_tool(holder: ServiceHolder, operation: Callable[[RetrievalService], Awaitable[Any]]) -> dict:
    """Run one tool against the shared service; pipeline errors become an error payload."""
    try:
        result = await operation(await holder.get())
    except RetrievalError as exc:
        LOG.warning("Tool call failed: %s: %s", exc.kind, exc.message)
        return _json_payload(ErrorResult(error=ErrorDetail(**exc.to_dict())))
    return _json_payload(result)


def build_server(config: Optional[AppConfig] = None, service: Optional[RetrievalService] = None) -> FastMCP:
    server = FastMCP("qdrant-rag")
    holder = ServiceHolder(config or AppConfig.from_env(), service)

    async def _run(operation: Callable[[RetrievalService], Awaitable[Any]]) -> dict:
        return await run_tool(holder, operation)

    @server.tool(description="Create a collection sized for the configured embedding model.")
    async def create_collection(name: str, distance: str = "Cosine", enableHybrid: bool = False) -> dict:
        _validate_required("name", name)
        return await _run(lambda s: tools.create_collection(s, name, distance=distance, enableHybrid=enableHybrid))

    @server.tool(description="List all collections.")
    async def list_collections() -> dict:
        return await _run(tools.list_collections)

    @server.tool(description="Return vector size, distance metric, hybrid support and point count for a collection.")
    async def get_collection_info(name: str) -> dict:
        _validate_required("name", name)
        return await _run(lambda s: tools.get_collection_info(s, name))

    @server.tool(description="Delete a collection and all of its documents.")
    async def delete_collection(name: str) -> dict:
        _validate_required("name", name)
        return await _run(lambda s: tools.delete_collection(s, name))

    @server.tool(
        description="Embed and store documents ({id, text, metadata}). Re-adding an id overwrites it."
    )
    async def add_documents(collection: str, documents: List[Dict[str, Any]]) -> dict:
        _validate_required("collection", collection)
        return await _run(lambda s: tools.add_documents(s, collection, documents))

    @server.tool(description="Search a collection by semantic similarity, optionally filtered by metadata.")
    async def semantic_search(
        collection: str, query: str, limit: int = 5, filter: Optional[Dict[str, Any]] = None
    ) -> dict:
        _validate_required("collection", collection)
        _validate_required("query", query)
        return await _run(lambda s: tools.semantic_search(s, collection, query, limit=limit, filter=filter))

    @server.tool(
        description="Search a hybrid collection with semantic and keyword signals fused by Reciprocal Rank Fusion."
    )
    async def hybrid_search(
        collection: str, query: str, limit: int = 5, filter: Optional[Dict[str, Any]] = None
    ) -> dict:
        _validate_required("collection", collection)
        _validate_required("query", query)
        return await _run(lambda s: tools.hybrid_search(s, collection, query, limit=limit, filter=filter))

    @server.tool(description="Delete documents by id. Unknown ids are ignored.")
    async def delete_documents(collection: str, ids: List[str]) -> dict:
        _validate_required("collection", collection)
        return await _run(lambda s: tools.delete_documents(s, collection, ids))

    return server


def main() -> None:
    config = AppConfig.from_env()
    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    server = build_server(config)
    server.run()


if __name__ == "__main__":
    main()
