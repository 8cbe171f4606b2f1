"""Memory agent: stores and searches user statements."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from localassist.schemas import MemoryEntry

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_LIMIT = 10
DEFAULT_LIST_LIMIT = 20

SCHEMA = {
    "type": "object",
    "properties": {
        "action": {
            "type": "string",
            "enum": ["memory-store", "memory-search", "memory-list", "memory-count"],
        },
        "text": {"type": "string"},
        "query": {"type": "string"},
        "limit": {"type": "integer", "minimum": 1},
        "session_id": {"type": ["string", "null"]},
    },
    "required": ["action"],
}


class MemoryAgent:
    """Native agent over a MemoryStore."""

    def __init__(self, memory: Any = None):
        self.memory = memory

    async def bootstrap(self, global_config: dict[str, Any], context: dict[str, Any]) -> dict[str, Any]:
        if self.memory is None:
            from localassist.memory import get_memory_store

            self.memory = get_memory_store(global_config.get("memory_dir"))
        count = await asyncio.to_thread(self.memory.count)
        logger.info(f"Memory agent ready with {count} memories")
        return {"ready": True, "count": count}

    async def execute(self, params: dict[str, Any], context: dict[str, Any]) -> dict[str, Any]:
        action = params.get("action", "memory-search")
        if action == "memory-store":
            return await self.store(params, context)
        if action == "memory-search":
            return await self.search(params, context)
        if action == "memory-list":
            return await self.list_recent(params, context)
        if action == "memory-count":
            return {"count": await asyncio.to_thread(self.memory.count)}
        raise ValueError(f"Unknown memory action: {action}")

    async def store(self, params: dict[str, Any], context: dict[str, Any]) -> dict[str, Any]:
        text = (params.get("text") or "").strip()
        if not text:
            raise ValueError("Nothing to store: text is empty")

        metadata = {"intent": params["intent"]} if params.get("intent") else {}
        entry = MemoryEntry(
            text=text,
            session_id=params.get("session_id") or context.get("session_id"),
            entities=params.get("entities") or {},
            metadata=metadata,
        )
        memory_id = await asyncio.to_thread(self.memory.store, entry)
        return {"stored": True, "memory_id": memory_id}

    async def search(self, params: dict[str, Any], context: dict[str, Any]) -> dict[str, Any]:
        query = (params.get("query") or "").strip()
        if not query:
            return {"results": [], "count": 0}

        hits = await asyncio.to_thread(
            self.memory.search,
            query,
            session_id=params.get("session_id"),
            limit=int(params.get("limit") or DEFAULT_SEARCH_LIMIT),
            min_similarity=float(params.get("min_similarity") or 0.0),
            entities=params.get("entities"),
        )
        results = [hit.model_dump() for hit in hits]
        return {"results": results, "count": len(results)}

    async def list_recent(self, params: dict[str, Any], context: dict[str, Any]) -> dict[str, Any]:
        hits = await asyncio.to_thread(
            self.memory.recent,
            int(params.get("limit") or DEFAULT_LIST_LIMIT),
            params.get("session_id"),
        )
        results = [hit.model_dump() for hit in hits]
        return {"results": results, "count": len(results)}
