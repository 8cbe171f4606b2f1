"""Embedding agent: exposes the text embedder as a capability."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

logger = logging.getLogger(__name__)


class EmbeddingAgent:
    """Native agent over an Embedder."""

    def __init__(self, embedder: Any = None):
        self.embedder = embedder

    async def bootstrap(self, global_config: dict[str, Any], context: dict[str, Any]) -> dict[str, Any]:
        if self.embedder is None:
            from localassist.memory import Embedder

            self.embedder = Embedder()
        # Forces the model to load now instead of on the first query
        vector = await asyncio.to_thread(self.embedder.embed, "warmup")
        logger.info(f"Embedding model ready ({len(vector)} dimensions)")
        return {"ready": True, "dimensions": len(vector)}

    async def execute(self, params: dict[str, Any], context: dict[str, Any]) -> dict[str, Any]:
        action = params.get("action", "generate-embedding")
        if action != "generate-embedding":
            raise ValueError(f"Unknown embedding action: {action}")

        text = params.get("text")
        if not text:
            raise ValueError("text is required")
        vector = await asyncio.to_thread(self.embedder.embed, text)
        return {"embedding": vector, "dimensions": len(vector)}
