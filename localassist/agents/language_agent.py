"""Language-model agent: answers, greetings and raw completions."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from localassist.errors import CompletionUnavailableError
from localassist.llm import OllamaClient
from localassist.prompts import build_answer_prompt, build_greeting_prompt

logger = logging.getLogger(__name__)

ANSWER_TIMEOUT_MS = 20_000
ANSWER_MAX_TOKENS = 300
GREETING_TIMEOUT_MS = 8_000
GREETING_MAX_TOKENS = 60

DEFAULT_GREETING = "Hello! How can I help you today?"


def memory_context(context: dict[str, Any]) -> str | None:
    """Text of memories retrieved by an earlier MemoryAgent step, if any."""
    previous = context.get("MemoryAgent_result")
    payload = getattr(previous, "result", None)
    if not getattr(previous, "success", False) or not isinstance(payload, dict):
        return None

    texts = [hit.get("text", "") for hit in payload.get("results", []) if hit.get("text")]
    if not texts:
        return None
    return "\n".join(f"- {text}" for text in texts)


class LanguageModelAgent:
    """Native agent wrapping the local completion client."""

    def __init__(self, client: OllamaClient | None = None):
        self.client = client or OllamaClient()
        self.available: bool | None = None

    async def bootstrap(self, global_config: dict[str, Any], context: dict[str, Any]) -> dict[str, Any]:
        self.available = await asyncio.to_thread(self.client.check_health)
        if not self.available:
            logger.warning("Completion service not reachable; answers will fail until it is")
        return {"available": self.available}

    async def execute(self, params: dict[str, Any], context: dict[str, Any]) -> dict[str, Any]:
        action = params.get("action", "answer")
        if action == "answer":
            return await self.answer(params, context)
        if action == "greet":
            return await self.greet(params, context)
        if action == "complete":
            return await self.complete(params, context)
        if action == "check-availability":
            self.available = await asyncio.to_thread(self.client.check_health)
            return {"available": self.available}
        raise ValueError(f"Unknown language model action: {action}")

    async def answer(self, params: dict[str, Any], context: dict[str, Any]) -> dict[str, Any]:
        question = params.get("question") or params.get("text") or ""
        grounding = memory_context(context)
        prompt = build_answer_prompt(question, grounding)
        result = await self.client.complete(
            prompt,
            timeout_ms=int(params.get("timeout_ms") or ANSWER_TIMEOUT_MS),
            max_tokens=int(params.get("max_tokens") or ANSWER_MAX_TOKENS),
        )
        return {"response": result.text, "grounded": grounding is not None}

    async def greet(self, params: dict[str, Any], context: dict[str, Any]) -> dict[str, Any]:
        try:
            result = await self.client.complete(
                build_greeting_prompt(params.get("text") or "Hello"),
                timeout_ms=GREETING_TIMEOUT_MS,
                max_tokens=GREETING_MAX_TOKENS,
            )
            return {"response": result.text}
        except CompletionUnavailableError as e:
            logger.warning(f"Greeting completion unavailable, using canned reply: {e}")
            return {"response": params.get("suggested_response") or DEFAULT_GREETING}

    async def complete(self, params: dict[str, Any], context: dict[str, Any]) -> dict[str, Any]:
        prompt = params.get("prompt")
        if not prompt:
            raise ValueError("prompt is required")
        options = params.get("options") or {}
        result = await self.client.complete(
            prompt,
            timeout_ms=int(options.get("timeout_ms", ANSWER_TIMEOUT_MS)),
            max_tokens=int(options.get("max_tokens", ANSWER_MAX_TOKENS)),
            temperature=float(options.get("temperature", 0.2)),
            stop=options.get("stop"),
        )
        return {"response": result.text}
