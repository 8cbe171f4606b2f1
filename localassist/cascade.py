"""Staged memory search: current conversation, then session, then all sessions."""

from __future__ import annotations

import asyncio
import inspect
import logging
import re
from dataclasses import dataclass
from typing import Any

from localassist.errors import CascadeStageError
from localassist.prompts import build_staged_prompt, format_snippets
from localassist.router.entities import extract_technologies
from localassist.schemas import MemoryHit, StageResult, StageTag
from localassist.similarity import cosine_similarity, mean_top

logger = logging.getLogger(__name__)

CROSS_SESSION_PATTERN = re.compile(
    r"\b(recently|before|earlier|previously|talked about|discussed|mentioned|food|pizza|conversation|chat)\b",
    re.IGNORECASE,
)

# Stage 1: current conversation
MIN_CONTEXT_CHARS = 40
SAMPLE_THRESHOLD_CHARS = 1200
SAMPLE_EDGE_CHARS = 400
CURRENT_MIN_SIMILARITY = 0.18

# Stages 2 and 3: memory search
MEMORY_SEARCH_LIMIT = 20


@dataclass(frozen=True)
class StagePolicy:
    """Thresholds and completion budget for one stage."""

    tag: StageTag
    min_similarity: float
    top_threshold: float
    mean_threshold: float
    timeout_ms: int
    max_tokens: int
    temperature: float = 0.2


CURRENT_POLICY = StagePolicy(StageTag.CURRENT, CURRENT_MIN_SIMILARITY, 0.0, 0.0, 10_000, 140)
SESSION_POLICY = StagePolicy(StageTag.SESSION, 0.26, 0.28, 0.25, 12_000, 150)
CROSS_SESSION_POLICY = StagePolicy(StageTag.CROSS_SESSION, 0.32, 0.34, 0.30, 13_000, 160)


def is_cross_session_query(query: str) -> bool:
    """Whether a query refers back to earlier conversations."""
    return bool(CROSS_SESSION_PATTERN.search(query))


def sample_conversation(conversation: str) -> str:
    """Head and tail of a long conversation, or all of a short one."""
    if len(conversation) > SAMPLE_THRESHOLD_CHARS:
        return f"{conversation[:SAMPLE_EDGE_CHARS]}\n...\n{conversation[-SAMPLE_EDGE_CHARS:]}"
    return conversation


async def _run_blocking(func: Any, *args: Any, **kwargs: Any) -> Any:
    """Await async collaborators; push sync ones onto a worker thread."""
    if inspect.iscoroutinefunction(func):
        return await func(*args, **kwargs)
    return await asyncio.to_thread(func, *args, **kwargs)


class StagedSearchCascade:
    """Cost-escalating memory lookup used before full routing.

    Each stage either produces a completed answer or yields to the next one.
    Stage failures are logged and treated as misses.
    """

    def __init__(self, embedder: Any, memory: Any, completer: Any):
        """Initialize the cascade.

        Args:
            embedder: Object with ``embed(text) -> list[float]``
            memory: Object with ``search(query, session_id, limit, min_similarity, entities)``
            completer: Object with async ``complete(prompt, timeout_ms, max_tokens, temperature)``
        """
        self.embedder = embedder
        self.memory = memory
        self.completer = completer

    async def search(self, query: str, context: dict[str, Any] | None = None) -> dict[str, Any] | None:
        """Run the cascade.

        Args:
            query: User utterance
            context: Optional ``conversation_context`` and ``session_id``

        Returns:
            ``{"response", "stage", "similarity", "memory_ids"}`` or None
        """
        context = context or {}
        conversation = context.get("conversation_context") or ""
        session_id = context.get("session_id")
        cross_session = is_cross_session_query(query)

        try:
            results: dict[StageTag, StageResult] = {}

            current = await self._guarded(self.stage_current(query, conversation), StageTag.CURRENT)
            if current is not None:
                if not cross_session:
                    return _as_response(current)
                results[StageTag.CURRENT] = current

            if session_id:
                session = await self._guarded(
                    self.stage_memory(query, SESSION_POLICY, conversation, session_id),
                    StageTag.SESSION,
                )
                if session is not None:
                    if not cross_session:
                        return _as_response(session)
                    results[StageTag.SESSION] = session

            everywhere = await self._guarded(
                self.stage_memory(query, CROSS_SESSION_POLICY, conversation, None),
                StageTag.CROSS_SESSION,
            )
            if everywhere is not None:
                results[StageTag.CROSS_SESSION] = everywhere

            for tag in (StageTag.CROSS_SESSION, StageTag.SESSION, StageTag.CURRENT):
                if tag in results:
                    return _as_response(results[tag])

        except Exception as e:
            logger.warning(f"Staged search failed, deferring to routing: {e}")
            return None

        logger.debug("No stage produced a sufficient answer")
        return None

    async def _guarded(self, stage: Any, tag: StageTag) -> StageResult | None:
        try:
            return await stage
        except Exception as e:
            logger.warning(f"Stage {tag.value} failed: {e}")
            return None

    async def stage_current(self, query: str, conversation: str) -> StageResult | None:
        """Answer from the current conversation when it is relevant enough."""
        if not conversation or len(conversation) < MIN_CONTEXT_CHARS:
            return None

        sample = sample_conversation(conversation)
        query_vector, sample_vector = await asyncio.gather(
            _run_blocking(self.embedder.embed, query),
            _run_blocking(self.embedder.embed, sample),
        )
        similarity = cosine_similarity(query_vector, sample_vector)
        logger.debug(f"Current conversation similarity {similarity:.3f}")
        if similarity < CURRENT_POLICY.min_similarity:
            return None

        prompt = build_staged_prompt(query, conversation=sample)
        response = await self._complete(prompt, CURRENT_POLICY)
        return StageResult(stage=StageTag.CURRENT, similarity=similarity, response=response)

    async def stage_memory(
        self,
        query: str,
        policy: StagePolicy,
        conversation: str | None,
        session_id: str | None,
    ) -> StageResult | None:
        """Answer from stored memories within a session or across all sessions."""
        technologies = extract_technologies(query)
        entities = {"technology": technologies} if technologies else None

        hits: list[MemoryHit] = await _run_blocking(
            self.memory.search,
            query,
            session_id=session_id,
            limit=MEMORY_SEARCH_LIMIT,
            min_similarity=policy.min_similarity,
            entities=entities,
        )
        if not hits:
            return None

        similarities = [hit.similarity for hit in hits]
        top = max(similarities)
        avg3 = mean_top([hit.similarity for hit in hits[:3]], 3)
        if top < policy.top_threshold and avg3 < policy.mean_threshold:
            logger.debug(f"Stage {policy.tag.value} insufficient (top={top:.2f}, avg3={avg3:.2f})")
            return None

        prompt = build_staged_prompt(query, conversation=conversation, snippets=format_snippets(hits))
        response = await self._complete(prompt, policy)
        return StageResult(
            stage=policy.tag,
            similarity=top,
            mean_top3=avg3,
            response=response,
            memory_ids=[hit.id for hit in hits[:3]],
        )

    async def _complete(self, prompt: str, policy: StagePolicy) -> str:
        result = await self.completer.complete(
            prompt,
            timeout_ms=policy.timeout_ms,
            max_tokens=policy.max_tokens,
            temperature=policy.temperature,
        )
        text = getattr(result, "text", result)
        if not text or not str(text).strip():
            raise CascadeStageError(f"Empty completion in stage {policy.tag.value}")
        return str(text).strip()


def _as_response(result: StageResult) -> dict[str, Any]:
    return {
        "response": result.response,
        "stage": result.stage.value,
        "similarity": result.similarity,
        "memory_ids": result.memory_ids,
    }
