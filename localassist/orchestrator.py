"""Orchestrator: the single entry point tying cascade, router, workflow and registry together."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from localassist.agents import CRITICAL_AGENTS, default_descriptors
from localassist.cascade import StagedSearchCascade
from localassist.catalog import DEFAULT_DB_PATH
from localassist.errors import OrchestratorNotInitializedError
from localassist.intake import normalize_payload
from localassist.llm import OllamaClient
from localassist.registry import AgentRegistry
from localassist.router import EntityRouter
from localassist.schemas import AskResponse, Intent, StageTag
from localassist.workflow import WorkflowEngine, WorkflowState

logger = logging.getLogger(__name__)

FALLBACK_MESSAGE = "I encountered an error processing your request. Please try again."
NO_ACTION_MESSAGE = "No actionable intents found"
STORED_MESSAGE = "Got it, I'll remember that."


def _response_text(state: WorkflowState) -> str | None:
    """Best user-facing text from a finished workflow."""
    for result in reversed(state.results):
        payload = result.result
        if not result.success or not isinstance(payload, dict):
            continue
        if payload.get("response"):
            return str(payload["response"])
        if payload.get("stored"):
            return STORED_MESSAGE
        if "results" in payload:
            texts = [hit.get("text", "") for hit in payload["results"] if isinstance(hit, dict)]
            if texts:
                return "\n".join(f"- {text}" for text in texts)
            return "I couldn't find anything about that in your memories."
    return None


def _to_response(primary_intent: str | None, state: WorkflowState) -> AskResponse:
    success = state.succeeded
    return AskResponse(
        success=success,
        primary_intent=primary_intent,
        status=state.status,
        steps_executed=len(state.results),
        total_steps=state.total_steps,
        results=state.results,
        response=_response_text(state),
        fallback=None if success else FALLBACK_MESSAGE,
        error=None if success else state.reason,
    )


class Orchestrator:
    """Owns one registry, router, cascade and workflow engine."""

    def __init__(
        self,
        db_path: Path | str | None = DEFAULT_DB_PATH,
        memory: Any = None,
        client: Any = None,
        embedder: Any = None,
        tagger: Any = None,
        registry: AgentRegistry | None = None,
        global_config: dict[str, Any] | None = None,
        prewarm: bool = True,
    ):
        """Initialize the orchestrator.

        Collaborators left as None are created on initialize().

        Args:
            db_path: Agent catalog path; None runs the registry memory-only
            memory: MemoryStore-like collaborator
            client: Completion client
            embedder: Text embedder
            tagger: Optional NER tagger for the router
            registry: Pre-built registry, takes precedence over db_path
            global_config: Configuration passed to agent bootstraps
            prewarm: Bootstrap critical agents in the background on initialize()
        """
        self.db_path = db_path
        self.memory = memory
        self.client = client
        self.embedder = embedder
        self.tagger = tagger
        self.registry = registry
        self.global_config = dict(global_config or {})
        self.prewarm_enabled = prewarm

        self.router: EntityRouter | None = None
        self.cascade: StagedSearchCascade | None = None
        self.engine: WorkflowEngine | None = None
        self.initialized = False
        self._prewarm_task: asyncio.Task | None = None

    async def initialize(self) -> None:
        """Create collaborators, register built-in agents and start prewarming."""
        if self.initialized:
            return

        if self.memory is None or self.embedder is None:
            from localassist.memory import Embedder, get_memory_store

            if self.memory is None:
                self.memory = await asyncio.to_thread(get_memory_store, self.global_config.get("memory_dir"))
            if self.embedder is None:
                self.embedder = getattr(self.memory, "embedder", None) or Embedder()
        if self.client is None:
            self.client = OllamaClient()
        if self.registry is None:
            self.registry = AgentRegistry(db_path=self.db_path, global_config=self.global_config)

        self.registry.force_reregister(default_descriptors(self.memory, self.client, self.embedder))

        self.router = EntityRouter(embedder=self.embedder, tagger=self.tagger)
        self.cascade = StagedSearchCascade(self.embedder, self.memory, self.client)
        self.engine = WorkflowEngine(self.registry)
        self.initialized = True
        logger.info(f"Orchestrator initialized with {len(self.registry.registered())} agents")

        if self.prewarm_enabled:
            self._prewarm_task = asyncio.create_task(self.registry.prewarm(CRITICAL_AGENTS))

    def _require_initialized(self) -> None:
        if not self.initialized:
            raise OrchestratorNotInitializedError("Orchestrator not initialized. Call initialize() first.")

    async def ask(self, payload: Any, context: dict[str, Any] | None = None) -> AskResponse:
        """Run a workflow for a pre-classified or raw payload.

        Args:
            payload: Any shape accepted by normalize_payload
            context: Caller context shared with every step

        Returns:
            AskResponse; failures carry a fallback message

        Raises:
            OrchestratorNotInitializedError: If initialize() was not awaited
            TypeError: If payload is neither a string nor a mapping
        """
        self._require_initialized()
        context = dict(context or {})
        try:
            request = normalize_payload(payload)
        except ValidationError as e:
            logger.warning(f"Rejected malformed ask payload: {e}")
            return AskResponse(success=False, error=str(e), fallback=FALLBACK_MESSAGE)

        try:
            steps = self.engine.build_from_request(request, context)
            if not steps:
                return AskResponse(
                    success=True,
                    primary_intent=request.primary_intent,
                    response=NO_ACTION_MESSAGE,
                )

            shared = {
                **context,
                "original_request": request.model_dump(),
                "user_id": context.get("user_id", "default_user"),
            }
            state = await self.engine.run(steps, shared)
            return _to_response(request.primary_intent, state)

        except Exception as e:
            logger.error(f"ask() failed: {e}")
            return AskResponse(success=False, error=str(e), fallback=FALLBACK_MESSAGE)

    async def process(self, utterance: str, context: dict[str, Any] | None = None) -> AskResponse:
        """Handle a raw utterance end to end.

        The staged memory search runs first; when it has no answer the router
        decides an intent and the matching workflow runs. If the router
        abstains, the utterance is treated as a question.

        Args:
            utterance: User text
            context: Optional ``conversation_context``, ``session_id`` and
                ``prefer_semantic_search``

        Returns:
            AskResponse

        Raises:
            OrchestratorNotInitializedError: If initialize() was not awaited
        """
        self._require_initialized()
        context = dict(context or {})

        try:
            if context.get("prefer_semantic_search", True):
                staged = await self.cascade.search(utterance, context)
                if staged is not None:
                    return AskResponse(
                        success=True,
                        primary_intent=Intent.MEMORY_RETRIEVE.value,
                        response=staged["response"],
                        stage=StageTag(staged["stage"]),
                    )

            decision = await self.router.route(utterance)
            if decision is None:
                logger.info("Router abstained, answering as a question")
                return await self.ask(utterance, context)

            steps = self.engine.build(decision, utterance, context)
            if not steps:
                return AskResponse(
                    success=True,
                    primary_intent=decision.primary_intent.value,
                    response=NO_ACTION_MESSAGE,
                )
            shared = {**context, "routing": decision.model_dump(mode="json")}
            state = await self.engine.run(steps, shared)
            return _to_response(decision.primary_intent.value, state)

        except Exception as e:
            logger.error(f"process() failed: {e}")
            return AskResponse(success=False, error=str(e), fallback=FALLBACK_MESSAGE)

    async def shutdown(self) -> None:
        """Cancel background prewarming."""
        if self._prewarm_task is not None and not self._prewarm_task.done():
            self._prewarm_task.cancel()
            try:
                await self._prewarm_task
            except asyncio.CancelledError:
                pass
        self._prewarm_task = None


# Global orchestrator instance
_orchestrator_instance: Orchestrator | None = None


def get_orchestrator(**kwargs: Any) -> Orchestrator:
    """Get or create the global orchestrator instance.

    Args:
        **kwargs: Orchestrator constructor arguments, used on first call only

    Returns:
        Orchestrator instance
    """
    global _orchestrator_instance
    if _orchestrator_instance is None:
        _orchestrator_instance = Orchestrator(**kwargs)
    return _orchestrator_instance
