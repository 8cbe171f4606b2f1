"""Workflow construction and execution with in-band control directives."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Union

from localassist.errors import ResolutionError, WorkflowStepError
from localassist.schemas import (
    AgentResult,
    AskRequest,
    Intent,
    IntentItem,
    RoutingDecision,
    WorkflowStatus,
    WorkflowStep,
    utc_now,
)

logger = logging.getLogger(__name__)

MEMORY_AGENT = "MemoryAgent"
LANGUAGE_AGENT = "LanguageModelAgent"
EMBEDDING_AGENT = "EmbeddingAgent"
CONTEXT_AGENT = "ContextCaptureAgent"

INTENT_AGENTS: dict[Intent, tuple[str, ...]] = {
    Intent.MEMORY_STORE: (MEMORY_AGENT,),
    Intent.MEMORY_RETRIEVE: (MEMORY_AGENT,),
    Intent.QUESTION: (MEMORY_AGENT, LANGUAGE_AGENT),
    Intent.COMMAND: (MEMORY_AGENT,),
    Intent.GREETING: (LANGUAGE_AGENT,),
}

# Guard against jump cycles
MAX_STEP_EXECUTIONS = 256

RETRIEVE_LIMIT = 10
QUESTION_CONTEXT_LIMIT = 5


# --- Control directives ---


@dataclass(frozen=True)
class Continue:
    """Advance to the next step."""


@dataclass(frozen=True)
class Jump:
    """Move the cursor to index (clamped to the step range)."""

    index: int


@dataclass(frozen=True)
class Stop:
    """Halt the workflow."""

    reason: str = "Manual stop"


@dataclass(frozen=True)
class Pause:
    """Suspend after the current step; execute() resumes."""

    reason: str = "Manual pause"


StepOutcome = Union[Continue, Jump, Stop, Pause]


@dataclass
class WorkflowState:
    """Mutable execution state of one workflow."""

    steps: list[WorkflowStep]
    cursor: int = 0
    results: list[AgentResult] = field(default_factory=list)
    context: dict[str, Any] = field(default_factory=dict)
    status: WorkflowStatus = WorkflowStatus.RUNNING
    reason: str | None = None
    pending: StepOutcome | None = None

    @property
    def total_steps(self) -> int:
        return len(self.steps)

    @property
    def succeeded(self) -> bool:
        return self.status == WorkflowStatus.COMPLETED and all(r.success for r in self.results)

    def clamp(self, index: int) -> int:
        return max(0, min(index, len(self.steps)))


class WorkflowControls:
    """Control surface handed to agents through their context.

    Calls record a directive that the engine applies after the step returns.
    """

    def __init__(self, state: WorkflowState):
        self._state = state

    def start(self, index: int = 0) -> StepOutcome:
        return self._record(Jump(index))

    def next(self, index: int | None = None) -> StepOutcome:
        target = self._state.cursor + 1 if index is None else index
        return self._record(Jump(target))

    def stop(self, reason: str = "Manual stop") -> StepOutcome:
        return self._record(Stop(reason))

    def pause(self, reason: str = "Manual pause") -> StepOutcome:
        return self._record(Pause(reason))

    def _record(self, outcome: StepOutcome) -> StepOutcome:
        self._state.pending = outcome
        return outcome

    @property
    def current_step(self) -> int:
        return self._state.cursor

    @property
    def total_steps(self) -> int:
        return self._state.total_steps

    @property
    def results(self) -> list[AgentResult]:
        return list(self._state.results)

    @property
    def status(self) -> WorkflowStatus:
        return self._state.status


def outcome_from_mapping(control: Mapping[str, Any], cursor: int) -> StepOutcome:
    """Translate a ``workflow_control`` mapping into a StepOutcome."""
    action = str(control.get("action", "")).lower()
    target = control.get("target_step", control.get("targetStep"))

    if action == "start":
        return Jump(int(target) if target is not None else 0)
    if action in ("next", "jump"):
        return Jump(int(target) if target is not None else cursor + 1)
    if action == "stop":
        return Stop(str(control.get("reason") or "Manual stop"))
    if action == "pause":
        return Pause(str(control.get("reason") or "Manual pause"))
    return Continue()


def directive_for(result: AgentResult, state: WorkflowState) -> StepOutcome:
    """Find the control directive a step produced, defaulting to Continue."""
    if state.pending is not None:
        return state.pending

    payload = result.result
    if isinstance(payload, (Continue, Jump, Stop, Pause)):
        return payload
    if isinstance(payload, Mapping):
        outcome = payload.get("outcome")
        if isinstance(outcome, (Continue, Jump, Stop, Pause)):
            return outcome
        control = payload.get("workflow_control") or payload.get("workflowControl")
        if isinstance(control, Mapping):
            return outcome_from_mapping(control, state.cursor)
    return Continue()


# --- Step parameter builders ---


def _memory_params(intent: Intent, request: AskRequest, context: Mapping[str, Any]) -> dict[str, Any]:
    session_id = context.get("session_id")
    if intent == Intent.MEMORY_RETRIEVE:
        return {"action": "memory-search", "query": request.source_text, "limit": RETRIEVE_LIMIT}
    if intent == Intent.QUESTION:
        return {
            "action": "memory-search",
            "query": request.source_text,
            "limit": QUESTION_CONTEXT_LIMIT,
        }
    return {
        "action": "memory-store",
        "text": request.source_text,
        "entities": request.entities if isinstance(request.entities, dict) else {},
        "session_id": session_id,
        "intent": intent.value,
    }


def _language_params(intent: Intent, request: AskRequest, context: Mapping[str, Any]) -> dict[str, Any]:
    if intent == Intent.GREETING:
        return {"action": "greet", "text": request.source_text, "suggested_response": request.suggested_response}
    return {"action": "answer", "question": request.source_text}


def _embedding_params(intent: Intent, request: AskRequest, context: Mapping[str, Any]) -> dict[str, Any]:
    return {"action": "generate-embedding", "text": request.source_text}


def _context_params(intent: Intent, request: AskRequest, context: Mapping[str, Any]) -> dict[str, Any]:
    return {"action": "capture", "conversation_context": context.get("conversation_context")}


PARAM_BUILDERS: dict[str, Callable[[Intent, AskRequest, Mapping[str, Any]], dict[str, Any]]] = {
    MEMORY_AGENT: _memory_params,
    LANGUAGE_AGENT: _language_params,
    EMBEDDING_AGENT: _embedding_params,
    CONTEXT_AGENT: _context_params,
}


def request_from_decision(decision: RoutingDecision, text: str) -> AskRequest:
    """Express a routing decision as a canonical request."""
    intents = [IntentItem(intent=decision.primary_intent.value, confidence=decision.confidence)]
    if decision.also_run is not None:
        intents.append(IntentItem(intent=decision.also_run.value, confidence=decision.confidence))
    return AskRequest(
        intents=intents,
        primary_intent=decision.primary_intent.value,
        entities=dict(decision.entities),
        source_text=text,
        requires_memory_access=decision.requires_memory_access,
        capture_context=decision.capture_context,
    )


class WorkflowEngine:
    """Builds step lists from intents and runs them through the registry."""

    def __init__(self, registry: Any, max_step_executions: int = MAX_STEP_EXECUTIONS):
        """Initialize the engine.

        Args:
            registry: Object with async ``invoke(name, params, context)``
            max_step_executions: Upper bound on step runs per execute() call
        """
        self.registry = registry
        self.max_step_executions = max_step_executions

    # --- Building ---

    def steps_for_intent(
        self,
        intent: Intent | str,
        request: AskRequest,
        context: Mapping[str, Any] | None = None,
    ) -> list[WorkflowStep]:
        """Steps for one intent.

        Raises:
            ResolutionError: If the intent maps to no agents
        """
        try:
            intent = Intent(intent)
        except ValueError as e:
            raise ResolutionError(f"No agents for intent {intent}") from e

        context = context or {}
        steps = []
        for agent in INTENT_AGENTS.get(intent, ()):
            params = PARAM_BUILDERS[agent](intent, request, context)
            steps.append(WorkflowStep(agent=agent, params=params, context={"intent": intent.value}))
        return steps

    def build(
        self,
        decision: RoutingDecision,
        text: str,
        context: Mapping[str, Any] | None = None,
    ) -> list[WorkflowStep]:
        """Build the step list for a routing decision.

        The tie-break companion intent, when present, runs after the primary
        intent's steps.
        """
        return self.build_from_request(request_from_decision(decision, text), context)

    def build_from_request(
        self,
        request: AskRequest,
        context: Mapping[str, Any] | None = None,
    ) -> list[WorkflowStep]:
        """Build the step list for a normalized request with one or more intents."""
        context = context or {}
        intents = [item.intent for item in request.intents] or [request.primary_intent]

        steps: list[WorkflowStep] = []
        if request.capture_context:
            steps.append(WorkflowStep(
                agent=CONTEXT_AGENT,
                params=_context_params(Intent.COMMAND, request, context),
                context={"step_name": "context_capture"},
                continue_on_error=True,
            ))

        seen: set[str] = set()
        for intent in intents:
            if intent in seen:
                continue
            seen.add(intent)
            try:
                steps.extend(self.steps_for_intent(intent, request, context))
            except ResolutionError as e:
                logger.warning(f"Skipping intent: {e}")

        if not any(step.agent != CONTEXT_AGENT for step in steps):
            logger.info(f"No actionable intents in request ({', '.join(intents)})")
            return []
        return steps

    # --- Execution ---

    async def run(self, steps: list[WorkflowStep], context: dict[str, Any] | None = None) -> WorkflowState:
        """Create a state for steps and execute it."""
        state = WorkflowState(steps=list(steps), context=dict(context or {}))
        return await self.execute(state)

    async def execute(self, state: WorkflowState) -> WorkflowState:
        """Execute steps from the cursor until the end, a stop, a pause or a failure.

        A paused state resumes from where it left off.

        Args:
            state: Workflow state (mutated in place)

        Returns:
            The same state
        """
        if state.status == WorkflowStatus.PAUSED:
            logger.info(f"Resuming workflow at step {state.cursor}")
            state.status = WorkflowStatus.RUNNING
            state.reason = None
        if state.status != WorkflowStatus.RUNNING:
            return state

        controls = WorkflowControls(state)
        executions = 0

        while state.cursor < len(state.steps) and state.status == WorkflowStatus.RUNNING:
            if executions >= self.max_step_executions:
                state.status = WorkflowStatus.FAILED
                state.reason = f"Exceeded {self.max_step_executions} step executions"
                logger.error(state.reason)
                break
            executions += 1

            index = state.cursor
            step = state.steps[index]
            state.pending = None
            result = await self._run_step(step, index, state, controls)

            state.results.append(result)
            state.context[f"{step.agent}_result"] = result
            state.context[f"step_{index}_result"] = result

            if not result.success and not step.continue_on_error:
                logger.error(f"Workflow failed at step {index} ({step.agent}): {result.error}")
                state.cursor = state.clamp(index + 1)
                state.status = WorkflowStatus.FAILED
                state.reason = result.error
                break

            self._apply(directive_for(result, state), state, index, step.agent)
            state.pending = None

        if state.status == WorkflowStatus.RUNNING:
            state.status = WorkflowStatus.COMPLETED
        return state

    async def _run_step(
        self,
        step: WorkflowStep,
        index: int,
        state: WorkflowState,
        controls: WorkflowControls,
    ) -> AgentResult:
        step_context = {
            **state.context,
            **step.context,
            "previous_results": list(state.results),
            "current_step": index,
            "total_steps": len(state.steps),
            "workflow_controls": controls,
        }
        try:
            return await self.registry.invoke(step.agent, dict(step.params), step_context)
        except Exception as e:
            error = WorkflowStepError(f"Step {index} ({step.agent}) could not be dispatched: {e}")
            logger.error(str(error))
            return AgentResult(
                success=False,
                agent=step.agent,
                action=str(step.params.get("action") or "default"),
                error=str(error),
                timestamp=utc_now(),
            )

    def _apply(self, outcome: StepOutcome, state: WorkflowState, index: int, agent: str) -> None:
        if isinstance(outcome, Jump):
            state.cursor = state.clamp(outcome.index)
            logger.debug(f"{agent} jumped workflow to step {state.cursor}")
        elif isinstance(outcome, Stop):
            state.cursor = state.clamp(index + 1)
            state.status = WorkflowStatus.STOPPED
            state.reason = outcome.reason
            logger.info(f"{agent} stopped workflow: {outcome.reason}")
        elif isinstance(outcome, Pause):
            state.cursor = state.clamp(index + 1)
            state.status = WorkflowStatus.PAUSED
            state.reason = outcome.reason
            logger.info(f"{agent} paused workflow: {outcome.reason}")
        else:
            state.cursor = state.clamp(index + 1)
