"""Pydantic schemas for LocalAssist routing, agent and workflow contracts."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utc_now() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(timezone.utc)


class Intent(str, Enum):
    """Coarse categories an utterance can request."""

    GREETING = "greeting"
    COMMAND = "command"
    MEMORY_STORE = "memory_store"
    MEMORY_RETRIEVE = "memory_retrieve"
    QUESTION = "question"


class AgentShape(str, Enum):
    """How an agent's capability is provided."""

    NATIVE = "native"
    SCRIPTED = "scripted"


class ExecutionTarget(str, Enum):
    """Where an agent is expected to run."""

    FRONTEND = "frontend"
    BACKEND = "backend"


class WorkflowStatus(str, Enum):
    """Workflow execution status."""

    RUNNING = "running"
    PAUSED = "paused"
    STOPPED = "stopped"
    FAILED = "failed"
    COMPLETED = "completed"


class StageTag(str, Enum):
    """Tiers of the staged memory search."""

    CURRENT = "current"
    SESSION = "session"
    CROSS_SESSION = "cross_session"


# --- Routing ---


class Utterance(BaseModel):
    """A single user input with its conversational surroundings."""

    text: str
    conversation_context: str | None = None
    session_id: str | None = None
    timestamp: datetime = Field(default_factory=utc_now)


class RoutingDecision(BaseModel):
    """Scored routing result. Immutable once produced."""

    model_config = ConfigDict(frozen=True)

    primary_intent: Intent
    confidence: float = Field(..., ge=0.0, le=1.0)
    margin: float = Field(..., ge=0.0, le=1.0)
    entities: dict[str, list[str]] = Field(default_factory=dict)
    needs_orchestration: bool = False
    needs_semantic_search: bool = False
    requires_memory_access: bool = False
    capture_context: bool = False
    also_run: Intent | None = Field(
        default=None,
        description="Original winner to run after a memory_store tie-break",
    )
    scores: dict[str, float] = Field(default_factory=dict)
    reasoning: str = ""


# --- Agents ---


class AgentDescriptor(BaseModel):
    """Catalog entry describing one agent."""

    model_config = ConfigDict(arbitrary_types_allowed=True, populate_by_name=True)

    name: str = Field(..., pattern=r"^[A-Za-z][A-Za-z0-9_-]*$")
    description: str = ""
    dependencies: list[str] = Field(default_factory=list)
    execution_target: ExecutionTarget = ExecutionTarget.BACKEND
    requires_store: bool = False
    store_kind: Literal["sqlite", "duckdb"] | None = None
    native: Any = Field(default=None, exclude=True)
    code: str | None = None
    bootstrap_code: str | None = None
    schema_: dict[str, Any] = Field(default_factory=dict, alias="schema")
    config: dict[str, Any] = Field(default_factory=dict)
    secrets: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)
    version: str = "v1"
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("dependencies", mode="before")
    @classmethod
    def _normalize_dependencies(cls, value: Any) -> list[str]:
        """Accept a list, a comma-separated string, or nothing."""
        if value is None:
            return []
        if isinstance(value, str):
            return [dep.strip() for dep in value.split(",") if dep.strip()]
        if isinstance(value, (list, tuple)):
            return [str(dep).strip() for dep in value if str(dep).strip()]
        return []

    @property
    def shape(self) -> AgentShape:
        """Native when bound callables are supplied, scripted otherwise."""
        return AgentShape.NATIVE if self.native is not None else AgentShape.SCRIPTED


class AgentResult(BaseModel):
    """Uniform wrapper around every agent invocation."""

    success: bool
    agent: str
    action: str = "default"
    result: Any = None
    error: str | None = None
    warnings: list[str] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=utc_now)


# --- Workflow ---


class WorkflowStep(BaseModel):
    """One agent invocation inside a workflow."""

    agent: str
    params: dict[str, Any] = Field(default_factory=dict)
    context: dict[str, Any] = Field(default_factory=dict)
    continue_on_error: bool = False


# --- Staged search ---


class StageResult(BaseModel):
    """Outcome of one successful cascade stage."""

    stage: StageTag
    similarity: float = 0.0
    mean_top3: float = 0.0
    response: str
    memory_ids: list[str] = Field(default_factory=list)


# --- Memory ---


class MemoryEntry(BaseModel):
    """A piece of text stored in vector memory."""

    id: str | None = None
    text: str = Field(..., min_length=1)
    session_id: str | None = None
    timestamp: datetime = Field(default_factory=utc_now)
    entities: dict[str, list[str]] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)


class MemoryHit(BaseModel):
    """A vector search match."""

    id: str
    text: str
    similarity: float
    session_id: str | None = None
    timestamp: str | None = None


# --- Orchestration entry point ---


class IntentItem(BaseModel):
    """One classified intent inside a request."""

    intent: str
    confidence: float = Field(default=0.8, ge=0.0, le=1.0)


class AskRequest(BaseModel):
    """Canonical internal request every accepted payload shape maps to."""

    intents: list[IntentItem] = Field(default_factory=list)
    primary_intent: str = Intent.QUESTION.value
    entities: dict[str, list[str]] | list[Any] = Field(default_factory=dict)
    source_text: str = ""
    requires_memory_access: bool = False
    capture_context: bool = False
    suggested_response: str | None = None


class AskResponse(BaseModel):
    """Aggregated outcome returned to the shell."""

    success: bool
    primary_intent: str | None = None
    status: WorkflowStatus | None = None
    steps_executed: int = 0
    total_steps: int = 0
    results: list[AgentResult] = Field(default_factory=list)
    response: str | None = None
    stage: StageTag | None = None
    fallback: str | None = None
    error: str | None = None


# --- HTTP broker ---


class RouteRequest(BaseModel):
    """Request body for POST /route."""

    text: str = Field(..., min_length=1)


class RouteResponse(BaseModel):
    """Routing outcome; decision is None when the router abstains."""

    abstained: bool
    decision: RoutingDecision | None = None


class ProcessRequest(BaseModel):
    """Request body for POST /process."""

    text: str = Field(..., min_length=1)
    conversation_context: str | None = None
    session_id: str | None = None
    prefer_semantic_search: bool = True


class InvokeRequest(BaseModel):
    """Request body for POST /agents/{name}/invoke."""

    params: dict[str, Any] = Field(default_factory=dict)
    context: dict[str, Any] = Field(default_factory=dict)


class AgentSummary(BaseModel):
    """One row of GET /agents."""

    name: str
    description: str = ""
    shape: AgentShape
    dependencies: list[str] = Field(default_factory=list)
    execution_target: ExecutionTarget = ExecutionTarget.BACKEND
    loaded: bool = False
    version: str = "v1"


class ErrorResponse(BaseModel):
    """Error response."""

    detail: str
    error_code: str


# --- Health ---


class HealthResponse(BaseModel):
    """Health check response."""

    broker: Literal["healthy", "unhealthy"] = "healthy"
    ollama: Literal["healthy", "unhealthy"] = "healthy"
    registered_agents: int = 0
    loaded_agents: int = 0
    catalog: Literal["persistent", "memory"] = "memory"
