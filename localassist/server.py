"""HTTP broker exposing the LocalAssist orchestrator."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from localassist.errors import ResolutionError
from localassist.orchestrator import Orchestrator, get_orchestrator
from localassist.schemas import (
    AgentDescriptor,
    AgentResult,
    AgentSummary,
    AskResponse,
    ErrorResponse,
    HealthResponse,
    InvokeRequest,
    ProcessRequest,
    RouteRequest,
    RouteResponse,
)

logger = logging.getLogger(__name__)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

app = FastAPI(
    title="LocalAssist Broker",
    description="HTTP broker routing utterances to local agents",
    version="0.1.0",
)


async def ready_orchestrator() -> Orchestrator:
    """Return the global orchestrator, initializing it on first use."""
    orchestrator = get_orchestrator()
    if not orchestrator.initialized:
        await orchestrator.initialize()
    return orchestrator


# --- Orchestration endpoints ---


@app.post("/ask", response_model=AskResponse)
async def ask(request: Request, orchestrator: Orchestrator = Depends(ready_orchestrator)) -> AskResponse:
    """Run a workflow for any accepted payload shape.

    The body may be a JSON object or a JSON string. An object's ``context``
    mapping, when present, is passed to the workflow rather than parsed as
    part of the payload.
    """
    try:
        body: Any = await request.json()
    except json.JSONDecodeError:
        body = (await request.body()).decode("utf-8", errors="replace")

    context: dict[str, Any] = {}
    if isinstance(body, dict) and isinstance(body.get("context"), dict):
        body = dict(body)
        context = body.pop("context")

    logger.info(f"Received ask request ({type(body).__name__} payload)")
    try:
        return await orchestrator.ask(body, context)
    except TypeError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


@app.post("/route", response_model=RouteResponse)
async def route(request: RouteRequest, orchestrator: Orchestrator = Depends(ready_orchestrator)) -> RouteResponse:
    """Score an utterance without running anything."""
    decision = await orchestrator.router.route(request.text)
    return RouteResponse(abstained=decision is None, decision=decision)


@app.post("/process", response_model=AskResponse)
async def process(request: ProcessRequest, orchestrator: Orchestrator = Depends(ready_orchestrator)) -> AskResponse:
    """Handle a raw utterance: staged memory search, then routing and workflow."""
    logger.info(f"Received process request: session_id={request.session_id}")
    context = request.model_dump(exclude={"text"}, exclude_none=True)
    return await orchestrator.process(request.text, context)


# --- Agent management ---


@app.get("/agents", response_model=list[AgentSummary])
async def list_agents(orchestrator: Orchestrator = Depends(ready_orchestrator)) -> list[AgentSummary]:
    """List registered agents with their load state."""
    registry = orchestrator.registry
    summaries = []
    for name in registry.registered():
        descriptor = registry.describe(name)
        summaries.append(AgentSummary(
            name=descriptor.name,
            description=descriptor.description,
            shape=descriptor.shape,
            dependencies=descriptor.dependencies,
            execution_target=descriptor.execution_target,
            loaded=registry.is_loaded(name),
            version=descriptor.version,
        ))
    return summaries


@app.post("/agents", response_model=AgentSummary, status_code=201)
async def register_agent(
    descriptor: dict[str, Any],
    orchestrator: Orchestrator = Depends(ready_orchestrator),
) -> AgentSummary:
    """Register or replace a scripted agent.

    Any cached instance is evicted so the next invocation compiles the new code.
    """
    try:
        names = orchestrator.registry.force_reregister([descriptor])
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    stored: AgentDescriptor = orchestrator.registry.describe(names[0])

    logger.info(f"Registered agent {stored.name}")
    return AgentSummary(
        name=stored.name,
        description=stored.description,
        shape=stored.shape,
        dependencies=stored.dependencies,
        execution_target=stored.execution_target,
        loaded=False,
        version=stored.version,
    )


@app.post("/agents/{name}/invoke", response_model=AgentResult)
async def invoke_agent(
    name: str,
    request: InvokeRequest,
    orchestrator: Orchestrator = Depends(ready_orchestrator),
) -> AgentResult:
    """Invoke one agent directly."""
    return await orchestrator.registry.invoke(name, request.params, request.context)


@app.post("/agents/{name}/reload")
async def reload_agent(name: str, orchestrator: Orchestrator = Depends(ready_orchestrator)) -> dict[str, Any]:
    """Recompile an agent from the catalog."""
    try:
        instance = await asyncio.to_thread(orchestrator.registry.reload, name)
    except ResolutionError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    return {"name": instance.name, "shape": instance.shape.value, "loaded": True}


@app.delete("/agents/{name}/cache")
async def unload_agent(name: str, orchestrator: Orchestrator = Depends(ready_orchestrator)) -> dict[str, Any]:
    """Evict a loaded agent instance."""
    return {"name": name, "unloaded": orchestrator.registry.unload(name)}


@app.get("/health", response_model=HealthResponse)
async def health(orchestrator: Orchestrator = Depends(ready_orchestrator)) -> HealthResponse:
    """Check broker and dependency health."""
    registry = orchestrator.registry
    ollama_healthy = await asyncio.to_thread(orchestrator.client.check_health)

    return HealthResponse(
        broker="healthy",
        ollama="healthy" if ollama_healthy else "unhealthy",
        registered_agents=len(registry.registered()),
        loaded_agents=len(registry.loaded()),
        catalog="persistent" if registry.persistent else "memory",
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request, exc: Exception) -> JSONResponse:
    """Handle uncaught exceptions."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            detail=str(exc),
            error_code="INTERNAL_ERROR",
        ).model_dump(),
    )
