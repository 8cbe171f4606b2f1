"""Built-in native agents."""

from __future__ import annotations

from typing import Any

from localassist.agents.context_capture import DEPENDENCIES as CONTEXT_DEPENDENCIES
from localassist.agents.context_capture import ContextCaptureAgent
from localassist.agents.embedding_agent import EmbeddingAgent
from localassist.agents.language_agent import LanguageModelAgent
from localassist.agents.memory_agent import SCHEMA as MEMORY_SCHEMA
from localassist.agents.memory_agent import MemoryAgent
from localassist.schemas import AgentDescriptor
from localassist.workflow import CONTEXT_AGENT, EMBEDDING_AGENT, LANGUAGE_AGENT, MEMORY_AGENT

# Agents bootstrapped in the background at startup
CRITICAL_AGENTS = (EMBEDDING_AGENT, LANGUAGE_AGENT, MEMORY_AGENT)


def default_descriptors(
    memory: Any = None,
    client: Any = None,
    embedder: Any = None,
) -> list[AgentDescriptor]:
    """Descriptors for the built-in agents bound to the given collaborators."""
    return [
        AgentDescriptor(
            name=MEMORY_AGENT,
            description="Stores, searches and lists user memories",
            native=MemoryAgent(memory),
            requires_store=True,
            schema=MEMORY_SCHEMA,
        ),
        AgentDescriptor(
            name=LANGUAGE_AGENT,
            description="Answers questions and greetings with the local language model",
            native=LanguageModelAgent(client),
        ),
        AgentDescriptor(
            name=EMBEDDING_AGENT,
            description="Generates text embeddings",
            native=EmbeddingAgent(embedder),
        ),
        AgentDescriptor(
            name=CONTEXT_AGENT,
            description="Captures timestamp, platform, working directory and conversation tail",
            native=ContextCaptureAgent(),
            dependencies=CONTEXT_DEPENDENCIES,
        ),
    ]


__all__ = [
    "CRITICAL_AGENTS",
    "ContextCaptureAgent",
    "EmbeddingAgent",
    "LanguageModelAgent",
    "MemoryAgent",
    "default_descriptors",
]
