"""Pytest configuration and fixtures for LocalAssist tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from localassist.llm import CompletionResult
from localassist.registry import AgentRegistry
from localassist.schemas import MemoryHit


class FakeEmbedder:
    """Returns a fixed vector unless a text has its own."""

    def __init__(self, vectors: dict[str, list[float]] | None = None, default: list[float] | None = None):
        self.vectors = vectors or {}
        self.default = default or [1.0, 0.0, 0.0]
        self.calls: list[str] = []

    def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        return list(self.vectors.get(text, self.default))


class FakeMemory:
    """In-memory stand-in for MemoryStore."""

    def __init__(self, hits: list[MemoryHit] | None = None):
        self.hits = list(hits or [])
        self.stored = []
        self.search_calls: list[dict] = []

    def search(self, query, session_id=None, limit=5, min_similarity=0.0, entities=None):
        self.search_calls.append({
            "query": query,
            "session_id": session_id,
            "limit": limit,
            "min_similarity": min_similarity,
            "entities": entities,
        })
        return [hit for hit in self.hits if hit.similarity >= min_similarity][:limit]

    def store(self, entry):
        self.stored.append(entry)
        return f"mem-{len(self.stored)}"

    def recent(self, limit=10, session_id=None):
        return list(self.hits)[:limit]

    def count(self):
        return len(self.stored)


class FakeCompleter:
    """Completion client returning canned text or raising."""

    def __init__(self, text: str = "Here is what I found.", error: Exception | None = None, healthy: bool = True):
        self.text = text
        self.error = error
        self.healthy = healthy
        self.prompts: list[str] = []
        self.calls: list[dict] = []

    async def complete(self, prompt, timeout_ms=30_000, max_tokens=256, temperature=0.2, stop=None):
        self.prompts.append(prompt)
        self.calls.append({"timeout_ms": timeout_ms, "max_tokens": max_tokens, "temperature": temperature})
        if self.error is not None:
            raise self.error
        return CompletionResult(text=self.text, model="fake")

    def check_health(self) -> bool:
        return self.healthy


@pytest.fixture
def fake_embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def fake_memory() -> FakeMemory:
    return FakeMemory()


@pytest.fixture
def fake_completer() -> FakeCompleter:
    return FakeCompleter()


@pytest.fixture
def registry() -> AgentRegistry:
    """Memory-only registry."""
    return AgentRegistry(db_path=None)


@pytest.fixture
def catalog_db_path(tmp_path: Path) -> Path:
    """Create a temporary path for the agent catalog database."""
    return tmp_path / "agents.db"
