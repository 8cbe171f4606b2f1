"""Tests for the SQLite agent catalog."""

from datetime import datetime, timezone
from pathlib import Path

import pytest

from localassist.catalog import AgentCatalog, open_catalog
from localassist.schemas import AgentDescriptor, ExecutionTarget


class TestAgentCatalog:
    """Test catalog persistence."""

    @pytest.fixture
    def catalog(self, catalog_db_path: Path) -> AgentCatalog:
        return AgentCatalog(db_path=catalog_db_path)

    def test_upsert_and_get(self, catalog):
        """Stored descriptors round-trip their fields."""
        catalog.upsert(AgentDescriptor(
            name="Weather",
            description="Looks up the forecast",
            code="return params",
            dependencies=["httpx", "json"],
            execution_target=ExecutionTarget.FRONTEND,
            requires_store=True,
            store_kind="sqlite",
            schema={"type": "object"},
            config={"units": "metric"},
            secrets={"api_key": "k"},
            version="v3",
        ))

        descriptor = catalog.get("Weather")

        assert descriptor.description == "Looks up the forecast"
        assert descriptor.dependencies == ["httpx", "json"]
        assert descriptor.execution_target == ExecutionTarget.FRONTEND
        assert descriptor.requires_store
        assert descriptor.store_kind == "sqlite"
        assert descriptor.schema_ == {"type": "object"}
        assert descriptor.config == {"units": "metric"}
        assert descriptor.secrets == {"api_key": "k"}
        assert descriptor.version == "v3"

    def test_get_missing(self, catalog):
        assert catalog.get("Nope") is None

    def test_upsert_replaces_and_keeps_created_at(self, catalog):
        """Updating a name keeps one row and the original creation time."""
        created = datetime(2024, 1, 1, tzinfo=timezone.utc)
        catalog.upsert(AgentDescriptor(name="Echo", code="return 1", created_at=created))
        catalog.upsert(AgentDescriptor(name="Echo", code="return 2"))

        descriptor = catalog.get("Echo")

        assert catalog.names() == ["Echo"]
        assert descriptor.code == "return 2"
        assert descriptor.created_at == created

    def test_native_object_not_persisted(self, catalog):
        """Only metadata of native agents is stored."""
        catalog.upsert(AgentDescriptor(name="Native", native=object()))
        assert catalog.get("Native").native is None

    def test_delete(self, catalog):
        """Deleting reports whether a row existed."""
        catalog.upsert(AgentDescriptor(name="Echo", code="return 1"))
        assert catalog.delete("Echo")
        assert not catalog.delete("Echo")

    def test_clear(self, catalog):
        catalog.upsert(AgentDescriptor(name="A", code="return 1"))
        catalog.upsert(AgentDescriptor(name="B", code="return 1"))
        catalog.clear()
        assert catalog.names() == []

    def test_persists_across_instances(self, catalog_db_path):
        """A second catalog on the same file sees earlier rows."""
        AgentCatalog(db_path=catalog_db_path).upsert(AgentDescriptor(name="Echo", code="return 1"))
        assert AgentCatalog(db_path=catalog_db_path).names() == ["Echo"]


class TestOpenCatalog:
    """Test catalog configuration."""

    def test_none_means_memory_only(self):
        assert open_catalog(None) is None

    def test_unusable_path(self, tmp_path):
        """A path that cannot hold a database falls back to memory-only."""
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")
        assert open_catalog(blocker / "agents.db") is None
