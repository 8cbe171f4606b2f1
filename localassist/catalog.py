"""Persistent agent catalog with SQLite backend."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any

from localassist.schemas import AgentDescriptor, utc_now

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path.home() / ".localassist" / "agents.db"

_JSON_COLUMNS = ("parameters", "dependencies", "config", "secrets", "metadata")


class AgentCatalog:
    """Catalog of agent descriptors keyed by unique name."""

    def __init__(self, db_path: Path | str | None = None):
        """Initialize the catalog.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path) if db_path else DEFAULT_DB_PATH
        self._lock = threading.Lock()

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self) -> None:
        """Initialize the database schema."""
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS agents (
                    name TEXT PRIMARY KEY,
                    description TEXT,
                    parameters TEXT NOT NULL DEFAULT '{}',
                    dependencies TEXT NOT NULL DEFAULT '[]',
                    execution_target TEXT NOT NULL DEFAULT 'backend'
                        CHECK (execution_target IN ('frontend', 'backend')),
                    requires_store INTEGER NOT NULL DEFAULT 0,
                    store_kind TEXT CHECK (store_kind IN ('sqlite', 'duckdb')),
                    bootstrap TEXT,
                    code TEXT,
                    version TEXT NOT NULL DEFAULT 'v1',
                    config TEXT NOT NULL DEFAULT '{}',
                    secrets TEXT NOT NULL DEFAULT '{}',
                    metadata TEXT NOT NULL DEFAULT '{}',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_agents_execution_target
                ON agents (execution_target)
            """)
            conn.commit()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection."""
        conn = sqlite3.connect(str(self.db_path), timeout=10.0)
        conn.row_factory = sqlite3.Row
        return conn

    def upsert(self, descriptor: AgentDescriptor) -> None:
        """Insert or update a descriptor by name.

        Native callables are not persisted; only their metadata is.

        Args:
            descriptor: Descriptor to store
        """
        now = utc_now().isoformat()

        with self._lock:
            with self._get_connection() as conn:
                conn.execute(
                    """
                    INSERT INTO agents (
                        name, description, parameters, dependencies, execution_target,
                        requires_store, store_kind, bootstrap, code, version,
                        config, secrets, metadata, created_at, updated_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(name) DO UPDATE SET
                        description = excluded.description,
                        parameters = excluded.parameters,
                        dependencies = excluded.dependencies,
                        execution_target = excluded.execution_target,
                        requires_store = excluded.requires_store,
                        store_kind = excluded.store_kind,
                        bootstrap = excluded.bootstrap,
                        code = excluded.code,
                        version = excluded.version,
                        config = excluded.config,
                        secrets = excluded.secrets,
                        metadata = excluded.metadata,
                        updated_at = excluded.updated_at
                    """,
                    (
                        descriptor.name,
                        descriptor.description,
                        json.dumps(descriptor.schema_),
                        json.dumps(descriptor.dependencies),
                        descriptor.execution_target.value,
                        int(descriptor.requires_store),
                        descriptor.store_kind,
                        descriptor.bootstrap_code,
                        descriptor.code,
                        descriptor.version,
                        json.dumps(descriptor.config, default=str),
                        json.dumps(descriptor.secrets, default=str),
                        json.dumps(descriptor.metadata, default=str),
                        descriptor.created_at.isoformat(),
                        now,
                    ),
                )
                conn.commit()

        logger.debug(f"Catalogued agent {descriptor.name} ({descriptor.shape.value})")

    def get(self, name: str) -> AgentDescriptor | None:
        """Retrieve a descriptor by name.

        Args:
            name: Agent name

        Returns:
            AgentDescriptor, or None if not catalogued
        """
        with self._lock:
            with self._get_connection() as conn:
                row = conn.execute(
                    "SELECT * FROM agents WHERE name = ?",
                    (name,),
                ).fetchone()

        if row is None:
            return None
        return _row_to_descriptor(row)

    def names(self) -> list[str]:
        """List catalogued agent names."""
        with self._lock:
            with self._get_connection() as conn:
                rows = conn.execute("SELECT name FROM agents ORDER BY name").fetchall()
        return [row["name"] for row in rows]

    def delete(self, name: str) -> bool:
        """Remove a descriptor.

        Args:
            name: Agent name

        Returns:
            True if a row was deleted
        """
        with self._lock:
            with self._get_connection() as conn:
                cursor = conn.execute("DELETE FROM agents WHERE name = ?", (name,))
                conn.commit()
                deleted = cursor.rowcount > 0

        if deleted:
            logger.debug(f"Removed agent {name} from catalog")
        return deleted

    def clear(self) -> None:
        """Remove all descriptors."""
        with self._lock:
            with self._get_connection() as conn:
                conn.execute("DELETE FROM agents")
                conn.commit()

        logger.info("Agent catalog cleared")


def _row_to_descriptor(row: sqlite3.Row) -> AgentDescriptor:
    """Convert a catalog row to a descriptor."""
    blobs: dict[str, Any] = {}
    for column in _JSON_COLUMNS:
        raw = row[column]
        try:
            blobs[column] = json.loads(raw) if raw else None
        except json.JSONDecodeError:
            logger.warning(f"Corrupt {column} blob for agent {row['name']}")
            blobs[column] = None

    return AgentDescriptor(
        name=row["name"],
        description=row["description"] or "",
        schema=blobs["parameters"] or {},
        dependencies=blobs["dependencies"] or [],
        execution_target=row["execution_target"],
        requires_store=bool(row["requires_store"]),
        store_kind=row["store_kind"],
        bootstrap_code=row["bootstrap"],
        code=row["code"],
        version=row["version"],
        config=blobs["config"] or {},
        secrets=blobs["secrets"] or {},
        metadata=blobs["metadata"] or {},
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


def open_catalog(db_path: Path | str | None) -> AgentCatalog | None:
    """Open a catalog, or return None for memory-only mode.

    Args:
        db_path: Database path; None disables persistence

    Returns:
        AgentCatalog, or None if no path was given or it cannot be opened
    """
    if db_path is None:
        return None
    try:
        return AgentCatalog(db_path=db_path)
    except (sqlite3.Error, OSError) as e:
        logger.warning(f"Agent catalog unavailable at {db_path}, running memory-only: {e}")
        return None
