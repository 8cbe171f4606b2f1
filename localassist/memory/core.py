"""ChromaDB-backed vector memory for user statements."""

from __future__ import annotations

import json
import logging
import uuid
from pathlib import Path
from typing import Any

import chromadb
from chromadb.config import Settings
from chromadb.utils.embedding_functions import DefaultEmbeddingFunction

from localassist.schemas import MemoryEntry, MemoryHit

logger = logging.getLogger(__name__)

# Default data directory
DEFAULT_CHROMA_DIR = Path.home() / ".localassist" / "memory"
DEFAULT_COLLECTION = "user-memories"

# Entity buckets used to narrow a search by document content
FILTER_BUCKETS = ("items", "technology")


class Embedder:
    """Text embedder backed by ChromaDB's bundled ONNX MiniLM model.

    The model is loaded on first use.
    """

    def __init__(self, embedding_function: Any = None):
        self._embedding_function = embedding_function

    @property
    def embedding_function(self) -> Any:
        if self._embedding_function is None:
            logger.info("Loading default ONNX embedding model")
            self._embedding_function = DefaultEmbeddingFunction()
        return self._embedding_function

    def embed(self, text: str) -> list[float]:
        """Embed a single text."""
        return self.embed_many([text])[0]

    def embed_many(self, texts: list[str]) -> list[list[float]]:
        """Embed a batch of texts."""
        vectors = self.embedding_function(list(texts))
        return [[float(x) for x in vector] for vector in vectors]


def _entity_filter(entities: dict[str, list[str]] | None) -> dict[str, Any] | None:
    """Build a document filter from item/technology entities."""
    if not entities:
        return None

    terms: list[str] = []
    for bucket in FILTER_BUCKETS:
        for term in entities.get(bucket, []):
            if term and term not in terms:
                terms.append(term)

    if not terms:
        return None
    if len(terms) == 1:
        return {"$contains": terms[0]}
    return {"$or": [{"$contains": term} for term in terms]}


class MemoryStore:
    """Vector memory of user statements with session scoping."""

    def __init__(
        self,
        chroma_dir: Path | str | None = None,
        collection_name: str = DEFAULT_COLLECTION,
        embedder: Embedder | None = None,
        client: Any = None,
    ):
        """Initialize the memory store.

        Args:
            chroma_dir: Directory for ChromaDB storage
            collection_name: Collection holding the memories
            embedder: Embedder used for documents and queries
            client: Pre-built ChromaDB client, takes precedence over chroma_dir
        """
        self.chroma_dir = Path(chroma_dir) if chroma_dir else DEFAULT_CHROMA_DIR
        self.collection_name = collection_name
        self.embedder = embedder or Embedder()

        if client is None:
            self.chroma_dir.mkdir(parents=True, exist_ok=True)
            client = chromadb.PersistentClient(
                path=str(self.chroma_dir),
                settings=Settings(anonymized_telemetry=False),
            )
        self.client = client

    def _get_collection(self) -> Any:
        """Get or create the memory collection."""
        return self.client.get_or_create_collection(
            name=self.collection_name,
            metadata={"hnsw:space": "cosine"},
        )

    def store(self, entry: MemoryEntry) -> str:
        """Embed and persist a memory.

        Args:
            entry: Memory to store

        Returns:
            The memory id
        """
        memory_id = entry.id or f"mem-{uuid.uuid4().hex[:12]}"
        metadata: dict[str, Any] = {
            "timestamp": entry.timestamp.isoformat(),
            "entities": json.dumps(entry.entities),
        }
        if entry.session_id:
            metadata["session_id"] = entry.session_id
        for key, value in entry.metadata.items():
            if isinstance(value, (str, int, float, bool)):
                metadata[key] = value

        self._get_collection().upsert(
            ids=[memory_id],
            documents=[entry.text],
            embeddings=[self.embedder.embed(entry.text)],
            metadatas=[metadata],
        )
        logger.debug(f"Stored memory {memory_id} ({len(entry.text)} chars)")
        return memory_id

    def search(
        self,
        query: str,
        session_id: str | None = None,
        limit: int = 5,
        min_similarity: float = 0.0,
        entities: dict[str, list[str]] | None = None,
    ) -> list[MemoryHit]:
        """Search memories by semantic similarity.

        When item or technology entities are supplied, documents containing
        them are searched first; an empty filtered result falls back to the
        unfiltered search.

        Args:
            query: Search text
            session_id: Restrict to one session, or None for all
            limit: Maximum hits
            min_similarity: Minimum cosine similarity to keep
            entities: Entities found in the query

        Returns:
            Hits ordered by descending similarity
        """
        collection = self._get_collection()
        if collection.count() == 0:
            return []

        query_embedding = self.embedder.embed(query)
        where = {"session_id": session_id} if session_id else None

        document_filter = _entity_filter(entities)
        if document_filter is not None:
            hits = self._query(collection, query_embedding, limit, min_similarity, where, document_filter)
            if hits:
                return hits
            logger.debug("Entity-filtered memory search empty, retrying unfiltered")

        return self._query(collection, query_embedding, limit, min_similarity, where, None)

    def _query(
        self,
        collection: Any,
        query_embedding: list[float],
        limit: int,
        min_similarity: float,
        where: dict[str, Any] | None,
        where_document: dict[str, Any] | None,
    ) -> list[MemoryHit]:
        kwargs: dict[str, Any] = {
            "query_embeddings": [query_embedding],
            "n_results": max(1, min(limit, collection.count())),
            "include": ["documents", "metadatas", "distances"],
        }
        if where:
            kwargs["where"] = where
        if where_document:
            kwargs["where_document"] = where_document

        results = collection.query(**kwargs)

        hits = []
        ids = results.get("ids") or [[]]
        documents = results.get("documents") or [[]]
        metadatas = results.get("metadatas") or [[]]
        distances = results.get("distances") or [[]]
        for i, memory_id in enumerate(ids[0]):
            metadata = metadatas[0][i] if metadatas[0] else {}
            metadata = metadata or {}
            distance = distances[0][i] if distances[0] else 1.0
            similarity = 1.0 - float(distance)
            if similarity < min_similarity:
                continue
            hits.append(MemoryHit(
                id=memory_id,
                text=documents[0][i] if documents[0] else "",
                similarity=similarity,
                session_id=metadata.get("session_id"),
                timestamp=metadata.get("timestamp"),
            ))

        hits.sort(key=lambda hit: hit.similarity, reverse=True)
        return hits[:limit]

    def recent(self, limit: int = 10, session_id: str | None = None) -> list[MemoryHit]:
        """Most recent memories by stored timestamp."""
        kwargs: dict[str, Any] = {"include": ["documents", "metadatas"]}
        if session_id:
            kwargs["where"] = {"session_id": session_id}
        results = self._get_collection().get(**kwargs)

        hits = [
            MemoryHit(
                id=memory_id,
                text=document or "",
                similarity=1.0,
                session_id=(metadata or {}).get("session_id"),
                timestamp=(metadata or {}).get("timestamp"),
            )
            for memory_id, document, metadata in zip(
                results.get("ids") or [],
                results.get("documents") or [],
                results.get("metadatas") or [],
            )
        ]
        hits.sort(key=lambda hit: hit.timestamp or "", reverse=True)
        return hits[:limit]

    def count(self) -> int:
        """Number of stored memories."""
        return self._get_collection().count()

    def delete(self, memory_id: str) -> None:
        """Remove one memory."""
        self._get_collection().delete(ids=[memory_id])

    def clear(self) -> None:
        """Remove every memory."""
        try:
            self.client.delete_collection(self.collection_name)
        except Exception as e:
            logger.debug(f"Collection {self.collection_name} not deleted: {e}")
        logger.info("Memory store cleared")


# Global memory store instance
_memory_instance: MemoryStore | None = None


def get_memory_store(chroma_dir: Path | str | None = None) -> MemoryStore:
    """Get or create the global memory store instance.

    Args:
        chroma_dir: Optional ChromaDB directory

    Returns:
        MemoryStore instance
    """
    global _memory_instance
    if _memory_instance is None:
        _memory_instance = MemoryStore(chroma_dir=chroma_dir)
    return _memory_instance
