"""Vector memory module backed by ChromaDB."""

from localassist.memory.core import Embedder, MemoryStore, get_memory_store

__all__ = ["Embedder", "MemoryStore", "get_memory_store"]
