"""Persistent storage for chunks, vectors and per-document state."""

from citepack.storage.schema import META_EMBEDDING_MODEL, META_GENERATION_MODEL
from citepack.storage.store import SemanticStore, StoreWriter

__all__ = ["META_EMBEDDING_MODEL", "META_GENERATION_MODEL", "SemanticStore", "StoreWriter"]
