"""Incremental indexing."""

from citepack.indexing.indexer import DocumentPlan, Indexer, needs_embedding

__all__ = ["DocumentPlan", "Indexer", "needs_embedding"]
