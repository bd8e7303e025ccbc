"""Text chunking strategies."""

from citepack.chunkers.deterministic_chunker import ChunkerConfig, DeterministicChunker, chunk_id_for

__all__ = ["ChunkerConfig", "DeterministicChunker", "chunk_id_for"]
