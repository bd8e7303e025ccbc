"""Protocol definitions for swappable components."""

from citepack.protocols.chunker import ChunkingStrategy
from citepack.protocols.embedder import EmbeddingProvider
from citepack.protocols.generator import ChatProvider
from citepack.protocols.ingester import Ingester

__all__ = ["ChatProvider", "ChunkingStrategy", "EmbeddingProvider", "Ingester"]
