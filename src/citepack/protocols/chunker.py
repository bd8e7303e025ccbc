"""Protocol for text chunking strategies."""

from typing import Protocol, runtime_checkable

from citepack.models import Chunk


@runtime_checkable
class ChunkingStrategy(Protocol):
    """Splits one document's text into ordered chunks.

    Implementations must be deterministic: the same ``(doc_id, text)``
    always yields the same chunks, since the indexer diffs by chunk hash.
    """

    def chunk(self, doc_id: str, text: str) -> list[Chunk]:
        ...
