"""Data models for citepack."""

from citepack.models.answer import (
    AnswerMode,
    AskResult,
    ChunkRef,
    Claim,
    MarkerRef,
    Quote,
    Source,
    ValidatedAnswer,
)
from citepack.models.document import (
    Chunk,
    ChunkFingerprint,
    Document,
    DocumentIndexState,
    DocumentKind,
    StoredChunk,
    text_documents,
)
from citepack.models.indexing import IndexProgress, IndexState, IndexStatus, IndexSummary
from citepack.models.retrieval import RetrievedChunk

__all__ = [
    "AnswerMode",
    "AskResult",
    "Chunk",
    "ChunkFingerprint",
    "ChunkRef",
    "Claim",
    "Document",
    "DocumentIndexState",
    "DocumentKind",
    "IndexProgress",
    "IndexState",
    "IndexStatus",
    "IndexSummary",
    "MarkerRef",
    "Quote",
    "RetrievedChunk",
    "Source",
    "StoredChunk",
    "ValidatedAnswer",
    "text_documents",
]
