"""Query-time models."""

from __future__ import annotations

from dataclasses import dataclass, replace


@dataclass(frozen=True)
class RetrievedChunk:
    """A ranked chunk with its text sliced from the current document content.

    ``score`` is the combined rerank score, ``semantic_score`` the raw cosine.
    When no document content is available ``text`` holds the stored preview.
    """

    rank: int
    doc_id: str
    doc_title: str
    chunk_id: str
    chunk_index: int
    start_char: int
    end_char: int
    semantic_score: float
    score: float
    text: str
    prompt_text: str = ""

    @property
    def key(self) -> tuple[str, str]:
        return (self.doc_id, self.chunk_id)

    def with_rank(self, rank: int) -> "RetrievedChunk":
        return replace(self, rank=rank)

    def to_dict(self, snippet_chars: int = 240) -> dict:
        return {
            "rank": self.rank,
            "doc_id": self.doc_id,
            "doc_title": self.doc_title,
            "chunk_id": self.chunk_id,
            "chunk_index": self.chunk_index,
            "start_char": self.start_char,
            "end_char": self.end_char,
            "score": self.score,
            "semantic_score": self.semantic_score,
            "snippet": self.text[:snippet_chars],
        }

    @classmethod
    def from_dict(cls, row: dict) -> "RetrievedChunk":
        """Accept chunks supplied by a caller that already ran retrieval."""
        text = str(row.get("text") or row.get("snippet") or "")
        return cls(
            rank=int(row.get("rank") or 0),
            doc_id=str(row.get("doc_id") or row.get("docId") or ""),
            doc_title=str(row.get("doc_title") or row.get("docTitle") or ""),
            chunk_id=str(row.get("chunk_id") or row.get("chunkId") or ""),
            chunk_index=int(row.get("chunk_index") or row.get("chunkIndex") or 0),
            start_char=int(row.get("start_char") or row.get("startChar") or 0),
            end_char=int(row.get("end_char") or row.get("endChar") or 0),
            semantic_score=float(row.get("semantic_score") or row.get("score") or 0.0),
            score=float(row.get("score") or 0.0),
            text=text,
            prompt_text=str(row.get("prompt_text") or row.get("promptText") or text),
        )
