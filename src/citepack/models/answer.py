"""Answer models produced by the ask pipeline."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Optional

from citepack.models.retrieval import RetrievedChunk


class AnswerMode(str, Enum):
    STRICT = "strict"
    LOOSE = "loose"

    @classmethod
    def parse(cls, value: object) -> "AnswerMode":
        return cls.LOOSE if str(value or "").strip().lower() == "loose" else cls.STRICT


@dataclass(frozen=True)
class ChunkRef:
    doc_id: str
    chunk_id: str

    @property
    def key(self) -> tuple[str, str]:
        return (self.doc_id, self.chunk_id)


@dataclass(frozen=True)
class Quote:
    doc_id: str
    chunk_id: str
    quote: str


@dataclass(frozen=True)
class MarkerRef:
    marker: int
    doc_id: str
    chunk_id: str


@dataclass(frozen=True)
class Claim:
    claim: str
    citations: list[ChunkRef] = field(default_factory=list)
    quotes: list[Quote] = field(default_factory=list)


@dataclass(frozen=True)
class ValidatedAnswer:
    """Model output after every reference has been checked against evidence."""

    mode: AnswerMode
    claims: list[Claim] = field(default_factory=list)
    answer_text: str = ""
    citation_refs: list[ChunkRef | MarkerRef] = field(default_factory=list)
    notes: str = ""
    verified_citation_count: int = 0
    unverified_citation_count: int = 0
    citation_floor_met: bool = True
    fallback: bool = False


@dataclass(frozen=True)
class Source:
    doc_id: str
    doc_title: str
    chunk_id: str
    start_char: int
    end_char: int
    snippet: str
    marker: Optional[int] = None

    @classmethod
    def from_chunk(cls, chunk: RetrievedChunk, marker: Optional[int] = None, snippet_chars: int = 260) -> "Source":
        return cls(
            doc_id=chunk.doc_id,
            doc_title=chunk.doc_title,
            chunk_id=chunk.chunk_id,
            start_char=chunk.start_char,
            end_char=chunk.end_char,
            snippet=chunk.text[:snippet_chars],
            marker=marker,
        )


@dataclass(frozen=True)
class AskResult:
    mode: AnswerMode
    claims: list[Claim]
    answer_text: str
    notes: str
    sources: list[Source]
    retrieved_chunks: list[RetrievedChunk]
    verified_citation_count: int = 0
    unverified_citation_count: int = 0
    repaired: bool = False
    fallback: bool = False
    raw_output: str = ""

    def to_dict(self) -> dict:
        return {
            "answer_mode": self.mode.value,
            "answer": [asdict(claim) for claim in self.claims],
            "answer_text": self.answer_text,
            "notes": self.notes,
            "sources": [asdict(source) for source in self.sources],
            "retrieved_chunks": [chunk.to_dict() for chunk in self.retrieved_chunks],
            "verified_citation_count": self.verified_citation_count,
            "unverified_citation_count": self.unverified_citation_count,
            "repaired": self.repaired,
            "fallback": self.fallback,
            "raw_output": self.raw_output,
        }
