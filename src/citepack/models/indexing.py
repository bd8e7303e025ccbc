"""Models reported by the indexer."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum


@dataclass(frozen=True)
class IndexProgress:
    phase: str
    percent: int
    current_doc: str
    embedded_chunks: int
    total_chunks: int

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class IndexSummary:
    indexed_docs: int
    embedded_chunks: int
    total_chunks: int
    duration_ms: int
    model_name: str

    def to_dict(self) -> dict:
        return {"ok": True, **asdict(self)}


class IndexState(str, Enum):
    NOT_INDEXED = "not_indexed"
    PARTIAL = "partial"
    INDEXED = "indexed"
    INDEXED_STALE = "indexed_stale"


@dataclass(frozen=True)
class IndexStatus:
    state: IndexState
    total_docs: int
    indexed_doc_count: int
    stale_doc_count: int
    chunk_count: int
    model_name: str

    @property
    def message(self) -> str:
        counts = f"{self.indexed_doc_count}/{self.total_docs} docs"
        if self.state is IndexState.INDEXED:
            return f"Indexed ({counts}, {self.chunk_count} chunks)."
        if self.state is IndexState.INDEXED_STALE:
            return f"Indexed cache loaded ({counts}); {self.stale_doc_count} changed since last run."
        if self.state is IndexState.PARTIAL:
            return f"Partially indexed ({counts})."
        return f"Not indexed ({counts} indexed)."

    def to_dict(self) -> dict:
        out = asdict(self)
        out["state"] = self.state.value
        out["message"] = self.message
        return out
