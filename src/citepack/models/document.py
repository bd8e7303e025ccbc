"""Core data models for documents and chunks."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Optional

import numpy as np

from citepack.utils.text import canonicalize

UNTITLED = "Untitled document"


class DocumentKind(str, Enum):
    """What a caller-supplied record contains."""

    TEXT = "text"
    PDF = "pdf"
    BINARY = "binary"

    @classmethod
    def parse(cls, value: Any) -> "DocumentKind":
        try:
            return cls(str(value or "text").strip().lower())
        except ValueError:
            return cls.TEXT


@dataclass(frozen=True)
class Document:
    """A document as handed to the core on every run.

    ``content`` is canonical text; only TEXT documents are indexed.
    """

    id: str
    title: str
    content: str
    kind: DocumentKind = DocumentKind.TEXT

    @property
    def is_text(self) -> bool:
        return self.kind is DocumentKind.TEXT

    @classmethod
    def from_record(cls, record: dict) -> Optional["Document"]:
        """Build from a ``{id, title, content, type}`` record, or None without an id."""
        doc_id = str(record.get("id") or "").strip()
        if not doc_id:
            return None
        return cls(
            id=doc_id,
            title=str(record.get("title") or UNTITLED),
            content=canonicalize(record.get("content") or ""),
            kind=DocumentKind.parse(record.get("type") or record.get("kind")),
        )


def text_documents(records: Iterable[dict | Document]) -> list[Document]:
    """Resolve raw records once at the boundary, keeping text documents only."""
    out: list[Document] = []
    for record in records:
        if isinstance(record, Document):
            doc = Document(record.id, record.title, canonicalize(record.content), record.kind)
        elif isinstance(record, dict):
            doc = Document.from_record(record)
        else:
            doc = None
        if doc is not None and doc.is_text:
            out.append(doc)
    return out


@dataclass(frozen=True)
class Chunk:
    """A planned slice ``[start_char, end_char)`` of a document's canonical text."""

    doc_id: str
    chunk_id: str
    chunk_index: int
    start_char: int
    end_char: int
    text: str
    text_hash: str
    preview: str


@dataclass(frozen=True)
class ChunkFingerprint:
    """What the indexer needs to know about a stored chunk to diff it."""

    text_hash: str
    model_name: str


@dataclass(frozen=True)
class StoredChunk:
    """A chunk row read back from the store with its embedding."""

    doc_id: str
    chunk_id: str
    chunk_index: int
    start_char: int
    end_char: int
    preview: str
    model_name: str
    vector: np.ndarray
    dim: int


@dataclass(frozen=True)
class DocumentIndexState:
    doc_id: str
    doc_text_hash: str
    chunk_count: int
    updated_at: str
