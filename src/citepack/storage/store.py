"""SQLite-backed storage for the semantic index."""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Iterator, Optional, Sequence

import numpy as np

from citepack.models import Chunk, ChunkFingerprint, DocumentIndexState, StoredChunk
from citepack.storage.schema import SCHEMA
from citepack.utils.vector import from_float32_bytes, to_float32_bytes

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


_UPSERT_CHUNK = """
INSERT INTO semantic_chunks (
    doc_id, chunk_id, chunk_index, start_char, end_char,
    chunk_text_hash, chunk_text_preview,
    embedding_model_name, embedding_vector, embedding_dim,
    created_at, updated_at
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(doc_id, chunk_id) DO UPDATE SET
    chunk_index = excluded.chunk_index,
    start_char = excluded.start_char,
    end_char = excluded.end_char,
    chunk_text_hash = excluded.chunk_text_hash,
    chunk_text_preview = excluded.chunk_text_preview,
    embedding_model_name = excluded.embedding_model_name,
    embedding_vector = COALESCE(excluded.embedding_vector, semantic_chunks.embedding_vector),
    embedding_dim = CASE
        WHEN excluded.embedding_vector IS NULL THEN semantic_chunks.embedding_dim
        ELSE excluded.embedding_dim
    END,
    updated_at = excluded.updated_at
"""

_UPSERT_DOC_STATE = """
INSERT INTO semantic_doc_state (doc_id, doc_text_hash, chunk_count, updated_at)
VALUES (?, ?, ?, ?)
ON CONFLICT(doc_id) DO UPDATE SET
    doc_text_hash = excluded.doc_text_hash,
    chunk_count = excluded.chunk_count,
    updated_at = excluded.updated_at
"""

_REMAP_CHUNKS = """
UPDATE semantic_chunks
SET doc_id = :new_id,
    chunk_id = :new_id || '::' || chunk_index
WHERE doc_id = :old_id
"""


class StoreWriter:
    """Mutations bound to one open transaction.

    Obtained from :meth:`SemanticStore.transaction`; nothing is visible to
    other connections until the transaction commits.
    """

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def upsert_chunk(self, chunk: Chunk, model_name: str, vector: Optional[Sequence[float]] = None) -> None:
        """Insert or update a chunk row.

        A ``None`` vector keeps whatever vector and dimension are already
        stored, so chunk metadata can be written before embedding.
        """
        now = _now()
        blob = to_float32_bytes(vector) if vector is not None else None
        dim = len(vector) if vector is not None else 0
        self.conn.execute(
            _UPSERT_CHUNK,
            (
                chunk.doc_id,
                chunk.chunk_id,
                chunk.chunk_index,
                chunk.start_char,
                chunk.end_char,
                chunk.text_hash,
                chunk.preview,
                model_name,
                blob,
                dim,
                now,
                now,
            ),
        )

    def delete_chunks_not_in(self, doc_id: str, keep_chunk_ids: Iterable[str]) -> int:
        """Delete the document's chunks whose id is not in ``keep_chunk_ids``.

        An empty keep set deletes every chunk of the document.
        """
        keep = set(keep_chunk_ids)
        if not keep:
            cursor = self.conn.execute("DELETE FROM semantic_chunks WHERE doc_id = ?", (doc_id,))
            return cursor.rowcount
        rows = self.conn.execute("SELECT chunk_id FROM semantic_chunks WHERE doc_id = ?", (doc_id,))
        stale = [(doc_id, row["chunk_id"]) for row in rows if row["chunk_id"] not in keep]
        if stale:
            self.conn.executemany("DELETE FROM semantic_chunks WHERE doc_id = ? AND chunk_id = ?", stale)
        return len(stale)

    def upsert_doc_state(self, doc_id: str, doc_text_hash: str, chunk_count: int) -> None:
        self.conn.execute(_UPSERT_DOC_STATE, (doc_id, doc_text_hash, chunk_count, _now()))

    def delete_doc_state(self, doc_id: str) -> None:
        self.conn.execute("DELETE FROM semantic_doc_state WHERE doc_id = ?", (doc_id,))

    def delete_document(self, doc_id: str) -> None:
        self.delete_chunks_not_in(doc_id, ())
        self.delete_doc_state(doc_id)

    def set_meta(self, key: str, value: str) -> None:
        self.conn.execute(
            """INSERT INTO semantic_meta (meta_key, meta_value, updated_at) VALUES (?, ?, ?)
               ON CONFLICT(meta_key) DO UPDATE SET
                   meta_value = excluded.meta_value,
                   updated_at = excluded.updated_at""",
            (key, value or "", _now()),
        )


class SemanticStore:
    """SQLite-backed chunk, document-state and metadata tables."""

    def __init__(self, path: Path | str):
        self.path = Path(path)

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database connections.

        Commits when the block exits normally and rolls back otherwise.
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.path, timeout=30.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = NORMAL")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[StoreWriter]:
        """All writes made through the yielded writer commit together or not at all."""
        with self.connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            yield StoreWriter(conn)

    def initialize(self) -> None:
        """Create schema if not exists."""
        with self.connection() as conn:
            conn.executescript(SCHEMA)

    # Single-statement writes

    def upsert_chunk(self, chunk: Chunk, model_name: str, vector: Optional[Sequence[float]] = None) -> None:
        with self.transaction() as txn:
            txn.upsert_chunk(chunk, model_name, vector)

    def delete_chunks_not_in(self, doc_id: str, keep_chunk_ids: Iterable[str]) -> int:
        with self.transaction() as txn:
            return txn.delete_chunks_not_in(doc_id, keep_chunk_ids)

    def upsert_doc_state(self, doc_id: str, doc_text_hash: str, chunk_count: int) -> None:
        with self.transaction() as txn:
            txn.upsert_doc_state(doc_id, doc_text_hash, chunk_count)

    def delete_doc_state(self, doc_id: str) -> None:
        with self.transaction() as txn:
            txn.delete_doc_state(doc_id)

    def delete_document(self, doc_id: str) -> None:
        with self.transaction() as txn:
            txn.delete_document(doc_id)

    def set_meta(self, key: str, value: str) -> None:
        with self.transaction() as txn:
            txn.set_meta(key, value)

    def remap_document_id(self, old_id: str, new_id: str) -> bool:
        """Move every row of ``old_id`` to ``new_id`` atomically.

        Returns False without changes when either id is blank, they are
        equal, ``old_id`` has no state, or ``new_id`` already has state.
        Chunk ids are rebuilt as ``new_id::chunk_index``.
        """
        old_id = (old_id or "").strip()
        new_id = (new_id or "").strip()
        if not old_id or not new_id or old_id == new_id:
            return False
        with self.transaction() as txn:
            conn = txn.conn
            if conn.execute("SELECT 1 FROM semantic_doc_state WHERE doc_id = ?", (new_id,)).fetchone():
                return False
            if not conn.execute("SELECT 1 FROM semantic_doc_state WHERE doc_id = ?", (old_id,)).fetchone():
                return False
            conn.execute("UPDATE semantic_doc_state SET doc_id = ? WHERE doc_id = ?", (new_id, old_id))
            conn.execute(_REMAP_CHUNKS, {"new_id": new_id, "old_id": old_id})
        logger.info(f"Remapped index rows {old_id} -> {new_id}")
        return True

    # Reads

    def get_meta(self, key: str) -> str:
        with self.connection() as conn:
            row = conn.execute("SELECT meta_value FROM semantic_meta WHERE meta_key = ?", (key,)).fetchone()
            return str(row["meta_value"]) if row else ""

    def get_doc_chunk_map(self, doc_id: str) -> dict[str, ChunkFingerprint]:
        """``chunk_id -> (hash, model)`` for diffing a new chunk plan."""
        with self.connection() as conn:
            cursor = conn.execute(
                """SELECT chunk_id, chunk_text_hash, embedding_model_name
                   FROM semantic_chunks WHERE doc_id = ? ORDER BY chunk_index""",
                (doc_id,),
            )
            return {
                row["chunk_id"]: ChunkFingerprint(row["chunk_text_hash"] or "", row["embedding_model_name"] or "")
                for row in cursor
            }

    def get_doc_chunk_count(self, doc_id: str) -> int:
        with self.connection() as conn:
            row = conn.execute("SELECT COUNT(*) AS c FROM semantic_chunks WHERE doc_id = ?", (doc_id,)).fetchone()
            return int(row["c"])

    def get_total_chunk_count(self) -> int:
        with self.connection() as conn:
            return int(conn.execute("SELECT COUNT(*) AS c FROM semantic_chunks").fetchone()["c"])

    def get_doc_state(self, doc_id: str) -> Optional[DocumentIndexState]:
        with self.connection() as conn:
            row = conn.execute(
                "SELECT doc_id, doc_text_hash, chunk_count, updated_at FROM semantic_doc_state WHERE doc_id = ?",
                (doc_id,),
            ).fetchone()
            return self._state(row) if row else None

    def get_all_doc_states(self) -> list[DocumentIndexState]:
        with self.connection() as conn:
            cursor = conn.execute(
                "SELECT doc_id, doc_text_hash, chunk_count, updated_at FROM semantic_doc_state ORDER BY doc_id"
            )
            return [self._state(row) for row in cursor]

    def get_embedded_doc_ids(self, model_name: str) -> set[str]:
        """Documents with at least one stored vector for ``model_name``."""
        with self.connection() as conn:
            cursor = conn.execute(
                """SELECT DISTINCT doc_id FROM semantic_chunks
                   WHERE embedding_model_name = ? AND embedding_vector IS NOT NULL""",
                (model_name,),
            )
            return {row["doc_id"] for row in cursor}

    def get_embeddings_for_model(self, model_name: str) -> list[StoredChunk]:
        """Every chunk with a stored vector for ``model_name``."""
        with self.connection() as conn:
            cursor = conn.execute(
                """SELECT doc_id, chunk_id, chunk_index, start_char, end_char,
                          chunk_text_preview, embedding_model_name, embedding_vector, embedding_dim
                   FROM semantic_chunks
                   WHERE embedding_model_name = ? AND embedding_vector IS NOT NULL
                   ORDER BY doc_id, chunk_index""",
                (model_name,),
            )
            out = []
            for row in cursor:
                vector: np.ndarray = from_float32_bytes(row["embedding_vector"])
                out.append(
                    StoredChunk(
                        doc_id=row["doc_id"],
                        chunk_id=row["chunk_id"],
                        chunk_index=int(row["chunk_index"]),
                        start_char=int(row["start_char"]),
                        end_char=int(row["end_char"]),
                        preview=row["chunk_text_preview"] or "",
                        model_name=row["embedding_model_name"],
                        vector=vector,
                        dim=int(row["embedding_dim"] or vector.size),
                    )
                )
            return out

    @staticmethod
    def _state(row: sqlite3.Row) -> DocumentIndexState:
        return DocumentIndexState(
            doc_id=row["doc_id"],
            doc_text_hash=row["doc_text_hash"] or "",
            chunk_count=int(row["chunk_count"]),
            updated_at=row["updated_at"] or "",
        )
