"""Database schema for semantic index files."""

SCHEMA = """
-- One row per planned chunk; the vector is NULL until embedded
CREATE TABLE IF NOT EXISTS semantic_chunks (
    doc_id TEXT NOT NULL,
    chunk_id TEXT NOT NULL,
    chunk_index INTEGER NOT NULL,
    start_char INTEGER NOT NULL,
    end_char INTEGER NOT NULL,
    chunk_text_hash TEXT NOT NULL,
    chunk_text_preview TEXT,
    embedding_model_name TEXT NOT NULL,
    embedding_vector BLOB,     -- little-endian float32 per dimension
    embedding_dim INTEGER DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (doc_id, chunk_id)
);

-- Per-document content hash, upserted with the document's chunks
CREATE TABLE IF NOT EXISTS semantic_doc_state (
    doc_id TEXT PRIMARY KEY,
    doc_text_hash TEXT NOT NULL,
    chunk_count INTEGER NOT NULL,
    updated_at TEXT NOT NULL
);

-- Settings such as the active embedding/generation model
CREATE TABLE IF NOT EXISTS semantic_meta (
    meta_key TEXT PRIMARY KEY,
    meta_value TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_semantic_chunks_doc_id ON semantic_chunks(doc_id);
CREATE INDEX IF NOT EXISTS idx_semantic_chunks_model ON semantic_chunks(embedding_model_name);
"""

META_EMBEDDING_MODEL = "embedding_model_name"
META_GENERATION_MODEL = "generation_model_name"
