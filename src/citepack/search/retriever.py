"""Semantic search over a store, with lexical rerank."""

from __future__ import annotations

import heapq
import logging
from typing import Iterable, Optional

from citepack.models import Document, RetrievedChunk, StoredChunk, text_documents
from citepack.protocols import EmbeddingProvider
from citepack.search.rerank import RerankWeights, rerank_candidates
from citepack.storage import SemanticStore
from citepack.utils.cancel import CancelToken
from citepack.utils.vector import cosine_similarity

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "\n...[truncated]"
MIN_PROMPT_CHARS = 400


def truncate_for_prompt(text: str, max_chars: int) -> str:
    limit = max(MIN_PROMPT_CHARS, int(max_chars))
    if len(text) <= limit:
        return text
    return text[:limit] + TRUNCATION_MARKER


class Retriever:
    """Embeds a query once and ranks stored chunks for the active model."""

    def __init__(
        self,
        store: SemanticStore,
        embedder: EmbeddingProvider,
        weights: Optional[RerankWeights] = None,
    ):
        self.store = store
        self.embedder = embedder
        self.weights = weights or RerankWeights()

    def search(
        self,
        query: str,
        model_name: str,
        documents: Optional[Iterable[Document | dict]] = None,
        top_k: int = 20,
        candidate_k: Optional[int] = None,
        max_prompt_chars: int = 2000,
        token: Optional[CancelToken] = None,
    ) -> list[RetrievedChunk]:
        """Return up to ``top_k`` chunks, best first.

        With ``documents`` the chunk text is sliced from their current
        content and chunks of unknown documents are skipped; without them
        the stored preview stands in for the text.
        """
        query = (query or "").strip()
        top_k = max(1, int(top_k))
        if not query:
            return []
        candidate_k = max(top_k, int(candidate_k or top_k * 3))

        query_vector = self.embedder.embed_one(model_name, query, token=token)
        self.store.initialize()
        rows = self.store.get_embeddings_for_model(model_name)
        doc_map = {d.id: d for d in text_documents(documents)} if documents is not None else None
        if doc_map is not None:
            rows = [row for row in rows if row.doc_id in doc_map]

        scored = ((cosine_similarity(query_vector, row.vector), row) for row in rows)
        best = heapq.nlargest(candidate_k, scored, key=lambda pair: pair[0])
        candidates = [
            self._candidate(row, score, doc_map, max_prompt_chars) for score, row in best
        ]
        logger.debug(f"Search '{query[:60]}': {len(rows)} vectors, {len(candidates)} candidates")
        return rerank_candidates(query, candidates, self.weights)[:top_k]

    @staticmethod
    def _candidate(
        row: StoredChunk,
        semantic_score: float,
        doc_map: Optional[dict[str, Document]],
        max_prompt_chars: int,
    ) -> RetrievedChunk:
        doc = doc_map.get(row.doc_id) if doc_map is not None else None
        if doc is not None:
            text = doc.content[row.start_char : row.end_char]
            title = doc.title
        else:
            text = row.preview
            title = ""
        return RetrievedChunk(
            rank=0,
            doc_id=row.doc_id,
            doc_title=title,
            chunk_id=row.chunk_id,
            chunk_index=row.chunk_index,
            start_char=row.start_char,
            end_char=row.end_char,
            semantic_score=semantic_score,
            score=semantic_score,
            text=text,
            prompt_text=truncate_for_prompt(text, max_prompt_chars),
        )
