"""Incremental indexing of a document set into a semantic store."""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from citepack.errors import Cancelled, IndexCancelled
from citepack.models import (
    Chunk,
    ChunkFingerprint,
    Document,
    IndexProgress,
    IndexState,
    IndexStatus,
    IndexSummary,
    text_documents,
)
from citepack.protocols import ChunkingStrategy, EmbeddingProvider
from citepack.storage import META_EMBEDDING_MODEL, SemanticStore
from citepack.utils.cancel import CancelToken
from citepack.utils.text import document_hash

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[IndexProgress], None]


@dataclass(frozen=True)
class DocumentPlan:
    """Chunk plan for one document and the subset that needs embedding."""

    document: Document
    doc_hash: str
    chunks: list[Chunk]
    changed: list[Chunk]
    up_to_date: bool


def needs_embedding(chunk: Chunk, stored: Optional[ChunkFingerprint], model_name: str) -> bool:
    """A chunk is re-embedded when new, edited, or embedded by another model."""
    return stored is None or stored.text_hash != chunk.text_hash or stored.model_name != model_name


class Indexer:
    """Keeps a store in sync with the current documents.

    Only chunks whose text or model changed are embedded. Each document is
    written in its own transaction, so documents committed before a
    cancellation or failure stay valid.
    """

    def __init__(
        self,
        store: SemanticStore,
        embedder: EmbeddingProvider,
        chunker: ChunkingStrategy,
        concurrency: int = 2,
    ):
        self.store = store
        self.embedder = embedder
        self.chunker = chunker
        self.concurrency = max(1, int(concurrency))

    def plan(self, document: Document, model_name: str) -> DocumentPlan:
        doc_hash = document_hash(document.content)
        chunks = self.chunker.chunk(document.id, document.content)
        existing = self.store.get_doc_chunk_map(document.id)
        changed = [c for c in chunks if needs_embedding(c, existing.get(c.chunk_id), model_name)]
        state = self.store.get_doc_state(document.id)
        up_to_date = (
            not changed
            and state is not None
            and state.doc_text_hash == doc_hash
            and set(existing) == {c.chunk_id for c in chunks}
        )
        return DocumentPlan(document, doc_hash, chunks, changed, up_to_date)

    def run(
        self,
        documents: Iterable[Document | dict],
        model_name: str,
        on_progress: Optional[ProgressCallback] = None,
        token: Optional[CancelToken] = None,
    ) -> IndexSummary:
        """Index ``documents`` in caller order.

        Raises:
            IndexCancelled: the token was cancelled; earlier documents stay committed
        """
        token = token or CancelToken()
        started = time.monotonic()
        docs = text_documents(documents)
        self.store.initialize()
        self.store.set_meta(META_EMBEDDING_MODEL, model_name)

        def report(phase: str, current_doc: str, embedded: int, total: int) -> None:
            if on_progress is None:
                return
            percent = 100 if total == 0 else int(round(embedded * 100 / total))
            on_progress(IndexProgress(phase, percent, current_doc, embedded, total))

        plans = []
        for doc in docs:
            token.raise_if_cancelled(IndexCancelled, "Indexing cancelled.")
            plans.append(self.plan(doc, model_name))
        total = sum(len(p.changed) for p in plans)
        embedded = 0
        report("planned", "", 0, total)
        logger.info(f"Indexing {len(plans)} documents, {total} chunks to embed with {model_name}")

        for plan in plans:
            token.raise_if_cancelled(IndexCancelled, "Indexing cancelled.")
            if plan.up_to_date:
                continue
            doc_id = plan.document.id
            report("embedding", doc_id, embedded, total)

            def on_embedded(_index: int, doc_id: str = doc_id) -> None:
                nonlocal embedded
                embedded += 1
                report("embedding", doc_id, embedded, total)

            try:
                vectors = self.embedder.embed_many(
                    [c.text for c in plan.changed],
                    model=model_name,
                    concurrency=self.concurrency,
                    token=token,
                    on_embedded=on_embedded,
                )
            except Cancelled as e:
                raise IndexCancelled("Indexing cancelled.") from e
            by_id = {c.chunk_id: v for c, v in zip(plan.changed, vectors)}

            with self.store.transaction() as txn:
                for chunk in plan.chunks:
                    txn.upsert_chunk(chunk, model_name, by_id.get(chunk.chunk_id))
                txn.delete_chunks_not_in(doc_id, [c.chunk_id for c in plan.chunks])
                txn.upsert_doc_state(doc_id, plan.doc_hash, len(plan.chunks))
            logger.debug(f"  {doc_id}: {len(plan.changed)}/{len(plan.chunks)} chunks embedded")

        summary = IndexSummary(
            indexed_docs=len(plans),
            embedded_chunks=embedded,
            total_chunks=sum(len(p.chunks) for p in plans),
            duration_ms=int((time.monotonic() - started) * 1000),
            model_name=model_name,
        )
        report("done", "", embedded, total)
        logger.info(f"Indexed {summary.indexed_docs} documents, embedded {embedded} chunks")
        return summary

    def index_status(self, documents: Iterable[Document | dict], model_name: str) -> IndexStatus:
        """Compare stored document hashes against the current documents."""
        docs = text_documents(documents)
        self.store.initialize()
        states = {s.doc_id: s for s in self.store.get_all_doc_states()}
        embedded_ids = self.store.get_embedded_doc_ids(model_name)

        fresh = stale = 0
        for doc in docs:
            state = states.get(doc.id)
            if state is None or (state.chunk_count > 0 and doc.id not in embedded_ids):
                continue
            if state.doc_text_hash == document_hash(doc.content):
                fresh += 1
            else:
                stale += 1

        indexed = fresh + stale
        if indexed == 0:
            state = IndexState.NOT_INDEXED
        elif indexed < len(docs):
            state = IndexState.PARTIAL
        elif stale:
            state = IndexState.INDEXED_STALE
        else:
            state = IndexState.INDEXED
        return IndexStatus(
            state=state,
            total_docs=len(docs),
            indexed_doc_count=indexed,
            stale_doc_count=stale,
            chunk_count=self.store.get_total_chunk_count(),
            model_name=model_name,
        )

    def reconcile_document_ids(self, documents: Iterable[Document | dict]) -> list[tuple[str, str]]:
        """Carry index rows over to documents whose id changed but content did not.

        A stored document that is no longer present is remapped onto a
        current, unindexed document with the same content hash. Ambiguous
        hashes (several candidates on either side) are left alone.
        """
        docs = text_documents(documents)
        self.store.initialize()
        states = self.store.get_all_doc_states()
        current_ids = {doc.id for doc in docs}
        stored_ids = {s.doc_id for s in states}

        orphans: dict[str, list[str]] = defaultdict(list)
        for state in states:
            if state.doc_id not in current_ids:
                orphans[state.doc_text_hash].append(state.doc_id)
        candidates: dict[str, list[str]] = defaultdict(list)
        for doc in docs:
            if doc.id not in stored_ids:
                candidates[document_hash(doc.content)].append(doc.id)

        remapped = []
        for doc_hash, old_ids in orphans.items():
            new_ids = candidates.get(doc_hash, [])
            if len(old_ids) != 1 or len(new_ids) != 1:
                continue
            if self.store.remap_document_id(old_ids[0], new_ids[0]):
                remapped.append((old_ids[0], new_ids[0]))
        return remapped
