"""Tests for incremental indexing."""

import pytest

from citepack.chunkers import ChunkerConfig, DeterministicChunker
from citepack.errors import IndexCancelled
from citepack.indexing import Indexer
from citepack.models import Document, DocumentKind, IndexState
from citepack.storage import META_EMBEDDING_MODEL
from citepack.utils.cancel import CancelToken

from conftest import FakeEmbedder, paragraph

MODEL = "fake-embed"


def make_indexer(store, embedder) -> Indexer:
    chunker = DeterministicChunker(ChunkerConfig(min_chars=1200, max_chars=1800, overlap_chars=200))
    return Indexer(store, embedder, chunker, concurrency=2)


def corpus() -> list[Document]:
    short = Document("short", "Short", ("A short note about apples. " * 20)[:500])
    long = Document("long", "Long", "\n\n".join(paragraph(f"section{i}", 7) for i in range(8))[:3000])
    return [short, long]


class TestIncrementalIndexing:
    def test_first_run_embeds_everything(self, store, embedder):
        summary = make_indexer(store, embedder).run(corpus(), MODEL)
        assert summary.indexed_docs == 2
        assert summary.embedded_chunks == summary.total_chunks
        assert store.get_doc_chunk_count("short") == 1
        assert store.get_doc_chunk_count("long") >= 2
        assert store.get_meta(META_EMBEDDING_MODEL) == MODEL

    def test_unchanged_rerun_embeds_nothing(self, store, embedder):
        indexer = make_indexer(store, embedder)
        indexer.run(corpus(), MODEL)
        calls = len(embedder.calls)
        summary = indexer.run(corpus(), MODEL)
        assert summary.embedded_chunks == 0
        assert len(embedder.calls) == calls

    def test_edit_reembeds_only_changed_chunks(self, store, embedder):
        paragraphs = [paragraph(f"part{i}", 7) for i in range(10)]
        doc = Document("d", "D", "\n\n".join(paragraphs))
        indexer = make_indexer(store, embedder)
        indexer.run([doc], MODEL)
        before = {r.chunk_id: r.vector.tolist() for r in store.get_embeddings_for_model(MODEL)}

        paragraphs[-1] = paragraph("rewritten", 7)
        edited = Document("d", "D", "\n\n".join(paragraphs))
        summary = indexer.run([edited], MODEL)

        assert 0 < summary.embedded_chunks < len(before)
        after = {r.chunk_id: r.vector.tolist() for r in store.get_embeddings_for_model(MODEL)}
        assert after["d::0"] == before["d::0"]

    def test_model_change_reembeds(self, store, embedder):
        indexer = make_indexer(store, embedder)
        first = indexer.run(corpus(), MODEL)
        second = indexer.run(corpus(), "other-model")
        assert second.embedded_chunks == first.total_chunks

    def test_shrinking_document_drops_stale_chunks(self, store, embedder):
        indexer = make_indexer(store, embedder)
        long_doc = corpus()[1]
        indexer.run([long_doc], MODEL)
        indexer.run([Document("long", "Long", "Now tiny.")], MODEL)
        assert store.get_doc_chunk_count("long") == 1
        assert store.get_doc_state("long").chunk_count == 1

    def test_non_text_documents_are_skipped(self, store, embedder):
        docs = [{"id": "p", "title": "P", "content": "pdf text", "type": "pdf"}, {"id": "t", "content": "text"}]
        summary = make_indexer(store, embedder).run(docs, MODEL)
        assert summary.indexed_docs == 1
        assert store.get_doc_state("p") is None

    def test_progress_reports_global_totals(self, store, embedder):
        events = []
        make_indexer(store, embedder).run(corpus(), MODEL, on_progress=events.append)
        total = events[0].total_chunks
        assert all(e.total_chunks == total for e in events)
        embedded = [e.embedded_chunks for e in events]
        assert embedded == sorted(embedded)
        assert events[-1].phase == "done"
        assert events[-1].percent == 100


class TestCancellation:
    def test_cancel_before_start(self, store, embedder):
        token = CancelToken()
        token.cancel()
        with pytest.raises(IndexCancelled):
            make_indexer(store, embedder).run(corpus(), MODEL, token=token)
        assert embedder.calls == []

    def test_committed_documents_survive_cancel(self, store):
        embedder = FakeEmbedder(cancel_after=1)
        with pytest.raises(IndexCancelled):
            make_indexer(store, embedder).run(corpus(), MODEL, token=CancelToken())
        assert store.get_doc_state("short") is not None
        assert store.get_doc_state("long") is None
        assert [r.doc_id for r in store.get_embeddings_for_model(MODEL)] == ["short"]

    def test_embedding_failure_leaves_document_uncommitted(self, store):
        embedder = FakeEmbedder(fail_on="section3")
        with pytest.raises(RuntimeError):
            make_indexer(store, embedder).run(corpus(), MODEL)
        assert store.get_doc_state("short") is not None
        assert store.get_doc_chunk_count("long") == 0


class TestStatusAndReconcile:
    def test_status_transitions(self, store, embedder):
        indexer = make_indexer(store, embedder)
        docs = corpus()
        assert indexer.index_status(docs, MODEL).state is IndexState.NOT_INDEXED

        indexer.run(docs[:1], MODEL)
        partial = indexer.index_status(docs, MODEL)
        assert partial.state is IndexState.PARTIAL
        assert (partial.indexed_doc_count, partial.total_docs) == (1, 2)

        indexer.run(docs, MODEL)
        assert indexer.index_status(docs, MODEL).state is IndexState.INDEXED
        assert indexer.index_status(docs, "other-model").state is IndexState.NOT_INDEXED

        changed = [docs[0], Document("long", "Long", docs[1].content + "\n\nMore.")]
        stale = indexer.index_status(changed, MODEL)
        assert stale.state is IndexState.INDEXED_STALE
        assert stale.stale_doc_count == 1

    def test_reconcile_remaps_renamed_document(self, store, embedder):
        indexer = make_indexer(store, embedder)
        indexer.run(corpus(), MODEL)
        renamed = [corpus()[0], Document("long-v2", "Long", corpus()[1].content)]

        assert indexer.reconcile_document_ids(renamed) == [("long", "long-v2")]
        calls = len(embedder.calls)
        summary = indexer.run(renamed, MODEL)
        assert summary.embedded_chunks == 0
        assert len(embedder.calls) == calls

    def test_reconcile_skips_ambiguous_matches(self, store, embedder):
        indexer = make_indexer(store, embedder)
        indexer.run([Document("a", "A", "same text")], MODEL)
        docs = [Document("b", "B", "same text"), Document("c", "C", "same text")]
        assert indexer.reconcile_document_ids(docs) == []


def test_document_kind_parse():
    assert DocumentKind.parse("PDF") is DocumentKind.PDF
    assert DocumentKind.parse(None) is DocumentKind.TEXT
    assert DocumentKind.parse("weird") is DocumentKind.TEXT
