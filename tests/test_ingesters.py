"""Tests for corpus ingesters."""

import json

import pytest

from citepack.errors import InvalidRequest
from citepack.ingesters import FolderIngester, RecordsIngester, get_ingester, load_documents
from citepack.models import DocumentKind, text_documents
from citepack.protocols import Ingester


def make_folder(root):
    (root / "sub").mkdir(parents=True)
    (root / ".hidden").mkdir()
    (root / "node_modules").mkdir()
    (root / "readme.md").write_text("Hello\r\nworld\n", encoding="utf-8")
    (root / "sub" / "notes.txt").write_text("Nested notes.", encoding="utf-8")
    (root / ".hidden" / "secret.txt").write_text("skip me", encoding="utf-8")
    (root / "node_modules" / "lib.js").write_text("skip me too", encoding="utf-8")
    (root / "scan.pdf").write_bytes(b"%PDF-1.4 fake")
    (root / "blob.dat").write_bytes(b"\x00\x01\x02binary")
    return root


class TestFolderIngester:
    def test_ids_kinds_and_order(self, tmp_path):
        docs = list(FolderIngester().ingest(make_folder(tmp_path / "corpus")))
        assert [d.id for d in docs] == ["blob.dat", "readme.md", "scan.pdf", "sub/notes.txt"]
        kinds = {d.id: d.kind for d in docs}
        assert kinds["blob.dat"] is DocumentKind.BINARY
        assert kinds["scan.pdf"] is DocumentKind.PDF
        assert kinds["readme.md"] is DocumentKind.TEXT

    def test_text_is_canonical(self, tmp_path):
        docs = {d.id: d for d in FolderIngester().ingest(make_folder(tmp_path / "corpus"))}
        assert docs["readme.md"].content == "Hello\nworld\n"
        assert docs["readme.md"].title == "readme.md"
        assert docs["scan.pdf"].content == ""

    def test_only_text_reaches_the_core(self, tmp_path):
        docs = text_documents(FolderIngester().ingest(make_folder(tmp_path / "corpus")))
        assert [d.id for d in docs] == ["readme.md", "sub/notes.txt"]


class TestRecordsIngester:
    def test_json_list(self, tmp_path):
        path = tmp_path / "docs.json"
        path.write_text(
            json.dumps(
                [
                    {"id": "a", "title": "A", "content": "Alpha"},
                    {"title": "no id", "content": "dropped"},
                    {"id": "b", "content": "Beta", "type": "pdf"},
                ]
            ),
            encoding="utf-8",
        )
        docs = list(RecordsIngester().ingest(path))
        assert [d.id for d in docs] == ["a", "b"]
        assert docs[1].kind is DocumentKind.PDF
        assert docs[1].title == "Untitled document"

    def test_json_documents_object(self, tmp_path):
        path = tmp_path / "docs.json"
        path.write_text(json.dumps({"documents": [{"id": "x", "content": "X"}]}), encoding="utf-8")
        assert [d.id for d in RecordsIngester().ingest(path)] == ["x"]

    def test_jsonl(self, tmp_path):
        path = tmp_path / "docs.jsonl"
        path.write_text('{"id": "1", "content": "one"}\n\n{"id": "2", "content": "two"}\n', encoding="utf-8")
        assert [d.content for d in RecordsIngester().ingest(path)] == ["one", "two"]


class TestRegistry:
    def test_picks_by_source(self, tmp_path):
        records = tmp_path / "docs.jsonl"
        records.write_text("", encoding="utf-8")
        assert isinstance(get_ingester(records), RecordsIngester)
        assert isinstance(get_ingester(tmp_path), FolderIngester)
        assert get_ingester(tmp_path / "missing.txt") is None

    def test_protocol(self):
        assert isinstance(FolderIngester(), Ingester)
        assert isinstance(RecordsIngester(), Ingester)

    def test_source_type_filter(self, tmp_path):
        assert get_ingester(tmp_path, "records") is None
        assert isinstance(get_ingester(tmp_path, "folder"), FolderIngester)

    def test_load_documents_keeps_text(self, tmp_path):
        corpus = make_folder(tmp_path / "corpus")
        assert [d.id for d in load_documents(corpus)] == ["readme.md", "sub/notes.txt"]

    def test_load_documents_rejects_unknown_source(self, tmp_path):
        with pytest.raises(InvalidRequest):
            load_documents(tmp_path / "missing.txt")

    @pytest.mark.parametrize(
        "name, raw",
        [
            ("broken.json", b'[{"id": "a", '),
            ("broken.jsonl", b'{"id": "a", "content": "x"}\nnot json\n'),
            ("latin1.json", '[{"id": "a", "content": "café"}]'.encode("latin-1")),
        ],
    )
    def test_unreadable_records_file(self, tmp_path, name, raw):
        path = tmp_path / name
        path.write_bytes(raw)
        with pytest.raises(InvalidRequest):
            load_documents(path)
