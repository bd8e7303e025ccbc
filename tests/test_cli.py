"""Tests for the CLI and workspace wiring."""

import json

import pytest

from citepack import cli
from citepack.errors import ModelMissing
from citepack.jobs import EventType, JobEvent, JobKind
from citepack.storage import META_EMBEDDING_MODEL, META_GENERATION_MODEL
from citepack.workspace import pick_generation_model

from conftest import fake_workspace


def read_json(capsys) -> dict:
    return json.loads(capsys.readouterr().out)


class TestParser:
    def test_subcommands(self):
        parser = cli.build_parser()
        args = parser.parse_args(["--store", "x.sqlite", "ask", "docs", "why?", "-m", "qwen3:4b", "--mode", "loose"])
        assert args.command == "ask"
        assert args.store == "x.sqlite"
        assert args.model == "qwen3:4b"
        assert args.mode == "loose"
        assert parser.parse_args(["search", "docs", "q", "-k", "3"]).top_k == 3

    def test_command_required(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args([])


class TestMain:
    def test_status_of_new_corpus(self, corpus, tmp_path, capsys):
        store = tmp_path / "main.semantic.sqlite"
        cli.main(["--store", str(store), "status", str(corpus), "--embedding-model", "m"])
        report = read_json(capsys)
        assert report["state"] == "not_indexed"
        assert report["total_docs"] == 2
        assert report["store"] == str(store)

    def test_unreadable_corpus_exits_nonzero(self, tmp_path):
        with pytest.raises(SystemExit) as excinfo:
            cli.main(["--store", str(tmp_path / "s.sqlite"), "status", str(tmp_path / "nope"), "--embedding-model", "m"])
        assert excinfo.value.code == 1

    def test_malformed_records_file_exits_nonzero(self, tmp_path):
        records = tmp_path / "docs.jsonl"
        records.write_text("{not json\n", encoding="utf-8")
        with pytest.raises(SystemExit) as excinfo:
            cli.main(["--store", str(tmp_path / "s.sqlite"), "status", str(records), "--embedding-model", "m"])
        assert excinfo.value.code == 1


class TestCommands:
    def test_index_search_ask(self, corpus, tmp_path, settings, capsys):
        answer = json.dumps(
            {
                "answer": [
                    {
                        "claim": "Alpha has details.",
                        "citations": [
                            {"doc_id": "alpha.md", "chunk_id": "alpha.md::0"},
                            {"doc_id": "beta.md", "chunk_id": "beta.md::0"},
                        ],
                    }
                ],
                "notes": "",
            }
        )
        workspace = fake_workspace(corpus, tmp_path, settings, [json.dumps({"sources": []}), answer])

        cli.index(workspace, "emb")
        summary = read_json(capsys)
        assert summary["indexed_docs"] == 2
        assert workspace.store.get_meta(META_EMBEDDING_MODEL) == "emb"

        cli.search(workspace, "alpha details", 1)
        results = read_json(capsys)["results"]
        assert [r["doc_id"] for r in results] == ["alpha.md"]

        cli.ask(workspace, "What about alpha?", model="llama3:8b")
        result = read_json(capsys)
        assert result["answer"][0]["claim"] == "Alpha has details."
        assert {s["doc_id"] for s in result["sources"]} == {"alpha.md", "beta.md"}
        assert workspace.store.get_meta(META_GENERATION_MODEL) == "llama3:8b"

    def test_status_after_index(self, corpus, tmp_path, settings, capsys):
        workspace = fake_workspace(corpus, tmp_path, settings)
        cli.index(workspace, "emb")
        capsys.readouterr()
        cli.status(workspace)
        assert read_json(capsys)["state"] == "indexed"

    def test_failed_job_exits(self):
        event = JobEvent("cli:ask:1", JobKind.ASK, EventType.CANCELLED, {"code": "ASK_CANCELLED", "message": "x"})
        with pytest.raises(SystemExit) as excinfo:
            cli.raise_for_terminal(event)
        assert excinfo.value.code == 130


class TestModelChoice:
    def test_configured_model_wins(self):
        assert pick_generation_model(["llama3:8b", "qwen3:4b"], "llama3") == "llama3:8b"

    def test_preferred_family(self):
        assert pick_generation_model(["bge-m3:latest", "mistral:7b", "qwen3:4b"]) == "qwen3:4b"

    def test_any_chat_model(self):
        assert pick_generation_model(["nomic-embed-text:latest", "mistral:7b"]) == "mistral:7b"
        assert pick_generation_model(["nomic-embed-text:latest"]) == ""

    def test_stored_generation_model(self, corpus, tmp_path, settings):
        workspace = fake_workspace(corpus, tmp_path, settings)
        workspace.store.set_meta(META_GENERATION_MODEL, "gemma3:1b")
        assert workspace.generation_model() == "gemma3:1b"
        assert workspace.generation_model(" qwen3:4b ") == "qwen3:4b"

    def test_missing_generation_model(self, corpus, tmp_path, settings):
        workspace = fake_workspace(corpus, tmp_path, settings)
        workspace.embedder.list_models = lambda: ["bge-m3"]
        with pytest.raises(ModelMissing):
            workspace.generation_model()
