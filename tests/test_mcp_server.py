"""Tests for the MCP tool surface."""

import asyncio

import pytest

from citepack.jobs import JobKind
from citepack.server import create_mcp_server
from citepack.server.mcp_server import MCP_SESSION, index_text, run_job, search_text, status_text

from conftest import fake_workspace


def track_handles(workspace, monkeypatch) -> list:
    manager = workspace.jobs.session(MCP_SESSION)
    start = manager.start
    handles = []

    def tracking_start(kind, runner):
        handles.append(start(kind, runner))
        return handles[-1]

    monkeypatch.setattr(manager, "start", tracking_start)
    return handles


class TestTools:
    def test_registered(self, corpus, tmp_path, settings):
        mcp = create_mcp_server(fake_workspace(corpus, tmp_path, settings))
        names = {tool.name for tool in asyncio.run(mcp.list_tools())}
        assert names == {"status", "models", "index", "search", "ask"}

    def test_index_then_search(self, corpus, tmp_path, settings):
        workspace = fake_workspace(corpus, tmp_path, settings)
        workspace.store.set_meta("embedding_model_name", "emb")
        assert index_text(workspace).startswith("Indexed 2 documents")
        assert "alpha.md" in search_text(workspace, "alpha details", limit=1)
        assert status_text(workspace).startswith("Indexed (2/2 docs")

    def test_repeated_jobs_leave_no_events_behind(self, corpus, tmp_path, settings, monkeypatch):
        workspace = fake_workspace(corpus, tmp_path, settings)
        workspace.store.set_meta("embedding_model_name", "emb")
        handles = track_handles(workspace, monkeypatch)
        for _ in range(3):
            index_text(workspace)
        assert len(handles) == 3
        assert all(handle.events.empty() for handle in handles)
        assert not workspace.jobs.session(MCP_SESSION).is_running(JobKind.INDEX)

    def test_failed_job_is_reported(self, corpus, tmp_path, settings):
        workspace = fake_workspace(corpus, tmp_path, settings)

        def failing(token, emit):
            raise RuntimeError("boom")

        with pytest.raises(Exception, match="WORKER_CRASHED"):
            run_job(workspace, JobKind.INDEX, failing)
