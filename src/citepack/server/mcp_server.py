"""FastMCP server exposing a corpus index to agents."""

import asyncio
import json

from mcp.server.fastmcp import FastMCP

from citepack.ask import AskRequest
from citepack.errors import CitepackError
from citepack.jobs import EventType, JobKind, Runner, ask_runner, index_runner
from citepack.models import AnswerMode
from citepack.workspace import Workspace

MCP_SESSION = "mcp"


class _JobFailed(Exception):
    def __init__(self, code: str, message: str):
        super().__init__(f"Error [{code}]: {message}")


def _error(e: CitepackError) -> str:
    return f"Error [{e.code}]: {e}"


def run_job(workspace: Workspace, kind: JobKind, runner: Runner) -> dict:
    """Run a job in the server session, consume its events and return the ``done`` payload."""
    jobs = workspace.jobs.session(MCP_SESSION)
    handle = jobs.start(kind, runner)
    terminal = None
    for event in jobs.iter_events(handle):
        terminal = event
    if terminal is None or terminal.type is not EventType.DONE:
        payload = terminal.payload if terminal is not None else {}
        raise _JobFailed(payload.get("code", "JOB_FAILED"), payload.get("message", ""))
    return terminal.payload


def status_text(workspace: Workspace) -> str:
    try:
        report = workspace.indexer().index_status(workspace.documents(), workspace.embedding_model())
    except CitepackError as e:
        return _error(e)
    return f"{report.message}\n{json.dumps(report.to_dict(), indent=2)}"


def models_text(workspace: Workspace) -> str:
    try:
        names = workspace.embedder.list_models()
    except CitepackError as e:
        return _error(e)
    return "\n".join(names) if names else "No models installed."


def index_text(workspace: Workspace) -> str:
    try:
        documents = workspace.documents()
        indexer = workspace.indexer()
        indexer.reconcile_document_ids(documents)
        summary = run_job(workspace, JobKind.INDEX, index_runner(indexer, documents, workspace.embedding_model()))
    except CitepackError as e:
        return _error(e)
    except _JobFailed as e:
        return str(e)
    return (
        f"Indexed {summary['indexed_docs']} documents, "
        f"embedded {summary['embedded_chunks']} of {summary['total_chunks']} chunks "
        f"in {summary['duration_ms']} ms"
    )


def search_text(workspace: Workspace, query: str, limit: int = 10) -> str:
    try:
        results = workspace.retriever().search(
            query,
            workspace.embedding_model(),
            documents=workspace.documents(),
            top_k=limit,
        )
    except CitepackError as e:
        return _error(e)
    if not results:
        return f"No results found for: {query}"

    lines = []
    for r in results:
        text = r.text[:200].replace("\n", " ")
        if len(r.text) > 200:
            text += "..."
        lines.append(f"{r.rank}. [{r.score:.3f}] {r.doc_title or r.doc_id} ({r.chunk_id})")
        lines.append(f"   {text}")
        lines.append("")
    return "\n".join(lines)


def ask_text(workspace: Workspace, question: str, mode: str = "") -> str:
    try:
        request = AskRequest(
            question=question,
            generation_model=workspace.generation_model(),
            embedding_model=workspace.embedding_model(),
            documents=workspace.documents(),
            mode=AnswerMode.parse(mode) if mode else None,
        )
        result = run_job(workspace, JobKind.ASK, ask_runner(workspace.pipeline(), request))
    except CitepackError as e:
        return _error(e)
    except _JobFailed as e:
        return str(e)
    return json.dumps(result, indent=2, ensure_ascii=False)


def create_mcp_server(workspace: Workspace) -> FastMCP:
    """Create an MCP server for one corpus.

    Design: 1 process = 1 corpus. Index and ask run as background jobs of
    a single server session, so at most one of each runs at a time. Tool
    bodies block on local inference, so they run on worker threads to keep
    the server loop responsive.

    Args:
        workspace: Opened workspace for the corpus to serve

    Returns:
        Configured FastMCP server instance
    """
    mcp = FastMCP(name="citepack")

    @mcp.tool()
    async def status() -> str:
        """Report whether the corpus index is complete and current.

        Returns:
            One-line status followed by JSON details
        """
        return await asyncio.to_thread(status_text, workspace)

    @mcp.tool()
    async def models() -> str:
        """List models installed in the local inference service."""
        return await asyncio.to_thread(models_text, workspace)

    @mcp.tool()
    async def index() -> str:
        """Index new and changed documents of the corpus.

        Unchanged documents are skipped, so this is cheap to call again.

        Returns:
            Summary of documents and chunks embedded
        """
        return await asyncio.to_thread(index_text, workspace)

    @mcp.tool()
    async def search(query: str, limit: int = 10) -> str:
        """Semantic search across the corpus.

        Use this to find relevant passages by concept, not just keyword.

        Args:
            query: Natural language description of what you're looking for
            limit: Maximum number of results to return (default: 10)

        Returns:
            Ranked list of chunks with combined scores
        """
        return await asyncio.to_thread(search_text, workspace, query, limit)

    @mcp.tool()
    async def ask(question: str, mode: str = "") -> str:
        """Answer a question using only the indexed corpus, with citations.

        Args:
            question: The question to answer
            mode: "strict" (JSON claims) or "loose" (cited prose); default depends on the model

        Returns:
            JSON answer with claims or cited text, notes and sources
        """
        return await asyncio.to_thread(ask_text, workspace, question, mode)

    return mcp
