"""CLI entry point for citepack."""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Callable, Literal, Optional, cast

from citepack import __version__
from citepack.ask import AskRequest
from citepack.config import Settings, get_settings
from citepack.embedders import OllamaEmbedder
from citepack.errors import CitepackError
from citepack.jobs import EventType, JobEvent, JobKind, JobManager, Runner, ask_runner, index_runner
from citepack.models import AnswerMode
from citepack.storage import META_GENERATION_MODEL
from citepack.workspace import Workspace

logger = logging.getLogger(__name__)

CLI_SESSION = "cli"


def emit_json(data: dict) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


def run_job(
    manager: JobManager,
    kind: JobKind,
    runner: Runner,
    on_event: Optional[Callable[[JobEvent], None]] = None,
) -> JobEvent:
    """Run a job in the background and follow its events until it ends.

    Ctrl-C requests cancellation and keeps waiting for the terminal event.
    """
    handle = manager.start(kind, runner)
    while True:
        try:
            for event in manager.iter_events(handle):
                if event.type.terminal:
                    return event
                if on_event is not None:
                    on_event(event)
            return handle.wait()
        except KeyboardInterrupt:
            logger.info("Cancelling...")
            manager.send(kind, {"type": "cancel"})


def raise_for_terminal(event: JobEvent) -> dict:
    if event.type is EventType.DONE:
        return event.payload
    logger.error(f"{event.payload.get('code')}: {event.payload.get('message')}")
    sys.exit(130 if event.type is EventType.CANCELLED else 1)


def models(settings: Settings) -> None:
    """List installed models and which ones would be used."""
    embedder = OllamaEmbedder(settings.ollama_base_url, timeout=settings.ollama_timeout_s)
    availability = embedder.resolve_model(settings.embedding_model, settings.fallback_embedding_model)
    emit_json(
        {
            "base_url": embedder.base_url,
            "reachable": availability.reachable,
            "models": availability.models,
            "embedding_model": availability.selected_model,
            "embedding_fallback_used": availability.fallback_used,
            "error": availability.error,
        }
    )


def status(workspace: Workspace, embedding_model: str = "") -> None:
    model = workspace.embedding_model(embedding_model)
    report = workspace.indexer().index_status(workspace.documents(), model)
    emit_json({"store": str(workspace.store.path), **report.to_dict()})


def index(workspace: Workspace, embedding_model: str = "") -> None:
    """Bring the corpus index up to date."""
    documents = workspace.documents()
    model = workspace.embedding_model(embedding_model)
    indexer = workspace.indexer()

    remapped = indexer.reconcile_document_ids(documents)
    for old_id, new_id in remapped:
        logger.info(f"  renamed {old_id} -> {new_id}")

    logger.info(f"Indexing {workspace.corpus_path} -> {workspace.store.path}")
    last_percent = -1

    def on_event(event: JobEvent) -> None:
        nonlocal last_percent
        percent = event.payload.get("percent", 0)
        if percent != last_percent and event.payload.get("total_chunks"):
            last_percent = percent
            logger.info(f"  {percent:3d}% {event.payload.get('current_doc', '')}")

    manager = workspace.jobs.session(CLI_SESSION)
    terminal = run_job(manager, JobKind.INDEX, index_runner(indexer, documents, model), on_event)
    emit_json(raise_for_terminal(terminal))


def search(workspace: Workspace, query: str, top_k: int, embedding_model: str = "") -> None:
    model = workspace.embedding_model(embedding_model)
    results = workspace.retriever().search(
        query,
        model,
        documents=workspace.documents(),
        top_k=top_k,
        candidate_k=top_k * workspace.settings.search_candidate_multiplier,
    )
    snippet_chars = workspace.settings.search_snippet_chars
    emit_json({"query": query, "model": model, "results": [r.to_dict(snippet_chars) for r in results]})


def ask(
    workspace: Workspace,
    question: str,
    model: str = "",
    embedding_model: str = "",
    mode: str = "",
    language: str = "",
    stream: bool = False,
) -> None:
    """Answer a question from the indexed corpus."""
    generation_model = workspace.generation_model(model)
    request = AskRequest(
        question=question,
        generation_model=generation_model,
        embedding_model=workspace.embedding_model(embedding_model),
        documents=workspace.documents(),
        mode=AnswerMode.parse(mode) if mode else None,
        language=language,
    )

    def on_event(event: JobEvent) -> None:
        if event.type is EventType.PHASE:
            logger.info(f"[{event.payload.get('phase')}]")
        elif event.type is EventType.STREAM and stream:
            sys.stderr.write(event.payload.get("delta", ""))
            sys.stderr.flush()

    manager = workspace.jobs.session(CLI_SESSION)
    terminal = run_job(manager, JobKind.ASK, ask_runner(workspace.pipeline(), request), on_event)
    if stream:
        sys.stderr.write("\n")
    result = raise_for_terminal(terminal)
    workspace.store.set_meta(META_GENERATION_MODEL, generation_model)
    emit_json(result)


def serve(workspace: Workspace, transport: str = "stdio") -> None:
    """Start the MCP server for a corpus."""
    # Import here to avoid loading MCP unless needed
    from citepack.server import create_mcp_server

    logger.info(f"Serving {workspace.corpus_path} via {transport}")
    mcp = create_mcp_server(workspace)
    mcp.run(transport=cast(Literal["stdio", "sse", "streamable-http"], transport))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="citepack",
        description="citepack - local semantic index with citation-grounded answers",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--store", help="Index file path (default: managed file per corpus)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("models", help="List local models and the embedding model in use")

    status_parser = subparsers.add_parser("status", help="Show index state for a corpus")
    status_parser.add_argument("corpus", help="Folder or .json/.jsonl records file")
    status_parser.add_argument("--embedding-model", default="", help="Embedding model name")

    index_parser = subparsers.add_parser("index", help="Index or re-index a corpus incrementally")
    index_parser.add_argument("corpus", help="Folder or .json/.jsonl records file")
    index_parser.add_argument("--embedding-model", default="", help="Embedding model name")

    search_parser = subparsers.add_parser("search", help="Semantic search over an indexed corpus")
    search_parser.add_argument("corpus", help="Folder or .json/.jsonl records file")
    search_parser.add_argument("query", help="Natural language query")
    search_parser.add_argument("-k", "--top-k", type=int, default=None, help="Number of results")
    search_parser.add_argument("--embedding-model", default="", help="Embedding model name")

    ask_parser = subparsers.add_parser("ask", help="Ask a question answered with citations")
    ask_parser.add_argument("corpus", help="Folder or .json/.jsonl records file")
    ask_parser.add_argument("question", help="Question to answer")
    ask_parser.add_argument("-m", "--model", default="", help="Generation model name")
    ask_parser.add_argument("--embedding-model", default="", help="Embedding model name")
    ask_parser.add_argument("--mode", choices=["strict", "loose"], default="", help="Answer format")
    ask_parser.add_argument("--language", choices=["en", "sv"], default="", help="Answer language")
    ask_parser.add_argument("--stream", action="store_true", help="Echo generated tokens to stderr")

    serve_parser = subparsers.add_parser("serve", help="Start MCP server for a corpus")
    serve_parser.add_argument("corpus", help="Folder or .json/.jsonl records file")
    serve_parser.add_argument(
        "--transport",
        choices=["stdio", "sse"],
        default="stdio",
        help="Transport protocol (default: stdio)",
    )
    return parser


def main(argv: Optional[list[str]] = None) -> None:
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(message)s",
    )

    settings = get_settings()
    try:
        if args.command == "models":
            models(settings)
            return
        workspace = Workspace.open(Path(args.corpus), settings, store_path=args.store)
        if args.command == "status":
            status(workspace, args.embedding_model)
        elif args.command == "index":
            index(workspace, args.embedding_model)
        elif args.command == "search":
            search(workspace, args.query, args.top_k or settings.search_top_k, args.embedding_model)
        elif args.command == "ask":
            ask(
                workspace,
                args.question,
                model=args.model,
                embedding_model=args.embedding_model,
                mode=args.mode,
                language=args.language,
                stream=args.stream,
            )
        elif args.command == "serve":
            serve(workspace, args.transport)
    except CitepackError as e:
        logger.error(f"{e.code}: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
