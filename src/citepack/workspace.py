"""Wiring of the core components for one corpus.

The CLI and the MCP server are thin clients of a :class:`Workspace`: it
resolves the corpus, its managed index file and the models to use, and
hands out configured indexer, retriever and ask pipeline instances.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from citepack.ask import AskPipeline
from citepack.chunkers import ChunkerConfig, DeterministicChunker
from citepack.config import Settings, get_settings, resolve_store_path
from citepack.embedders import OllamaEmbedder, find_installed
from citepack.errors import CitepackError, ModelMissing
from citepack.generators import OllamaChat
from citepack.indexing import Indexer
from citepack.ingesters import load_documents
from citepack.jobs import JobRegistry
from citepack.models import Document
from citepack.search import RerankWeights, Retriever
from citepack.storage import META_EMBEDDING_MODEL, META_GENERATION_MODEL, SemanticStore

logger = logging.getLogger(__name__)

GENERATION_PREFERENCE = ("qwen", "llama", "gemma")
EMBEDDING_HINTS = ("embed", "bge", "minilm", "e5")


def pick_generation_model(installed: list[str], configured: str = "") -> str:
    """Configured model if installed, else the first preferred family, else any chat model."""
    exact = find_installed(configured, installed)
    if exact:
        return exact
    chat_models = [m for m in installed if not any(h in m.lower() for h in EMBEDDING_HINTS)]
    for family in GENERATION_PREFERENCE:
        for name in chat_models:
            if name.lower().startswith(family):
                return name
    return chat_models[0] if chat_models else ""


@dataclass
class Workspace:
    corpus_path: Path
    store: SemanticStore
    embedder: OllamaEmbedder
    chat: OllamaChat
    settings: Settings
    jobs: JobRegistry = field(default_factory=JobRegistry)

    @classmethod
    def open(
        cls,
        corpus: Path | str,
        settings: Optional[Settings] = None,
        store_path: Optional[Path | str] = None,
    ) -> "Workspace":
        settings = settings or get_settings()
        corpus_path = Path(corpus)
        store = SemanticStore(store_path or resolve_store_path(corpus_path, settings.data_dir))
        store.initialize()
        return cls(
            corpus_path=corpus_path,
            store=store,
            embedder=OllamaEmbedder(
                settings.ollama_base_url,
                timeout=settings.ollama_timeout_s,
                availability_cache_s=settings.availability_cache_s,
            ),
            chat=OllamaChat(settings.ollama_base_url),
            settings=settings,
            jobs=JobRegistry(grace_s=settings.job_cancel_grace_s),
        )

    def documents(self) -> list[Document]:
        """Read the corpus and keep text documents only."""
        return load_documents(self.corpus_path)

    def embedding_model(self, explicit: str = "") -> str:
        """Explicit name, then the model the index was built with, then the configured/fallback pair."""
        if explicit.strip():
            return explicit.strip()
        stored = self.store.get_meta(META_EMBEDDING_MODEL)
        if stored:
            return stored
        availability = self.embedder.resolve_model(
            self.settings.embedding_model, self.settings.fallback_embedding_model
        )
        if availability.model_ready:
            return availability.selected_model
        if availability.reachable and availability.models:
            return availability.models[0]
        return self.settings.embedding_model

    def generation_model(self, explicit: str = "") -> str:
        if explicit.strip():
            return explicit.strip()
        stored = self.store.get_meta(META_GENERATION_MODEL)
        if stored:
            return stored
        try:
            installed = self.embedder.list_models()
        except CitepackError as e:
            logger.debug(f"Could not list models: {e}")
            installed = []
        chosen = pick_generation_model(installed, self.settings.generation_model)
        if not chosen:
            raise ModelMissing("No generation model configured or installed. Pull one first, e.g. ollama pull qwen3:4b")
        return chosen

    def indexer(self) -> Indexer:
        chunker = DeterministicChunker(
            ChunkerConfig(
                min_chars=self.settings.chunk_min_chars,
                max_chars=self.settings.chunk_max_chars,
                overlap_chars=self.settings.chunk_overlap_chars,
            )
        )
        return Indexer(self.store, self.embedder, chunker, concurrency=self.settings.embedding_concurrency)

    def retriever(self) -> Retriever:
        return Retriever(self.store, self.embedder, RerankWeights.from_settings(self.settings))

    def pipeline(self) -> AskPipeline:
        return AskPipeline(self.chat, self.retriever(), self.settings)
