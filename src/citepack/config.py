"""Runtime settings for citepack.

All tunables live here. Values can be overridden with ``CITEPACK_*``
environment variables or a ``.env`` file in the working directory.
"""

from __future__ import annotations

import hashlib
import os
import re
import sys
from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def default_data_dir() -> Path:
    """Per-user directory that holds managed index files."""
    home = Path.home()
    if sys.platform == "darwin":
        return home / "Library" / "Application Support" / "citepack"
    if sys.platform == "win32":
        return Path(os.environ.get("APPDATA", home / "AppData" / "Roaming")) / "citepack"
    return Path(os.environ.get("XDG_CONFIG_HOME", home / ".config")) / "citepack"


class Settings(BaseSettings):
    """Tunable defaults for indexing, retrieval and answering."""

    model_config = SettingsConfigDict(
        env_prefix="CITEPACK_",
        env_file=".env",
        extra="ignore",
    )

    # Inference service (local only)
    ollama_base_url: str = "http://localhost:11434"
    ollama_timeout_s: float = 30.0
    availability_cache_s: float = 8.0

    # Models
    embedding_model: str = "bge-m3"
    fallback_embedding_model: str = "nomic-embed-text"
    generation_model: str = ""

    # Chunking
    chunk_min_chars: int = 1200
    chunk_max_chars: int = 1800
    chunk_overlap_chars: int = 200
    embedding_concurrency: int = 2

    # Search
    search_top_k: int = 20
    search_candidate_multiplier: int = 3
    search_snippet_chars: int = 240

    # Rerank weights; semantic must dominate
    rerank_w_semantic: float = 0.65
    rerank_w_coverage: float = 0.25
    rerank_w_density: float = 0.08
    rerank_w_phrase: float = 0.02

    # Ask, standard profile
    ask_top_k: int = 8
    ask_candidate_multiplier: int = 3
    ask_min_citations_overall: int = 2
    ask_max_chunk_chars_for_prompt: int = 2000
    ask_num_ctx: int = 3072
    ask_planner_max_sources: int = 3
    ask_output_mode: str = "strict"
    ask_language: str = "en"

    # Ask, small-model profile
    ask_small_model_max_billions: float = 4.0
    ask_small_top_k: int = 4
    ask_small_max_chunk_chars_for_prompt: int = 1000
    ask_small_num_ctx: int = 2048
    ask_small_min_citations_overall: int = 1

    # Jobs
    job_cancel_grace_s: float = 5.0

    data_dir: Path = Field(default_factory=default_data_dir)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return Settings()


def _safe_name(value: str, fallback: str = "corpus") -> str:
    out = re.sub(r"[^\w.-]+", "-", value.strip()).strip("-")[:80]
    return out or fallback


def resolve_store_path(corpus_path: Path | str, data_dir: Path | None = None) -> Path:
    """Map a corpus location to its managed index file.

    The same corpus path always resolves to the same file, and two corpora
    with the same base name do not collide.
    """
    resolved = Path(corpus_path).resolve()
    base = _safe_name(resolved.stem)
    digest = hashlib.sha1(str(resolved).encode("utf-8")).hexdigest()[:16]
    root = data_dir if data_dir is not None else get_settings().data_dir
    return Path(root) / "indexes" / f"{base}-{digest}.semantic.sqlite"
