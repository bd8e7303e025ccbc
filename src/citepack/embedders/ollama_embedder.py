"""Embedding provider backed by a local Ollama service."""

from __future__ import annotations

import itertools
import logging
import threading
import time
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Callable, Optional

import httpx

from citepack.errors import CitepackError, InvalidEmbeddingPayload, ModelMissing, ModelNotFound
from citepack.utils.cancel import CancelToken
from citepack.utils.http import LocalHttpClient, is_model_not_found

logger = logging.getLogger(__name__)


def _base_name(model: str) -> str:
    return model.split(":", 1)[0].strip().lower()


def find_installed(model: str, installed: list[str]) -> Optional[str]:
    """Match a model name against installed tags; ``bge-m3`` matches ``bge-m3:latest``."""
    wanted = (model or "").strip()
    if not wanted:
        return None
    if wanted in installed:
        return wanted
    if ":" not in wanted:
        for name in installed:
            if _base_name(name) == wanted.lower():
                return name
    return None


@dataclass(frozen=True)
class ModelAvailability:
    reachable: bool
    model_ready: bool
    selected_model: str = ""
    fallback_used: bool = False
    models: list[str] = field(default_factory=list)
    error: str = ""


class OllamaEmbedder:
    """Embeds text through ``/api/embeddings`` on a loopback endpoint.

    Non-local base URLs are rejected at construction.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        availability_cache_s: float = 8.0,
    ):
        self.http = LocalHttpClient(base_url, timeout=timeout, transport=transport)
        self.availability_cache_s = availability_cache_s
        self._models_cache: Optional[tuple[float, list[str]]] = None

    @property
    def base_url(self) -> str:
        return self.http.base_url

    def list_models(self, token: Optional[CancelToken] = None) -> list[str]:
        """Names of locally installed models."""
        body = self.http.request_json("GET", "/api/tags", token=token)
        rows = body.get("models") if isinstance(body.get("models"), list) else []
        names = [str((row or {}).get("name") or "").strip() for row in rows if isinstance(row, dict)]
        return [name for name in names if name]

    def is_reachable(self) -> bool:
        try:
            self.list_models()
            return True
        except CitepackError:
            return False

    def _cached_models(self) -> list[str]:
        now = time.monotonic()
        if self._models_cache and now - self._models_cache[0] < self.availability_cache_s:
            return self._models_cache[1]
        models = self.list_models()
        self._models_cache = (now, models)
        return models

    def resolve_model(self, configured: str, fallback: str = "") -> ModelAvailability:
        """Pick the configured model if installed, else the fallback.

        An unreachable service is reported in the result, not raised.
        """
        try:
            models = self._cached_models()
        except CitepackError as e:
            return ModelAvailability(reachable=False, model_ready=False, error=str(e))

        selected = find_installed(configured, models)
        if selected:
            return ModelAvailability(True, True, selected, False, models)
        alternate = find_installed(fallback, models)
        if alternate:
            logger.info(f"Model '{configured}' not installed; using fallback '{alternate}'")
            return ModelAvailability(True, True, alternate, True, models)
        return ModelAvailability(
            reachable=True,
            model_ready=False,
            models=models,
            error=f"No embedding model found. Pull one first: ollama pull {configured}",
        )

    def embed_one(self, model: str, text: str, token: Optional[CancelToken] = None) -> list[float]:
        model = (model or "").strip()
        if not model:
            raise ModelMissing("Embedding model name is empty.")

        body = self.http.request_json(
            "POST",
            "/api/embeddings",
            body={"model": model, "prompt": text or ""},
            token=token,
        )
        vector = body.get("embedding")
        if not isinstance(vector, list) or not vector:
            if is_model_not_found(str(body.get("error") or "")):
                raise ModelNotFound(f'Model "{model}" is not available locally. Pull it first: ollama pull {model}')
            raise InvalidEmbeddingPayload("Inference service returned an invalid embedding payload.")
        try:
            return [float(v) for v in vector]
        except (TypeError, ValueError) as e:
            raise InvalidEmbeddingPayload("Embedding contains non-numeric values.") from e

    def embed_many(
        self,
        texts: list[str],
        model: str,
        concurrency: int = 2,
        token: Optional[CancelToken] = None,
        on_embedded: Optional[Callable[[int], None]] = None,
    ) -> list[list[float]]:
        """Embed ``texts`` with a bounded worker pool, preserving input order.

        Workers pull the next index from a shared cursor and write each
        vector into its own slot, so completion order does not matter.
        The first failure stops the remaining workers and is re-raised.
        """
        if not (model or "").strip():
            raise ModelMissing("Embedding model name is empty.")
        if not texts:
            return []

        out: list[Optional[list[float]]] = [None] * len(texts)
        cursor = itertools.count()
        cursor_lock = threading.Lock()
        progress_lock = threading.Lock()
        stop = threading.Event()

        def worker() -> None:
            while not stop.is_set():
                with cursor_lock:
                    index = next(cursor)
                if index >= len(texts):
                    return
                if token is not None:
                    token.raise_if_cancelled()
                out[index] = self.embed_one(model, texts[index], token=token)
                if on_embedded is not None:
                    with progress_lock:
                        on_embedded(index)

        workers = max(1, min(int(concurrency or 1), len(texts)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="embed") as pool:
            futures = [pool.submit(worker) for _ in range(workers)]
            done, _ = wait(futures, return_when=FIRST_EXCEPTION)
            if any(future.exception() is not None for future in done):
                stop.set()
        errors = [future.exception() for future in futures if future.exception() is not None]
        if errors:
            raise errors[0]
        return [vector for vector in out if vector is not None]
