"""
Shared fixtures for the citepack test suite.

Provides:
- temporary store paths
- a deterministic in-process embedder
- a scripted chat backend
- a workspace wired to those fakes
"""

import hashlib
import threading
from typing import Callable, Optional

import pytest

from citepack.config import Settings
from citepack.jobs import JobRegistry
from citepack.storage import SemanticStore
from citepack.utils.cancel import CancelToken
from citepack.utils.text import tokenize
from citepack.workspace import Workspace

DIM = 32


def hashed_vector(text: str, dim: int = DIM) -> list[float]:
    """Bag-of-words vector with a constant component so it is never zero."""
    vector = [0.0] * dim
    vector[0] = 0.1
    for token in tokenize(text):
        slot = int(hashlib.md5(token.encode("utf-8")).hexdigest(), 16) % (dim - 1) + 1
        vector[slot] += 1.0
    return vector


class FakeEmbedder:
    """Deterministic embedder that records every text it embeds."""

    def __init__(self, fail_on: Optional[str] = None, cancel_after: Optional[int] = None):
        self.calls: list[tuple[str, str]] = []
        self.fail_on = fail_on
        self.cancel_after = cancel_after
        self._lock = threading.Lock()

    def embed_one(self, model: str, text: str, token: Optional[CancelToken] = None) -> list[float]:
        if token is not None:
            token.raise_if_cancelled()
        if self.fail_on and self.fail_on in text:
            raise RuntimeError("embedding failed")
        with self._lock:
            self.calls.append((model, text))
        return hashed_vector(text)

    def embed_many(
        self,
        texts: list[str],
        model: str,
        concurrency: int = 2,
        token: Optional[CancelToken] = None,
        on_embedded: Optional[Callable[[int], None]] = None,
    ) -> list[list[float]]:
        out = []
        for i, text in enumerate(texts):
            if self.cancel_after is not None and len(self.calls) >= self.cancel_after and token is not None:
                token.cancel()
            out.append(self.embed_one(model, text, token))
            if on_embedded is not None:
                on_embedded(i)
        return out

    @property
    def texts(self) -> list[str]:
        return [text for _, text in self.calls]


class ScriptedChat:
    """Returns queued responses in order and records each request."""

    def __init__(self, responses: list[str]):
        self.responses = list(responses)
        self.requests: list[dict] = []

    def chat(
        self,
        model: str,
        system_prompt: str,
        user_prompt: str,
        *,
        stream: bool = False,
        json_mode: bool = False,
        num_ctx: int = 3072,
        on_token: Optional[Callable[[str], None]] = None,
        token: Optional[CancelToken] = None,
    ) -> str:
        if token is not None:
            token.raise_if_cancelled()
        self.requests.append(
            {
                "model": model,
                "system": system_prompt,
                "user": user_prompt,
                "stream": stream,
                "json_mode": json_mode,
                "num_ctx": num_ctx,
            }
        )
        response = self.responses.pop(0) if self.responses else ""
        if stream and on_token is not None:
            for i in range(0, len(response), 7):
                on_token(response[i : i + 7])
        return response


@pytest.fixture
def store(tmp_path) -> SemanticStore:
    s = SemanticStore(tmp_path / "index.semantic.sqlite")
    s.initialize()
    return s


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(_env_file=None, data_dir=tmp_path / "data")


def paragraph(seed: str, sentences: int = 8) -> str:
    return " ".join(f"The {seed} topic sentence number {i} explains {seed} details." for i in range(sentences))


def fake_workspace(corpus, tmp_path, settings, responses=()) -> Workspace:
    """A workspace over ``corpus`` wired to the in-process fakes."""
    store = SemanticStore(tmp_path / "workspace.semantic.sqlite")
    store.initialize()
    return Workspace(
        corpus_path=corpus,
        store=store,
        embedder=FakeEmbedder(),
        chat=ScriptedChat(list(responses)),
        settings=settings,
        jobs=JobRegistry(grace_s=1.0),
    )


@pytest.fixture
def corpus(tmp_path):
    root = tmp_path / "corpus"
    root.mkdir()
    (root / "alpha.md").write_text(paragraph("alpha", 4), encoding="utf-8")
    (root / "beta.md").write_text(paragraph("beta", 4), encoding="utf-8")
    return root
