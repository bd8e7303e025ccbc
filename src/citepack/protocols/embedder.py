"""Protocol for embedding providers."""

from typing import Callable, Optional, Protocol, runtime_checkable

from citepack.utils.cancel import CancelToken


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Turns text into vectors for a named model.

    The indexer and retriever only depend on this protocol, so tests can
    inject a deterministic in-process embedder.
    """

    def embed_one(self, model: str, text: str, token: Optional[CancelToken] = None) -> list[float]:
        """Embed a single text."""
        ...

    def embed_many(
        self,
        texts: list[str],
        model: str,
        concurrency: int = 2,
        token: Optional[CancelToken] = None,
        on_embedded: Optional[Callable[[int], None]] = None,
    ) -> list[list[float]]:
        """Embed texts preserving input order.

        ``on_embedded`` is called with the input index after each vector
        arrives.
        """
        ...
