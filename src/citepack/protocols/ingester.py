"""Protocol for corpus sources."""

from pathlib import Path
from typing import Iterator, Protocol, runtime_checkable

from citepack.models import Document


@runtime_checkable
class Ingester(Protocol):
    """Turns a corpus location into documents.

    Uses structural subtyping - no inheritance required. Non-text inputs
    are yielded with a non-TEXT kind and dropped at the core boundary.
    """

    @property
    def source_type(self) -> str:
        """Identifier for this source type (e.g. 'folder', 'records')."""
        ...

    def can_handle(self, source: Path) -> bool:
        ...

    def ingest(self, source: Path) -> Iterator[Document]:
        ...
