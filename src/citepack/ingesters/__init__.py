"""Corpus readers for the CLI and MCP server.

Ingesters sit at the boundary: they turn a folder or a records file into
:class:`~citepack.models.Document` values, and only TEXT documents are
passed on to indexing and search.
"""

from pathlib import Path
from typing import Optional

from citepack.errors import InvalidRequest
from citepack.ingesters.folder_ingester import FolderIngester
from citepack.ingesters.records_ingester import RecordsIngester
from citepack.models import Document, text_documents
from citepack.protocols import Ingester

# Checked in order; records files before the folder catch-all
_INGESTERS: list[Ingester] = [
    RecordsIngester(),
    FolderIngester(),
]


def get_ingester(source: Path | str, source_type: Optional[str] = None) -> Optional[Ingester]:
    """Pick the ingester for ``source``.

    With ``source_type`` only an ingester of that type is considered.
    """
    path = Path(source)
    for ingester in _INGESTERS:
        if source_type and ingester.source_type != source_type:
            continue
        if ingester.can_handle(path):
            return ingester
    return None


def load_documents(source: Path | str, source_type: Optional[str] = None) -> list[Document]:
    """Read a corpus and keep its text documents.

    Raises:
        InvalidRequest: no registered ingester can read ``source``
    """
    ingester = get_ingester(source, source_type)
    if ingester is None:
        raise InvalidRequest(f"Cannot read corpus: {source} (expected a folder or a .json/.jsonl records file)")
    return text_documents(ingester.ingest(Path(source)))


def register_ingester(ingester: Ingester) -> None:
    """Add a reader; it is tried after the built-in ones."""
    _INGESTERS.append(ingester)


__all__ = ["FolderIngester", "RecordsIngester", "get_ingester", "load_documents", "register_ingester"]
