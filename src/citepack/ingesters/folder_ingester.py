"""Ingester for local folders of text files."""

import os
from pathlib import Path
from typing import Iterator

from citepack.models import Document, DocumentKind
from citepack.utils.binary import detect_binary
from citepack.utils.text import canonicalize

SKIP_DIRS = {
    "__pycache__",
    "node_modules",
    "venv",
    "env",
    "dist",
    "build",
}


class FolderIngester:
    """Ingester for local filesystem folders.

    Each file becomes one document whose id is its POSIX path relative to
    the folder, so ids stay stable across runs.
    """

    source_type = "folder"

    def can_handle(self, source: Path) -> bool:
        return source.is_dir()

    def ingest(self, source: Path) -> Iterator[Document]:
        """Yield documents from a folder recursively, in sorted path order.

        Args:
            source: Path to the folder

        Yields:
            Document per file; binary files carry a non-TEXT kind and no content
        """
        for root, dirs, files in os.walk(source):
            dirs.sort()
            for filename in sorted(files):
                full_path = Path(root) / filename
                rel_path = full_path.relative_to(source)
                if self._should_skip(rel_path):
                    continue

                try:
                    raw_content = full_path.read_bytes()
                except OSError:
                    continue

                if full_path.suffix.lower() == ".pdf":
                    kind = DocumentKind.PDF
                elif detect_binary(str(rel_path), raw_content):
                    kind = DocumentKind.BINARY
                else:
                    kind = DocumentKind.TEXT

                content = ""
                if kind is DocumentKind.TEXT:
                    content = canonicalize(raw_content.decode("utf-8", errors="replace"))

                yield Document(id=rel_path.as_posix(), title=filename, content=content, kind=kind)

    def _should_skip(self, path: Path) -> bool:
        """Skip hidden files and folders, virtualenvs and build output."""
        parts = path.parts
        if any(part.startswith(".") for part in parts):
            return True
        return any(part in SKIP_DIRS or part.endswith(".egg-info") for part in parts)
