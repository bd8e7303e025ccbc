"""Ingester for JSON and JSON Lines files of document records."""

import json
from pathlib import Path
from typing import Any, Iterator

from citepack.errors import InvalidRequest
from citepack.models import Document

SUFFIXES = {".json", ".jsonl", ".ndjson"}


class RecordsIngester:
    """Reads ``{id, title, content[, type]}`` records.

    A ``.json`` file holds a list of records or an object with a
    ``documents`` list; ``.jsonl`` holds one record per line. Records
    without an id are skipped.
    """

    source_type = "records"

    def can_handle(self, source: Path) -> bool:
        return source.is_file() and source.suffix.lower() in SUFFIXES

    def ingest(self, source: Path) -> Iterator[Document]:
        """Yield documents from the records file.

        Raises:
            InvalidRequest: the file cannot be read as UTF-8 JSON records
        """
        try:
            records = list(self._records(source))
        except (OSError, UnicodeDecodeError, ValueError) as e:
            raise InvalidRequest(f"Cannot read records file {source}: {e}") from e
        for record in records:
            if not isinstance(record, dict):
                continue
            doc = Document.from_record(record)
            if doc is not None:
                yield doc

    def _records(self, source: Path) -> Iterator[Any]:
        text = source.read_text(encoding="utf-8")
        if source.suffix.lower() == ".json":
            data = json.loads(text)
            if isinstance(data, dict):
                data = data.get("documents", [])
            yield from data if isinstance(data, list) else []
            return
        for line in text.splitlines():
            line = line.strip()
            if line:
                yield json.loads(line)
