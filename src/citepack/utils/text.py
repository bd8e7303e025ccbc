"""Text canonicalization, hashing and lexical normalization."""

from __future__ import annotations

import hashlib
import re

_LINE_BREAKS = re.compile(r"\r\n?")
_WHITESPACE = re.compile(r"\s+")
# Anything that is not a letter, digit or whitespace (unicode aware)
_NON_WORD = re.compile(r"[^\w\s]|_")

PREVIEW_MAX_CHARS = 220


def canonicalize(text: str | None) -> str:
    """Normalize ``\\r\\n`` and bare ``\\r`` line endings to ``\\n``."""
    if text is None:
        return ""
    return _LINE_BREAKS.sub("\n", str(text))


def sha256_hex(text: str | None) -> str:
    """Hex SHA-256 of the UTF-8 encoded text."""
    return hashlib.sha256((text or "").encode("utf-8")).hexdigest()


def document_hash(text: str | None) -> str:
    """Content hash of a document's canonical text."""
    return sha256_hex(canonicalize(text))


def make_preview(text: str, max_chars: int = PREVIEW_MAX_CHARS) -> str:
    """Collapse whitespace and cap length for display."""
    compact = _WHITESPACE.sub(" ", text or "").strip()
    if len(compact) > max_chars:
        return compact[: max_chars - 3] + "..."
    return compact


def normalize_for_match(text: str | None) -> str:
    """Lowercase, drop punctuation, collapse whitespace."""
    norm = canonicalize(text).lower()
    norm = _NON_WORD.sub(" ", norm)
    return _WHITESPACE.sub(" ", norm).strip()


def tokenize(text: str | None) -> list[str]:
    """Split normalized text into tokens longer than one character."""
    norm = normalize_for_match(text)
    if not norm:
        return []
    return [token for token in norm.split(" ") if len(token) > 1]


def word_count(text: str) -> int:
    return len(text.split())
