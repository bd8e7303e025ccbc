"""Deterministic overlapping chunker.

Chunks are half-open ``[start_char, end_char)`` ranges over the canonical
text. Boundaries come from paragraph, line or sentence units so that a
chunk rarely cuts mid-sentence, and the same input always yields the same
chunk list.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from citepack.models import Chunk
from citepack.utils.text import canonicalize, make_preview, sha256_hex

Span = tuple[int, int]

_PARAGRAPH_BREAK = re.compile(r"\n{2,}")
_LINE_BREAK = re.compile(r"\n+")
_SENTENCE_END = re.compile(r"[.!?]+[\])\"']*\s+")

MAX_ITERATIONS = 100_000


def chunk_id_for(doc_id: str, chunk_index: int) -> str:
    return f"{doc_id}::{chunk_index}"


def _split_after(text: str, pattern: re.Pattern, offset: int = 0) -> list[Span]:
    """Split into spans that each end just after a delimiter match."""
    spans: list[Span] = []
    last = 0
    for match in pattern.finditer(text):
        end = match.end()
        if end > last:
            spans.append((offset + last, offset + end))
        last = end
    if last < len(text):
        spans.append((offset + last, offset + len(text)))
    return spans


def _hard_split(span: Span, max_chars: int) -> list[Span]:
    start, end = span
    return [(cursor, min(end, cursor + max_chars)) for cursor in range(start, end, max_chars)]


def _split_long_unit(text: str, span: Span, max_chars: int) -> list[Span]:
    start, end = span
    sentences = _split_after(text[start:end], _SENTENCE_END, offset=start)
    if len(sentences) <= 1:
        return _hard_split(span, max_chars)
    out: list[Span] = []
    for sentence in sentences:
        if sentence[1] - sentence[0] <= max_chars:
            out.append(sentence)
        else:
            out.extend(_hard_split(sentence, max_chars))
    return out


def build_base_units(text: str, max_chars: int) -> list[Span]:
    """Paragraph units, else line units, else the whole text; none longer than ``max_chars``."""
    if "\n\n" in text:
        units = _split_after(text, _PARAGRAPH_BREAK)
    elif "\n" in text:
        units = _split_after(text, _LINE_BREAK)
    else:
        units = [(0, len(text))]

    out: list[Span] = []
    for unit in units:
        if unit[1] - unit[0] <= max_chars:
            out.append(unit)
        else:
            out.extend(_split_long_unit(text, unit, max_chars))
    return [unit for unit in out if unit[1] > unit[0]]


def select_chunk_end(start: int, unit_ends: list[int], text_length: int, min_chars: int, max_chars: int) -> int:
    """Pick where the chunk starting at ``start`` ends.

    Preference order: first unit boundary inside ``[start+min, start+max]``;
    else the last boundary below ``start+max``; else the next boundary if it
    stays within ``max_chars``; else a hard cut at ``start+max``.
    """
    min_target = min(text_length, start + min_chars)
    max_target = min(text_length, start + max_chars)

    candidates = [end for end in unit_ends if end > start]
    if not candidates:
        return max_target

    for end in candidates:
        if min_target <= end <= max_target:
            return end

    below_max = [end for end in candidates if end <= max_target]
    if below_max:
        return below_max[-1]

    first_after = candidates[0]
    if first_after - start > max_chars:
        return max_target
    return first_after


@dataclass(frozen=True)
class ChunkerConfig:
    min_chars: int = 1200
    max_chars: int = 1800
    overlap_chars: int = 200

    def clamped(self) -> "ChunkerConfig":
        """Clamp to sane values: ``min >= 100``, ``max >= min``, ``overlap >= 0``."""
        min_chars = max(100, int(self.min_chars or 0))
        max_chars = max(min_chars, int(self.max_chars or 0))
        overlap = max(0, int(self.overlap_chars or 0))
        return ChunkerConfig(min_chars, max_chars, overlap)


class DeterministicChunker:
    """Split canonical text into bounded, overlapping chunks.

    Each chunk after the first starts at
    ``max(prev.end_char - overlap, prev.start_char)``, or at ``prev.end_char``
    when that would not move forward.
    """

    def __init__(self, config: Optional[ChunkerConfig] = None):
        self.config = (config or ChunkerConfig()).clamped()

    def chunk(self, doc_id: str, text: str) -> list[Chunk]:
        """Plan the chunks of one document.

        Args:
            doc_id: Identifier used to derive ``chunk_id`` values
            text: Raw or canonical document text

        Returns:
            Ordered chunks with dense ``chunk_index`` starting at 0
        """
        canonical = canonicalize(text)
        if not canonical:
            return []

        cfg = self.config
        unit_ends = [end for _, end in build_base_units(canonical, cfg.max_chars)]
        length = len(canonical)

        chunks: list[Chunk] = []
        start = 0
        iterations = 0
        while start < length and iterations < MAX_ITERATIONS:
            iterations += 1
            end = select_chunk_end(start, unit_ends, length, cfg.min_chars, cfg.max_chars)
            if end <= start:
                break

            piece = canonical[start:end]
            index = len(chunks)
            chunks.append(
                Chunk(
                    doc_id=doc_id,
                    chunk_id=chunk_id_for(doc_id, index),
                    chunk_index=index,
                    start_char=start,
                    end_char=end,
                    text=piece,
                    text_hash=sha256_hex(piece),
                    preview=make_preview(piece),
                )
            )

            if end >= length:
                break
            next_start = max(end - cfg.overlap_chars, start)
            start = next_start if next_start > start else end

        return chunks
