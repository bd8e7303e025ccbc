"""Parsing and grounding checks for model answers.

Model output is untrusted: every citation and quote is checked against the
chunks that were actually shown to the model, and anything that does not
resolve is dropped. Parse failures raise :class:`SchemaValidationFailed`,
which the pipeline answers with a repair prompt.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from citepack.errors import SchemaValidationFailed
from citepack.models import AnswerMode, ChunkRef, Claim, MarkerRef, Quote, RetrievedChunk, ValidatedAnswer
from citepack.utils.text import word_count

MAX_QUOTE_WORDS = 25

_CODE_FENCE = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)
_SOURCES_HEADER = re.compile(r"\n?\s*sources\s*:\s*", re.IGNORECASE)
_SOURCE_LINE = re.compile(r"^\[(\d+)\]\s*(.+)$")
_DOC_ID_PAIR = re.compile(r"doc_id\s*[:=]\s*([^\s,;]+)", re.IGNORECASE)
_CHUNK_ID_PAIR = re.compile(r"chunk_id\s*[:=]\s*([^\s,;]+)", re.IGNORECASE)
_MARKER = re.compile(r"\[(\d+)\]")

NOTE_QUOTES_OMITTED = "Some quotes omitted due to validation."
NOTE_NO_VALID_CLAIMS = (
    "No valid grounded claims passed citation validation. "
    "Try asking a narrower question or ask again with same evidence."
)
NOTE_CITATION_FLOOR = "No cited answer met minimum citation coverage."
NOTE_NO_LOOSE_TEXT = "No cited answer text returned by model."
NOTE_UNVERIFIED = "Some citations were unverified and omitted."
NOTE_NO_VERIFIED = "No verified citations detected in loose mode output."
NOTE_BELOW_FLOOR = "Citation coverage is below the recommended minimum."


@dataclass
class ParsedStrict:
    answer: list[Any]
    notes: str = ""


@dataclass
class ParsedLoose:
    answer_text: str
    refs: list[MarkerRef] = field(default_factory=list)
    notes: str = ""


def _str(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _try_json(text: str) -> Any:
    try:
        return json.loads(text)
    except ValueError:
        return None


def extract_first_balanced_object(text: str) -> str:
    """Return the first ``{...}`` span, ignoring braces inside JSON strings."""
    depth = 0
    start = -1
    in_string = False
    escaped = False
    for i, ch in enumerate(text or ""):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            if depth == 0:
                start = i
            depth += 1
        elif ch == "}":
            if depth > 0:
                depth -= 1
            if depth == 0 and start >= 0:
                return text[start : i + 1]
    return ""


def try_parse_object(raw: str) -> Optional[Any]:
    """Direct JSON parse, then fenced code blocks, then the first balanced object."""
    text = (raw or "").strip()
    if not text:
        return None
    parsed = _try_json(text)
    if parsed is None:
        for candidate in _CODE_FENCE.findall(text):
            candidate = candidate.strip()
            if candidate:
                parsed = _try_json(candidate)
                if parsed is not None:
                    break
    if parsed is None:
        balanced = extract_first_balanced_object(text)
        if balanced:
            parsed = _try_json(balanced)
    return parsed


def parse_ask_json(raw: str) -> ParsedStrict:
    """Parse strict-mode output.

    Raises:
        SchemaValidationFailed: empty output, no JSON, non-object root or no answer list
    """
    if not (raw or "").strip():
        raise SchemaValidationFailed("Model returned empty output.")
    parsed = try_parse_object(raw)
    if parsed is None:
        raise SchemaValidationFailed("Model output is not valid JSON.")
    if not isinstance(parsed, dict):
        raise SchemaValidationFailed("Model JSON root must be an object.")
    answer = parsed.get("answer")
    if not isinstance(answer, list):
        answer = parsed.get("answers")
    if not isinstance(answer, list):
        raise SchemaValidationFailed("Model JSON must include answer array.")
    return ParsedStrict(answer=answer, notes=_str(parsed.get("notes")))


def _marker(value: Any, default: int) -> int:
    try:
        return int(value) if value else default
    except (TypeError, ValueError):
        return 0


def parse_loose_response(raw: str) -> ParsedLoose:
    """Parse loose-mode output: prose with ``[n]`` markers and a SOURCES block.

    A JSON object with ``answer_text`` and ``sources`` is accepted too.

    Raises:
        SchemaValidationFailed: empty output
    """
    text = (raw or "").strip()
    if not text:
        raise SchemaValidationFailed("Model returned empty output.")

    maybe = _try_json(text)
    if isinstance(maybe, dict):
        answer_text = _str(maybe.get("answer_text") or maybe.get("answer") or maybe.get("response")).strip()
        rows = maybe.get("sources") if isinstance(maybe.get("sources"), list) else []
        refs = []
        for i, row in enumerate(rows, 1):
            row = row if isinstance(row, dict) else {}
            ref = MarkerRef(_marker(row.get("marker"), i), _str(row.get("doc_id")), _str(row.get("chunk_id")))
            if ref.marker > 0 and ref.doc_id and ref.chunk_id:
                refs.append(ref)
        return ParsedLoose(answer_text, refs, _str(maybe.get("notes")))

    header = _SOURCES_HEADER.search(text)
    if header is None:
        return ParsedLoose(text)
    answer_text = text[: header.start()].strip()
    refs = []
    for line in text[header.end() :].split("\n"):
        match = _SOURCE_LINE.match(line.strip())
        if not match:
            continue
        marker = int(match.group(1))
        rest = match.group(2).strip()
        if marker <= 0 or not rest:
            continue
        obj = _try_json(rest)
        if isinstance(obj, dict):
            doc_id, chunk_id = _str(obj.get("doc_id")), _str(obj.get("chunk_id"))
            if doc_id and chunk_id:
                refs.append(MarkerRef(marker, doc_id, chunk_id))
            continue
        doc_match = _DOC_ID_PAIR.search(rest)
        chunk_match = _CHUNK_ID_PAIR.search(rest)
        if doc_match and chunk_match:
            refs.append(MarkerRef(marker, doc_match.group(1).strip(), chunk_match.group(1).strip()))
    return ParsedLoose(answer_text, refs)


def chunk_map(chunks: Iterable[RetrievedChunk]) -> dict[tuple[str, str], RetrievedChunk]:
    return {c.key: c for c in chunks if c.doc_id and c.chunk_id}


def _join_notes(*parts: str) -> str:
    return " ".join(p for p in parts if p).strip()


def _valid_quote(raw: Any, chunks: dict[tuple[str, str], RetrievedChunk]) -> Optional[Quote]:
    raw = raw if isinstance(raw, dict) else {}
    quote = Quote(_str(raw.get("doc_id")), _str(raw.get("chunk_id")), _str(raw.get("quote")))
    if not (quote.quote and quote.doc_id and quote.chunk_id):
        return None
    chunk = chunks.get((quote.doc_id, quote.chunk_id))
    if chunk is None or word_count(quote.quote) > MAX_QUOTE_WORDS:
        return None
    return quote if quote.quote in chunk.text else None


def validate_strict(
    parsed: ParsedStrict,
    chunks: Iterable[RetrievedChunk],
    min_citations: int = 2,
) -> ValidatedAnswer:
    """Keep only citations and quotes that resolve to ``chunks``.

    Fewer unique citations than ``min_citations`` empties the answer.
    """
    known = chunk_map(chunks)
    floor = max(1, int(min_citations or 2))
    claims: list[Claim] = []
    cited: dict[tuple[str, str], ChunkRef] = {}
    quote_dropped = False

    for item in parsed.answer:
        if not isinstance(item, dict):
            continue
        claim_text = _str(item.get("claim")).strip()
        if not claim_text:
            continue
        citations = []
        for raw in item.get("citations") if isinstance(item.get("citations"), list) else []:
            raw = raw if isinstance(raw, dict) else {}
            ref = ChunkRef(_str(raw.get("doc_id")), _str(raw.get("chunk_id")))
            if ref.doc_id and ref.chunk_id and ref.key in known:
                citations.append(ref)
                cited[ref.key] = ref
        quotes = []
        for raw in item.get("quotes") if isinstance(item.get("quotes"), list) else []:
            quote = _valid_quote(raw, known)
            if quote is None:
                quote_dropped = True
            else:
                quotes.append(quote)
        claims.append(Claim(claim_text, citations, quotes))

    notes = _join_notes(parsed.notes, NOTE_QUOTES_OMITTED if quote_dropped else "")
    floor_met = len(cited) >= floor
    if parsed.answer and not claims and not notes:
        notes = NOTE_NO_VALID_CLAIMS
    elif not floor_met:
        notes = _join_notes(notes, NOTE_CITATION_FLOOR)

    return ValidatedAnswer(
        mode=AnswerMode.STRICT,
        claims=claims if floor_met else [],
        citation_refs=list(cited.values()),
        notes=notes,
        verified_citation_count=len(cited),
        citation_floor_met=floor_met,
    )


def validate_loose(
    parsed: ParsedLoose,
    chunks: Iterable[RetrievedChunk],
    min_citations: int = 2,
) -> ValidatedAnswer:
    """Count only markers used in the text that resolve to a known chunk."""
    known = chunk_map(chunks)
    floor = max(1, int(min_citations or 2))
    answer_text = parsed.answer_text.strip()
    if not answer_text:
        return ValidatedAnswer(
            mode=AnswerMode.LOOSE,
            notes=parsed.notes or NOTE_NO_LOOSE_TEXT,
            citation_floor_met=False,
        )

    declared: dict[int, MarkerRef] = {}
    verified: dict[int, MarkerRef] = {}
    for ref in parsed.refs:
        declared.setdefault(ref.marker, ref)
        if ref.marker > 0 and (ref.doc_id, ref.chunk_id) in known:
            verified[ref.marker] = ref

    used = []
    for match in _MARKER.finditer(answer_text):
        marker = int(match.group(1))
        if marker > 0 and marker not in used:
            used.append(marker)
    refs = [verified[m] for m in used if m in verified]
    unverified = sum(1 for m in used if m in declared) - len(refs)

    notes = _join_notes(
        parsed.notes,
        NOTE_UNVERIFIED if unverified > 0 else "",
        NOTE_NO_VERIFIED if not refs else (NOTE_BELOW_FLOOR if len(refs) < floor else ""),
    )
    return ValidatedAnswer(
        mode=AnswerMode.LOOSE,
        answer_text=answer_text,
        citation_refs=refs,
        notes=notes,
        verified_citation_count=len(refs),
        unverified_citation_count=max(0, unverified),
        citation_floor_met=len(refs) >= floor,
    )


def parse_and_validate(
    raw: str,
    mode: AnswerMode,
    chunks: Iterable[RetrievedChunk],
    min_citations: int = 2,
) -> ValidatedAnswer:
    """Parse ``raw`` for ``mode`` and validate it; raises SchemaValidationFailed."""
    chunks = list(chunks)
    if mode is AnswerMode.LOOSE:
        return validate_loose(parse_loose_response(raw), chunks, min_citations)
    return validate_strict(parse_ask_json(raw), chunks, min_citations)
