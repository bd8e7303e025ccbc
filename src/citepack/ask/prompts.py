"""Prompt text for the planner, the answer step and the repair steps."""

from __future__ import annotations

import json
from typing import Iterable

from citepack.models import AnswerMode, RetrievedChunk

PLANNER_CANDIDATE_CHARS = 900
REPAIR_INVALID_MAX_CHARS = 6000

STRICT_SCHEMA = (
    '{"answer":[{"claim":"string","citations":[{"chunk_id":"string","doc_id":"string"}],'
    '"quotes":[{"chunk_id":"string","doc_id":"string","quote":"verbatim substring <= 25 words"}]}],'
    '"notes":"string"}'
)
REPAIR_SCHEMA = (
    '{"answer":[{"claim":"string","citations":[{"chunk_id":"string","doc_id":"string"}],'
    '"quotes":[{"chunk_id":"string","doc_id":"string","quote":"string"}]}],"notes":"string"}'
)
FALLBACK_SKELETON = '{"answer":[],"notes":"Unable to answer from provided evidence. Suggest a narrower re-query."}'
SOURCE_LINE_FORMAT = '[n] {"doc_id":"...","chunk_id":"..."}'


def language_name(code: str) -> str:
    return "Swedish" if (code or "").strip().lower() == "sv" else "English"


def answer_system_prompt(language: str, mode: AnswerMode) -> str:
    target = language_name(language)
    if mode is AnswerMode.LOOSE:
        lines = [
            "You are a grounded QA assistant.",
            "Use ONLY provided context. No external knowledge.",
            "Respond in two parts:",
            "1) Free-text answer using inline citation markers [1], [2], ...",
            f"2) SOURCES section, one per line: {SOURCE_LINE_FORMAT}",
            'For interpretive statements, prefix sentence with "Hypothesis:" or "Possible interpretation:".',
            "If evidence is weak, still provide short cautious directions and cite relevant sources.",
            f"Write in {target}.",
        ]
    else:
        lines = [
            "You are a grounded QA assistant.",
            "Answer ONLY from provided sources. No external knowledge.",
            "Return JSON ONLY with exact schema:",
            STRICT_SCHEMA,
            "Quotes are optional.",
            "Citations should be attached across the answer; ensure at least 2 total citations.",
            "Citations can only use provided doc_id/chunk_id pairs.",
            "If evidence is insufficient, still provide a short cautious suggestion with citations, or answer [] with notes.",
            f"Write claims and notes in {target}.",
        ]
    return "\n".join(lines)


def answer_user_prompt(question: str, chunks: Iterable[RetrievedChunk]) -> str:
    context = [
        {
            "rank": c.rank,
            "doc_id": c.doc_id,
            "doc_title": c.doc_title,
            "chunk_id": c.chunk_id,
            "chunk_index": c.chunk_index,
            "start_char": c.start_char,
            "end_char": c.end_char,
            "text": c.prompt_text or c.text,
        }
        for c in chunks
    ]
    return json.dumps({"question": question, "context": context}, ensure_ascii=False)


def planner_system_prompt(language: str) -> str:
    return "\n".join(
        [
            "You are selecting evidence chunks for grounded QA.",
            'Return JSON ONLY: {"sources":[{"doc_id":"string","chunk_id":"string"}],"notes":"string"}',
            "Pick 1-3 most useful sources from provided context IDs only.",
            "Never invent doc_id or chunk_id.",
            f"Notes language: {language_name(language)}.",
        ]
    )


def planner_user_prompt(question: str, chunks: Iterable[RetrievedChunk]) -> str:
    candidates = [
        {
            "rank": c.rank,
            "doc_id": c.doc_id,
            "chunk_id": c.chunk_id,
            "title": c.doc_title,
            "text": (c.prompt_text or c.text)[:PLANNER_CANDIDATE_CHARS],
        }
        for c in chunks
    ]
    return json.dumps({"question": question, "candidate_sources": candidates}, ensure_ascii=False)


def restate_schema_prompt(user_prompt: str, mode: AnswerMode, invalid_output: str = "") -> str:
    """First repair: the prior output is discarded and the format restated."""
    if mode is AnswerMode.LOOSE:
        tail = [
            "Your previous response was invalid.",
            "Return cited prose with [1], [2] markers, then SOURCES:",
            '[1] {"doc_id":"...","chunk_id":"..."}',
            "Use only sources from provided context.",
        ]
    else:
        tail = [
            "Your previous response was invalid.",
            "Return JSON ONLY and match this exact schema:",
            REPAIR_SCHEMA,
            "Use only sources from provided context.",
        ]
    return "\n".join([user_prompt, "", *tail])


def skeleton_repair_prompt(user_prompt: str, mode: AnswerMode, invalid_output: str = "") -> str:
    """Final repair: show the invalid output and offer a minimal skeleton."""
    compact = (invalid_output or "")[:REPAIR_INVALID_MAX_CHARS]
    if mode is AnswerMode.LOOSE:
        tail = [
            "Repair the invalid response below.",
            "Return cited prose with [n] markers and a SOURCES block.",
            f"SOURCES lines must be: {SOURCE_LINE_FORMAT}",
        ]
    else:
        tail = [
            "Repair the invalid response below into valid JSON for the exact schema.",
            "Do not add explanation. Return JSON object only.",
            "Use this exact skeleton if needed:",
            FALLBACK_SKELETON,
        ]
    return "\n".join([user_prompt, "", *tail, "Invalid response:", compact])
