"""Lexical rerank of semantic candidates."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional

from citepack.config import Settings
from citepack.models import RetrievedChunk
from citepack.utils.text import normalize_for_match, tokenize

MIN_PHRASE_CHARS = 6
MIN_DENSITY_TOKENS = 8


@dataclass(frozen=True)
class RerankWeights:
    """Tunable weights; semantic must carry the largest share."""

    semantic: float = 0.65
    coverage: float = 0.25
    density: float = 0.08
    phrase: float = 0.02

    @classmethod
    def from_settings(cls, settings: Settings) -> "RerankWeights":
        return cls(
            semantic=settings.rerank_w_semantic,
            coverage=settings.rerank_w_coverage,
            density=settings.rerank_w_density,
            phrase=settings.rerank_w_phrase,
        )


@dataclass(frozen=True)
class LexicalSignals:
    coverage: float
    density: float
    phrase: float


def lexical_signals(query: str, text: str) -> LexicalSignals:
    query_tokens = set(tokenize(query))
    text_tokens = tokenize(text)
    if not query_tokens or not text_tokens:
        return LexicalSignals(0.0, 0.0, 0.0)

    present = set(text_tokens)
    coverage = len(query_tokens & present) / len(query_tokens)
    matched = sum(1 for token in text_tokens if token in query_tokens)
    density = matched / max(MIN_DENSITY_TOKENS, len(text_tokens))

    norm_query = normalize_for_match(query)
    phrase = 1.0 if len(norm_query) >= MIN_PHRASE_CHARS and norm_query in normalize_for_match(text) else 0.0
    return LexicalSignals(coverage, density, phrase)


def rerank_score(semantic_score: float, signals: LexicalSignals, weights: RerankWeights) -> float:
    """Weighted sum; the cosine is mapped from ``[-1, 1]`` to ``[0, 1]`` first."""
    semantic = (max(-1.0, min(1.0, semantic_score)) + 1.0) / 2.0
    return (
        weights.semantic * semantic
        + weights.coverage * signals.coverage
        + weights.density * signals.density
        + weights.phrase * signals.phrase
    )


def rerank_candidates(
    query: str,
    candidates: list[RetrievedChunk],
    weights: Optional[RerankWeights] = None,
) -> list[RetrievedChunk]:
    """Score candidates on their ``text`` and return them best first, re-ranked from 1."""
    weights = weights or RerankWeights()
    scored = [
        replace(c, score=rerank_score(c.semantic_score, lexical_signals(query, c.text), weights))
        for c in candidates
    ]
    scored.sort(key=lambda c: (-c.score, -c.semantic_score))
    return [c.with_rank(i) for i, c in enumerate(scored, 1)]
