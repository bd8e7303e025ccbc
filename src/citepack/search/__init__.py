"""Similarity search and rerank."""

from citepack.search.rerank import RerankWeights, lexical_signals, rerank_candidates, rerank_score
from citepack.search.retriever import Retriever, truncate_for_prompt

__all__ = [
    "RerankWeights",
    "Retriever",
    "lexical_signals",
    "rerank_candidates",
    "rerank_score",
    "truncate_for_prompt",
]
