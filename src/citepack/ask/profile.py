"""Ask settings derived from the generation model's size."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from citepack.config import Settings, get_settings
from citepack.models import AnswerMode

_SIZE_TAG = re.compile(r"(^|[:/ _-])(\d+(?:\.\d+)?)\s*([bm])(?=$|[:/ _.-])", re.IGNORECASE)


def infer_model_size_billions(model_name: str) -> Optional[float]:
    """Parameter count from tags like ``qwen3:4b`` or ``tiny:350m``; None if absent."""
    match = _SIZE_TAG.search((model_name or "").strip().lower())
    if match is None:
        return None
    value = float(match.group(2))
    return value / 1000.0 if match.group(3) == "m" else value


@dataclass(frozen=True)
class AskProfile:
    mode: AnswerMode
    top_k: int
    max_chunk_chars: int
    num_ctx: int
    min_citations: int
    small_model: bool = False


def ask_profile(model_name: str, settings: Optional[Settings] = None) -> AskProfile:
    """Small models get loose mode, fewer and shorter chunks and a lower citation floor."""
    settings = settings or get_settings()
    size = infer_model_size_billions(model_name)
    if size is not None and size <= settings.ask_small_model_max_billions:
        return AskProfile(
            mode=AnswerMode.LOOSE,
            top_k=settings.ask_small_top_k,
            max_chunk_chars=settings.ask_small_max_chunk_chars_for_prompt,
            num_ctx=settings.ask_small_num_ctx,
            min_citations=settings.ask_small_min_citations_overall,
            small_model=True,
        )
    return AskProfile(
        mode=AnswerMode.parse(settings.ask_output_mode),
        top_k=settings.ask_top_k,
        max_chunk_chars=settings.ask_max_chunk_chars_for_prompt,
        num_ctx=settings.ask_num_ctx,
        min_citations=settings.ask_min_citations_overall,
    )
