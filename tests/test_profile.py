"""Tests for model-size based ask profiles."""

import pytest

from citepack.ask import ask_profile, infer_model_size_billions
from citepack.models import AnswerMode


@pytest.mark.parametrize(
    "name, size",
    [
        ("qwen3:4b", 4.0),
        ("gemma2:2b-instruct-q4_K_M", 2.0),
        ("llama3.1:8b-instruct", 8.0),
        ("tiny:350m", 0.35),
        ("mistral-7B", 7.0),
        ("unknown-model", None),
        ("", None),
    ],
)
def test_infer_model_size(name, size):
    assert infer_model_size_billions(name) == (pytest.approx(size) if size is not None else None)


def test_small_profile(settings):
    profile = ask_profile("qwen3:4b", settings)
    assert profile.small_model
    assert profile.mode is AnswerMode.LOOSE
    assert (profile.top_k, profile.max_chunk_chars, profile.num_ctx, profile.min_citations) == (4, 1000, 2048, 1)


def test_standard_profile(settings):
    profile = ask_profile("llama3.1:8b-instruct", settings)
    assert not profile.small_model
    assert profile.mode is AnswerMode.STRICT
    assert (profile.top_k, profile.max_chunk_chars, profile.num_ctx, profile.min_citations) == (8, 2000, 3072, 2)


def test_unknown_size_uses_standard(settings):
    assert ask_profile("unknown-model", settings).mode is AnswerMode.STRICT
