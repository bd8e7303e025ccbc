"""Grounded question answering."""

from citepack.ask.pipeline import (
    REPAIR_STEPS,
    AskPhase,
    AskPipeline,
    AskRequest,
    RepairStep,
    graceful_no_answer,
    select_planned_chunks,
)
from citepack.ask.profile import AskProfile, ask_profile, infer_model_size_billions
from citepack.ask.validation import parse_and_validate, parse_ask_json, parse_loose_response

__all__ = [
    "REPAIR_STEPS",
    "AskPhase",
    "AskPipeline",
    "AskProfile",
    "AskRequest",
    "RepairStep",
    "ask_profile",
    "graceful_no_answer",
    "infer_model_size_billions",
    "parse_and_validate",
    "parse_ask_json",
    "parse_loose_response",
    "select_planned_chunks",
]
