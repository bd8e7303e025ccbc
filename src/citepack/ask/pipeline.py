"""Grounded question answering over retrieved chunks.

The pipeline is a small state machine::

    retrieving -> planning -> generating -> validating -> done
                                              |  ^
                                              v  |
                                           repairing (bounded by REPAIR_STEPS)

Malformed model output never escapes as an exception: after the last
repair step the caller gets an empty answer with explanatory notes and
sources taken straight from the evidence.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable, Optional

from citepack.ask.profile import AskProfile, ask_profile
from citepack.ask.prompts import (
    answer_system_prompt,
    answer_user_prompt,
    planner_system_prompt,
    planner_user_prompt,
    restate_schema_prompt,
    skeleton_repair_prompt,
)
from citepack.ask.validation import parse_and_validate, try_parse_object
from citepack.config import Settings, get_settings
from citepack.errors import AskCancelled, Cancelled, InvalidRequest, ModelMissing, SchemaValidationFailed
from citepack.models import (
    AnswerMode,
    AskResult,
    ChunkRef,
    Document,
    MarkerRef,
    RetrievedChunk,
    Source,
    ValidatedAnswer,
)
from citepack.protocols import ChatProvider
from citepack.search import Retriever
from citepack.utils.cancel import CancelToken

logger = logging.getLogger(__name__)

EventSink = Callable[[str, dict], None]

MIN_PLANNER_NUM_CTX = 1024
PLANNER_CTX_RATIO = 0.66
MAX_FALLBACK_SOURCES = 8
RAW_OUTPUT_MAX_CHARS = 20_000

NOTE_NO_EVIDENCE = "No relevant indexed evidence found. Try rephrasing your question with more specific terms."
NOTE_NO_CLAIMS = "No grounded claims found in retrieved evidence. Try a narrower question."


class AskPhase(str, Enum):
    RETRIEVING = "retrieving"
    PLANNING = "planning"
    GENERATING = "generating"
    VALIDATING = "validating"
    REPAIRING = "repairing"


@dataclass(frozen=True)
class RepairStep:
    name: str
    build_prompt: Callable[[str, AnswerMode, str], str]


# Each entry is one extra generation attempt after a parse failure
REPAIR_STEPS: tuple[RepairStep, ...] = (
    RepairStep("restate_schema", restate_schema_prompt),
    RepairStep("skeleton", skeleton_repair_prompt),
)


@dataclass
class AskRequest:
    """One question. Unset numeric options come from the model's profile."""

    question: str
    generation_model: str
    embedding_model: str = ""
    documents: Optional[list[Document | dict]] = None
    retrieved_chunks: list[RetrievedChunk] = field(default_factory=list)
    mode: Optional[AnswerMode] = None
    language: str = ""
    top_k: Optional[int] = None
    candidate_k: Optional[int] = None
    max_chunk_chars: Optional[int] = None
    num_ctx: Optional[int] = None
    min_citations: Optional[int] = None


def select_planned_chunks(
    planner_output: str,
    chunks: list[RetrievedChunk],
    max_sources: int = 3,
) -> list[RetrievedChunk]:
    """Chunks the planner picked, in its order; unknown ids are ignored.

    Falls back to every retrieved chunk when nothing usable was picked.
    """
    limit = max(1, int(max_sources))
    by_key = {c.key: c for c in chunks}
    parsed = try_parse_object(planner_output)
    rows: Any = []
    if isinstance(parsed, dict):
        rows = parsed.get("sources") if isinstance(parsed.get("sources"), list) else parsed.get("citations")
    picked: list[RetrievedChunk] = []
    for row in rows if isinstance(rows, list) else []:
        if not isinstance(row, dict):
            continue
        doc_id = str(row.get("doc_id") or row.get("docId") or "").strip()
        chunk_id = str(row.get("chunk_id") or row.get("chunkId") or "").strip()
        chunk = by_key.get((doc_id, chunk_id))
        if chunk is not None and chunk not in picked:
            picked.append(chunk)
    return picked[:limit] if picked else list(chunks)


def graceful_no_answer(mode: AnswerMode, detail: str) -> ValidatedAnswer:
    notes = " ".join(
        part
        for part in (
            "Could not produce a valid grounded answer structure from the model output.",
            f"Technical details: {detail}" if detail else "",
            "Try Ask again, simplify the question, or switch generation model.",
        )
        if part
    )
    return ValidatedAnswer(mode=mode, notes=notes, citation_floor_met=False, fallback=True)


def build_sources(refs: Iterable[ChunkRef | MarkerRef], chunks: list[RetrievedChunk]) -> list[Source]:
    by_key = {c.key: c for c in chunks}
    sources: dict[tuple[str, str], Source] = {}
    for i, ref in enumerate(refs, 1):
        key = (ref.doc_id, ref.chunk_id)
        chunk = by_key.get(key)
        if chunk is None or key in sources:
            continue
        marker = ref.marker if isinstance(ref, MarkerRef) else i
        sources[key] = Source.from_chunk(chunk, marker=marker)
    return list(sources.values())


class AskPipeline:
    """Retrieve, plan, generate and validate one grounded answer."""

    def __init__(
        self,
        chat: ChatProvider,
        retriever: Optional[Retriever] = None,
        settings: Optional[Settings] = None,
    ):
        self.chat = chat
        self.retriever = retriever
        self.settings = settings or get_settings()

    def profile_for(self, request: AskRequest) -> AskProfile:
        base = ask_profile(request.generation_model, self.settings)
        return AskProfile(
            mode=request.mode or base.mode,
            top_k=request.top_k or base.top_k,
            max_chunk_chars=request.max_chunk_chars or base.max_chunk_chars,
            num_ctx=request.num_ctx or base.num_ctx,
            min_citations=request.min_citations or base.min_citations,
            small_model=base.small_model,
        )

    def run(
        self,
        request: AskRequest,
        token: Optional[CancelToken] = None,
        emit: Optional[EventSink] = None,
    ) -> AskResult:
        """Answer ``request``; ``emit`` receives ``retrieved``, ``phase`` and ``stream`` events.

        Raises:
            AskCancelled: the token was cancelled
            InvalidRequest: empty question, or no chunks and no retriever
            ModelMissing: no generation (or, when retrieving, embedding) model
        """
        token = token or CancelToken()
        try:
            return self._run(request, token, emit or (lambda kind, payload: None))
        except AskCancelled:
            raise
        except Cancelled as e:
            raise AskCancelled("Ask request cancelled.") from e

    def _run(self, request: AskRequest, token: CancelToken, emit: EventSink) -> AskResult:
        question = (request.question or "").strip()
        model = (request.generation_model or "").strip()
        if not question:
            raise InvalidRequest("Question is empty.")
        if not model:
            raise ModelMissing("Generation model is not configured.")
        profile = self.profile_for(request)
        language = request.language or self.settings.ask_language

        def checkpoint() -> None:
            token.raise_if_cancelled(AskCancelled, "Ask request cancelled.")

        def phase(value: AskPhase) -> None:
            checkpoint()
            logger.debug(f"Ask phase: {value.value}")
            emit("phase", {"phase": value.value})

        chunks = list(request.retrieved_chunks)
        if not chunks:
            phase(AskPhase.RETRIEVING)
            chunks = self._retrieve(request, question, profile, token)
        if not chunks:
            return AskResult(
                mode=profile.mode,
                claims=[],
                answer_text="",
                notes=NOTE_NO_EVIDENCE,
                sources=[],
                retrieved_chunks=[],
            )
        emit("retrieved", {"retrieved_chunks": [c.to_dict() for c in chunks]})

        phase(AskPhase.PLANNING)
        planner_output = self.chat.chat(
            model,
            planner_system_prompt(language),
            planner_user_prompt(question, chunks),
            stream=False,
            json_mode=True,
            num_ctx=max(MIN_PLANNER_NUM_CTX, int(profile.num_ctx * PLANNER_CTX_RATIO)),
            token=token,
        )
        active = select_planned_chunks(planner_output, chunks, self.settings.ask_planner_max_sources)
        logger.debug(f"Planner selected {[c.chunk_id for c in active]}")

        system_prompt = answer_system_prompt(language, profile.mode)
        user_prompt = answer_user_prompt(question, active)
        strict = profile.mode is AnswerMode.STRICT

        phase(AskPhase.GENERATING)
        raw = self.chat.chat(
            model,
            system_prompt,
            user_prompt,
            stream=True,
            json_mode=strict,
            num_ctx=profile.num_ctx,
            on_token=lambda delta: emit("stream", {"delta": delta}),
            token=token,
        )

        validated: Optional[ValidatedAnswer] = None
        failure: Optional[SchemaValidationFailed] = None
        repaired = False
        for step in (None, *REPAIR_STEPS):
            if step is not None:
                repaired = True
                phase(AskPhase.REPAIRING)
                logger.info(f"Answer failed validation ({failure}); repair step '{step.name}'")
                raw = self.chat.chat(
                    model,
                    system_prompt,
                    step.build_prompt(user_prompt, profile.mode, raw),
                    stream=False,
                    json_mode=strict,
                    num_ctx=profile.num_ctx,
                    token=token,
                )
            phase(AskPhase.VALIDATING)
            try:
                validated = parse_and_validate(raw, profile.mode, active, profile.min_citations)
                break
            except SchemaValidationFailed as e:
                failure = e
        if validated is None:
            logger.warning(f"Answer still invalid after {len(REPAIR_STEPS)} repairs: {failure}")
            validated = graceful_no_answer(profile.mode, f"{failure} (after retries)")

        notes = validated.notes
        if not validated.claims and not validated.answer_text and not notes:
            notes = NOTE_NO_CLAIMS
        sources = build_sources(validated.citation_refs, active)
        if not sources:
            sources = [Source.from_chunk(c) for c in active[:MAX_FALLBACK_SOURCES]]

        return AskResult(
            mode=validated.mode,
            claims=validated.claims,
            answer_text=validated.answer_text,
            notes=notes,
            sources=sources,
            retrieved_chunks=active,
            verified_citation_count=validated.verified_citation_count,
            unverified_citation_count=validated.unverified_citation_count,
            repaired=repaired,
            fallback=validated.fallback,
            raw_output=(raw or "")[:RAW_OUTPUT_MAX_CHARS],
        )

    def _retrieve(
        self,
        request: AskRequest,
        question: str,
        profile: AskProfile,
        token: CancelToken,
    ) -> list[RetrievedChunk]:
        if self.retriever is None:
            raise InvalidRequest("No retrieved chunks supplied and no retriever configured.")
        if not (request.embedding_model or "").strip():
            raise ModelMissing("Embedding model is not set.")
        return self.retriever.search(
            question,
            request.embedding_model,
            documents=request.documents,
            top_k=profile.top_k,
            candidate_k=request.candidate_k or profile.top_k * self.settings.ask_candidate_multiplier,
            max_prompt_chars=profile.max_chunk_chars,
            token=token,
        )
