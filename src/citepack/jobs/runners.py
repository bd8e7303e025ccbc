"""Adapters that turn core operations into job runners."""

from __future__ import annotations

from typing import Iterable

from citepack.ask import AskPipeline, AskRequest
from citepack.indexing import Indexer
from citepack.jobs.events import EventType
from citepack.jobs.manager import Emit, Runner
from citepack.models import Document
from citepack.utils.cancel import CancelToken


def index_runner(indexer: Indexer, documents: Iterable[Document | dict], model_name: str) -> Runner:
    documents = list(documents)

    def run(token: CancelToken, emit: Emit) -> dict:
        summary = indexer.run(
            documents,
            model_name,
            on_progress=lambda progress: emit(EventType.PROGRESS.value, progress.to_dict()),
            token=token,
        )
        return summary.to_dict()

    return run


def ask_runner(pipeline: AskPipeline, request: AskRequest) -> Runner:
    def run(token: CancelToken, emit: Emit) -> dict:
        return pipeline.run(request, token=token, emit=emit).to_dict()

    return run
