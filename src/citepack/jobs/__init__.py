"""Background jobs for indexing and asking."""

from citepack.jobs.events import EventType, JobEvent, JobKind
from citepack.jobs.manager import JobHandle, JobManager, JobRegistry, Runner
from citepack.jobs.runners import ask_runner, index_runner

__all__ = [
    "EventType",
    "JobEvent",
    "JobHandle",
    "JobKind",
    "JobManager",
    "JobRegistry",
    "Runner",
    "ask_runner",
    "index_runner",
]
