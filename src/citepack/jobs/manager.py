"""Background jobs with typed event channels.

Each job runs on its own thread and talks to the caller only through a
``queue.Queue`` of :class:`JobEvent` owned by its handle, so jobs of one
session never see or consume each other's events. A caller session may
run one job of each kind at a time, and every started job delivers
exactly one terminal event: ``done``, ``cancelled`` or ``error``.

Threads cannot be killed. Cancelling sets the job's token, which also
cancels its in-flight HTTP requests; if the runner still has not returned
after the grace period, ``cancelled`` is delivered anyway, the slot is
freed and anything the abandoned thread emits later is dropped.
"""

from __future__ import annotations

import itertools
import logging
import queue
import threading
from typing import Callable, Iterator, Optional

from citepack.errors import (
    AskCancelled,
    Cancelled,
    CitepackError,
    IndexCancelled,
    JobAlreadyRunning,
    WorkerCrashed,
    WorkerExited,
)
from citepack.jobs.events import EventType, JobEvent, JobKind
from citepack.utils.cancel import CancelToken

logger = logging.getLogger(__name__)

Emit = Callable[[str, dict], None]
Runner = Callable[[CancelToken, Emit], dict]

_CANCELLED_ERRORS: dict[JobKind, type[Cancelled]] = {
    JobKind.INDEX: IndexCancelled,
    JobKind.ASK: AskCancelled,
}
_CANCELLED_MESSAGES = {
    JobKind.INDEX: "Indexing cancelled.",
    JobKind.ASK: "Ask request cancelled.",
}
_ids = itertools.count(1)


def cancelled_payload(kind: JobKind) -> dict:
    return _CANCELLED_ERRORS[kind](_CANCELLED_MESSAGES[kind]).to_payload()


class JobHandle:
    """One running job: its token, its thread and its terminal guard."""

    def __init__(self, kind: JobKind, session_id: str):
        self.id = f"{session_id}:{kind.value}:{next(_ids)}"
        self.kind = kind
        self.token = CancelToken()
        self.thread: Optional[threading.Thread] = None
        self.terminal: Optional[JobEvent] = None
        self.events: queue.Queue[JobEvent] = queue.Queue()
        self._lock = threading.Lock()
        self._finished = threading.Event()

    @property
    def done(self) -> bool:
        return self._finished.is_set()

    def emit(self, event_type: str, payload: dict) -> None:
        """Forward a non-terminal event; dropped once the job has finished."""
        etype = EventType(event_type)
        if etype.terminal:
            raise ValueError(f"Runners return instead of emitting '{etype.value}'")
        with self._lock:
            if self._finished.is_set():
                return
            self.events.put(JobEvent(self.id, self.kind, etype, payload))

    def finish(self, event_type: EventType, payload: dict) -> bool:
        """Deliver the terminal event; only the first call has any effect."""
        with self._lock:
            if self._finished.is_set():
                return False
            self.terminal = JobEvent(self.id, self.kind, event_type, payload)
            self.events.put(self.terminal)
            self._finished.set()
        return True

    def wait(self, timeout: Optional[float] = None) -> Optional[JobEvent]:
        """Block until the terminal event is delivered and return it."""
        self._finished.wait(timeout)
        return self.terminal


class JobManager:
    """Job slots of one caller session."""

    def __init__(self, session_id: str = "default", grace_s: float = 5.0):
        self.session_id = session_id
        self.grace_s = grace_s
        self._active: dict[JobKind, JobHandle] = {}
        self._lock = threading.Lock()

    def is_running(self, kind: JobKind) -> bool:
        with self._lock:
            return kind in self._active

    def active(self, kind: JobKind) -> Optional[JobHandle]:
        with self._lock:
            return self._active.get(kind)

    def start(self, kind: JobKind, runner: Runner) -> JobHandle:
        """Run ``runner(token, emit)`` on a new thread.

        The runner's return value becomes the ``done`` payload.

        Raises:
            JobAlreadyRunning: a job of this kind is still active in this session
        """
        kind = JobKind(kind)
        with self._lock:
            if kind in self._active:
                raise JobAlreadyRunning(f"A {kind.value} job is already running.")
            handle = JobHandle(kind, self.session_id)
            self._active[kind] = handle
        handle.thread = threading.Thread(
            target=self._execute,
            args=(handle, runner),
            name=f"citepack-{handle.id}",
            daemon=True,
        )
        handle.thread.start()
        logger.debug(f"Started job {handle.id}")
        return handle

    def cancel(self, kind: JobKind) -> bool:
        """Request cancellation; returns False when no such job is running."""
        handle = self.active(JobKind(kind))
        if handle is None:
            return False
        logger.info(f"Cancelling job {handle.id}")
        handle.token.cancel()
        timer = threading.Timer(self.grace_s, self._force_cancel, args=(handle,))
        timer.daemon = True
        timer.start()
        return True

    def send(self, kind: JobKind, message: dict) -> None:
        """Handle an inbound control message such as ``{"type": "cancel"}``."""
        if (message or {}).get("type") == "cancel":
            self.cancel(kind)
        else:
            logger.debug(f"Ignoring control message {message!r} for {kind}")

    def cancel_all(self) -> None:
        with self._lock:
            kinds = list(self._active)
        for kind in kinds:
            self.cancel(kind)

    def iter_events(self, handle: JobHandle, timeout: Optional[float] = None) -> Iterator[JobEvent]:
        """Yield events of ``handle`` up to and including its terminal event.

        Stops early only when ``timeout`` passes without a new event.
        """
        while True:
            try:
                event = handle.events.get(timeout=timeout)
            except queue.Empty:
                return
            yield event
            if event.type.terminal:
                return

    def _release(self, handle: JobHandle) -> None:
        with self._lock:
            if self._active.get(handle.kind) is handle:
                del self._active[handle.kind]

    def _force_cancel(self, handle: JobHandle) -> None:
        if handle.done:
            return
        logger.warning(f"Job {handle.id} did not stop within {self.grace_s}s; abandoning its thread")
        handle.finish(EventType.CANCELLED, cancelled_payload(handle.kind))
        self._release(handle)

    def _execute(self, handle: JobHandle, runner: Runner) -> None:
        try:
            result = runner(handle.token, handle.emit)
        except Cancelled:
            handle.finish(EventType.CANCELLED, cancelled_payload(handle.kind))
        except CitepackError as e:
            if handle.token.cancelled:
                handle.finish(EventType.CANCELLED, cancelled_payload(handle.kind))
            else:
                logger.error(f"Job {handle.id} failed: {e}")
                handle.finish(EventType.ERROR, e.to_payload())
        except Exception as e:
            logger.exception(f"Job {handle.id} crashed")
            handle.finish(EventType.ERROR, WorkerCrashed(str(e) or type(e).__name__).to_payload())
        else:
            if handle.token.cancelled:
                handle.finish(EventType.CANCELLED, cancelled_payload(handle.kind))
            else:
                handle.finish(EventType.DONE, result if isinstance(result, dict) else {})
        finally:
            if not handle.done:
                handle.finish(EventType.ERROR, WorkerExited("Job exited without a result.").to_payload())
            self._release(handle)


class JobRegistry:
    """Owns one :class:`JobManager` per caller session."""

    def __init__(self, grace_s: float = 5.0):
        self.grace_s = grace_s
        self._sessions: dict[str, JobManager] = {}
        self._lock = threading.Lock()

    def session(self, session_id: str) -> JobManager:
        with self._lock:
            manager = self._sessions.get(session_id)
            if manager is None:
                manager = JobManager(session_id, grace_s=self.grace_s)
                self._sessions[session_id] = manager
            return manager

    def close(self, session_id: str) -> None:
        """Cancel the session's jobs and forget it."""
        with self._lock:
            manager = self._sessions.pop(session_id, None)
        if manager is not None:
            manager.cancel_all()

    def close_all(self) -> None:
        with self._lock:
            session_ids = list(self._sessions)
        for session_id in session_ids:
            self.close(session_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
