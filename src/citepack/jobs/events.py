"""Messages exchanged between a background job and its caller."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class JobKind(str, Enum):
    INDEX = "index"
    ASK = "ask"


class EventType(str, Enum):
    PROGRESS = "progress"
    RETRIEVED = "retrieved"
    STREAM = "stream"
    PHASE = "phase"
    DONE = "done"
    CANCELLED = "cancelled"
    ERROR = "error"

    @property
    def terminal(self) -> bool:
        return self in (EventType.DONE, EventType.CANCELLED, EventType.ERROR)


@dataclass(frozen=True)
class JobEvent:
    job_id: str
    kind: JobKind
    type: EventType
    payload: dict = field(default_factory=dict)

    def to_message(self) -> dict:
        return {"type": self.type.value, "payload": self.payload}
