from enum import Enum, auto
from pydantic import BaseModel
from typing import Optional


class EventKind(Enum):
    PROGRESS = auto()
    LOG = auto()
    COMPLETED = auto()


class RunState(Enum):
    NOT_STARTED = auto()
    RUNNING = auto()
    COMPLETED = auto()
    FAILED = auto()


class ProgressEvent(BaseModel):
    kind: EventKind
    percentage: Optional[float] = None  # PROGRESS only, within [0, 100]
    line: Optional[str] = None          # LOG only
    returncode: Optional[int] = None    # COMPLETED only; None if never launched

    @classmethod
    def progress(cls, percentage: float) -> "ProgressEvent":
        return cls(kind=EventKind.PROGRESS, percentage=percentage)

    @classmethod
    def log(cls, line: str) -> "ProgressEvent":
        return cls(kind=EventKind.LOG, line=line)

    @classmethod
    def completed(cls, returncode: Optional[int]) -> "ProgressEvent":
        return cls(kind=EventKind.COMPLETED, returncode=returncode)


class RunResult(BaseModel):
    returncode: Optional[int] = None
    state: RunState = RunState.NOT_STARTED
    cancelled: bool = False
    log_lines: list[str] = []

    @property
    def succeeded(self) -> bool:
        return self.state == RunState.COMPLETED

    @property
    def log_text(self) -> str:
        return "\n".join(self.log_lines)
