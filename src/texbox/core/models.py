from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import List, Optional

from .errors import InvalidTransition
from .utils import new_job_id


class Status(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    TIMEOUT = "TIMEOUT"


TERMINAL = (Status.SUCCEEDED, Status.FAILED, Status.TIMEOUT)

_ALLOWED = {
    Status.PENDING: (Status.RUNNING,),
    Status.RUNNING: TERMINAL,
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Job:
    source: str
    job_id: str = field(default_factory=new_job_id)
    workspace: Optional[Path] = None
    status: Status = Status.PENDING
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    raw_log: str = ""
    diagnostic: Optional[str] = None
    reason: Optional[str] = None

    def transition(self, new: Status) -> None:
        if new not in _ALLOWED.get(self.status, ()):
            raise InvalidTransition(f"{self.job_id}: {self.status.value} -> {new.value}")
        self.status = new

    def mark_running(self) -> None:
        self.transition(Status.RUNNING)
        self.started_at = _now()

    def finish(self, status: Status, reason: Optional[str] = None) -> None:
        self.transition(status)
        self.ended_at = _now()
        self.reason = reason

    @property
    def duration_s(self) -> Optional[float]:
        if self.started_at is None or self.ended_at is None:
            return None
        return (self.ended_at - self.started_at).total_seconds()


@dataclass
class RunResult:
    status: Status
    rc: int
    reason: Optional[str]
    stdout: str
    stderr: str
    duration_s: float

    @property
    def exit_ok(self) -> bool:
        return self.status == Status.SUCCEEDED and self.rc == 0

    @property
    def raw_log(self) -> str:
        # tectonic and pdflatex disagree on which stream carries the errors
        parts = [p for p in (self.stdout, self.stderr) if p]
        return "\n".join(parts)


@dataclass
class LatexError:
    message: str
    line: Optional[int] = None

    def __str__(self) -> str:
        if self.line is None:
            return self.message
        return f"{self.message} (line {self.line})"


@dataclass
class Diagnostic:
    summary: str
    raw_log: str
    errors: List[LatexError] = field(default_factory=list)

    @property
    def error_lines(self) -> List[int]:
        return [e.line for e in self.errors if e.line is not None]

    @property
    def error_log(self) -> str:
        return (
            f"Compilation failed\n\n{self.summary}\n\n"
            "==============================\n"
            "RAW LOG\n"
            "==============================\n"
            f"{self.raw_log}"
        )


@dataclass
class CompileOutcome:
    job_id: str
    status: Status
    reason: Optional[str] = None
    pdf: Optional[bytes] = None
    filename: str = "output.pdf"
    diagnostic: Optional[Diagnostic] = None

    @property
    def ok(self) -> bool:
        return self.status == Status.SUCCEEDED and self.pdf is not None
