# model.py
from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class Step:
    """
    A single step inside a CI job.

    Exactly one of:
      - uses: reference to an external action, configured by `with_`
      - run:  an inline shell command
    """
    name: str
    run: str | None = None
    uses: str | None = None
    with_: Dict[str, Any] = field(default_factory=dict)
    env: Dict[str, str] = field(default_factory=dict)
    cwd: str | None = None
    timeout_minutes: float | None = None

    def __post_init__(self) -> None:
        if (self.run is None) == (self.uses is None):
            raise ValueError(f"step {self.name!r} must define exactly one of 'run' or 'uses'")

    @property
    def kind(self) -> str:
        return "action" if self.uses is not None else "command"

    @property
    def label(self) -> str:
        if self.name:
            return self.name
        return self.run if self.run is not None else f"Run {self.uses}"


@dataclass(frozen=True)
class JobSpec:
    """A job definition: matrix axes + ordered steps, parameterized by axis values."""
    name: str
    steps: List[Step]
    runs_on: str = "ubuntu-latest"
    matrix: Dict[str, List[Any]] = field(default_factory=dict)
    env: Dict[str, str] = field(default_factory=dict)
    timeout_minutes: float | None = None


@dataclass(frozen=True)
class PullRequestTrigger:
    # None -> every pull request, regardless of base branch
    branches: Optional[List[str]] = None


@dataclass(frozen=True)
class Triggers:
    push_branches: Optional[List[str]] = None      # None -> push is not a trigger
    pull_request: Optional[PullRequestTrigger] = None
    schedules: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class PipelineDefinition:
    name: str
    triggers: Triggers
    jobs: Dict[str, JobSpec]


# ---------------------------------------------------------------------
# Run-time state
# ---------------------------------------------------------------------

class JobStatus(str, enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.CANCELLED)


_TRANSITIONS = {
    JobStatus.PENDING: {JobStatus.RUNNING, JobStatus.CANCELLED},
    JobStatus.RUNNING: {JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.CANCELLED},
}


class StepStatus(str, enum.Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"


@dataclass
class StepResult:
    index: int
    name: str
    status: StepStatus
    exit_code: int | None = None
    error: str | None = None
    duration: float = 0.0


@dataclass
class JobRun:
    """One instantiation of a JobSpec for a concrete axis-value combination."""
    job: JobSpec
    axes: Dict[str, Any]
    runner: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    status: JobStatus = JobStatus.PENDING
    steps: List[StepResult] = field(default_factory=list)
    error: str | None = None
    failed_step: tuple[int, str] | None = None  # (position, name)

    @property
    def name(self) -> str:
        if not self.axes:
            return self.job.name
        values = ", ".join(str(v) for v in self.axes.values())
        return f"{self.job.name} ({values})"

    def transition(self, new: JobStatus) -> None:
        if new not in _TRANSITIONS.get(self.status, set()):
            raise ValueError(f"[{self.name}] illegal transition {self.status.value} -> {new.value}")
        self.status = new

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "job": self.job.name,
            "axes": dict(self.axes),
            "runner": self.runner,
            "status": self.status.value,
            "error": self.error,
            "failed_step": (
                {"position": self.failed_step[0], "name": self.failed_step[1]}
                if self.failed_step else None
            ),
            "steps": [
                {
                    "index": s.index,
                    "name": s.name,
                    "status": s.status.value,
                    "exit_code": s.exit_code,
                    "error": s.error,
                    "duration": round(s.duration, 3),
                }
                for s in self.steps
            ],
        }


@dataclass
class PipelineRun:
    definition: PipelineDefinition
    event: Any  # triggers.Event
    job_runs: List[JobRun] = field(default_factory=list)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def done(self) -> bool:
        return all(r.status.terminal for r in self.job_runs)

    @property
    def status(self) -> JobStatus:
        """Succeeded iff every JobRun succeeded; otherwise Failed."""
        if not self.done:
            return JobStatus.RUNNING
        if all(r.status == JobStatus.SUCCEEDED for r in self.job_runs):
            return JobStatus.SUCCEEDED
        return JobStatus.FAILED

    def results(self) -> Dict[str, str]:
        return {r.name: r.status.value for r in self.job_runs}
