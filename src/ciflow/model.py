# model.py
from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import TYPE_CHECKING, Dict, List, Mapping, Optional

from .errors import InvalidTransition

if TYPE_CHECKING:
    from .dag import JobGraph


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ----------------------------------------------------------------------
# Definitions (immutable, come from the workflow file)
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class Step:
    """A single command (step) inside a CI job."""
    name: str
    run: str
    env: Mapping[str, str] = field(default_factory=dict)
    cwd: str | None = None


@dataclass(frozen=True)
class Job:
    """
    A CI job: ordered steps + the names of the jobs it needs.

    `runs_on` is the execution environment descriptor. The scheduler never
    looks inside it, it is handed to the step executor as-is.
    """
    name: str
    steps: tuple[Step, ...]
    needs: tuple[str, ...] = ()
    env: Mapping[str, str] = field(default_factory=dict)
    runs_on: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "steps", tuple(self.steps))
        object.__setattr__(self, "needs", tuple(self.needs))

        seen: set[str] = set()
        for step in self.steps:
            if step.name in seen:
                raise ValueError(f"Job '{self.name}' has duplicate step name '{step.name}'")
            seen.add(step.name)


# ----------------------------------------------------------------------
# Run state
# ----------------------------------------------------------------------

class JobState(str, Enum):
    PENDING = "pending"
    READY = "ready"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def terminal(self) -> bool:
        return self in (JobState.SUCCEEDED, JobState.FAILED, JobState.SKIPPED)


class RunState(str, Enum):
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class FailureReason(str, Enum):
    STEP_FAILED = "step_failed"
    EXECUTOR_UNAVAILABLE = "executor_unavailable"
    UPSTREAM_FAILED = "upstream_failed"
    HALTED = "halted"


# Forward-only state machine
_TRANSITIONS: Dict[JobState, frozenset[JobState]] = {
    JobState.PENDING: frozenset({JobState.READY, JobState.SKIPPED}),
    JobState.READY: frozenset({JobState.RUNNING}),
    JobState.RUNNING: frozenset({JobState.SUCCEEDED, JobState.FAILED}),
    JobState.SUCCEEDED: frozenset(),
    JobState.FAILED: frozenset(),
    JobState.SKIPPED: frozenset(),
}


@dataclass(frozen=True)
class StepOutcome:
    step: str
    exit_code: int
    duration_ms: int
    log_ref: object = None
    reason: Optional[FailureReason] = None

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and self.reason is None


@dataclass
class JobRun:
    """Mutable record of one job's execution attempt."""
    name: str
    state: JobState = JobState.PENDING
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    steps: List[StepOutcome] = field(default_factory=list)
    reason: Optional[FailureReason] = None
    detail: Optional[str] = None

    def transition(self, target: JobState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise InvalidTransition(job=self.name, current=self.state.value, target=target.value)
        self.state = target
        if target is JobState.RUNNING:
            self.started_at = utcnow()
        elif target.terminal:
            self.finished_at = utcnow()

    @property
    def duration(self) -> Optional[timedelta]:
        if self.started_at is None or self.finished_at is None:
            return None
        return self.finished_at - self.started_at

    def summary(self) -> JobSummary:
        return JobSummary(
            name=self.name,
            state=self.state,
            started_at=self.started_at,
            finished_at=self.finished_at,
            reason=self.reason,
        )


@dataclass
class PipelineRun:
    """
    One execution attempt of every job in a graph.

    Created by the scheduler at run start and only mutated by it. Once
    `finalize()` has been called the run is read-only.
    """
    run_id: str
    graph: JobGraph
    jobs: Dict[str, JobRun] = field(default_factory=dict)
    state: RunState = RunState.RUNNING
    commit: Optional[str] = None
    branch: Optional[str] = None
    started_at: datetime = field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @classmethod
    def start(
        cls,
        run_id: str,
        graph: JobGraph,
        *,
        commit: Optional[str] = None,
        branch: Optional[str] = None,
    ) -> PipelineRun:
        jobs = {name: JobRun(name=name) for name in graph.names}
        return cls(run_id=run_id, graph=graph, jobs=jobs, commit=commit, branch=branch)

    @property
    def finished(self) -> bool:
        return self.state is not RunState.RUNNING

    @property
    def duration(self) -> Optional[timedelta]:
        if self.finished_at is None:
            return None
        return self.finished_at - self.started_at

    def by_state(self, state: JobState) -> List[str]:
        return [name for name, jr in self.jobs.items() if jr.state is state]

    def finalize(self) -> RunState:
        with self._lock:
            if self.finished:
                return self.state
            pending = [name for name, jr in self.jobs.items() if not jr.state.terminal]
            if pending:
                raise RuntimeError(f"Cannot finalize run {self.run_id}: jobs not finished: {pending}")

            if all(jr.state is JobState.SUCCEEDED for jr in self.jobs.values()):
                self.state = RunState.SUCCEEDED
            else:
                self.state = RunState.FAILED
            self.finished_at = utcnow()
            return self.state

    def summary(self) -> RunSummary:
        return RunSummary(
            run_id=self.run_id,
            state=self.state,
            commit=self.commit,
            branch=self.branch,
            started_at=self.started_at,
            finished_at=self.finished_at,
            jobs=tuple(self.jobs[name].summary() for name in self.graph.names),
        )


# ----------------------------------------------------------------------
# Ledger records
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class JobSummary:
    name: str
    state: JobState
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    reason: Optional[FailureReason] = None

    @property
    def duration(self) -> Optional[timedelta]:
        if self.started_at is None or self.finished_at is None:
            return None
        return self.finished_at - self.started_at


@dataclass(frozen=True)
class RunSummary:
    """What the ledger keeps about a finished run."""
    run_id: str
    state: RunState
    started_at: datetime
    finished_at: Optional[datetime]
    jobs: tuple[JobSummary, ...] = ()
    commit: Optional[str] = None
    branch: Optional[str] = None

    @property
    def duration(self) -> Optional[timedelta]:
        if self.finished_at is None:
            return None
        return self.finished_at - self.started_at

    @property
    def job_count(self) -> int:
        return len(self.jobs)

    def job_states(self) -> Dict[str, JobState]:
        return {j.name: j.state for j in self.jobs}
