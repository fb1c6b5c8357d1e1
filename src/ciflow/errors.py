# errors.py
from __future__ import annotations

from dataclasses import dataclass


class PipelineError(Exception):
    """Base class for every error ciflow raises on purpose."""


class GraphError(PipelineError):
    """Raised while building the job graph. The run never starts."""


@dataclass
class CyclicDependency(GraphError):
    members: tuple[str, ...]

    def __str__(self) -> str:
        return f"Dependency cycle between jobs: {list(self.members)}"


@dataclass
class UnknownDependency(GraphError):
    job: str
    missing: str

    def __str__(self) -> str:
        return f"Job '{self.job}' needs missing job '{self.missing}'"


@dataclass
class DuplicateJob(GraphError):
    job: str

    def __str__(self) -> str:
        return f"Duplicate job name: {self.job}"


@dataclass
class StepFailure(PipelineError):
    job: str
    step: str
    exit_code: int

    def __str__(self) -> str:
        return f"[{self.job}] step '{self.step}' failed (exit={self.exit_code})"


@dataclass
class ExecutorUnavailable(PipelineError):
    """
    The step executor could not start a step at all (bad environment,
    missing working directory, no shell...). Propagates like a StepFailure
    but is recorded with its own reason code.
    """
    job: str
    step: str
    message: str

    def __str__(self) -> str:
        return f"[{self.job}] step '{self.step}' could not be executed: {self.message}"


@dataclass
class InvalidTransition(PipelineError):
    job: str
    current: str
    target: str

    def __str__(self) -> str:
        return f"Job '{self.job}' cannot move from {self.current} to {self.target}"


class LedgerError(PipelineError):
    pass


class WorkflowLoadError(PipelineError):
    pass
