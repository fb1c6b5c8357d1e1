from __future__ import annotations

import threading
import time

import pytest

from ciflow.errors import ExecutorUnavailable
from ciflow.executor import StepResult
from ciflow.model import Job, Step
from ciflow.ui.console import Console


class FakeExecutor:
    """
    Scripted step executor.

    exit_codes:  {(job, step): code}, default 0
    delays:      {job: seconds} slept before every step of that job
    unavailable: {(job, step)} raising ExecutorUnavailable
    """

    def __init__(self, exit_codes=None, delays=None, unavailable=()):
        self.exit_codes = dict(exit_codes or {})
        self.delays = dict(delays or {})
        self.unavailable = set(unavailable)
        self.calls: list[tuple[str, str]] = []
        self._lock = threading.Lock()

    def execute(self, job: Job, step: Step) -> StepResult:
        with self._lock:
            self.calls.append((job.name, step.name))
        if (job.name, step.name) in self.unavailable:
            raise ExecutorUnavailable(job=job.name, step=step.name, message="no runner for this job")
        delay = self.delays.get(job.name, 0.0)
        if delay:
            time.sleep(delay)
        code = self.exit_codes.get((job.name, step.name), 0)
        return StepResult(exit_code=code, duration_ms=int(delay * 1000), log_ref=f"{job.name}/{step.name}")

    def steps_of(self, job_name: str) -> list[str]:
        return [s for j, s in self.calls if j == job_name]


def make_job(name, *needs, steps=("run",), env=None):
    return Job(
        name=name,
        steps=tuple(Step(name=s, run=f"echo {name} {s}") for s in steps),
        needs=tuple(needs),
        env=env or {},
    )


@pytest.fixture
def console() -> Console:
    return Console(quiet=True)


@pytest.fixture
def fake_executor() -> FakeExecutor:
    return FakeExecutor()
