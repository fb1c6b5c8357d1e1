# executor.py
from __future__ import annotations

import contextlib
import os
import re
import signal
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional, Protocol

from .errors import ExecutorUnavailable
from .model import Job, Step

# Exit code reported when a step runs past its timeout (same as coreutils `timeout`)
TIMEOUT_EXIT_CODE = 124


@dataclass(frozen=True)
class StepResult:
    exit_code: int
    duration_ms: int
    log_ref: object = None


class StepExecutor(Protocol):
    """
    Runs one step to completion.

    Must return a StepResult (non-zero exit code == failure) or raise
    ExecutorUnavailable when the step cannot be started at all. Called from
    worker threads, so implementations must be thread-safe.
    """

    def execute(self, job: Job, step: Step) -> StepResult:
        ...


def _safe_name(name: str) -> str:
    return re.sub(r"[^A-Za-z0-9_.-]+", "_", name)


class ShellExecutor:
    """
    Runs steps as local shell commands.

    Args:
        workdir: directory step `cwd`s are resolved against
        log_dir: if set, stdout+stderr of every step is written there and the
                 file path becomes the step's log_ref
        timeout: seconds a single step may run; None means no limit
        environments: `runs_on` descriptors this executor can serve; None
                      accepts anything
    """

    def __init__(
        self,
        workdir: str | Path = ".",
        *,
        log_dir: str | Path | None = None,
        timeout: Optional[float] = None,
        environments: Optional[Iterable[str]] = None,
    ):
        self.workdir = Path(workdir).resolve()
        self.log_dir = Path(log_dir) if log_dir is not None else None
        self.timeout = timeout
        self.environments = frozenset(environments) if environments is not None else None

    def execute(self, job: Job, step: Step) -> StepResult:
        if self.environments is not None and job.runs_on is not None:
            if job.runs_on not in self.environments:
                raise ExecutorUnavailable(
                    job=job.name,
                    step=step.name,
                    message=f"unsupported environment {job.runs_on!r}",
                )

        cwd = (self.workdir / (step.cwd or ".")).resolve()
        if not cwd.is_dir():
            raise ExecutorUnavailable(job=job.name, step=step.name, message=f"cwd not found: {cwd}")

        env = os.environ.copy()
        env.update(job.env)
        env.update(step.env)

        start = time.monotonic()
        try:
            # own process group, so a timeout takes down everything the shell started
            proc = subprocess.Popen(
                step.run,
                shell=True,
                cwd=str(cwd),
                env=env,
                text=True,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as e:
            raise ExecutorUnavailable(job=job.name, step=step.name, message=str(e)) from e

        try:
            stdout, stderr = proc.communicate(timeout=self.timeout)
            exit_code = proc.returncode
            output = (stdout or "") + (stderr or "")
        except subprocess.TimeoutExpired:
            with contextlib.suppress(ProcessLookupError):  # already exited
                os.killpg(proc.pid, signal.SIGKILL)
            stdout, stderr = proc.communicate()
            exit_code = TIMEOUT_EXIT_CODE
            output = (stdout or "") + (stderr or "") + f"\nstep timed out after {self.timeout}s\n"
        duration_ms = int((time.monotonic() - start) * 1000)

        return StepResult(
            exit_code=exit_code,
            duration_ms=duration_ms,
            log_ref=self._write_log(job, step, output),
        )

    def _write_log(self, job: Job, step: Step, output: str) -> Optional[str]:
        if self.log_dir is None:
            return None
        path = self.log_dir / _safe_name(job.name) / f"{_safe_name(step.name)}.log"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(output, encoding="utf-8")
        return str(path)
