# runner.py
from __future__ import annotations

import uuid
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from enum import Enum
from typing import Dict, Iterable, List, Optional, Union

from .dag import JobGraph, build_graph
from .errors import ExecutorUnavailable, StepFailure
from .executor import ShellExecutor, StepExecutor
from .model import FailureReason, Job, JobRun, JobState, PipelineRun, StepOutcome
from .ui.console import Console, get_console


class FailurePolicy(str, Enum):
    # skip everything downstream of a failed job, keep running the rest
    FAIL_FAST = "fail-fast"
    # additionally stop dispatching anything new after the first failure
    HALT = "halt"


def new_run_id() -> str:
    return uuid.uuid4().hex


# ----------------------------------------------------------------------
# Job execution (runs on a worker thread)
# ----------------------------------------------------------------------

def _run_job(job: Job, jr: JobRun, executor: StepExecutor, console: Console) -> None:
    """
    Run the steps of one job in order and stop at the first failure.

    Never raises for step-level problems: the outcome is written to `jr`,
    which this thread owns until the job reaches a terminal state.
    """
    jr.transition(JobState.RUNNING)
    console.print_job_start(job.name)

    for step in job.steps:
        console.print_step(job.name, step.name)
        try:
            result = executor.execute(job, step)
            exit_code = int(result.exit_code)
            duration_ms = int(result.duration_ms)
            log_ref = result.log_ref
        except ExecutorUnavailable as e:
            _fail(jr, StepOutcome(step=step.name, exit_code=-1, duration_ms=0,
                                  reason=FailureReason.EXECUTOR_UNAVAILABLE), str(e))
            console.print_failure(job.name, str(e), is_job=True)
            return
        except Exception as e:
            # a broken executor (raising, or returning something that is not
            # a StepResult) is treated like an unavailable one
            err = ExecutorUnavailable(job=job.name, step=step.name, message=f"{type(e).__name__}: {e}")
            _fail(jr, StepOutcome(step=step.name, exit_code=-1, duration_ms=0,
                                  reason=FailureReason.EXECUTOR_UNAVAILABLE), str(err))
            console.print_failure(job.name, str(err), is_job=True)
            return

        if exit_code != 0:
            failure = StepFailure(job=job.name, step=step.name, exit_code=exit_code)
            _fail(jr, StepOutcome(step=step.name, exit_code=exit_code,
                                  duration_ms=duration_ms, log_ref=log_ref,
                                  reason=FailureReason.STEP_FAILED), str(failure))
            console.print_failure(step.name, str(failure), exit_code=exit_code)
            return

        jr.steps.append(StepOutcome(step=step.name, exit_code=0,
                                    duration_ms=duration_ms, log_ref=log_ref))

    jr.transition(JobState.SUCCEEDED)
    console.print_job_success(job.name, jr.duration)


def _fail(jr: JobRun, outcome: StepOutcome, detail: str) -> None:
    jr.steps.append(outcome)
    jr.reason = outcome.reason
    jr.detail = detail
    jr.transition(JobState.FAILED)


# ----------------------------------------------------------------------
# Scheduler
# ----------------------------------------------------------------------

class Scheduler:
    """
    Runs every job of a graph as soon as all the jobs it needs succeeded.

    One coordinating loop (the thread calling `run`) makes every
    eligibility decision; worker threads only execute jobs. When a job
    finishes, the remaining-needs counter of each direct dependent is
    decremented, and a dependent whose counter hits zero is dispatched.

    Args:
        executor: runs individual steps
        max_workers: optional cap on concurrently running jobs; by default
                     every ready job gets a worker
        policy: what happens to the rest of the run when a job fails
        console: progress output (defaults to the global console)
    """

    def __init__(
        self,
        executor: StepExecutor,
        *,
        max_workers: Optional[int] = None,
        policy: FailurePolicy = FailurePolicy.FAIL_FAST,
        console: Optional[Console] = None,
    ):
        if max_workers is not None and max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")
        self.executor = executor
        self.max_workers = max_workers
        self.policy = FailurePolicy(policy)
        self.console = console

    def run(
        self,
        jobs: Union[JobGraph, Iterable[Job]],
        *,
        run_id: Optional[str] = None,
        commit: Optional[str] = None,
        branch: Optional[str] = None,
    ) -> PipelineRun:
        """
        Execute a whole run and return the finalized PipelineRun.

        Graph errors (cycles, unknown or duplicate jobs) raise before any
        job starts. Job failures never raise; they are recorded on the run.
        """
        graph = jobs if isinstance(jobs, JobGraph) else build_graph(jobs)
        console = self.console or get_console()
        run = PipelineRun.start(run_id or new_run_id(), graph, commit=commit, branch=branch)

        console.print_debug(f"run {run.run_id}: order {list(graph.order)}")
        console.print_plan(graph.levels())

        if len(graph):
            self._drive(run, console)

        run.finalize()
        return run

    def _drive(self, run: PipelineRun, console: Console) -> None:
        graph = run.graph
        remaining: Dict[str, int] = {name: len(graph.needs[name]) for name in graph.names}
        ready: List[str] = [name for name in graph.order if remaining[name] == 0]
        in_flight: Dict[Future, str] = {}
        halted = False

        workers = self.max_workers or len(graph)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="ciflow-job") as pool:
            while ready or in_flight:
                # the cap is enforced here rather than by the pool queue, so a
                # job only becomes READY once a worker is free for it
                while ready and not halted and len(in_flight) < workers:
                    name = ready.pop(0)
                    jr = run.jobs[name]
                    jr.transition(JobState.READY)
                    fut = pool.submit(_run_job, graph[name], jr, self.executor, console)
                    in_flight[fut] = name

                if not in_flight:
                    break

                done, _ = wait(list(in_flight), return_when=FIRST_COMPLETED)
                for fut in done:
                    # _run_job records job failures itself; anything raised here is a bug
                    fut.result()
                # settle finished jobs in declaration order so the next
                # dispatch batch does not depend on thread timing
                for name in graph.sorted_names(in_flight.pop(f) for f in done):
                    self._settle(run, name, remaining, ready, console)
                    if run.jobs[name].state is JobState.FAILED and self.policy is FailurePolicy.HALT:
                        halted = True

        # only reachable with HALT: ready/pending jobs that were never dispatched
        for name in graph.names:
            jr = run.jobs[name]
            if jr.state is JobState.PENDING:
                jr.reason = FailureReason.HALTED
                jr.detail = "run halted after an earlier failure"
                jr.transition(JobState.SKIPPED)
                console.print_job_skipped(name, FailureReason.HALTED.value)

    def _settle(
        self,
        run: PipelineRun,
        name: str,
        remaining: Dict[str, int],
        ready: List[str],
        console: Console,
    ) -> None:
        graph = run.graph
        jr = run.jobs[name]

        if jr.state is JobState.SUCCEEDED:
            for child in graph.sorted_names(graph.dependents[name]):
                remaining[child] -= 1
                if remaining[child] == 0 and run.jobs[child].state is JobState.PENDING:
                    ready.append(child)
            return

        # failed: nothing downstream can ever have all its needs succeed
        for child in graph.sorted_names(graph.downstream_of(name)):
            cr = run.jobs[child]
            if cr.state is JobState.PENDING:
                cr.reason = FailureReason.UPSTREAM_FAILED
                cr.detail = f"needs '{name}' which failed"
                cr.transition(JobState.SKIPPED)
                console.print_job_skipped(child, f"{FailureReason.UPSTREAM_FAILED.value}: {name}")


def run_pipeline(
    jobs: Union[JobGraph, Iterable[Job]],
    executor: Optional[StepExecutor] = None,
    **kwargs,
) -> PipelineRun:
    """Convenience: run jobs with a default ShellExecutor in the cwd."""
    run_kwargs = {k: kwargs.pop(k) for k in ("run_id", "commit", "branch") if k in kwargs}
    scheduler = Scheduler(executor or ShellExecutor("."), **kwargs)
    return scheduler.run(jobs, **run_kwargs)
