from __future__ import annotations

import threading

import pytest

from ciflow.dag import build_graph
from ciflow.errors import CyclicDependency, InvalidTransition, UnknownDependency
from ciflow.executor import StepResult
from ciflow.model import FailureReason, JobRun, JobState, RunState
from ciflow.runner import FailurePolicy, Scheduler, run_pipeline

from conftest import FakeExecutor, make_job


def _pipeline():
    return [
        make_job("compile", steps=("checkout", "mvn package")),
        make_job("security-scan", "compile", steps=("trivy", "gitleaks")),
    ]


def test_compile_then_scan_succeeds(fake_executor, console):
    run = Scheduler(fake_executor, console=console).run(_pipeline())

    assert run.state is RunState.SUCCEEDED
    assert len(run.jobs) == 2
    assert all(jr.state is JobState.SUCCEEDED for jr in run.jobs.values())
    assert run.jobs["compile"].finished_at <= run.jobs["security-scan"].started_at
    assert fake_executor.calls == [
        ("compile", "checkout"),
        ("compile", "mvn package"),
        ("security-scan", "trivy"),
        ("security-scan", "gitleaks"),
    ]
    assert [s.step for s in run.jobs["security-scan"].steps] == ["trivy", "gitleaks"]
    assert run.duration is not None


def test_failing_first_step_short_circuits_and_skips_downstream(console):
    executor = FakeExecutor(exit_codes={("compile", "checkout"): 1})
    run = Scheduler(executor, console=console).run(_pipeline())

    assert run.state is RunState.FAILED
    compile_run = run.jobs["compile"]
    assert compile_run.state is JobState.FAILED
    assert compile_run.reason is FailureReason.STEP_FAILED
    assert executor.steps_of("compile") == ["checkout"]
    assert [s.exit_code for s in compile_run.steps] == [1]
    assert "checkout" in compile_run.detail

    scan = run.jobs["security-scan"]
    assert scan.state is JobState.SKIPPED
    assert scan.reason is FailureReason.UPSTREAM_FAILED
    assert scan.started_at is None
    assert executor.steps_of("security-scan") == []


def test_empty_run_is_succeeded(fake_executor, console):
    run = Scheduler(fake_executor, console=console).run([])
    assert run.state is RunState.SUCCEEDED
    assert run.jobs == {}
    assert fake_executor.calls == []


def test_diamond_failure_only_skips_what_needs_the_failed_job(console):
    jobs = [
        make_job("A"),
        make_job("B", "A"),
        make_job("C", "A"),
        make_job("D", "B", "C"),
    ]
    executor = FakeExecutor(exit_codes={("B", "run"): 2}, delays={"C": 0.05})
    run = Scheduler(executor, console=console).run(jobs)

    states = {name: jr.state for name, jr in run.jobs.items()}
    assert states == {
        "A": JobState.SUCCEEDED,
        "B": JobState.FAILED,
        "C": JobState.SUCCEEDED,
        "D": JobState.SKIPPED,
    }
    assert run.jobs["D"].reason is FailureReason.UPSTREAM_FAILED
    assert executor.steps_of("D") == []
    assert run.state is RunState.FAILED


def test_transitive_skip(console):
    jobs = [make_job("a"), make_job("b", "a"), make_job("c", "b"), make_job("d", "c"), make_job("free")]
    executor = FakeExecutor(exit_codes={("a", "run"): 1})
    run = Scheduler(executor, console=console).run(jobs)

    assert run.by_state(JobState.SKIPPED) == ["b", "c", "d"]
    assert run.jobs["free"].state is JobState.SUCCEEDED


def test_no_job_starts_before_its_needs_succeed(console):
    jobs = [
        make_job("a", steps=("one", "two")),
        make_job("b", "a"),
        make_job("c", "a"),
        make_job("d", "b", "c"),
        make_job("e", "a", "d"),
        make_job("f"),
        make_job("g", "f", "b"),
    ]
    executor = FakeExecutor(delays={"a": 0.02, "c": 0.03, "f": 0.01})
    run = Scheduler(executor, console=console).run(jobs)

    assert run.state is RunState.SUCCEEDED
    for name in run.graph.names:
        jr = run.jobs[name]
        for dep in run.graph.needs[name]:
            dep_run = run.jobs[dep]
            assert dep_run.state is JobState.SUCCEEDED
            assert dep_run.finished_at <= jr.started_at


def test_independent_jobs_run_concurrently(console):
    barrier = threading.Barrier(3, timeout=5)

    class BarrierExecutor:
        def execute(self, job, step):
            # only returns if all three jobs are inside a step at once
            barrier.wait()
            return StepResult(exit_code=0, duration_ms=0)

    run = Scheduler(BarrierExecutor(), console=console).run([make_job("x"), make_job("y"), make_job("z")])
    assert run.state is RunState.SUCCEEDED


def test_max_workers_caps_concurrency(console):
    active = 0
    peak = 0
    lock = threading.Lock()

    class CountingExecutor(FakeExecutor):
        def execute(self, job, step):
            nonlocal active, peak
            with lock:
                active += 1
                peak = max(peak, active)
            try:
                return super().execute(job, step)
            finally:
                with lock:
                    active -= 1

    executor = CountingExecutor(delays={"a": 0.02, "b": 0.02, "c": 0.02})
    run = Scheduler(executor, max_workers=1, console=console).run([make_job("a"), make_job("b"), make_job("c")])
    assert run.state is RunState.SUCCEEDED
    assert peak == 1


def test_executor_unavailable_is_recorded_with_own_reason(console):
    executor = FakeExecutor(unavailable={("compile", "checkout")})
    run = Scheduler(executor, console=console).run(_pipeline())

    compile_run = run.jobs["compile"]
    assert compile_run.state is JobState.FAILED
    assert compile_run.reason is FailureReason.EXECUTOR_UNAVAILABLE
    assert compile_run.steps[-1].reason is FailureReason.EXECUTOR_UNAVAILABLE
    assert executor.steps_of("compile") == ["checkout"]
    assert run.jobs["security-scan"].state is JobState.SKIPPED
    assert run.state is RunState.FAILED


def test_crashing_executor_does_not_escape_the_scheduler(console):
    class Broken:
        def execute(self, job, step):
            raise RuntimeError("docker daemon went away")

    run = Scheduler(Broken(), console=console).run([make_job("solo")])
    assert run.state is RunState.FAILED
    assert run.jobs["solo"].reason is FailureReason.EXECUTOR_UNAVAILABLE
    assert "docker daemon went away" in run.jobs["solo"].detail


def test_executor_returning_garbage_does_not_escape_the_scheduler(console):
    class ReturnsNothing:
        def execute(self, job, step):
            return None

    run = Scheduler(ReturnsNothing(), console=console).run([make_job("solo"), make_job("next", "solo")])
    assert run.state is RunState.FAILED
    assert run.jobs["solo"].state is JobState.FAILED
    assert run.jobs["solo"].reason is FailureReason.EXECUTOR_UNAVAILABLE
    assert run.jobs["next"].state is JobState.SKIPPED
    assert run.jobs["next"].reason is FailureReason.UPSTREAM_FAILED


def test_graph_errors_raise_before_anything_runs(fake_executor, console):
    scheduler = Scheduler(fake_executor, console=console)
    with pytest.raises(CyclicDependency):
        scheduler.run([make_job("ok"), make_job("a", "b"), make_job("b", "a")])
    with pytest.raises(UnknownDependency):
        scheduler.run([make_job("ok"), make_job("a", "nope")])
    assert fake_executor.calls == []


def test_halt_policy_stops_dispatching_after_failure(console):
    jobs = [make_job("bad"), make_job("slow"), make_job("after-slow", "slow")]
    executor = FakeExecutor(exit_codes={("bad", "run"): 1}, delays={"slow": 0.2})
    run = Scheduler(executor, policy=FailurePolicy.HALT, console=console).run(jobs)

    assert run.jobs["bad"].state is JobState.FAILED
    # already running when the failure happened, so it finishes
    assert run.jobs["slow"].state is JobState.SUCCEEDED
    assert run.jobs["after-slow"].state is JobState.SKIPPED
    assert run.jobs["after-slow"].reason is FailureReason.HALTED
    assert run.state is RunState.FAILED


def test_halt_policy_with_capped_workers_skips_queued_jobs(console):
    executor = FakeExecutor(exit_codes={("bad", "run"): 1})
    run = Scheduler(executor, max_workers=1, policy=FailurePolicy.HALT, console=console).run(
        [make_job("bad"), make_job("x"), make_job("y")]
    )

    assert executor.calls == [("bad", "run")]
    for name in ("x", "y"):
        assert run.jobs[name].state is JobState.SKIPPED
        assert run.jobs[name].reason is FailureReason.HALTED
    assert run.state is RunState.FAILED


def test_jobs_waiting_for_a_worker_stay_pending(console):
    runs = []
    snapshots = []

    class CapturingScheduler(Scheduler):
        def _drive(self, run, console):
            runs.append(run)
            super()._drive(run, console)

    class SnapshotExecutor(FakeExecutor):
        def execute(self, job, step):
            snapshots.append({name: jr.state for name, jr in runs[0].jobs.items()})
            return super().execute(job, step)

    run = CapturingScheduler(SnapshotExecutor(), max_workers=1, console=console).run(
        [make_job("a"), make_job("b"), make_job("c")]
    )

    assert run.state is RunState.SUCCEEDED
    assert snapshots[0] == {"a": JobState.RUNNING, "b": JobState.PENDING, "c": JobState.PENDING}
    for snap in snapshots:
        assert list(snap.values()).count(JobState.READY) == 0


def test_fail_fast_keeps_running_unrelated_jobs(console):
    jobs = [make_job("bad"), make_job("slow"), make_job("after-slow", "slow")]
    executor = FakeExecutor(exit_codes={("bad", "run"): 1}, delays={"slow": 0.05})
    run = Scheduler(executor, console=console).run(jobs)

    assert run.jobs["after-slow"].state is JobState.SUCCEEDED
    assert run.state is RunState.FAILED


def test_accepts_prebuilt_graph_and_labels(fake_executor, console):
    graph = build_graph(_pipeline())
    run = Scheduler(fake_executor, console=console).run(graph, run_id="r-1", commit="abc123", branch="main")
    assert run.graph is graph
    assert (run.run_id, run.commit, run.branch) == ("r-1", "abc123", "main")
    summary = run.summary()
    assert summary.job_states() == {"compile": JobState.SUCCEEDED, "security-scan": JobState.SUCCEEDED}


def test_run_pipeline_helper(fake_executor, console):
    run = run_pipeline(_pipeline(), fake_executor, console=console, run_id="fixed")
    assert run.run_id == "fixed"
    assert run.state is RunState.SUCCEEDED


def test_invalid_max_workers(fake_executor):
    with pytest.raises(ValueError):
        Scheduler(fake_executor, max_workers=0)


def test_job_run_only_moves_forward():
    jr = JobRun(name="compile")
    jr.transition(JobState.READY)
    jr.transition(JobState.RUNNING)
    jr.transition(JobState.SUCCEEDED)
    with pytest.raises(InvalidTransition):
        jr.transition(JobState.RUNNING)

    pending = JobRun(name="scan")
    with pytest.raises(InvalidTransition):
        pending.transition(JobState.RUNNING)
