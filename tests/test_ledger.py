from __future__ import annotations

from datetime import timedelta

import pytest

from ciflow.dag import build_graph
from ciflow.errors import LedgerError
from ciflow.ledger.memory import MemoryLedger
from ciflow.ledger.sql import SqlLedger
from ciflow.ledger.stats import run_stats
from ciflow.model import FailureReason, JobState, PipelineRun, RunState
from ciflow.runner import Scheduler

from conftest import FakeExecutor, make_job


@pytest.fixture(params=["memory", "sql"])
def ledger(request, tmp_path):
    if request.param == "memory":
        yield MemoryLedger()
    else:
        led = SqlLedger(f"sqlite:///{tmp_path / 'ledger.db'}")
        yield led
        led.close()


def _run(console, run_id, fail=False):
    jobs = [make_job("compile"), make_job("security-scan", "compile")]
    codes = {("compile", "run"): 1} if fail else {}
    return Scheduler(FakeExecutor(exit_codes=codes), console=console).run(
        jobs, run_id=run_id, commit="0badc0de", branch="main"
    )


def test_record_and_get(ledger, console):
    run = _run(console, "run-1", fail=True)
    ledger.record_run(run)

    summary = ledger.get_run("run-1")
    assert summary.run_id == "run-1"
    assert summary.state is RunState.FAILED
    assert (summary.commit, summary.branch) == ("0badc0de", "main")
    assert summary.job_count == 2
    assert summary.job_states() == {"compile": JobState.FAILED, "security-scan": JobState.SKIPPED}
    assert summary.jobs[1].reason is FailureReason.UPSTREAM_FAILED
    assert summary.started_at == run.started_at
    assert summary.finished_at == run.finished_at
    assert summary.duration == run.duration


def test_write_once(ledger, console):
    run = _run(console, "run-1")
    ledger.record_run(run)
    with pytest.raises(LedgerError):
        ledger.record_run(run)
    assert [r.run_id for r in ledger.list_runs()] == ["run-1"]


def test_unfinished_runs_are_rejected(ledger):
    run = PipelineRun.start("in-progress", build_graph([make_job("compile")]))
    with pytest.raises(LedgerError):
        ledger.record_run(run)


def test_unknown_run(ledger):
    with pytest.raises(LedgerError):
        ledger.get_run("missing")


def test_most_recent_first_and_restartable(ledger, console):
    for i in range(4):
        ledger.record_run(_run(console, f"run-{i}"))

    history = ledger.list_runs()
    expected = ["run-3", "run-2", "run-1", "run-0"]
    assert [r.run_id for r in history] == expected
    # a second pass starts over
    assert [r.run_id for r in history] == expected
    assert [r.run_id for r in history.take(2)] == ["run-3", "run-2"]


def test_history_is_lazy(ledger, console):
    history = ledger.list_runs()
    ledger.record_run(_run(console, "late"))
    assert [r.run_id for r in history] == ["late"]


def test_sql_ledger_is_durable(tmp_path, console):
    url = f"sqlite:///{tmp_path / 'ledger.db'}"
    first = SqlLedger(url)
    first.record_run(_run(console, "persisted"))
    first.close()

    second = SqlLedger(url)
    try:
        assert [r.run_id for r in second.list_runs()] == ["persisted"]
        assert second.get_run("persisted").finished_at.tzinfo is not None
    finally:
        second.close()


def test_run_stats(ledger, console):
    ledger.record_run(_run(console, "a"))
    ledger.record_run(_run(console, "b", fail=True))
    ledger.record_run(_run(console, "c"))
    ledger.record_run(_run(console, "d", fail=True))

    stats = run_stats(ledger.list_runs())
    assert (stats.total, stats.succeeded, stats.failed) == (4, 2, 2)
    assert stats.success_rate == 0.5
    assert stats.job_failures == {"compile": 2}
    assert stats.mean_duration is not None and stats.mean_duration >= timedelta(0)

    recent = run_stats(ledger.list_runs(), limit=1)
    assert (recent.total, recent.failed) == (1, 1)


def test_run_stats_empty():
    stats = run_stats([])
    assert stats.total == 0
    assert stats.success_rate is None
    assert stats.mean_duration is None
