from __future__ import annotations

from pathlib import Path

import pytest

from ciflow.errors import ExecutorUnavailable
from ciflow.executor import TIMEOUT_EXIT_CODE, ShellExecutor
from ciflow.model import Job, Step


def _job(*steps, env=None, runs_on=None):
    return Job(name="compile", steps=steps, env=env or {}, runs_on=runs_on)


def test_success_and_failure_exit_codes(tmp_path):
    ex = ShellExecutor(tmp_path)
    ok = Step(name="ok", run="true")
    bad = Step(name="bad", run="exit 3")
    assert ex.execute(_job(ok), ok).exit_code == 0
    result = ex.execute(_job(bad), bad)
    assert result.exit_code == 3
    assert result.duration_ms >= 0
    assert result.log_ref is None


def test_job_and_step_env_are_merged(tmp_path):
    step = Step(name="env", run='echo "$STAGE-$TARGET" > out.txt', env={"TARGET": "jar"})
    job = _job(step, env={"STAGE": "compile", "TARGET": "overridden"})
    assert ShellExecutor(tmp_path).execute(job, step).exit_code == 0
    assert (tmp_path / "out.txt").read_text().strip() == "compile-jar"


def test_step_cwd_is_relative_to_workdir(tmp_path):
    (tmp_path / "module").mkdir()
    step = Step(name="where", run="pwd > where.txt", cwd="module")
    ShellExecutor(tmp_path).execute(_job(step), step)
    assert (tmp_path / "module" / "where.txt").exists()


def test_missing_cwd_is_unavailable(tmp_path):
    step = Step(name="nowhere", run="true", cwd="does-not-exist")
    with pytest.raises(ExecutorUnavailable) as exc:
        ShellExecutor(tmp_path).execute(_job(step), step)
    assert exc.value.step == "nowhere"


def test_unsupported_environment_is_unavailable(tmp_path):
    step = Step(name="build", run="true")
    ex = ShellExecutor(tmp_path, environments=["ubuntu-latest"])
    assert ex.execute(_job(step, runs_on="ubuntu-latest"), step).exit_code == 0
    with pytest.raises(ExecutorUnavailable):
        ex.execute(_job(step, runs_on="windows-latest"), step)


def test_output_goes_to_log_file(tmp_path):
    step = Step(name="Build with Maven", run="echo building; echo oops >&2; exit 1")
    result = ShellExecutor(tmp_path, log_dir=tmp_path / "logs").execute(_job(step), step)
    assert result.exit_code == 1
    log = Path(result.log_ref)
    assert log.parent.name == "compile"
    assert log.name == "Build_with_Maven.log"
    text = log.read_text()
    assert "building" in text and "oops" in text


def test_timeout(tmp_path):
    step = Step(name="stuck", run="sleep 5")
    result = ShellExecutor(tmp_path, timeout=0.2).execute(_job(step), step)
    assert result.exit_code == TIMEOUT_EXIT_CODE
    assert result.duration_ms < 5000
