# src/ciflow/dsl.py
from __future__ import annotations

from dataclasses import replace
from typing import Any, Callable, Dict, Iterable, List, Optional

from .model import Job, Step


# ---------------------------------------------------------------------
# Step helper
# ---------------------------------------------------------------------

def sh(
    name: str,
    cmd: str,
    *,
    env: Optional[Dict[str, Any]] = None,
    cwd: str | None = None,
) -> Step:
    """Create a shell step."""
    return Step(name=name, run=cmd, env=_str_env(env), cwd=cwd)


def _str_env(env: Optional[Dict[str, Any]]) -> Dict[str, str]:
    # force values to str, they end up in a process environment
    return {str(k): str(v) for k, v in (env or {}).items()}


# ---------------------------------------------------------------------
# Functional Job helper
# ---------------------------------------------------------------------

def job(
    name: str,
    *steps: Step,  # allow: job("x", sh(...), sh(...))
    steps_list: Optional[List[Step]] = None,  # allow: job("x", steps_list=[...])
    needs: Optional[List[str]] = None,
    env: Optional[Dict[str, Any]] = None,
    runs_on: Optional[str] = None,
    cwd: str | None = None,  # default cwd applied to steps missing cwd
) -> Job:
    steps_final: List[Step] = []
    if steps_list:
        steps_final.extend(steps_list)
    steps_final.extend(steps)

    if not steps_final:
        raise ValueError(f"job({name!r}) must have at least one step")

    if cwd is not None:
        steps_final = [s if s.cwd is not None else replace(s, cwd=cwd) for s in steps_final]

    return Job(
        name=name,
        steps=tuple(steps_final),
        needs=tuple(needs or ()),
        env=_str_env(env),
        runs_on=runs_on,
    )


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class JobBuilder:
    def __init__(self, name: str):
        self.name = name
        self._needs: list[str] = []
        self._steps: list[Step] = []
        self._env: dict[str, str] = {}
        self._runs_on: Optional[str] = None

    def depends_on(self, *job_names: str):
        self._needs.extend(job_names)
        return self

    def define_step(self, name: str, run: str, cwd: str | None = None, **env):
        self._steps.append(sh(name, run, env=env, cwd=cwd))
        return self

    step = define_step

    def with_env(self, **env):
        self._env.update(_str_env(env))
        return self

    def runs_on(self, environment: str):
        self._runs_on = environment
        return self

    def build(self) -> Job:
        if not self._steps:
            raise ValueError(f"Job '{self.name}' has no steps")
        return Job(
            name=self.name,
            steps=tuple(self._steps),
            needs=tuple(self._needs),
            env=dict(self._env),
            runs_on=self._runs_on,
        )


def build(name: str) -> JobBuilder:
    """Convenience: build('test').define_step(...).build()"""
    return JobBuilder(name)


# ---------------------------------------------------------------------
# Matrix
# ---------------------------------------------------------------------

class Matrix:
    """
    Minimal matrix expander.

    Example:
        matrix("py", ["3.10","3.11"]).jobs(
            lambda v: job(f"test-py{v}", sh(...))
        )
    """
    def __init__(self, key: str, values: Iterable[Any]):
        self.key = key
        self.values = list(values)

    def jobs(self, builder: Callable[[Any], Job]) -> List[Job]:
        return [builder(v) for v in self.values]


def matrix(key: str, values: Iterable[Any]) -> Matrix:
    return Matrix(key, values)


# ---------------------------------------------------------------------
# Workflow helper (single-file story)
# ---------------------------------------------------------------------

def wf(*jobs: Job | List[Job]) -> List[Job]:
    """
    Workflow definition helper. Matrix expansions (lists of jobs) are
    flattened in place.

        from ciflow import wf, job, sh

        def workflow():
            return wf(
                job("compile", sh("Build", "mvn -B package")),
                job("security-scan", sh("Scan", "trivy fs ."), needs=["compile"]),
            )
    """
    out: List[Job] = []
    for item in jobs:
        if isinstance(item, Job):
            out.append(item)
        else:
            out.extend(item)
    return out
