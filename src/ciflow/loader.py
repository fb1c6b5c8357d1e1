# loader.py
from __future__ import annotations

import json
import runpy
from pathlib import Path
from typing import Any, Dict, List

from .errors import WorkflowLoadError
from .model import Job, Step


# ----------------------------------------------------------------------
# Dict form: {id, dependsOn, runsOn, env, steps: [{id, command, env}]}
# ----------------------------------------------------------------------

def step_from_dict(data: Dict[str, Any]) -> Step:
    try:
        name = data.get("id", data.get("name"))
        run = data.get("command", data.get("run"))
        if name is None or run is None:
            raise KeyError("id" if name is None else "command")
        return Step(
            name=str(name),
            run=str(run),
            env={str(k): str(v) for k, v in (data.get("env") or {}).items()},
            cwd=data.get("cwd"),
        )
    except (KeyError, AttributeError, TypeError) as e:
        raise WorkflowLoadError(f"Invalid step definition {data!r}: {e}") from e


def job_from_dict(data: Dict[str, Any]) -> Job:
    """
    Convert a job dictionary to a Job. Accepts both the camelCase
    interchange keys (id, dependsOn, runsOn) and the Python field names.
    """
    if not isinstance(data, dict):
        raise WorkflowLoadError(f"Job definition must be an object, got {type(data).__name__}")

    name = data.get("id", data.get("name"))
    if not name:
        raise WorkflowLoadError(f"Job definition without id: {data!r}")

    needs = data.get("dependsOn", data.get("needs")) or []
    if isinstance(needs, str):
        needs = [needs]
    if not isinstance(needs, (list, tuple)):
        raise WorkflowLoadError(f"dependsOn of job '{name}' must be a list of job ids, got {type(needs).__name__}")

    try:
        return Job(
            name=str(name),
            steps=tuple(step_from_dict(s) for s in data.get("steps") or []),
            needs=tuple(str(n) for n in needs),
            env={str(k): str(v) for k, v in (data.get("env") or {}).items()},
            runs_on=data.get("runsOn", data.get("runs_on")),
        )
    except (ValueError, TypeError, AttributeError) as e:
        raise WorkflowLoadError(str(e)) from e


def job_to_dict(job: Job) -> Dict[str, Any]:
    """Reverse of job_from_dict(), using the interchange keys."""
    steps = []
    for step in job.steps:
        step_dict: Dict[str, Any] = {"id": step.name, "command": step.run, "env": dict(step.env)}
        if step.cwd is not None:
            step_dict["cwd"] = step.cwd
        steps.append(step_dict)

    job_dict: Dict[str, Any] = {
        "id": job.name,
        "dependsOn": list(job.needs),
        "steps": steps,
    }
    if job.env:
        job_dict["env"] = dict(job.env)
    if job.runs_on is not None:
        job_dict["runsOn"] = job.runs_on
    return job_dict


# ----------------------------------------------------------------------
# Workflow loading (local file)
# ----------------------------------------------------------------------

def load_workflow(path: str | Path) -> List[Job]:
    """
    Load a workflow from a file path.

    A .py file must define either:
      - workflow() -> List[Job]
      - JOBS = [Job, ...]

    A .json file holds a list of job objects, or {"jobs": [...]}.
    """
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise WorkflowLoadError(f"Workflow file not found: {wf_path}")

    if wf_path.suffix == ".json":
        return _load_json(wf_path)
    if wf_path.suffix != ".py":
        raise WorkflowLoadError(f"Workflow must be a .py or .json file, got: {wf_path.name}")

    module_name = f"ciflow_workflow_{wf_path.stem}"
    try:
        globals_dict = runpy.run_path(str(wf_path), run_name=module_name)
    except Exception as e:
        raise WorkflowLoadError(f"Failed to execute {wf_path.name}: {type(e).__name__}: {e}") from e

    jobs = None
    if "workflow" in globals_dict and callable(globals_dict["workflow"]):
        try:
            jobs = globals_dict["workflow"]()
        except TypeError as e:
            if "positional argument" in str(e):
                raise WorkflowLoadError(
                    "Your workflow() is being called with arguments (name collision with a helper). "
                    "Use the 'wf' helper instead: `from ciflow import wf, job, sh` then "
                    "`def workflow(): return wf(job(...), job(...))`"
                ) from e
            raise WorkflowLoadError(f"workflow() in {wf_path.name} failed: {e}") from e
        except Exception as e:
            raise WorkflowLoadError(f"workflow() in {wf_path.name} failed: {type(e).__name__}: {e}") from e
    elif "JOBS" in globals_dict:
        jobs = globals_dict["JOBS"]

    if not isinstance(jobs, list) or not all(isinstance(j, Job) for j in jobs):
        raise WorkflowLoadError(
            "Workflow must return/define a List[Job]. "
            "Define workflow() -> List[Job] or JOBS = [Job, ...]."
        )

    return jobs


def _load_json(path: Path) -> List[Job]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise WorkflowLoadError(f"Invalid JSON in {path.name}: {e}") from e

    if isinstance(data, dict):
        data = data.get("jobs")
    if not isinstance(data, list):
        raise WorkflowLoadError(f"{path.name} must hold a list of jobs or {{\"jobs\": [...]}}")
    return [job_from_dict(d) for d in data]
