from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import FastAPI, HTTPException, Query
from pydantic import BaseModel

from ..errors import LedgerError
from ..ledger.base import RunLedger
from ..ledger.stats import run_stats
from ..model import JobSummary, RunSummary

# -------------------- Schemas --------------------

class JobOut(BaseModel):
    name: str
    status: str
    reason: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    duration_s: Optional[float] = None

class RunOut(BaseModel):
    run_id: str
    status: str
    commit: Optional[str] = None
    branch: Optional[str] = None
    started_at: datetime
    finished_at: Optional[datetime] = None
    duration_s: Optional[float] = None
    job_count: int
    jobs: list[JobOut]

class StatsOut(BaseModel):
    total: int
    succeeded: int
    failed: int
    success_rate: Optional[float] = None
    mean_duration_s: Optional[float] = None
    job_failures: dict[str, int]


def _job_out(j: JobSummary) -> JobOut:
    return JobOut(
        name=j.name,
        status=j.state.value,
        reason=j.reason.value if j.reason else None,
        started_at=j.started_at,
        finished_at=j.finished_at,
        duration_s=j.duration.total_seconds() if j.duration is not None else None,
    )

def _run_out(r: RunSummary) -> RunOut:
    return RunOut(
        run_id=r.run_id,
        status=r.state.value,
        commit=r.commit,
        branch=r.branch,
        started_at=r.started_at,
        finished_at=r.finished_at,
        duration_s=r.duration.total_seconds() if r.duration is not None else None,
        job_count=r.job_count,
        jobs=[_job_out(j) for j in r.jobs],
    )

# -------------------- App --------------------

def create_app(ledger: RunLedger) -> FastAPI:
    """Read-only reporting API over a run ledger."""
    app = FastAPI(title="ciflow run ledger")

    @app.get("/runs", response_model=list[RunOut])
    def list_runs(limit: int = Query(20, ge=1, le=1000)):
        return [_run_out(r) for r in ledger.list_runs().take(limit)]

    @app.get("/runs/{run_id}", response_model=RunOut)
    def get_run(run_id: str):
        try:
            return _run_out(ledger.get_run(run_id))
        except LedgerError:
            raise HTTPException(status_code=404, detail="Run not found")

    @app.get("/stats", response_model=StatsOut)
    def stats(limit: Optional[int] = Query(None, ge=1)):
        s = run_stats(ledger.list_runs(), limit=limit)
        return StatsOut(
            total=s.total,
            succeeded=s.succeeded,
            failed=s.failed,
            success_rate=s.success_rate,
            mean_duration_s=s.mean_duration.total_seconds() if s.mean_duration is not None else None,
            job_failures=s.job_failures,
        )

    return app
