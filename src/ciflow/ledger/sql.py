# ledger/sql.py
from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterator, Optional

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload, sessionmaker

from ..errors import LedgerError
from ..model import FailureReason, JobState, JobSummary, RunState, RunSummary
from .base import RunHistory, RunLedger
from .models import Base, JobRecord, RunRecord


def _aware(dt: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything we store is UTC
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def _to_summary(rec: RunRecord) -> RunSummary:
    return RunSummary(
        run_id=rec.run_id,
        state=RunState(rec.state),
        commit=rec.commit,
        branch=rec.branch,
        started_at=_aware(rec.started_at),
        finished_at=_aware(rec.finished_at),
        jobs=tuple(
            JobSummary(
                name=j.name,
                state=JobState(j.state),
                started_at=_aware(j.started_at),
                finished_at=_aware(j.finished_at),
                reason=FailureReason(j.reason) if j.reason else None,
            )
            for j in rec.jobs
        ),
    )


class SqlLedger(RunLedger):
    """
    Durable ledger on any SQLAlchemy database URL.

    Tables are created on first use. Reads stream rows in batches of
    `page_size` while the history is being iterated.
    """

    def __init__(self, url: str, *, page_size: int = 100, echo: bool = False):
        connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
        self.engine = sa.create_engine(url, echo=echo, pool_pre_ping=True, connect_args=connect_args)
        self.Session = sessionmaker(self.engine, expire_on_commit=False)
        self.page_size = page_size
        Base.metadata.create_all(self.engine)

    def _append(self, summary: RunSummary) -> None:
        rec = RunRecord(
            run_id=summary.run_id,
            state=summary.state.value,
            commit=summary.commit,
            branch=summary.branch,
            started_at=summary.started_at,
            finished_at=summary.finished_at,
            jobs=[
                JobRecord(
                    position=i,
                    name=j.name,
                    state=j.state.value,
                    reason=j.reason.value if j.reason else None,
                    started_at=j.started_at,
                    finished_at=j.finished_at,
                )
                for i, j in enumerate(summary.jobs)
            ],
        )
        try:
            with self.Session() as s:
                with s.begin():
                    s.add(rec)
        except IntegrityError as e:
            raise LedgerError(f"Run {summary.run_id} is already recorded") from e

    def _iter(self) -> Iterator[RunSummary]:
        stmt = (
            sa.select(RunRecord)
            .options(selectinload(RunRecord.jobs))
            .order_by(RunRecord.finished_at.desc(), RunRecord.seq.desc())
            .execution_options(yield_per=self.page_size)
        )
        with self.Session() as s:
            for rec in s.scalars(stmt):
                yield _to_summary(rec)

    def list_runs(self) -> RunHistory:
        return RunHistory(self._iter)

    def get_run(self, run_id: str) -> RunSummary:
        stmt = sa.select(RunRecord).options(selectinload(RunRecord.jobs)).where(RunRecord.run_id == run_id)
        with self.Session() as s:
            rec = s.scalars(stmt).one_or_none()
            if rec is None:
                raise LedgerError(f"Unknown run: {run_id}")
            return _to_summary(rec)

    def close(self) -> None:
        self.engine.dispose()
