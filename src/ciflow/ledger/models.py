from __future__ import annotations

from datetime import datetime
from typing import List, Optional

import sqlalchemy as sa
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


class RunRecord(Base):
    __tablename__ = "ledger_runs"
    # insertion order; tie-breaker for runs finishing at the same instant
    seq: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[str] = mapped_column(sa.String(64), unique=True, nullable=False)
    state: Mapped[str] = mapped_column(sa.String(16), nullable=False)
    commit: Mapped[Optional[str]] = mapped_column(sa.String(64), nullable=True)
    branch: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    started_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False)
    finished_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True), nullable=True, index=True)

    jobs: Mapped[List[JobRecord]] = relationship(
        back_populates="run",
        order_by="JobRecord.position",
        cascade="all, delete-orphan",
    )


class JobRecord(Base):
    __tablename__ = "ledger_jobs"
    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    run_seq: Mapped[int] = mapped_column(sa.ForeignKey("ledger_runs.seq", ondelete="CASCADE"), nullable=False)
    position: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    name: Mapped[str] = mapped_column(sa.Text, nullable=False)
    state: Mapped[str] = mapped_column(sa.String(16), nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(sa.String(32), nullable=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    finished_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True), nullable=True)

    run: Mapped[RunRecord] = relationship(back_populates="jobs")
