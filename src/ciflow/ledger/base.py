# ledger/base.py
from __future__ import annotations

from abc import ABC, abstractmethod
from itertools import islice
from typing import Callable, Iterator, List

from ..errors import LedgerError
from ..model import PipelineRun, RunSummary


class RunHistory:
    """
    Lazy view over recorded runs, most recent first.

    Nothing is read until iteration starts, and every iter() starts over
    from the newest run, so the same history can be walked many times.
    """

    def __init__(self, source: Callable[[], Iterator[RunSummary]]):
        self._source = source

    def __iter__(self) -> Iterator[RunSummary]:
        return self._source()

    def take(self, n: int) -> List[RunSummary]:
        return list(islice(self, n))


class RunLedger(ABC):
    """Append-only record of finished pipeline runs."""

    def record_run(self, run: PipelineRun) -> RunSummary:
        """
        Persist a finished run. Each run id can be recorded once; the entry
        is never changed afterwards.
        """
        if not run.finished:
            raise LedgerError(f"Run {run.run_id} is still {run.state.value}; only finished runs are recorded")
        summary = run.summary()
        self._append(summary)
        return summary

    @abstractmethod
    def _append(self, summary: RunSummary) -> None:
        """Store `summary`; raise LedgerError if its run id already exists."""

    @abstractmethod
    def list_runs(self) -> RunHistory:
        ...

    @abstractmethod
    def get_run(self, run_id: str) -> RunSummary:
        """Raises LedgerError for unknown run ids."""
