# ledger/memory.py
from __future__ import annotations

import threading
from datetime import datetime
from typing import Dict, Iterator, List, Tuple

from ..errors import LedgerError
from ..model import RunSummary
from .base import RunHistory, RunLedger


class MemoryLedger(RunLedger):
    """In-process ledger, lost on exit. Good for tests and one-shot CLI runs."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._runs: Dict[str, RunSummary] = {}
        self._seq: Dict[str, int] = {}

    def _append(self, summary: RunSummary) -> None:
        with self._lock:
            if summary.run_id in self._runs:
                raise LedgerError(f"Run {summary.run_id} is already recorded")
            self._seq[summary.run_id] = len(self._runs)
            self._runs[summary.run_id] = summary

    def _sorted(self) -> List[RunSummary]:
        with self._lock:
            runs = list(self._runs.values())
            seq = dict(self._seq)

        def key(r: RunSummary) -> Tuple[datetime, int]:
            return (r.finished_at or r.started_at, seq[r.run_id])

        return sorted(runs, key=key, reverse=True)

    def _iter(self) -> Iterator[RunSummary]:
        yield from self._sorted()

    def list_runs(self) -> RunHistory:
        return RunHistory(self._iter)

    def get_run(self, run_id: str) -> RunSummary:
        with self._lock:
            try:
                return self._runs[run_id]
            except KeyError:
                raise LedgerError(f"Unknown run: {run_id}") from None

    def __len__(self) -> int:
        return len(self._runs)
