# ledger/stats.py
from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import timedelta
from itertools import islice
from typing import Dict, Iterable, Optional

from ..model import JobState, RunState, RunSummary


@dataclass(frozen=True)
class RunStats:
    total: int
    succeeded: int
    failed: int
    mean_duration: Optional[timedelta]
    job_failures: Dict[str, int] = field(default_factory=dict)

    @property
    def success_rate(self) -> Optional[float]:
        if self.total == 0:
            return None
        return self.succeeded / self.total


def run_stats(runs: Iterable[RunSummary], limit: Optional[int] = None) -> RunStats:
    """
    Success rate and duration trend over the most recent `limit` runs
    (all runs if None). `runs` is consumed once.
    """
    if limit is not None:
        runs = islice(runs, limit)

    total = succeeded = failed = 0
    durations = []
    job_failures: Counter = Counter()

    for r in runs:
        total += 1
        if r.state is RunState.SUCCEEDED:
            succeeded += 1
        elif r.state is RunState.FAILED:
            failed += 1
        if r.duration is not None:
            durations.append(r.duration)
        for j in r.jobs:
            if j.state is JobState.FAILED:
                job_failures[j.name] += 1

    mean = sum(durations, timedelta()) / len(durations) if durations else None
    return RunStats(
        total=total,
        succeeded=succeeded,
        failed=failed,
        mean_duration=mean,
        job_failures=dict(job_failures),
    )
