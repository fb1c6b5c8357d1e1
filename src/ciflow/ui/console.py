"""Console output formatting utilities for ciflow."""

from __future__ import annotations

import sys
import threading
from datetime import timedelta
from typing import Iterable, List, Optional

from ..model import JobState, PipelineRun, RunSummary


def _fmt_duration(d: Optional[timedelta]) -> str:
    if d is None:
        return "-"
    return f"{d.total_seconds():.1f}s"


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False, quiet: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
            quiet: If True, suppress per-job progress lines
        """
        self.debug = debug
        self.quiet = quiet
        # jobs report from worker threads; keep multi-line blocks together
        self._lock = threading.Lock()

    def _emit(self, *lines: str, err: bool = False) -> None:
        stream = sys.stderr if err else sys.stdout
        with self._lock:
            for line in lines:
                print(line, file=stream)

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self._emit(f"\n{title}", "-" * len(title))

    def print_run_started(
        self,
        repository: str,
        workflow: str,
        job_count: int,
        commit: Optional[str] = None,
        branch: Optional[str] = None,
    ) -> None:
        """Print run start information."""
        lines = ["\nRUN STARTED", f"Repository: {repository}", f"Workflow: {workflow}"]
        if branch:
            lines.append(f"Branch: {branch}")
        if commit:
            lines.append(f"Commit: {commit[:12]}")
        lines.append(f"Jobs: {job_count}")
        lines.append("")
        self._emit(*lines)

    def print_plan(self, levels: List[List[str]]) -> None:
        """Print the stages the graph breaks down into."""
        if self.quiet:
            return
        for idx, level in enumerate(levels):
            self._emit(f"=== Stage {idx + 1}: {level} ===")

    def print_job_start(self, name: str) -> None:
        if not self.quiet:
            self._emit(f"\nJOB STARTED: {name}")

    def print_step(self, job: str, name: str) -> None:
        if not self.quiet:
            self._emit(f"[{job}] STEP: {name}")

    def print_job_success(self, name: str, duration: Optional[timedelta] = None) -> None:
        if not self.quiet:
            self._emit(f"[{name}] STATUS: success ({_fmt_duration(duration)})")

    def print_failure(
        self,
        name: str,
        reason: str,
        exit_code: Optional[int] = None,
        is_job: bool = False,
    ) -> None:
        """
        Print failure message.

        Args:
            name: Job or step name
            reason: Failure reason/error message
            exit_code: Optional exit code
            is_job: If True, print "JOB FAILED", otherwise "STEP FAILED"
        """
        prefix = "JOB FAILED" if is_job else "STEP FAILED"
        lines = [f"{prefix}: {name}"]
        if exit_code is not None:
            lines.append(f"Exit code: {exit_code}")
        if self.debug:
            lines.append(f"Error details: {reason}")
        else:
            error_line = reason.split("\n")[0] if reason else "Unknown error"
            lines.append(f"Error: {error_line}")
        self._emit(*lines)

    def print_job_skipped(self, name: str, reason: str) -> None:
        if not self.quiet:
            self._emit(f"[{name}] STATUS: skipped ({reason})")

    def print_results(self, run: PipelineRun) -> None:
        """Print final results summary."""
        lines = ["", "=" * 40, "RESULTS", "=" * 40]
        for name in run.graph.names:
            jr = run.jobs[name]
            status = jr.state.value.upper()
            if jr.reason is not None and jr.state is JobState.SKIPPED:
                status = f"{status} ({jr.reason.value})"
            lines.append(f"  {name}: {status} {_fmt_duration(jr.duration)}")
        lines.append(f"RUN {run.run_id}: {run.state.value.upper()} in {_fmt_duration(run.duration)}")
        self._emit(*lines)

    def print_history(self, runs: Iterable[RunSummary]) -> None:
        """Print a table of past runs, most recent first."""
        self._emit(f"{'RUN':<34} {'STATUS':<10} {'BRANCH':<16} {'COMMIT':<12} {'JOBS':>4} {'DURATION':>9}")
        for r in runs:
            self._emit(
                f"{r.run_id:<34} {r.state.value:<10} {(r.branch or '-'):<16} "
                f"{(r.commit or '-')[:12]:<12} {r.job_count:>4} {_fmt_duration(r.duration):>9}"
            )

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        lines = [f"\nERROR: {title}", message]
        if details:
            lines.extend(f"  {detail}" for detail in details)
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._emit(*lines, err=True)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            with self._lock:
                traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            self._emit(f"Error: {exc}", err=True)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._emit(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._emit(f"[DEBUG] {message}", err=True)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
