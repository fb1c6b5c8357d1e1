from .dsl import job, sh, matrix, wf, JobBuilder, build
from .dag import JobGraph, build_graph
from .executor import ShellExecutor, StepResult
from .ledger.memory import MemoryLedger
from .ledger.sql import SqlLedger
from .model import Job, Step, JobState, RunState, PipelineRun
from .runner import FailurePolicy, Scheduler, run_pipeline

__all__ = [
    "job", "sh", "matrix", "wf", "JobBuilder", "build",
    "JobGraph", "build_graph",
    "ShellExecutor", "StepResult",
    "MemoryLedger", "SqlLedger",
    "Job", "Step", "JobState", "RunState", "PipelineRun",
    "FailurePolicy", "Scheduler", "run_pipeline",
]
