# cli.py
from __future__ import annotations

import sys
from pathlib import Path

import click

from ciflow import settings
from ciflow.dag import build_graph
from ciflow.errors import GraphError, LedgerError, WorkflowLoadError
from ciflow.executor import ShellExecutor
from ciflow.git_facts.git import get_remote_url, run_labels
from ciflow.ledger.stats import run_stats
from ciflow.loader import load_workflow
from ciflow.model import RunState
from ciflow.runner import FailurePolicy, Scheduler
from ciflow.ui.console import Console, get_console, set_console

DEFAULT_WORKFLOW = "ciflow_workflow.py"


def find_workflow_files() -> list[Path]:
    """Workflow files in the current directory, default one first."""
    current_dir = Path(".")
    workflow_files = []

    default_workflow = current_dir / DEFAULT_WORKFLOW
    if default_workflow.exists():
        workflow_files.append(default_workflow)

    for pattern in ("*_workflow.py", "*_workflow.json"):
        for path in sorted(current_dir.glob(pattern)):
            if path != default_workflow:
                workflow_files.append(path)

    return workflow_files


def discover_workflow(workflow_arg: str | None) -> Path:
    """
    Resolve the workflow file from the --workflow argument or by looking
    in the current directory. Exits with status 1 when that is impossible.
    """
    console = get_console()

    if workflow_arg:
        workflow_path = Path(workflow_arg)
        if not workflow_path.exists() and workflow_path.suffix not in (".py", ".json"):
            workflow_path = Path(str(workflow_path) + ".py")
        if not workflow_path.exists():
            console.print_error(
                "Workflow file not found",
                f"Could not find workflow file: {workflow_arg}",
                suggestion="Create a workflow file or specify a different path:\n  ciflow run --workflow my_workflow.py",
            )
            sys.exit(1)
        return workflow_path

    workflow_files = find_workflow_files()

    if len(workflow_files) == 0:
        console.print_error(
            "No workflow file found",
            "Could not find any workflow files.",
            details=["Looked for:", f"  {DEFAULT_WORKFLOW}", "  *_workflow.py", "  *_workflow.json"],
            suggestion=f"Create {DEFAULT_WORKFLOW} or pass --workflow.",
        )
        sys.exit(1)

    if len(workflow_files) > 1:
        console.print_error(
            "Multiple workflow files found",
            "Found multiple workflow files. Please specify which one to use:",
            details=[str(f) for f in workflow_files],
            suggestion=f"Specify a workflow explicitly:\n  ciflow run --workflow {workflow_files[0]}",
        )
        sys.exit(1)

    return workflow_files[0]


def _open_ledger(url: str):
    from ciflow.ledger.sql import SqlLedger

    if url.startswith("sqlite:///"):
        db_path = Path(url[len("sqlite:///"):])
        if str(db_path) != ":memory:":
            db_path.parent.mkdir(parents=True, exist_ok=True)
    return SqlLedger(url)


def _load_jobs(workflow_path: Path):
    console = get_console()
    try:
        return load_workflow(workflow_path)
    except WorkflowLoadError as e:
        console.print_error("Failed to load workflow", f"Could not load workflow from {workflow_path}", details=[str(e)])
        sys.exit(1)


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.option("--quiet", is_flag=True, default=False, help="Only print the final results")
@click.pass_context
def cli(ctx, debug, quiet):
    """ciflow: run CI jobs in dependency order, in parallel where possible."""
    set_console(Console(debug=debug, quiet=quiet))
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.option("--workflow", default=None, help=f"Workflow file path (defaults to {DEFAULT_WORKFLOW} if present)")
@click.option("--workers", default=settings.MAX_WORKERS, type=int, help="Cap on concurrently running jobs (default: no cap)")
@click.option(
    "--policy",
    type=click.Choice([p.value for p in FailurePolicy]),
    default=FailurePolicy.FAIL_FAST.value,
    show_default=True,
    help="fail-fast skips jobs downstream of a failure; halt stops dispatching anything new",
)
@click.option("--timeout", default=settings.STEP_TIMEOUT, type=float, help="Per-step timeout in seconds")
@click.option("--log-dir", default=settings.LOG_DIR, show_default=True, help="Directory for step logs")
@click.option("--ledger/--no-ledger", "use_ledger", default=True, show_default=True, help="Record the run in the ledger")
@click.option("--database-url", default=settings.DATABASE_URL, show_default=True, help="Ledger database URL")
@click.pass_context
def run(ctx, workflow, workers, policy, timeout, log_dir, use_ledger, database_url):
    """Run a workflow."""
    console = get_console()
    workflow_path = discover_workflow(workflow)

    try:
        try:
            repo_name = get_remote_url().rstrip("/").split("/")[-1].replace(".git", "")
        except Exception:
            repo_name = Path(".").resolve().name
        commit, branch = run_labels()

        jobs = _load_jobs(workflow_path)
        graph = build_graph(jobs)

        console.print_run_started(
            repository=repo_name,
            workflow=workflow_path.name,
            job_count=len(graph),
            commit=commit,
            branch=branch,
        )

        executor = ShellExecutor(".", log_dir=log_dir, timeout=timeout)
        scheduler = Scheduler(executor, max_workers=workers, policy=FailurePolicy(policy), console=console)
        result = scheduler.run(graph, commit=commit, branch=branch)

        console.print_results(result)

        if use_ledger:
            ledger = _open_ledger(database_url)
            try:
                ledger.record_run(result)
            finally:
                ledger.close()
            console.print_debug(f"recorded run {result.run_id} in {database_url}")

        if result.state is not RunState.SUCCEEDED:
            sys.exit(1)

    except GraphError as e:
        console.print_error("Invalid workflow", str(e))
        sys.exit(2)
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except LedgerError as e:
        console.print_error("Could not record run", str(e))
        sys.exit(1)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)


@cli.command()
@click.option("--workflow", default=None, help=f"Workflow file path (defaults to {DEFAULT_WORKFLOW} if present)")
@click.pass_context
def graph(ctx, workflow):
    """Print the execution order and stages of a workflow without running it."""
    console = get_console()
    workflow_path = discover_workflow(workflow)
    jobs = _load_jobs(workflow_path)

    try:
        g = build_graph(jobs)
    except GraphError as e:
        console.print_error("Invalid workflow", str(e))
        sys.exit(2)

    console.print_header("ORDER")
    for idx, name in enumerate(g.order, start=1):
        needs = g.sorted_names(g.needs[name])
        suffix = f"  (needs: {', '.join(needs)})" if needs else ""
        console.print_info(f"{idx:>3}. {name}{suffix}")
    console.print_header("STAGES")
    for idx, level in enumerate(g.levels(), start=1):
        console.print_info(f"  {idx}: {', '.join(level)}")


@cli.command()
@click.option("--limit", default=10, show_default=True, type=int, help="Number of runs to show")
@click.option("--database-url", default=settings.DATABASE_URL, show_default=True, help="Ledger database URL")
def history(limit, database_url):
    """Show recent runs, most recent first, with success rate."""
    console = get_console()
    ledger = _open_ledger(database_url)
    try:
        runs = ledger.list_runs()
        console.print_history(runs.take(limit))
        stats = run_stats(runs, limit=limit)
    finally:
        ledger.close()

    if stats.total:
        mean = f"{stats.mean_duration.total_seconds():.1f}s" if stats.mean_duration else "-"
        console.print_info(
            f"\n{stats.succeeded}/{stats.total} succeeded ({stats.success_rate:.0%}), mean duration {mean}"
        )
    else:
        console.print_info("No runs recorded yet.")


@cli.command()
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=8000, show_default=True, type=int)
@click.option("--database-url", default=settings.DATABASE_URL, show_default=True, help="Ledger database URL")
def serve(host, port, database_url):
    """Serve the run ledger over HTTP."""
    import uvicorn
    from ciflow.server.main import create_app

    uvicorn.run(create_app(_open_ledger(database_url)), host=host, port=port)


if __name__ == "__main__":
    cli()
